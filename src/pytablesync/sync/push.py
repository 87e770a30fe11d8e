"""Push channel: one acknowledged change-feed subscription per session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pytablesync._mqtt import FeedMessage, MqttBootstrap, MqttChangeFeedRuntime, build_bootstrap
from pytablesync._redact import redact_for_log
from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncDataError, SyncTransportError
from pytablesync.ingestion.push import delta_from_change
from pytablesync.models.connection import PushStatus
from pytablesync.state.events import Delta

_logger = logging.getLogger(__name__)

StatusCallback = Callable[[PushStatus, str], None]
DeltaCallback = Callable[[list[Delta]], None]


class ChangeFeedRuntime(Protocol):
    """Blocking runtime started/stopped from an executor thread."""

    @property
    def is_running(self) -> bool: ...

    def start(self, bootstrap: MqttBootstrap) -> None: ...

    def stop(self) -> None: ...


class RuntimeFactory(Protocol):
    def __call__(
        self,
        *,
        on_message: Callable[[FeedMessage], None],
        on_status: StatusCallback,
    ) -> ChangeFeedRuntime: ...


@dataclass(frozen=True)
class PushSubscription:
    """Handle returned by :meth:`PushChannel.open`."""

    session_id: str
    topics: tuple[str, ...]


class PushChannel:
    """Owns the MQTT runtime for the session being followed.

    Status changes and decoded deltas are delivered through callbacks on the
    event loop. Failures are reported as ``error``/``closed`` statuses and
    never raised to the caller.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        on_deltas: DeltaCallback,
        on_status: StatusCallback,
        runtime_factory: RuntimeFactory | None = None,
    ) -> None:
        self._config = config
        self._on_deltas = on_deltas
        self._on_status = on_status
        self._runtime_factory = runtime_factory
        self._subscription: PushSubscription | None = None
        self._runtime: ChangeFeedRuntime | None = None
        self._attempt = 0
        self._acknowledged = False
        self._timer: asyncio.TimerHandle | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._lifecycle = asyncio.Lock()

    @property
    def subscription(self) -> PushSubscription | None:
        return self._subscription

    @property
    def is_acknowledged(self) -> bool:
        """Whether the current runtime attempt has had its subscription granted."""
        return self._acknowledged

    async def open(self, session_id: str) -> PushSubscription:
        """Subscribe to *session_id*, replacing any subscription for another session."""
        async with self._lifecycle:
            if self._subscription is not None and self._subscription.session_id == session_id:
                return self._subscription
            await self._close_locked()

            bootstrap = build_bootstrap(self._config, session_id)
            subscription = PushSubscription(session_id=session_id, topics=bootstrap.topics)
            self._subscription = subscription
            _logger.debug("Opening push subscription session=%s topics=%s", session_id, bootstrap.topics)
            await self._start_runtime(bootstrap)
            return subscription

    async def close(self) -> None:
        """Release the subscription. Safe to call repeatedly."""
        # Callbacks of the current runtime are stale from here on, even
        # while an open() in progress still holds the lifecycle lock.
        self._invalidate()
        async with self._lifecycle:
            await self._close_locked()

    def _invalidate(self) -> None:
        self._attempt += 1
        self._acknowledged = False
        self._cancel_timer()

    async def _close_locked(self) -> None:
        self._invalidate()
        had_subscription = self._subscription is not None
        self._subscription = None
        await self._stop_runtime()
        if had_subscription:
            _logger.debug("Push subscription closed")

    # ------------------------------------------------------------------
    # Runtime lifecycle
    # ------------------------------------------------------------------

    def _create_runtime(self, attempt: int) -> ChangeFeedRuntime:
        def on_message(message: FeedMessage) -> None:
            self._handle_message(attempt, message)

        def on_status(status: PushStatus, detail: str) -> None:
            self._handle_runtime_status(attempt, status, detail)

        if self._runtime_factory is not None:
            return self._runtime_factory(on_message=on_message, on_status=on_status)
        return MqttChangeFeedRuntime(
            loop=asyncio.get_running_loop(),
            on_message=on_message,
            on_status=on_status,
            keepalive=self._config.mqtt_keepalive,
        )

    async def _start_runtime(self, bootstrap: MqttBootstrap) -> None:
        self._attempt += 1
        attempt = self._attempt
        self._acknowledged = False
        runtime = self._create_runtime(attempt)
        self._runtime = runtime
        self._on_status(PushStatus.CONNECTING, bootstrap.client_id)
        self._arm_timer(attempt, self._on_ack_timeout)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, runtime.start, bootstrap)
        except SyncTransportError as exc:
            _logger.debug("Push runtime start failed", exc_info=True)
            if attempt != self._attempt:
                return
            # Next attempt after one ack window; no second error for this attempt.
            self._arm_timer(attempt, self._on_retry_due)
            self._on_status(PushStatus.ERROR, exc.reason or str(exc))

    async def _stop_runtime(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is None:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, runtime.stop)
        except Exception:
            _logger.debug("Push runtime stop failed", exc_info=True)

    async def _restart(self, attempt: int) -> None:
        async with self._lifecycle:
            subscription = self._subscription
            if attempt != self._attempt or subscription is None:
                return
            _logger.debug("Restarting push subscription session=%s", subscription.session_id)
            await self._stop_runtime()
            await self._start_runtime(build_bootstrap(self._config, subscription.session_id))

    def _schedule_restart(self, attempt: int) -> None:
        self._restart_task = asyncio.get_running_loop().create_task(self._restart(attempt))

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm_timer(self, attempt: int, callback: Callable[[int], None]) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._config.ack_timeout, callback, attempt)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_ack_timeout(self, attempt: int) -> None:
        if attempt != self._attempt or self._acknowledged:
            return
        self._timer = None
        _logger.warning("Push subscription not acknowledged within %.1fs", self._config.ack_timeout)
        self._on_status(PushStatus.ERROR, "ack timeout")
        self._schedule_restart(attempt)

    def _on_retry_due(self, attempt: int) -> None:
        if attempt != self._attempt:
            return
        self._timer = None
        self._schedule_restart(attempt)

    # ------------------------------------------------------------------
    # Runtime callbacks (on the event loop)
    # ------------------------------------------------------------------

    def _handle_runtime_status(self, attempt: int, status: PushStatus, detail: str) -> None:
        if attempt != self._attempt:
            _logger.debug("Ignoring status %s from superseded push runtime", status)
            return
        if status is PushStatus.CONNECTED:
            self._cancel_timer()
            self._acknowledged = True
        elif status in (PushStatus.ERROR, PushStatus.CLOSED):
            # paho reconnects on its own; the next grant must again arrive in time.
            self._acknowledged = False
            self._arm_timer(attempt, self._on_ack_timeout)
        self._on_status(status, detail)

    def _handle_message(self, attempt: int, message: FeedMessage) -> None:
        subscription = self._subscription
        if attempt != self._attempt or subscription is None:
            return
        try:
            delta = delta_from_change(message.payload, session_id=subscription.session_id)
        except SyncDataError:
            _logger.warning(
                "Dropping malformed change message topic=%s payload=%s",
                message.topic,
                redact_for_log(message.payload),
                exc_info=True,
            )
            return
        self._on_deltas([delta])
