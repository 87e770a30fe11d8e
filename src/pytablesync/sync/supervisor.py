"""Connection supervisor: chooses the active producer and tracks health."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncError
from pytablesync.models.connection import ConnectionHealth, ConnectionMode, ConnectionState, PushStatus
from pytablesync.models.session import SessionPhase
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.remote import RemoteStore
from pytablesync.state.events import Delta
from pytablesync.state.store import SessionStateStore
from pytablesync.sync.poll import PollScheduler
from pytablesync.sync.push import PushChannel, RuntimeFactory

_logger = logging.getLogger(__name__)

ModeListener = Callable[[ConnectionMode], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SupervisorState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    PUSH_HEALTHY = "push_healthy"
    PUSH_DEGRADED = "push_degraded"
    FALLBACK = "fallback"
    RECOVERING = "recovering"
    ENDED = "ended"


_PUSH_STATES = frozenset({SupervisorState.CONNECTING, SupervisorState.PUSH_HEALTHY, SupervisorState.PUSH_DEGRADED})


class ConnectionSupervisor:
    """Keeps exactly one transport feeding the :class:`SessionStateStore`.

    Push is preferred. Repeated push errors switch to polling, and push is
    only trusted again once a reopened subscription has been acknowledged.
    Every switch bumps an epoch so results from the deactivated transport
    are dropped. Transport failures never propagate to the caller.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: SessionStateStore,
        remote: RemoteStore,
        *,
        runtime_factory: RuntimeFactory | None = None,
        monotonic: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._remote = remote
        self._monotonic = monotonic
        self._wall_clock = wall_clock

        self._push = PushChannel(
            config,
            on_deltas=self._on_push_deltas,
            on_status=self._on_push_status,
            runtime_factory=runtime_factory,
        )
        self._poll = PollScheduler(
            config,
            remote,
            on_snapshot=self._on_poll_snapshot,
            on_deltas=self._on_poll_deltas,
            phase_provider=self._current_phase,
            clock=monotonic,
            wall_clock=wall_clock,
        )

        self._state = SupervisorState.IDLE
        self._mode = ConnectionMode.PUSH if config.push_enabled else ConnectionMode.POLL
        self._epoch = 0
        self._session_id: str | None = None
        self._consecutive_errors = 0
        self._last_error_at: float | None = None
        self._last_push_success_at: datetime | None = None
        self._recovery_timer: asyncio.TimerHandle | None = None
        self._buffer: list[Delta] | None = None
        self._reload_task: asyncio.Task[None] | None = None
        self._push_ops: set[asyncio.Task[Any]] = set()
        self._mode_listeners: list[ModeListener] = []
        self._unsubscribe_phase = store.on_phase_change(self._on_phase_change)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def consecutive_errors(self) -> int:
        """Counted push errors since the last acknowledgment."""
        return self._consecutive_errors

    @property
    def poll(self) -> PollScheduler:
        return self._poll

    @property
    def push(self) -> PushChannel:
        return self._push

    @property
    def last_success_at(self) -> datetime | None:
        """Most recent successful push delivery or poll fetch."""
        candidates = [ts for ts in (self._last_push_success_at, self._poll.last_success_at) if ts is not None]
        return max(candidates) if candidates else None

    def current_mode(self) -> ConnectionMode:
        return self._mode

    def health(self) -> ConnectionHealth:
        state = self._state
        if state is SupervisorState.ENDED or state is SupervisorState.PUSH_HEALTHY:
            return ConnectionHealth.HEALTHY
        if state is SupervisorState.IDLE:
            return ConnectionHealth.DISCONNECTED
        if state is SupervisorState.PUSH_DEGRADED:
            return ConnectionHealth.DEGRADED

        poll_errors = self._poll.consecutive_errors
        if poll_errors >= self._config.poll_error_threshold:
            return ConnectionHealth.DISCONNECTED
        if state is SupervisorState.FALLBACK and poll_errors == 0:
            return ConnectionHealth.HEALTHY
        return ConnectionHealth.DEGRADED

    def connection_state(self) -> ConnectionState:
        errors = self._consecutive_errors if self._mode is ConnectionMode.PUSH else self._poll.consecutive_errors
        return ConnectionState(
            mode=self._mode,
            health=self.health(),
            consecutive_errors=errors,
            last_success_at=self.last_success_at,
        )

    def on_mode_change(self, listener: ModeListener) -> Callable[[], None]:
        """Register a mode listener; returns a callable that unregisters it."""
        self._mode_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._mode_listeners:
                self._mode_listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, session_id: str) -> None:
        """Start following *session_id*, replacing any previous session."""
        if self._session_id == session_id and self._state is not SupervisorState.IDLE:
            return
        if self._session_id is not None:
            await self.disconnect()

        self._epoch += 1
        self._session_id = session_id
        self._consecutive_errors = 0
        self._last_error_at = None
        _logger.debug("Connecting session=%s push_enabled=%s", session_id, self._config.push_enabled)

        if not self._config.push_enabled:
            self._transition(SupervisorState.FALLBACK)
            self._set_mode(ConnectionMode.POLL)
            self._poll.enable(session_id)
            return

        self._transition(SupervisorState.CONNECTING)
        self._set_mode(ConnectionMode.PUSH)
        await self._push.open(session_id)

    async def disconnect(self) -> None:
        """Stop both transports and return to ``IDLE``."""
        self._epoch += 1
        self._cancel_recovery()
        self._cancel_reload()
        self._buffer = None
        self._poll.disable()
        await self._drain_push_ops()
        await self._push.close()
        if self._session_id is not None:
            _logger.debug("Disconnected session=%s", self._session_id)
        self._session_id = None
        self._consecutive_errors = 0
        self._last_error_at = None
        self._transition(SupervisorState.IDLE)

    async def aclose(self) -> None:
        """Disconnect and release the poll scheduler for good."""
        await self.disconnect()
        self._poll.dispose()
        self._unsubscribe_phase()

    async def force_reload(self) -> None:
        """Reset error counters and reload the full snapshot now."""
        session_id = self._session_id
        if session_id is None:
            return
        self._consecutive_errors = 0
        self._last_error_at = None
        self._poll.reset_errors()
        if self._poll.is_polling:
            await self._poll.manual_refresh()
            return

        epoch = self._epoch
        try:
            snapshot = await self._remote.fetch_snapshot(session_id)
        except SyncError as exc:
            _logger.warning("Forced reload failed: %s", exc)
            return
        except Exception:
            _logger.warning("Forced reload failed unexpectedly", exc_info=True)
            return
        if epoch != self._epoch:
            return
        self._store.replace(snapshot)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _current_phase(self) -> SessionPhase | None:
        return self._store.get_snapshot().phase

    def _transition(self, new_state: SupervisorState) -> None:
        if new_state is self._state:
            return
        _logger.debug("Supervisor %s -> %s", self._state, new_state)
        self._state = new_state

    def _set_mode(self, mode: ConnectionMode) -> None:
        if mode is self._mode:
            return
        _logger.info("Sync mode %s -> %s session=%s", self._mode, mode, self._session_id)
        self._mode = mode
        for listener in list(self._mode_listeners):
            try:
                listener(mode)
            except Exception:
                _logger.debug("Mode listener failed", exc_info=True)

    def _enter_fallback(self) -> None:
        session_id = self._session_id
        if session_id is None:
            return
        self._epoch += 1
        self._cancel_reload()
        self._buffer = None
        self._transition(SupervisorState.FALLBACK)
        self._set_mode(ConnectionMode.POLL)
        self._spawn_push_op(self._push.close())
        self._poll.enable(session_id)
        self._arm_recovery()

    def _enter_ended(self) -> None:
        self._epoch += 1
        self._cancel_recovery()
        self._cancel_reload()
        self._buffer = None
        self._poll.disable()
        self._spawn_push_op(self._push.close())
        self._transition(SupervisorState.ENDED)
        _logger.info("Session ended, transports stopped session=%s", self._session_id)

    def _arm_recovery(self) -> None:
        self._cancel_recovery()
        if not self._config.push_enabled:
            return
        loop = asyncio.get_running_loop()
        self._recovery_timer = loop.call_later(self._config.recovery_interval, self._on_recovery_due, self._epoch)

    def _cancel_recovery(self) -> None:
        if self._recovery_timer is not None:
            self._recovery_timer.cancel()
            self._recovery_timer = None

    def _on_recovery_due(self, epoch: int) -> None:
        self._recovery_timer = None
        session_id = self._session_id
        if epoch != self._epoch or self._state is not SupervisorState.FALLBACK or session_id is None:
            return
        _logger.info("Attempting push recovery session=%s", session_id)
        self._consecutive_errors = 0
        self._last_error_at = None
        self._transition(SupervisorState.RECOVERING)
        self._spawn_push_op(self._push.open(session_id))

    # ------------------------------------------------------------------
    # Push events
    # ------------------------------------------------------------------

    def _on_push_status(self, status: PushStatus, detail: str) -> None:
        state = self._state
        if state not in _PUSH_STATES and state is not SupervisorState.RECOVERING:
            _logger.debug("Ignoring push status %s in state %s", status, state)
            return
        if status is PushStatus.CONNECTED:
            self._on_push_acknowledged()
        elif status in (PushStatus.ERROR, PushStatus.CLOSED):
            self._on_push_error(status, detail)

    def _on_push_acknowledged(self) -> None:
        if self._state is SupervisorState.RECOVERING:
            _logger.info("Push recovered, leaving polling session=%s", self._session_id)
            self._poll.disable()
        self._epoch += 1
        self._consecutive_errors = 0
        self._last_error_at = None
        self._last_push_success_at = self._wall_clock()
        self._transition(SupervisorState.PUSH_HEALTHY)
        self._set_mode(ConnectionMode.PUSH)
        self._start_reload()

    def _on_push_error(self, status: PushStatus, detail: str) -> None:
        now = self._monotonic()
        if self._last_error_at is not None and now - self._last_error_at < self._config.error_debounce:
            _logger.debug("Push %s debounced: %s", status, detail)
            return
        self._last_error_at = now

        if self._state is SupervisorState.RECOVERING:
            _logger.warning("Push recovery failed (%s), staying on polling", detail)
            self._enter_fallback()
            return

        self._consecutive_errors += 1
        _logger.debug("Push %s (%d consecutive): %s", status, self._consecutive_errors, detail)
        if self._consecutive_errors >= self._config.push_error_threshold:
            _logger.warning(
                "Push failed %d times, falling back to polling session=%s",
                self._consecutive_errors,
                self._session_id,
            )
            self._enter_fallback()
        elif self._state is SupervisorState.PUSH_HEALTHY:
            self._transition(SupervisorState.PUSH_DEGRADED)

    def _on_push_deltas(self, deltas: list[Delta]) -> None:
        state = self._state
        if state not in _PUSH_STATES:
            _logger.debug("Dropping %d push deltas in state %s", len(deltas), state)
            return
        self._last_push_success_at = self._wall_clock()
        if self._buffer is not None:
            self._buffer.extend(deltas)
            return
        self._store.apply_deltas(deltas)

    # ------------------------------------------------------------------
    # Startup reload
    # ------------------------------------------------------------------

    def _start_reload(self) -> None:
        self._cancel_reload()
        if self._buffer is None:
            self._buffer = []
        self._reload_task = asyncio.get_running_loop().create_task(self._startup_reload(self._epoch))

    def _cancel_reload(self) -> None:
        task = self._reload_task
        self._reload_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _startup_reload(self, epoch: int) -> None:
        session_id = self._session_id
        if session_id is None:
            return
        snapshot: SessionSnapshot | None = None
        try:
            snapshot = await self._remote.fetch_snapshot(session_id)
        except SyncError as exc:
            _logger.warning("Startup reload failed, continuing on push only: %s", exc)
        except Exception:
            _logger.warning("Startup reload failed unexpectedly, continuing on push only", exc_info=True)
        if epoch != self._epoch:
            return
        buffered = self._buffer or []
        self._buffer = None
        self._reload_task = None
        if snapshot is not None:
            self._store.replace(snapshot)
        if buffered:
            self._store.apply_deltas(buffered)

    # ------------------------------------------------------------------
    # Poll events
    # ------------------------------------------------------------------

    def _on_poll_snapshot(self, snapshot: SessionSnapshot) -> None:
        if self._state not in (SupervisorState.FALLBACK, SupervisorState.RECOVERING):
            return
        self._store.replace(snapshot)

    def _on_poll_deltas(self, deltas: list[Delta]) -> None:
        if self._state not in (SupervisorState.FALLBACK, SupervisorState.RECOVERING):
            return
        self._store.apply_deltas(deltas)

    def _on_phase_change(self, previous: SessionPhase | None, new: SessionPhase) -> None:
        if new is SessionPhase.ENDED and self._state not in (SupervisorState.IDLE, SupervisorState.ENDED):
            self._enter_ended()

    # ------------------------------------------------------------------
    # Background push operations
    # ------------------------------------------------------------------

    def _spawn_push_op(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._push_ops.add(task)
        task.add_done_callback(self._push_op_done)

    def _push_op_done(self, task: asyncio.Task[Any]) -> None:
        self._push_ops.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _logger.debug("Push operation failed", exc_info=task.exception())

    async def _drain_push_ops(self) -> None:
        pending = [task for task in self._push_ops if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
