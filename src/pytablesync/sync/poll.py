"""Timer-driven REST polling with backoff and periodic full reloads."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncError
from pytablesync.models.session import SessionPhase
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.remote import RemoteStore
from pytablesync.state.events import Delta

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def interval_for_phase(phase: SessionPhase | None, config: SyncConfig) -> float:
    """Seconds between polls in *phase*; ``0`` means stop polling."""
    if phase is SessionPhase.ENDED:
        return 0.0
    return config.poll_interval


def backoff_delay(failures: int, *, base: float, cap: float) -> float:
    """Delay after the *failures*-th consecutive failure: ``min(base * 2**(n-1), cap)``."""
    if failures < 1:
        return 0.0
    return min(base * (2 ** (failures - 1)), cap)


class PollScheduler:
    """Fetches the followed session from the remote store while enabled.

    At most one fetch runs at a time. Each tick is either an incremental
    fetch (rows changed after the previous successful fetch started, minus
    ``poll_overlap``) or a full reload, the latter on the first tick and
    whenever ``full_reload_interval`` has elapsed since the last one.
    """

    def __init__(
        self,
        config: SyncConfig,
        remote: RemoteStore,
        *,
        on_snapshot: Callable[[SessionSnapshot], None],
        on_deltas: Callable[[list[Delta]], None],
        phase_provider: Callable[[], SessionPhase | None],
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._remote = remote
        self._on_snapshot = on_snapshot
        self._on_deltas = on_deltas
        self._phase_provider = phase_provider
        self._clock = clock
        self._wall_clock = wall_clock

        self._lock = asyncio.Lock()
        self._generation = 0
        self._enabled = False
        self._disposed = False
        self._session_id: str | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None

        self._consecutive_errors = 0
        self._last_success_at: datetime | None = None
        self._watermark: datetime | None = None
        self._last_full_reload: float | None = None

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    @property
    def last_success_at(self) -> datetime | None:
        return self._last_success_at

    @property
    def is_polling(self) -> bool:
        return self._enabled

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def enable(self, session_id: str) -> None:
        """Start polling *session_id*. Re-enabling the same session is a no-op."""
        if self._disposed:
            _logger.debug("Ignoring enable() on a disposed poll scheduler")
            return
        if self._enabled and self._session_id == session_id:
            return
        self._cancel_timer()
        self._generation += 1
        self._enabled = True
        self._session_id = session_id
        self._consecutive_errors = 0
        self._watermark = None
        self._last_full_reload = None
        _logger.debug("Polling enabled session=%s", session_id)
        self._schedule(0.0)

    def disable(self) -> None:
        """Stop polling; results of a fetch still in flight are discarded."""
        if not self._enabled and self._timer is None:
            return
        self._generation += 1
        self._enabled = False
        self._consecutive_errors = 0
        self._cancel_timer()
        _logger.debug("Polling disabled session=%s", self._session_id)

    def dispose(self) -> None:
        self.disable()
        self._disposed = True
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    def reset_errors(self) -> None:
        self._consecutive_errors = 0

    async def manual_refresh(self) -> None:
        """Full reload now, then resume the regular cadence."""
        if not self._enabled:
            return
        self._cancel_timer()
        self._consecutive_errors = 0
        generation = self._generation
        async with self._lock:
            if generation != self._generation:
                return
            await self._fetch(generation, force_full=True)
        if generation == self._generation:
            self._schedule_next()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self, delay: float) -> None:
        self._cancel_timer()
        if not self._enabled:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._on_timer, self._generation)

    def _schedule_next(self) -> None:
        if self._consecutive_errors:
            delay = backoff_delay(
                self._consecutive_errors,
                base=self._config.backoff_base,
                cap=self._config.backoff_cap,
            )
            _logger.debug("Poll backoff %.1fs after %d failures", delay, self._consecutive_errors)
        else:
            delay = interval_for_phase(self._phase_provider(), self._config)
            if delay <= 0:
                _logger.debug("Session ended, poll loop stopped")
                self._cancel_timer()
                return
        self._schedule(delay)

    def _on_timer(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or not self._enabled:
            return
        if self._lock.locked():
            _logger.debug("Poll tick skipped, fetch already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._tick(generation))

    async def _tick(self, generation: int) -> None:
        try:
            async with self._lock:
                if generation != self._generation:
                    return
                await self._fetch(generation)
        finally:
            if generation == self._generation:
                self._schedule_next()

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _full_reload_due(self) -> bool:
        if self._watermark is None or self._last_full_reload is None:
            return True
        return self._clock() - self._last_full_reload >= self._config.full_reload_interval

    async def _fetch(self, generation: int, *, force_full: bool = False) -> None:
        session_id = self._session_id
        if session_id is None:
            return
        started_at = self._wall_clock()
        full = force_full or self._full_reload_due()
        snapshot: SessionSnapshot | None = None
        deltas: list[Delta] = []
        try:
            if full:
                snapshot = await self._remote.fetch_snapshot(session_id)
            else:
                assert self._watermark is not None  # noqa: S101
                deltas = await self._remote.fetch_since(session_id, self._watermark)
        except SyncError as exc:
            if generation == self._generation:
                self._consecutive_errors += 1
                _logger.warning(
                    "Poll %s failed (%d consecutive): %s",
                    "full reload" if full else "incremental fetch",
                    self._consecutive_errors,
                    exc,
                )
            return
        except Exception:
            if generation == self._generation:
                self._consecutive_errors += 1
                _logger.warning(
                    "Poll %s failed unexpectedly (%d consecutive)",
                    "full reload" if full else "incremental fetch",
                    self._consecutive_errors,
                    exc_info=True,
                )
            return

        if generation != self._generation:
            _logger.debug("Discarding poll result for superseded session=%s", session_id)
            return

        self._consecutive_errors = 0
        self._last_success_at = self._wall_clock()
        self._watermark = started_at - timedelta(seconds=self._config.poll_overlap)
        if snapshot is not None:
            self._last_full_reload = self._clock()
            _logger.debug("Full reload session=%s", session_id)
            self._on_snapshot(snapshot)
        elif deltas:
            _logger.debug("Incremental poll session=%s deltas=%d", session_id, len(deltas))
            self._on_deltas(deltas)
