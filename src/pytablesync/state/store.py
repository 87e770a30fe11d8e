"""Authoritative in-memory session snapshot.

This is the only component allowed to hold the mirrored state. Every
mutation goes through :func:`pytablesync.state.merge.merge` or
:func:`pytablesync.state.merge.reconcile`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from pytablesync.models.session import SessionPhase
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.state.events import Delta
from pytablesync.state.merge import merge, reconcile

_logger = logging.getLogger(__name__)

SnapshotListener = Callable[[SessionSnapshot], None]
PhaseListener = Callable[[SessionPhase | None, SessionPhase], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionStateStore:
    """Owns the current :class:`SessionSnapshot` and notifies subscribers.

    Mutations are synchronous: the snapshot is swapped and listeners run in
    the same call, once per committed change. A mutation that leaves the
    snapshot unchanged notifies nobody.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._snapshot = SessionSnapshot()
        self._listeners: list[SnapshotListener] = []
        self._phase_listeners: list[PhaseListener] = []
        self._last_update: datetime | None = None

    @property
    def last_update(self) -> datetime | None:
        """When the snapshot last changed."""
        return self._last_update

    def get_snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def on_phase_change(self, listener: PhaseListener) -> Callable[[], None]:
        """Register a ``(previous_phase, new_phase)`` listener."""
        self._phase_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._phase_listeners:
                self._phase_listeners.remove(listener)

        return _unsubscribe

    def replace(self, snapshot: SessionSnapshot) -> bool:
        """Install a full reload. Returns whether the snapshot changed."""
        return self._commit(reconcile(self._snapshot, snapshot))

    def apply_deltas(self, deltas: Iterable[Delta]) -> bool:
        """Merge a delta batch. Returns whether the snapshot changed."""
        return self._commit(merge(self._snapshot, deltas))

    def reset(self) -> None:
        """Forget the mirrored session.

        Snapshot subscribers are told once, with the empty snapshot. Phase
        listeners are not: there is no phase to move to.
        """
        previous = self._snapshot
        self._snapshot = SessionSnapshot()
        self._last_update = None
        if previous != self._snapshot:
            self._notify(self._snapshot)

    def _commit(self, snapshot: SessionSnapshot) -> bool:
        previous = self._snapshot
        if snapshot is previous:
            return False
        self._snapshot = snapshot
        self._last_update = self._clock()
        self._notify(snapshot)

        new_phase = snapshot.phase
        if new_phase is not None and new_phase != previous.phase:
            _logger.debug("Session phase %s -> %s", previous.phase, new_phase)
            for phase_listener in list(self._phase_listeners):
                try:
                    phase_listener(previous.phase, new_phase)
                except Exception:
                    _logger.debug("Phase listener failed", exc_info=True)
        return True

    def _notify(self, snapshot: SessionSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.debug("Snapshot listener failed", exc_info=True)
