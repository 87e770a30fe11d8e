"""High-level async client that mirrors one live session."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from pytablesync._transport import RestTransport
from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncError
from pytablesync.models.connection import ConnectionHealth, ConnectionInfo, ConnectionMode
from pytablesync.models.session import SessionPhase
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.remote import RemoteStore, RestRemoteStore
from pytablesync.state.store import PhaseListener, SessionStateStore, SnapshotListener
from pytablesync.state.view import GuestView, reduce_view
from pytablesync.sync.push import RuntimeFactory
from pytablesync.sync.supervisor import ConnectionSupervisor, ModeListener

_logger = logging.getLogger(__name__)


class SyncClient:
    """Async client keeping a local, converging copy of one session.

    Usage::

        async with SyncClient(SyncConfig.from_env()) as client:
            client.on_snapshot_change(render)
            await client.connect(session_id)
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        remote: RemoteStore | None = None,
        runtime_factory: RuntimeFactory | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._remote = remote
        self._runtime_factory = runtime_factory
        self._store = SessionStateStore()
        self._supervisor: ConnectionSupervisor | None = None
        self._mode_listeners: list[ModeListener] = []
        self._view = GuestView.HOME
        self._store.on_phase_change(self._update_view)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SyncClient:
        remote = self._remote
        if remote is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            remote = RestRemoteStore(RestTransport(self._config, self._http_session))
        self._supervisor = ConnectionSupervisor(
            self._config,
            self._store,
            remote,
            runtime_factory=self._runtime_factory,
        )
        self._supervisor.on_mode_change(self._forward_mode)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._supervisor is not None:
            await self._supervisor.aclose()
            self._supervisor = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._store.reset()
        self._view = GuestView.HOME

    def _require_supervisor(self) -> ConnectionSupervisor:
        if self._supervisor is None:
            raise SyncError("Client not initialized. Use 'async with SyncClient(...) as client:'")
        return self._supervisor

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def connect(self, session_id: str) -> None:
        """Follow *session_id*. Connecting to another session drops the current one."""
        supervisor = self._require_supervisor()
        if supervisor.session_id not in (None, session_id):
            await self.disconnect()
        if self._view is GuestView.HOME:
            self._view = GuestView.JOIN
        await supervisor.connect(session_id)

    async def disconnect(self) -> None:
        supervisor = self._require_supervisor()
        await supervisor.disconnect()
        self._store.reset()
        self._view = GuestView.HOME

    async def force_refresh(self) -> None:
        """Reload the full session now, whatever transport is active."""
        await self._require_supervisor().force_reload()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._store.get_snapshot()

    @property
    def guest_view(self) -> GuestView:
        """Screen a guest should currently see for the followed session."""
        return self._view

    def on_snapshot_change(self, listener: SnapshotListener) -> Callable[[], None]:
        return self._store.subscribe(listener)

    def on_phase_change(self, listener: PhaseListener) -> Callable[[], None]:
        return self._store.on_phase_change(listener)

    def on_mode_change(self, listener: ModeListener) -> Callable[[], None]:
        """Register a ``ConnectionMode`` listener; returns an unsubscribe callable."""
        self._mode_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._mode_listeners:
                self._mode_listeners.remove(listener)

        return _unsubscribe

    def get_connection_health(self) -> ConnectionInfo:
        supervisor = self._supervisor
        if supervisor is None:
            mode = ConnectionMode.PUSH if self._config.push_enabled else ConnectionMode.POLL
            return ConnectionInfo(mode=mode, health=ConnectionHealth.DISCONNECTED, last_update=self._store.last_update)
        return ConnectionInfo(
            mode=supervisor.current_mode(),
            health=supervisor.health(),
            last_update=self._store.last_update,
        )

    # ------------------------------------------------------------------
    # Internal listeners
    # ------------------------------------------------------------------

    def _forward_mode(self, mode: ConnectionMode) -> None:
        for listener in list(self._mode_listeners):
            try:
                listener(mode)
            except Exception:
                _logger.debug("Mode listener failed", exc_info=True)

    def _update_view(self, _previous: SessionPhase | None, phase: SessionPhase) -> None:
        self._view = reduce_view(self._view, phase)
