"""Read path of the remote store consumed by the engine."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from pytablesync._api import changes as _changes_api
from pytablesync._api import snapshot as _snapshot_api
from pytablesync._transport import Transport
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.state.events import Delta, EntityKind


class RemoteStore(Protocol):
    """What the poll path needs from the remote store."""

    async def fetch_snapshot(self, session_id: str) -> SessionSnapshot:
        ...

    async def fetch_since(self, session_id: str, since: datetime, kind: EntityKind | None = None) -> list[Delta]:
        ...


class RestRemoteStore:
    """:class:`RemoteStore` over a PostgREST :class:`Transport`."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def fetch_snapshot(self, session_id: str) -> SessionSnapshot:
        return await _snapshot_api.fetch_snapshot(self._transport, session_id)

    async def fetch_since(self, session_id: str, since: datetime, kind: EntityKind | None = None) -> list[Delta]:
        """Deltas changed after *since*; every kind when *kind* is ``None``."""
        if kind is None:
            return await _changes_api.fetch_all_since(self._transport, session_id, since)
        return await _changes_api.fetch_since(self._transport, session_id, kind, since)
