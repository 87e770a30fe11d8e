"""Incremental reads: rows changed after a watermark."""

from __future__ import annotations

import asyncio
from datetime import datetime

from pytablesync._api._common import eq, gt, session_filter
from pytablesync._transport import Transport
from pytablesync.ingestion.rows import CHANGE_COLUMNS, TABLE_BY_KIND, deltas_from_rows
from pytablesync.state.events import Delta, EntityKind, TransportKind


async def fetch_since(transport: Transport, session_id: str, kind: EntityKind, since: datetime) -> list[Delta]:
    """Rows of *kind* whose change column is later than *since*."""
    column = CHANGE_COLUMNS[kind]
    if kind == EntityKind.SESSION:
        params = {"select": "*", "id": eq(session_id)}
    else:
        params = session_filter(session_id)
    params[column] = gt(since)
    params["order"] = column

    rows = await transport.get_rows(TABLE_BY_KIND[kind], params)
    return deltas_from_rows(kind, rows, source=TransportKind.POLL)


async def fetch_all_since(transport: Transport, session_id: str, since: datetime) -> list[Delta]:
    """Incremental read of every entity kind, concurrently."""
    batches = await asyncio.gather(*(fetch_since(transport, session_id, kind, since) for kind in EntityKind))
    return [delta for batch in batches for delta in batch]
