"""Full-reload read: every table of one session."""

from __future__ import annotations

import asyncio
import logging

from pytablesync import _constants as const
from pytablesync._api._common import eq, session_filter
from pytablesync._transport import Transport
from pytablesync.exceptions import SyncFetchError
from pytablesync.ingestion.rows import snapshot_from_rows
from pytablesync.models.snapshot import SessionSnapshot

_logger = logging.getLogger(__name__)


async def fetch_snapshot(transport: Transport, session_id: str) -> SessionSnapshot:
    """Fetch the whole session in one concurrent round of reads."""
    sessions, guests, votes, topics, pool, picks = await asyncio.gather(
        transport.get_rows(const.TABLE_SESSIONS, {"select": "*", "id": eq(session_id)}),
        transport.get_rows(const.TABLE_GUESTS, {**session_filter(session_id), "order": "joined_at"}),
        transport.get_rows(const.TABLE_VOTES, session_filter(session_id)),
        transport.get_rows(const.TABLE_SESSION_TOPICS, session_filter(session_id)),
        transport.get_rows(const.TABLE_QUESTION_POOL, {**session_filter(session_id), "order": "position"}),
        transport.get_rows(const.TABLE_PICKED_QUESTIONS, {**session_filter(session_id), "order": "picked_at"}),
    )
    if len(sessions) != 1:
        raise SyncFetchError(
            f"Session {session_id} not found ({len(sessions)} rows)",
            endpoint=f"/rest/v1/{const.TABLE_SESSIONS}",
        )

    _logger.debug(
        "Full reload session=%s guests=%d votes=%d topics=%d pool=%d picks=%d",
        session_id,
        len(guests),
        len(votes),
        len(topics),
        len(pool),
        len(picks),
    )
    return snapshot_from_rows(
        session_row=sessions[0],
        guests=guests,
        votes=votes,
        topics=topics,
        pool=pool,
        picks=picks,
    )
