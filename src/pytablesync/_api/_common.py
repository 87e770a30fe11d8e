"""PostgREST filter helpers shared by the read endpoints."""

from __future__ import annotations

from datetime import UTC, datetime


def eq(value: str) -> str:
    return f"eq.{value}"


def gt(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return f"gt.{moment.astimezone(UTC).isoformat()}"


def session_filter(session_id: str) -> dict[str, str]:
    return {"select": "*", "session_id": eq(session_id)}
