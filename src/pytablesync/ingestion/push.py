"""Push change-message decoding.

Translates decoded change-feed messages into deltas. Both the
``{op, entity, before, after, serverTime}`` spelling and the realtime-style
``{eventType, table, old, new, commit_timestamp}`` spelling are accepted.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from pytablesync.exceptions import SyncDataError
from pytablesync.ingestion.rows import KIND_BY_TABLE, delta_from_row
from pytablesync.models._base import OptionalServerTimestamp
from pytablesync.state.events import Delta, DeltaOp, EntityKind, TransportKind


class ChangeMessage(BaseModel):
    """Minimal envelope of one change-feed message."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    op: str = Field(validation_alias=AliasChoices("op", "eventType", "type"))
    entity: str = Field(validation_alias=AliasChoices("entity", "entityKind", "table"))
    before: dict[str, Any] | None = Field(default=None, validation_alias=AliasChoices("before", "old"))
    after: dict[str, Any] = Field(validation_alias=AliasChoices("after", "new", "record"))
    server_time: OptionalServerTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("serverTime", "server_time", "commit_timestamp"),
    )


def _resolve_kind(entity: str) -> EntityKind:
    kind = KIND_BY_TABLE.get(entity)
    if kind is not None:
        return kind
    try:
        return EntityKind(entity)
    except ValueError as exc:
        raise SyncDataError(f"unknown entity {entity!r}") from exc


def _resolve_op(op: str) -> DeltaOp:
    normalized = op.strip().lower()
    if normalized == "delete":
        raise SyncDataError("delete changes are not synchronized")
    try:
        return DeltaOp(normalized)
    except ValueError as exc:
        raise SyncDataError(f"unknown op {op!r}") from exc


def delta_from_change(message: Any, *, session_id: str) -> Delta:
    """Validate one change message for *session_id* and build its delta."""
    if not isinstance(message, dict):
        raise SyncDataError("change message is not an object")
    try:
        change = ChangeMessage.model_validate(message)
    except ValidationError as exc:
        raise SyncDataError(f"malformed change message: {exc.error_count()} error(s)") from exc

    kind = _resolve_kind(change.entity)
    op = _resolve_op(change.op)

    owner_column = "id" if kind == EntityKind.SESSION else "session_id"
    owner = change.after.get(owner_column)
    if owner is not None and str(owner) != session_id:
        raise SyncDataError(f"change for session {owner} on subscription {session_id}", entity_kind=kind.value)

    return delta_from_row(kind, change.after, source=TransportKind.PUSH, op=op, server_time=change.server_time)
