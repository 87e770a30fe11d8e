"""Normalized deltas.

Both transports (push change feed, REST polling) convert their inputs into
these deltas. Only the state layer is allowed to merge them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransportKind(StrEnum):
    PUSH = "push"
    POLL = "poll"


class EntityKind(StrEnum):
    SESSION = "session"
    PARTICIPANT = "participant"
    VOTE = "vote"
    TOPIC = "topic"
    POOL_ITEM = "pool_item"
    PICK = "pick"


class DeltaOp(StrEnum):
    INSERT = "insert"
    UPDATE = "update"


def entity_key(kind: EntityKind, identity: str) -> str:
    return f"{kind.value}:{identity}"


class Delta(BaseModel):
    """A single typed change for one entity.

    ``payload`` holds model field names (not remote column names); the
    ingestion boundary has already validated it.
    """

    model_config = ConfigDict(frozen=True)

    entity_kind: EntityKind
    op: DeltaOp
    identity: str = Field(..., description="Stable entity identity within the session")
    payload: dict[str, Any] = Field(default_factory=dict)
    server_timestamp: datetime
    source: TransportKind

    @field_validator("identity")
    @classmethod
    def _normalize_identity(cls, value: str) -> str:
        identity = value.strip()
        if not identity:
            raise ValueError("identity must be non-empty")
        return identity

    @field_validator("server_timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def key(self) -> str:
        return entity_key(self.entity_kind, self.identity)
