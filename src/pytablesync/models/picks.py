"""Question pool and picked-question entities."""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import Field

from pytablesync.models._base import OptionalServerTimestamp, ServerTimestamp, TableBaseModel


class Pick(TableBaseModel):
    """A question picked by a participant. Append-only, keyed by ``item_id``."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {
        "guest_id": "participant_id",
        "question_id": "item_id",
    }

    participant_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    round: int = Field(ge=1)
    picked_at: ServerTimestamp


class PoolItem(TableBaseModel):
    """A question in the session's shuffled pool."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {"question_id": "item_id"}

    item_id: str = Field(min_length=1)
    position: int = Field(ge=0)
    picked: bool = False
    created_at: OptionalServerTimestamp = None
    updated_at: OptionalServerTimestamp = None

    @property
    def version(self) -> datetime | None:
        return self.updated_at
