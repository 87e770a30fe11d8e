"""Participant (guest) entity."""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import Field

from pytablesync.models._base import OptionalServerTimestamp, TableBaseModel


class Participant(TableBaseModel):
    """A guest seated at the table, unique by ``id`` within a session."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {
        "nickname": "display_name",
        "picked_question_id": "picked_item_ref",
    }

    id: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    has_voted: bool = False
    has_picked: bool = False
    picked_item_ref: str | None = None
    joined_at: OptionalServerTimestamp = None
    updated_at: OptionalServerTimestamp = None

    @property
    def version(self) -> datetime | None:
        """Server timestamp of this row's last change, when the row carries one."""
        return self.updated_at
