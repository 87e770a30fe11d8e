"""Vote rows and the per-participant vote record."""

from __future__ import annotations

from collections.abc import Mapping
from typing import ClassVar, TypeAlias

from pydantic import Field

from pytablesync.models._base import OptionalServerTimestamp, TableBaseModel

VoteRecord: TypeAlias = Mapping[str, frozenset[str]]
"""Participant id → chosen topic ids. Sets only grow through sync."""


class Vote(TableBaseModel):
    """One ``votes`` row: a participant chose a topic."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {"guest_id": "participant_id"}

    participant_id: str = Field(min_length=1)
    topic_id: str = Field(min_length=1)
    created_at: OptionalServerTimestamp = None

    @property
    def identity(self) -> str:
        return f"{self.participant_id}/{self.topic_id}"


class ConfirmedTopic(TableBaseModel):
    """One ``session_topics`` row: a topic the host confirmed."""

    topic_id: str = Field(min_length=1)
    created_at: OptionalServerTimestamp = None
