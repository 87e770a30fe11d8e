"""Session entity and its business-level phase machine."""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar

from pydantic import Field

from pytablesync.models._base import ServerTimestamp, TableBaseModel


class SessionPhase(StrEnum):
    """Session phases, declared in the only order they may be visited."""

    LOBBY = "lobby"
    VOTING = "voting"
    TOPIC_RESULTS = "topicResults"
    TOPIC_REVEAL = "topicReveal"
    QUESTION_PHASE = "questionPhase"
    ENDED = "ended"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is SessionPhase.ENDED


_PHASE_ORDER: tuple[SessionPhase, ...] = tuple(SessionPhase)


class SyncSession(TableBaseModel):
    """The ``sessions`` row of the active session."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {"current_round": "round"}

    id: str = Field(min_length=1)
    code: str = ""
    phase: SessionPhase
    round: int = Field(default=1, ge=1)
    updated_at: ServerTimestamp
