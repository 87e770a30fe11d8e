"""Whole-session snapshot mirrored on the client."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from pytablesync.models.participant import Participant
from pytablesync.models.picks import Pick, PoolItem
from pytablesync.models.session import SessionPhase, SyncSession


class SessionSnapshot(BaseModel):
    """Immutable view of one session's synchronized entities.

    ``versions`` maps entity keys (``"<kind>:<identity>"``) of updatable
    entities to the server timestamp last applied for them. Insert-only
    collections (votes, confirmed topics, picks) carry no versions.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    session: SyncSession | None = None
    participants: dict[str, Participant] = Field(default_factory=dict)
    votes: dict[str, frozenset[str]] = Field(default_factory=dict)
    picks: dict[str, Pick] = Field(default_factory=dict)
    confirmed_topics: frozenset[str] = frozenset()
    pool: dict[str, PoolItem] = Field(default_factory=dict)
    versions: dict[str, datetime] = Field(default_factory=dict)

    @property
    def session_id(self) -> str | None:
        return self.session.id if self.session is not None else None

    @property
    def phase(self) -> SessionPhase | None:
        return self.session.phase if self.session is not None else None

    def participants_in_join_order(self) -> list[Participant]:
        """Participants ordered by join time, then id."""
        return sorted(
            self.participants.values(),
            key=lambda p: (p.joined_at is None, p.joined_at or datetime.min, p.id),
        )

    def picks_for_round(self, round_number: int) -> list[Pick]:
        return sorted(
            (pick for pick in self.picks.values() if pick.round == round_number),
            key=lambda pick: (pick.picked_at, pick.item_id),
        )

    def remaining_pool(self) -> list[PoolItem]:
        """Unpicked pool items in pool order."""
        return sorted((item for item in self.pool.values() if not item.picked), key=lambda item: item.position)
