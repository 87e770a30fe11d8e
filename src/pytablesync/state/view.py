"""Phase → guest view reducer.

Called once per phase-change event; it never reads or writes the view it
is deciding, so it cannot retrigger itself.
"""

from __future__ import annotations

from enum import StrEnum

from pytablesync.models.session import SessionPhase


class GuestView(StrEnum):
    HOME = "home"
    JOIN = "joinSession"
    LOBBY = "guestLobby"
    VOTING = "guestVoting"
    QUESTION_PHASE = "guestQuestionPhase"
    ENDED = "guestEnded"


# Guests keep the voting screen while the host picks and reveals topics.
_PHASE_TO_VIEW: dict[SessionPhase, GuestView] = {
    SessionPhase.LOBBY: GuestView.LOBBY,
    SessionPhase.VOTING: GuestView.VOTING,
    SessionPhase.TOPIC_RESULTS: GuestView.VOTING,
    SessionPhase.TOPIC_REVEAL: GuestView.VOTING,
    SessionPhase.QUESTION_PHASE: GuestView.QUESTION_PHASE,
    SessionPhase.ENDED: GuestView.ENDED,
}


def reduce_view(prior: GuestView, phase: SessionPhase) -> GuestView:
    """Return the view a guest should see in *phase*."""
    target = _PHASE_TO_VIEW[phase]
    return prior if prior == target else target
