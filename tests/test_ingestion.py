from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pytablesync.exceptions import SyncDataError
from pytablesync.ingestion.push import delta_from_change
from pytablesync.ingestion.rows import deltas_from_rows, snapshot_from_rows
from pytablesync.models._base import parse_server_timestamp
from pytablesync.state.events import DeltaOp, EntityKind, TransportKind


def test_parse_server_timestamp_accepts_iso_seconds_and_millis() -> None:
    expected = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    assert parse_server_timestamp("2026-01-01T12:00:00Z") == expected
    assert parse_server_timestamp(expected.timestamp()) == expected
    assert parse_server_timestamp(int(expected.timestamp() * 1000)) == expected
    assert parse_server_timestamp(None) is None


def test_parse_server_timestamp_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_server_timestamp("not a time")


def test_guest_columns_are_mapped_to_participant_fields() -> None:
    snapshot = snapshot_from_rows(
        session_row={"id": "s1", "phase": "lobby", "updated_at": "2026-01-01T00:00:00Z"},
        guests=[
            {
                "id": "g1",
                "session_id": "s1",
                "nickname": "Ada",
                "has_voted": True,
                "picked_question_id": None,
                "joined_at": "2026-01-01T00:00:01Z",
            }
        ],
    )

    guest = snapshot.participants["g1"]
    assert guest.display_name == "Ada"
    assert guest.has_voted is True
    assert guest.picked_item_ref is None
    # Guests have no change column; the join time is not a version.
    assert "participant:g1" not in snapshot.versions


def test_guest_change_is_versioned_by_commit_time() -> None:
    row = {
        "id": "g1",
        "session_id": "s1",
        "nickname": "Ada",
        "has_voted": True,
        "joined_at": "2026-01-01T00:00:01Z",
    }

    pushed = delta_from_change(
        {"op": "update", "entity": "guests", "after": row, "serverTime": "2026-01-01T00:00:20Z"},
        session_id="s1",
    )
    polled = deltas_from_rows(EntityKind.PARTICIPANT, [row], source=TransportKind.POLL)

    assert pushed.server_timestamp == datetime(2026, 1, 1, 0, 0, 20, tzinfo=UTC)
    # Without a commit time the row falls back to when the guest joined.
    assert polled[0].server_timestamp == datetime(2026, 1, 1, 0, 0, 1, tzinfo=UTC)


def test_malformed_row_is_dropped_from_batch() -> None:
    rows = [
        {"guest_id": "g1", "topic_id": "t1", "created_at": "2026-01-01T00:00:00Z"},
        {"guest_id": "g2"},
        {"guest_id": "g3", "topic_id": "t9", "created_at": "2026-01-01T00:00:02Z"},
    ]

    deltas = deltas_from_rows(EntityKind.VOTE, rows, source=TransportKind.POLL)

    assert [d.identity for d in deltas] == ["g1/t1", "g3/t9"]
    assert all(d.op is DeltaOp.INSERT for d in deltas)


def test_malformed_session_row_fails_full_reload() -> None:
    with pytest.raises(SyncDataError):
        snapshot_from_rows(session_row={"id": "s1", "phase": "warmup", "updated_at": "2026-01-01T00:00:00Z"})


def test_change_message_native_spelling() -> None:
    delta = delta_from_change(
        {
            "op": "update",
            "entity": "session",
            "after": {"id": "s1", "phase": "voting", "updated_at": "2026-01-01T00:00:05Z"},
            "serverTime": 1767225600000,
        },
        session_id="s1",
    )

    assert delta.entity_kind is EntityKind.SESSION
    assert delta.op is DeltaOp.UPDATE
    assert delta.source is TransportKind.PUSH
    # The row's own timestamp wins over the commit time.
    assert delta.server_timestamp == datetime(2026, 1, 1, 0, 0, 5, tzinfo=UTC)


def test_change_message_realtime_spelling_uses_commit_time_as_fallback() -> None:
    delta = delta_from_change(
        {
            "eventType": "INSERT",
            "table": "session_topics",
            "new": {"session_id": "s1", "topic_id": "t1"},
            "old": {},
            "commit_timestamp": "2026-01-01T00:00:09Z",
        },
        session_id="s1",
    )

    assert delta.entity_kind is EntityKind.TOPIC
    assert delta.identity == "t1"
    assert delta.server_timestamp == datetime(2026, 1, 1, 0, 0, 9, tzinfo=UTC)


@pytest.mark.parametrize(
    "message",
    [
        ["not", "an", "object"],
        {"op": "delete", "entity": "votes", "after": {}},
        {"op": "upsert", "entity": "votes", "after": {}},
        {"op": "insert", "entity": "scores", "after": {}},
        {"op": "insert", "entity": "votes"},
        {
            "op": "insert",
            "entity": "votes",
            "after": {"session_id": "other", "guest_id": "g1", "topic_id": "t1", "created_at": 1},
        },
    ],
)
def test_invalid_change_messages_raise_data_error(message: object) -> None:
    with pytest.raises(SyncDataError):
        delta_from_change(message, session_id="s1")
