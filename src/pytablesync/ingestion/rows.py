"""Remote-store row decoding.

Rows arrive with the store's snake_case column names. This module validates
them into entity models, derives identities and server timestamps, and
builds :class:`~pytablesync.state.events.Delta` objects and full snapshots.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ValidationError

from pytablesync import _constants as const
from pytablesync._redact import redact_for_log
from pytablesync.exceptions import SyncDataError
from pytablesync.models.participant import Participant
from pytablesync.models.picks import Pick, PoolItem
from pytablesync.models.session import SyncSession
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.models.votes import ConfirmedTopic, Vote
from pytablesync.state.events import Delta, DeltaOp, EntityKind, TransportKind, entity_key

_logger = logging.getLogger(__name__)

TABLE_BY_KIND: dict[EntityKind, str] = {
    EntityKind.SESSION: const.TABLE_SESSIONS,
    EntityKind.PARTICIPANT: const.TABLE_GUESTS,
    EntityKind.VOTE: const.TABLE_VOTES,
    EntityKind.TOPIC: const.TABLE_SESSION_TOPICS,
    EntityKind.POOL_ITEM: const.TABLE_QUESTION_POOL,
    EntityKind.PICK: const.TABLE_PICKED_QUESTIONS,
}
KIND_BY_TABLE: dict[str, EntityKind] = {table: kind for kind, table in TABLE_BY_KIND.items()}

_MODELS: dict[EntityKind, type[BaseModel]] = {
    EntityKind.SESSION: SyncSession,
    EntityKind.PARTICIPANT: Participant,
    EntityKind.VOTE: Vote,
    EntityKind.TOPIC: ConfirmedTopic,
    EntityKind.POOL_ITEM: PoolItem,
    EntityKind.PICK: Pick,
}

# Column used for incremental reads, per kind. Guests and pool rows have no
# change column, so only new rows are read incrementally; their updates
# arrive through full reloads.
CHANGE_COLUMNS: dict[EntityKind, str] = {
    EntityKind.SESSION: "updated_at",
    EntityKind.PARTICIPANT: "joined_at",
    EntityKind.VOTE: "created_at",
    EntityKind.TOPIC: "created_at",
    EntityKind.POOL_ITEM: "created_at",
    EntityKind.PICK: "picked_at",
}

INSERT_ONLY_KINDS: frozenset[EntityKind] = frozenset({EntityKind.VOTE, EntityKind.TOPIC, EntityKind.PICK})


def decode_entity(kind: EntityKind, row: Mapping[str, Any]) -> BaseModel:
    """Validate *row* into the entity model for *kind*."""
    if not isinstance(row, Mapping):
        raise SyncDataError(f"{kind} row is not an object", entity_kind=kind.value)
    try:
        return _MODELS[kind].model_validate(dict(row))
    except ValidationError as exc:
        raise SyncDataError(f"malformed {kind} row: {exc.error_count()} error(s)", entity_kind=kind.value) from exc


def identity_of(kind: EntityKind, entity: BaseModel) -> str:
    if isinstance(entity, (SyncSession, Participant)):
        return entity.id
    if isinstance(entity, Vote):
        return entity.identity
    if isinstance(entity, ConfirmedTopic):
        return entity.topic_id
    if isinstance(entity, (PoolItem, Pick)):
        return entity.item_id
    raise SyncDataError(f"no identity rule for {type(entity).__name__}", entity_kind=kind.value)


def entity_timestamp(entity: BaseModel) -> datetime | None:
    """The row's own change timestamp, if its table has one."""
    if isinstance(entity, SyncSession):
        return entity.updated_at
    if isinstance(entity, (Participant, PoolItem)):
        return entity.version
    if isinstance(entity, (Vote, ConfirmedTopic)):
        return entity.created_at
    if isinstance(entity, Pick):
        return entity.picked_at
    return None


def _created_timestamp(entity: BaseModel) -> datetime | None:
    if isinstance(entity, Participant):
        return entity.joined_at
    if isinstance(entity, PoolItem):
        return entity.created_at
    return None


def delta_from_row(
    kind: EntityKind,
    row: Mapping[str, Any],
    *,
    source: TransportKind,
    op: DeltaOp | None = None,
    server_time: datetime | None = None,
) -> Delta:
    """Build a delta from one row.

    The row's own change timestamp is preferred over *server_time* (the
    commit time of a push message) so both transports version an entity by
    the same clock. Rows without a change column are versioned by the commit
    time, and only when there is none by their creation time.
    """
    entity = decode_entity(kind, row)
    timestamp = entity_timestamp(entity) or server_time or _created_timestamp(entity)
    if timestamp is None:
        raise SyncDataError(f"{kind} row carries no server timestamp", entity_kind=kind.value)
    if op is None:
        op = DeltaOp.INSERT if kind in INSERT_ONLY_KINDS else DeltaOp.UPDATE
    return Delta(
        entity_kind=kind,
        op=op,
        identity=identity_of(kind, entity),
        payload=entity.model_dump(),
        server_timestamp=timestamp,
        source=source,
    )


def deltas_from_rows(
    kind: EntityKind,
    rows: Iterable[Mapping[str, Any]],
    *,
    source: TransportKind,
) -> list[Delta]:
    """Decode a batch of rows, dropping (and logging) only malformed ones."""
    deltas: list[Delta] = []
    for row in rows:
        try:
            deltas.append(delta_from_row(kind, row, source=source))
        except SyncDataError as exc:
            _logger.warning("Discarding %s row: %s raw=%s", kind, exc, redact_for_log(row))
    return deltas


def _decode_many(kind: EntityKind, rows: Iterable[Mapping[str, Any]]) -> list[BaseModel]:
    entities: list[BaseModel] = []
    for row in rows:
        try:
            entities.append(decode_entity(kind, row))
        except SyncDataError as exc:
            _logger.warning("Discarding %s row from full reload: %s raw=%s", kind, exc, redact_for_log(row))
    return entities


def snapshot_from_rows(
    *,
    session_row: Mapping[str, Any],
    guests: Iterable[Mapping[str, Any]] = (),
    votes: Iterable[Mapping[str, Any]] = (),
    topics: Iterable[Mapping[str, Any]] = (),
    pool: Iterable[Mapping[str, Any]] = (),
    picks: Iterable[Mapping[str, Any]] = (),
) -> SessionSnapshot:
    """Assemble a full snapshot from one read of every table.

    A malformed session row fails the whole reload; malformed child rows are
    dropped individually.
    """
    session = decode_entity(EntityKind.SESSION, session_row)
    assert isinstance(session, SyncSession)  # noqa: S101
    versions: dict[str, datetime] = {entity_key(EntityKind.SESSION, session.id): session.updated_at}

    participants: dict[str, Participant] = {}
    for entity in _decode_many(EntityKind.PARTICIPANT, guests):
        assert isinstance(entity, Participant)  # noqa: S101
        participants[entity.id] = entity
        if entity.version is not None:
            versions[entity_key(EntityKind.PARTICIPANT, entity.id)] = entity.version

    vote_sets: dict[str, frozenset[str]] = {}
    for entity in _decode_many(EntityKind.VOTE, votes):
        assert isinstance(entity, Vote)  # noqa: S101
        vote_sets[entity.participant_id] = vote_sets.get(entity.participant_id, frozenset()) | {entity.topic_id}

    confirmed: set[str] = set()
    for entity in _decode_many(EntityKind.TOPIC, topics):
        assert isinstance(entity, ConfirmedTopic)  # noqa: S101
        confirmed.add(entity.topic_id)

    pool_items: dict[str, PoolItem] = {}
    for entity in _decode_many(EntityKind.POOL_ITEM, pool):
        assert isinstance(entity, PoolItem)  # noqa: S101
        pool_items[entity.item_id] = entity
        if entity.version is not None:
            versions[entity_key(EntityKind.POOL_ITEM, entity.item_id)] = entity.version

    picked: dict[str, Pick] = {}
    for entity in _decode_many(EntityKind.PICK, picks):
        assert isinstance(entity, Pick)  # noqa: S101
        picked.setdefault(entity.item_id, entity)

    return SessionSnapshot(
        session=session,
        participants=participants,
        votes=vote_sets,
        picks=picked,
        confirmed_topics=frozenset(confirmed),
        pool=pool_items,
        versions=versions,
    )
