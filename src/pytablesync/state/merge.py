"""Pure merge of deltas and full reloads into session snapshots.

Nothing in this module mutates its inputs. Both functions return the
original snapshot object when the result would be equal to it, so callers
can detect "no change" with an identity check.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from pytablesync.exceptions import SyncStateConflict
from pytablesync.models.participant import Participant
from pytablesync.models.picks import Pick, PoolItem
from pytablesync.models.session import SessionPhase, SyncSession
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.state.events import Delta, DeltaOp, EntityKind, entity_key
from pytablesync.state.policy import delta_sort_key, later_phase, should_accept_update

_logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)

_VERSIONED_COLLECTIONS: dict[EntityKind, tuple[str, type[BaseModel]]] = {
    EntityKind.PARTICIPANT: ("participants", Participant),
    EntityKind.POOL_ITEM: ("pool", PoolItem),
}


def _build(model_cls: type[TModel], payload: Mapping[str, Any], what: str) -> TModel:
    try:
        return model_cls.model_validate(dict(payload))
    except ValidationError as exc:
        raise SyncStateConflict(f"{what}: payload does not describe a complete entity") from exc


def _patched(model: TModel, patch: Mapping[str, Any], what: str) -> TModel:
    merged = model.model_dump()
    merged.update(patch)
    try:
        return type(model).model_validate(merged)
    except ValidationError as exc:
        raise SyncStateConflict(f"{what}: patch is invalid for the stored entity") from exc


class _Working:
    """Mutable scratch copy of a snapshot for one merge call."""

    def __init__(self, snapshot: SessionSnapshot) -> None:
        self.session = snapshot.session
        self.participants = dict(snapshot.participants)
        self.votes = dict(snapshot.votes)
        self.picks = dict(snapshot.picks)
        self.confirmed_topics = set(snapshot.confirmed_topics)
        self.pool = dict(snapshot.pool)
        self.versions = dict(snapshot.versions)

    def bump_version(self, key: str, ts: datetime) -> None:
        stored = self.versions.get(key)
        self.versions[key] = ts if stored is None else max(stored, ts)

    def build(self) -> SessionSnapshot:
        return SessionSnapshot(
            session=self.session,
            participants=self.participants,
            votes=self.votes,
            picks=self.picks,
            confirmed_topics=frozenset(self.confirmed_topics),
            pool=self.pool,
            versions=self.versions,
        )


def _apply_session(work: _Working, delta: Delta) -> None:
    current = work.session
    if current is not None and current.id != delta.identity:
        raise SyncStateConflict(f"session delta for {delta.identity} while mirroring {current.id}")

    if current is None:
        work.session = _build(SyncSession, delta.payload, delta.key)
        work.bump_version(delta.key, delta.server_timestamp)
        return
    if delta.op == DeltaOp.INSERT:
        return
    if not should_accept_update(stored_ts=work.versions.get(delta.key), incoming_ts=delta.server_timestamp):
        _logger.debug("Stale session update dropped ts=%s", delta.server_timestamp)
        return

    patch = dict(delta.payload)
    if "phase" in patch:
        try:
            incoming = SessionPhase(patch["phase"])
        except ValueError as exc:
            raise SyncStateConflict(f"{delta.key}: unknown phase {patch['phase']!r}") from exc
        kept = later_phase(current.phase, incoming)
        if kept is not incoming:
            _logger.warning("Ignoring backward phase change %s -> %s", current.phase, incoming)
        patch["phase"] = kept
    if "round" in patch:
        try:
            patch["round"] = max(current.round, int(patch["round"]))
        except (TypeError, ValueError) as exc:
            raise SyncStateConflict(f"{delta.key}: invalid round {patch['round']!r}") from exc
    work.session = _patched(current, patch, delta.key)
    work.bump_version(delta.key, delta.server_timestamp)


def _apply_versioned(work: _Working, delta: Delta) -> None:
    attr, model_cls = _VERSIONED_COLLECTIONS[delta.entity_kind]
    collection: dict[str, Any] = getattr(work, attr)
    current = collection.get(delta.identity)

    if current is None:
        # An update for an entity we have not seen yet is an upsert; the
        # insert that may still arrive later is then ignored as a duplicate.
        collection[delta.identity] = _build(model_cls, delta.payload, delta.key)
        work.bump_version(delta.key, delta.server_timestamp)
        return
    if delta.op == DeltaOp.INSERT:
        return
    if not should_accept_update(stored_ts=work.versions.get(delta.key), incoming_ts=delta.server_timestamp):
        _logger.debug("Stale update dropped key=%s ts=%s", delta.key, delta.server_timestamp)
        return
    collection[delta.identity] = _patched(current, delta.payload, delta.key)
    work.bump_version(delta.key, delta.server_timestamp)


def _apply_vote(work: _Working, delta: Delta) -> None:
    participant_id = delta.payload.get("participant_id")
    topic_id = delta.payload.get("topic_id")
    if not isinstance(participant_id, str) or not isinstance(topic_id, str):
        raise SyncStateConflict(f"{delta.key}: vote payload lacks participant/topic")
    work.votes[participant_id] = work.votes.get(participant_id, frozenset()) | {topic_id}


def _apply_topic(work: _Working, delta: Delta) -> None:
    work.confirmed_topics.add(delta.identity)


def _apply_pick(work: _Working, delta: Delta) -> None:
    if delta.identity in work.picks:
        return
    work.picks[delta.identity] = _build(Pick, delta.payload, delta.key)


_APPLIERS = {
    EntityKind.SESSION: _apply_session,
    EntityKind.PARTICIPANT: _apply_versioned,
    EntityKind.POOL_ITEM: _apply_versioned,
    EntityKind.VOTE: _apply_vote,
    EntityKind.TOPIC: _apply_topic,
    EntityKind.PICK: _apply_pick,
}


def merge(snapshot: SessionSnapshot, deltas: Iterable[Delta]) -> SessionSnapshot:
    """Integrate a batch of deltas into *snapshot*.

    The batch is applied in ascending server-timestamp order (ties broken
    deterministically), so the result does not depend on delivery order or
    on which transport produced which delta. Conflicting deltas are dropped.
    """
    batch = sorted(deltas, key=delta_sort_key)
    if not batch:
        return snapshot

    work = _Working(snapshot)
    for delta in batch:
        try:
            _APPLIERS[delta.entity_kind](work, delta)
        except SyncStateConflict as exc:
            _logger.warning("Dropping %s %s delta from %s: %s", delta.op, delta.key, delta.source, exc)

    result = work.build()
    return snapshot if result == snapshot else result


def _pick_newer(
    kind: EntityKind,
    current: Mapping[str, BaseModel],
    incoming: Mapping[str, BaseModel],
    current_versions: Mapping[str, datetime],
    incoming_versions: Mapping[str, datetime],
    versions: dict[str, datetime],
) -> dict[str, Any]:
    merged: dict[str, Any] = dict(current)
    for identity, entity in incoming.items():
        key = entity_key(kind, identity)
        held = current_versions.get(key)
        offered = incoming_versions.get(key)
        if identity in current and held is not None and offered is not None and held > offered:
            continue
        merged[identity] = entity
        if offered is not None:
            versions[key] = offered
    return merged


def reconcile(current: SessionSnapshot, incoming: SessionSnapshot) -> SessionSnapshot:
    """Fold a full reload into the current snapshot.

    A reload of a different session replaces everything. For the same
    session the reloaded entities win unless the held copy carries a strictly
    newer server timestamp; vote sets and confirmed topics are unioned, and
    the phase never moves backward.
    """
    if current.session is None or incoming.session is None or current.session.id != incoming.session.id:
        return incoming

    versions: dict[str, datetime] = dict(current.versions)
    session_key = entity_key(EntityKind.SESSION, incoming.session.id)
    held_ts = current.versions.get(session_key)
    offered_ts = incoming.versions.get(session_key)
    if held_ts is not None and offered_ts is not None and held_ts > offered_ts:
        session = current.session
    else:
        session = incoming.session
        if offered_ts is not None:
            versions[session_key] = offered_ts
    phase = later_phase(current.session.phase, session.phase)
    round_number = max(current.session.round, session.round)
    if phase is not session.phase or round_number != session.round:
        session = session.model_copy(update={"phase": phase, "round": round_number})

    votes = dict(current.votes)
    for participant_id, topics in incoming.votes.items():
        votes[participant_id] = votes.get(participant_id, frozenset()) | topics

    result = SessionSnapshot(
        session=session,
        participants=_pick_newer(
            EntityKind.PARTICIPANT,
            current.participants,
            incoming.participants,
            current.versions,
            incoming.versions,
            versions,
        ),
        votes=votes,
        picks={**current.picks, **incoming.picks},
        confirmed_topics=current.confirmed_topics | incoming.confirmed_topics,
        pool=_pick_newer(
            EntityKind.POOL_ITEM,
            current.pool,
            incoming.pool,
            current.versions,
            incoming.versions,
            versions,
        ),
        versions=versions,
    )
    return current if result == current else result
