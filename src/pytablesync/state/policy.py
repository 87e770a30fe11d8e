"""Deterministic merge policy.

This module intentionally contains *no* payload parsing. The ingestion
boundary is responsible for producing validated payloads and timestamps.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pytablesync.models.session import SessionPhase
from pytablesync.state.events import Delta, DeltaOp


def should_accept_update(*, stored_ts: datetime | None, incoming_ts: datetime) -> bool:
    """Monotonic rule: an update applies when it is not older than what is stored."""
    if stored_ts is None:
        return True
    return incoming_ts >= stored_ts


def later_phase(current: SessionPhase, incoming: SessionPhase) -> SessionPhase:
    """Phases only move forward."""
    return incoming if incoming.rank >= current.rank else current


def delta_sort_key(delta: Delta) -> tuple[Any, ...]:
    """Total order for a merge batch.

    Timestamp first; the remaining components only break ties so the result
    does not depend on the order deltas arrived in.
    """
    return (
        delta.server_timestamp,
        delta.entity_kind.value,
        delta.identity,
        0 if delta.op == DeltaOp.INSERT else 1,
        json.dumps(delta.payload, sort_keys=True, default=str),
    )
