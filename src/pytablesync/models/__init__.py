"""Data models for synchronized session entities."""

from pytablesync.models._base import ServerTimestamp, TableBaseModel, parse_server_timestamp
from pytablesync.models.connection import (
    ConnectionHealth,
    ConnectionInfo,
    ConnectionMode,
    ConnectionState,
    PushStatus,
)
from pytablesync.models.participant import Participant
from pytablesync.models.picks import Pick, PoolItem
from pytablesync.models.session import SessionPhase, SyncSession
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.models.votes import ConfirmedTopic, Vote, VoteRecord

__all__ = [
    "ConfirmedTopic",
    "ConnectionHealth",
    "ConnectionInfo",
    "ConnectionMode",
    "ConnectionState",
    "Participant",
    "Pick",
    "PoolItem",
    "PushStatus",
    "ServerTimestamp",
    "SessionPhase",
    "SessionSnapshot",
    "SyncSession",
    "TableBaseModel",
    "Vote",
    "VoteRecord",
    "parse_server_timestamp",
]
