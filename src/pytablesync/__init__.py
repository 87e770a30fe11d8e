"""pytablesync - Keep a local copy of a live session table set in sync."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pytablesync")
except PackageNotFoundError:
    __version__ = "0+local"
from pytablesync.client import SyncClient
from pytablesync.config import SyncConfig
from pytablesync.exceptions import (
    SyncConfigError,
    SyncDataError,
    SyncError,
    SyncFetchError,
    SyncStateConflict,
    SyncTransportError,
)
from pytablesync.models import (
    ConfirmedTopic,
    ConnectionHealth,
    ConnectionInfo,
    ConnectionMode,
    ConnectionState,
    Participant,
    Pick,
    PoolItem,
    PushStatus,
    SessionPhase,
    SessionSnapshot,
    SyncSession,
    Vote,
)
from pytablesync.remote import RemoteStore, RestRemoteStore
from pytablesync.state.events import Delta, DeltaOp, EntityKind, TransportKind
from pytablesync.state.merge import merge, reconcile
from pytablesync.state.store import SessionStateStore
from pytablesync.state.view import GuestView, reduce_view
from pytablesync.sync import ConnectionSupervisor, SupervisorState

__all__ = [
    "__version__",
    "ConfirmedTopic",
    "ConnectionHealth",
    "ConnectionInfo",
    "ConnectionMode",
    "ConnectionState",
    "ConnectionSupervisor",
    "Delta",
    "DeltaOp",
    "EntityKind",
    "GuestView",
    "Participant",
    "Pick",
    "PoolItem",
    "PushStatus",
    "RemoteStore",
    "RestRemoteStore",
    "SessionPhase",
    "SessionSnapshot",
    "SessionStateStore",
    "SupervisorState",
    "SyncClient",
    "SyncConfig",
    "SyncConfigError",
    "SyncDataError",
    "SyncError",
    "SyncFetchError",
    "SyncSession",
    "SyncStateConflict",
    "SyncTransportError",
    "TransportKind",
    "Vote",
    "merge",
    "reconcile",
    "reduce_view",
]
