"""Connection mode/health models exposed to consumers."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ConnectionMode(StrEnum):
    PUSH = "push"
    POLL = "poll"


class ConnectionHealth(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DISCONNECTED = "disconnected"


class PushStatus(StrEnum):
    """Connectivity transitions reported by the push channel."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    CLOSED = "closed"


class ConnectionState(BaseModel):
    """Supervisor bookkeeping for the active transport."""

    model_config = ConfigDict(frozen=True)

    mode: ConnectionMode
    health: ConnectionHealth
    consecutive_errors: int = Field(default=0, ge=0)
    last_success_at: datetime | None = None


class ConnectionInfo(BaseModel):
    """What ``SyncClient.get_connection_health()`` returns."""

    model_config = ConfigDict(frozen=True)

    mode: ConnectionMode
    health: ConnectionHealth
    last_update: datetime | None = None
