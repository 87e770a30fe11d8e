"""Custom exception hierarchy for pytablesync."""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for all pytablesync errors."""


class SyncConfigError(SyncError):
    """Invalid or missing configuration."""


class SyncTransportError(SyncError):
    """Push channel failure (subscribe/ack failure, unexpected close)."""

    def __init__(
        self,
        message: str,
        *,
        session_id: str = "",
        reason: str = "",
    ) -> None:
        self.session_id = session_id
        self.reason = reason
        super().__init__(message)


class SyncFetchError(SyncError):
    """Poll-path failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class SyncDataError(SyncError):
    """Malformed or incomplete row/change payload.

    Raised at the ingestion boundary. Batch decoders catch it, log it and
    drop only the offending record.
    """

    def __init__(self, message: str, *, entity_kind: str = "") -> None:
        self.entity_kind = entity_kind
        super().__init__(message)


class SyncStateConflict(SyncError):
    """A delta cannot be ordered safely against the stored entity.

    Never escapes the merge: the conflicting delta is dropped.
    """
