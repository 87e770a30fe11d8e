"""Log-safe rendering of rows, change messages and request headers.

Rows and change messages are logged when they are dropped. They are plain
JSON apart from what the ingestion layer adds (datetimes, enums, pydantic
models), but request headers and config dumps carry the API key and broker
credentials, which must never reach a log line.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "api_key",
        "authorization",
        "password",
        "mqtt_password",
        "token",
        "access_token",
        "refresh_token",
        "cookie",
    }
)

_BEARER = re.compile(r"(?i)\bbearer\s+\S+")

_MAX_DEPTH = 20
_REDACTED = "<redacted>"


def _scrub_text(text: str, max_string: int) -> str:
    text = _BEARER.sub(f"Bearer {_REDACTED}", text)
    if len(text) > max_string:
        return f"{text[:max_string]}…<truncated>"
    return text


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Copy *value* into JSON-like data with every secret masked.

    Secrets are found by key name (case-insensitive) and, inside strings, by
    the ``Bearer <token>`` form. Long strings are truncated.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return _scrub_text(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    def _nested(item: Any) -> Any:
        return redact_for_log(item, max_string=max_string, _depth=_depth + 1)

    if isinstance(value, BaseModel):
        return _nested(value.model_dump())
    if isinstance(value, Mapping):
        return {
            str(key): _REDACTED if str(key).lower() in _SECRET_KEYS else _nested(item) for key, item in value.items()
        }
    # Vote and topic sets: sorted so log lines are stable.
    if isinstance(value, (set, frozenset)):
        return [_nested(item) for item in sorted(value, key=str)]
    if isinstance(value, Sequence):
        return [_nested(item) for item in value]

    return repr(value)
