"""Base model and timestamp type for remote-store rows.

Every entity model inherits from :class:`TableBaseModel` which provides:

* frozen instances, so snapshots can share entities safely;
* ``_KEY_ALIASES``: remote column names mapped to model field names
  (``nickname`` → ``display_name`` and so on), applied before validation;
* ``None`` values dropped so the field default is used.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 100_000_000_000


def parse_server_timestamp(value: Any) -> datetime | None:
    """Convert a server timestamp to an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (``Z`` suffix included), and epoch
    seconds or milliseconds as numbers or numeric strings. Returns ``None``
    for ``None``/empty input; raises :class:`ValueError` for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        ts = float(value)
    elif isinstance(value, str):
        text = value.strip()
        try:
            ts = float(text)
        except ValueError:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if ts >= _MS_THRESHOLD:
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=UTC)


ServerTimestamp = Annotated[datetime, BeforeValidator(parse_server_timestamp)]
"""Annotated type that coerces ISO strings and epoch numbers to UTC datetimes."""

OptionalServerTimestamp = Annotated[datetime | None, BeforeValidator(parse_server_timestamp)]


class TableBaseModel(BaseModel):
    """Base for remote-store entity models."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {}
    """Remote column name → model field name."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _apply_column_aliases(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        working = dict(values)
        aliases: dict[str, str] = getattr(cls, "_KEY_ALIASES", {})
        for column, field_name in aliases.items():
            if column in working and field_name not in working:
                working[field_name] = working.pop(column)
        return {key: value for key, value in working.items() if value is not None}
