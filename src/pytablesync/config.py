"""Client configuration for pytablesync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pytablesync import _constants as const
from pytablesync.exceptions import SyncConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, raw: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(raw)
    except ValueError as exc:
        raise SyncConfigError(f"{env_key} must be a number, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Engine configuration.

    Parameters
    ----------
    rest_url : str
        Base URL of the remote store (PostgREST-style ``/rest/v1`` API).
    api_key : str
        Key sent as ``apikey`` and bearer token on every REST read.
    mqtt_host : str
        Change-feed broker host.
    mqtt_port : int
        Change-feed broker port.
    mqtt_tls : bool
        Use TLS for the broker connection.
    mqtt_username : str or None
        Broker username.
    mqtt_password : str or None
        Broker password.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    topic_prefix : str
        Root of the change-feed topics (``<prefix>/<session_id>/<table>``).
    push_enabled : bool
        Use the push channel at all. When disabled the engine polls only.
    ack_timeout : float
        Seconds to wait for the push subscription acknowledgment.
    error_debounce : float
        Push error signals closer than this to the previous one are ignored.
    push_error_threshold : int
        Consecutive push errors before falling back to polling.
    recovery_interval : float
        Seconds spent polling before a push reconnection is attempted.
    poll_interval : float
        Poll interval for every active session phase.
    full_reload_interval : float
        Maximum seconds between two full reloads while polling.
    backoff_base : float
        First backoff delay after a failed fetch.
    backoff_cap : float
        Upper bound of the backoff delay.
    poll_error_threshold : int
        Consecutive poll errors after which health is ``disconnected``.
    poll_overlap : float
        Seconds subtracted from the incremental ``since`` watermark.
    request_timeout : float
        Total timeout of a single REST request.
    """

    rest_url: str = "http://localhost:54321"
    api_key: str = ""
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_tls: bool = False
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_keepalive: int = 60
    topic_prefix: str = const.DEFAULT_TOPIC_PREFIX
    push_enabled: bool = True
    ack_timeout: float = const.PUSH_ACK_TIMEOUT
    error_debounce: float = const.PUSH_ERROR_DEBOUNCE
    push_error_threshold: int = const.PUSH_ERROR_THRESHOLD
    recovery_interval: float = const.RECOVERY_INTERVAL
    poll_interval: float = const.POLL_INTERVAL
    full_reload_interval: float = const.FULL_RELOAD_INTERVAL
    backoff_base: float = const.BACKOFF_BASE
    backoff_cap: float = const.BACKOFF_CAP
    poll_error_threshold: int = const.POLL_ERROR_THRESHOLD
    poll_overlap: float = const.POLL_OVERLAP
    request_timeout: float = const.REQUEST_TIMEOUT

    def __post_init__(self) -> None:
        if self.push_error_threshold < 1:
            raise SyncConfigError("push_error_threshold must be >= 1")
        if self.poll_error_threshold < 1:
            raise SyncConfigError("poll_error_threshold must be >= 1")
        for name in (
            "ack_timeout",
            "recovery_interval",
            "poll_interval",
            "full_reload_interval",
            "backoff_base",
            "backoff_cap",
            "request_timeout",
        ):
            if getattr(self, name) <= 0:
                raise SyncConfigError(f"{name} must be positive")
        if self.error_debounce < 0 or self.poll_overlap < 0:
            raise SyncConfigError("error_debounce and poll_overlap must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Reads ``TABLESYNC_*`` variables. Explicit keyword arguments override
        environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "TABLESYNC_REST_URL": "rest_url",
            "TABLESYNC_API_KEY": "api_key",
            "TABLESYNC_MQTT_HOST": "mqtt_host",
            "TABLESYNC_MQTT_USERNAME": "mqtt_username",
            "TABLESYNC_MQTT_PASSWORD": "mqtt_password",
            "TABLESYNC_TOPIC_PREFIX": "topic_prefix",
        }
        _ENV_INT_MAP = {
            "TABLESYNC_MQTT_PORT": "mqtt_port",
            "TABLESYNC_MQTT_KEEPALIVE": "mqtt_keepalive",
            "TABLESYNC_PUSH_ERROR_THRESHOLD": "push_error_threshold",
            "TABLESYNC_POLL_ERROR_THRESHOLD": "poll_error_threshold",
        }
        _ENV_FLOAT_MAP = {
            "TABLESYNC_ACK_TIMEOUT": "ack_timeout",
            "TABLESYNC_ERROR_DEBOUNCE": "error_debounce",
            "TABLESYNC_RECOVERY_INTERVAL": "recovery_interval",
            "TABLESYNC_POLL_INTERVAL": "poll_interval",
            "TABLESYNC_FULL_RELOAD_INTERVAL": "full_reload_interval",
            "TABLESYNC_BACKOFF_BASE": "backoff_base",
            "TABLESYNC_BACKOFF_CAP": "backoff_cap",
            "TABLESYNC_POLL_OVERLAP": "poll_overlap",
            "TABLESYNC_REQUEST_TIMEOUT": "request_timeout",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, int)
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, float)

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("TABLESYNC_MQTT_TLS"), False)
        if "push_enabled" not in overrides:
            config_kwargs["push_enabled"] = _env_bool(env.get("TABLESYNC_PUSH_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
