"""Internal MQTT change-feed bootstrap, parsing, and runtime helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncDataError, SyncTransportError
from pytablesync.ingestion.rows import TABLE_BY_KIND
from pytablesync.models.connection import PushStatus


@dataclass(frozen=True)
class MqttBootstrap:
    """Broker/topic data required to follow one session's change feed."""

    broker_host: str
    broker_port: int
    topics: tuple[str, ...]
    client_id: str
    username: str | None
    password: str | None
    tls: bool


@dataclass(frozen=True)
class FeedMessage:
    """Decoded change-feed message."""

    topic: str
    payload: dict[str, Any]


def session_topics(topic_prefix: str, session_id: str) -> tuple[str, ...]:
    """One topic per synchronized table: ``<prefix>/<session_id>/<table>``."""
    prefix = topic_prefix.strip("/")
    return tuple(f"{prefix}/{session_id}/{table}" for table in TABLE_BY_KIND.values())


def build_bootstrap(config: SyncConfig, session_id: str) -> MqttBootstrap:
    return MqttBootstrap(
        broker_host=config.mqtt_host,
        broker_port=config.mqtt_port,
        topics=session_topics(config.topic_prefix, session_id),
        client_id=f"tablesync_{session_id[:12]}_{secrets.token_hex(4)}",
        username=config.mqtt_username,
        password=config.mqtt_password,
        tls=config.mqtt_tls,
    )


def decode_feed_payload(payload: bytes) -> dict[str, Any]:
    """Parse change-feed bytes into a JSON object."""
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SyncDataError("change-feed payload is not UTF-8 JSON") from exc
    if not isinstance(parsed, dict):
        raise SyncDataError("change-feed payload is not a JSON object")
    return parsed


class MqttChangeFeedRuntime:
    """Threaded paho-mqtt runtime that emits messages and status onto an asyncio loop.

    The subscription is acknowledged only when the broker grants every topic
    in the SUBACK; that is the moment ``PushStatus.CONNECTED`` is reported.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[FeedMessage], None],
        on_status: Callable[[PushStatus, str], None],
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_status = on_status
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: tuple[str, ...] = ()

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def _emit_status(self, status: PushStatus, detail: str) -> None:
        self._loop.call_soon_threadsafe(self._on_status, status, detail)

    def start(self, bootstrap: MqttBootstrap) -> None:
        """Connect and subscribe with provided broker details."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topics=%s client_id=%s",
            bootstrap.broker_host,
            bootstrap.broker_port,
            bootstrap.topics,
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if bootstrap.username:
            client.username_pw_set(bootstrap.username, bootstrap.password)
        if bootstrap.tls:
            client.tls_set()

        self._topics = bootstrap.topics

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                self._emit_status(PushStatus.ERROR, f"connect refused: {reason_code}")
                return
            self._logger.debug("MQTT connected reason=%s, subscribing %d topics", reason_code, len(self._topics))
            c.subscribe([(topic, 1) for topic in self._topics])

        def on_subscribe(
            _c: mqtt.Client,
            _userdata: Any,
            _mid: int,
            reason_code_list: list[Any],
            _properties: Any,
        ) -> None:
            rejected = [str(code) for code in reason_code_list if code.is_failure]
            if rejected or len(reason_code_list) != len(self._topics):
                self._logger.warning("MQTT subscription rejected: %s", rejected or reason_code_list)
                self._emit_status(PushStatus.ERROR, f"subscription rejected: {rejected}")
                return
            self._emit_status(PushStatus.CONNECTED, "subscribed")

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                payload = decode_feed_payload(msg.payload)
            except SyncDataError:
                self._logger.warning("Discarding undecodable change-feed payload topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug("Received PUBLISH topic=%s", msg.topic)
            self._loop.call_soon_threadsafe(self._on_message, FeedMessage(topic=msg.topic, payload=payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                self._emit_status(PushStatus.CLOSED, f"disconnected: {reason_code}")

        client.on_connect = on_connect
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(bootstrap.broker_host, bootstrap.broker_port, keepalive=self._keepalive)
        except (OSError, ValueError) as exc:
            raise SyncTransportError(
                f"MQTT connect to {bootstrap.broker_host}:{bootstrap.broker_port} failed: {exc}",
                reason=str(exc),
            ) from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topics = ()

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
