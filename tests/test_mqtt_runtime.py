from __future__ import annotations

import asyncio
from typing import Any

import paho.mqtt.client as mqtt
import pytest
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode

from pytablesync._mqtt import FeedMessage, MqttChangeFeedRuntime, build_bootstrap, decode_feed_payload, session_topics
from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncDataError, SyncTransportError
from pytablesync.models.connection import PushStatus


class _FakeClient:
    instances: list[_FakeClient] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.subscribed: list[tuple[str, int]] = []
        self.credentials: tuple[str, str | None] | None = None
        self.tls = False
        self.refuse = False
        self.loop_stopped = False
        self.disconnected = False
        _FakeClient.instances.append(self)

    def enable_logger(self, _logger: Any) -> None:
        pass

    def username_pw_set(self, username: str, password: str | None) -> None:
        self.credentials = (username, password)

    def tls_set(self) -> None:
        self.tls = True

    def connect(self, host: str, port: int, keepalive: int = 60) -> None:
        if host == "unreachable":
            raise OSError("connection refused")

    def loop_start(self) -> None:
        pass

    def loop_stop(self) -> None:
        self.loop_stopped = True

    def disconnect(self) -> None:
        self.disconnected = True

    def subscribe(self, topics: list[tuple[str, int]]) -> None:
        self.subscribed.extend(topics)


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch) -> type[_FakeClient]:
    _FakeClient.instances = []
    monkeypatch.setattr(mqtt, "Client", _FakeClient)
    return _FakeClient


def _runtime(statuses: list[PushStatus], messages: list[FeedMessage]) -> MqttChangeFeedRuntime:
    return MqttChangeFeedRuntime(
        loop=asyncio.get_running_loop(),
        on_message=messages.append,
        on_status=lambda status, _detail: statuses.append(status),
    )


def test_session_topics_cover_every_table() -> None:
    topics = session_topics("/tables/", "s1")

    assert len(topics) == 6
    assert "tables/s1/guests" in topics
    assert all(topic.startswith("tables/s1/") for topic in topics)


def test_bootstrap_carries_broker_settings() -> None:
    config = SyncConfig(mqtt_host="broker", mqtt_port=8883, mqtt_tls=True, mqtt_username="u", mqtt_password="p")

    bootstrap = build_bootstrap(config, "session-123")

    assert (bootstrap.broker_host, bootstrap.broker_port, bootstrap.tls) == ("broker", 8883, True)
    assert bootstrap.client_id.startswith("tablesync_session-123_")
    assert bootstrap.client_id != build_bootstrap(config, "session-123").client_id


def test_decode_feed_payload() -> None:
    assert decode_feed_payload(b'{"op": "insert"}') == {"op": "insert"}
    with pytest.raises(SyncDataError):
        decode_feed_payload(b"\xff\xfe")
    with pytest.raises(SyncDataError):
        decode_feed_payload(b"[1, 2]")


@pytest.mark.asyncio
async def test_granted_subscription_reports_connected(fake_client: type[_FakeClient]) -> None:
    statuses: list[PushStatus] = []
    runtime = _runtime(statuses, [])
    config = SyncConfig(mqtt_username="guest", mqtt_password="pw")

    runtime.start(build_bootstrap(config, "s1"))
    client = fake_client.instances[0]
    client.on_connect(client, None, None, ReasonCode(PacketTypes.CONNACK, identifier=0), None)
    granted = [ReasonCode(PacketTypes.SUBACK, identifier=1) for _ in client.subscribed]
    client.on_subscribe(client, None, 1, granted, None)
    await asyncio.sleep(0)

    assert client.credentials == ("guest", "pw")
    assert {qos for _, qos in client.subscribed} == {1}
    assert len(client.subscribed) == 6
    assert statuses == [PushStatus.CONNECTED]
    assert runtime.is_running

    runtime.stop()
    assert client.disconnected and client.loop_stopped
    assert not runtime.is_running


@pytest.mark.asyncio
async def test_rejected_subscription_and_refused_connect_report_error(fake_client: type[_FakeClient]) -> None:
    statuses: list[PushStatus] = []
    runtime = _runtime(statuses, [])
    runtime.start(build_bootstrap(SyncConfig(), "s1"))
    client = fake_client.instances[0]

    client.on_connect(client, None, None, ReasonCode(PacketTypes.CONNACK, identifier=0x87), None)
    client.on_connect(client, None, None, ReasonCode(PacketTypes.CONNACK, identifier=0), None)
    codes = [ReasonCode(PacketTypes.SUBACK, identifier=1) for _ in client.subscribed]
    codes[-1] = ReasonCode(PacketTypes.SUBACK, identifier=0x87)
    client.on_subscribe(client, None, 1, codes, None)
    await asyncio.sleep(0)

    assert statuses == [PushStatus.ERROR, PushStatus.ERROR]
    runtime.stop()


@pytest.mark.asyncio
async def test_messages_and_disconnects_are_forwarded(fake_client: type[_FakeClient]) -> None:
    statuses: list[PushStatus] = []
    messages: list[FeedMessage] = []
    runtime = _runtime(statuses, messages)
    runtime.start(build_bootstrap(SyncConfig(), "s1"))
    client = fake_client.instances[0]

    good = mqtt.MQTTMessage(topic=b"tables/s1/votes")
    good.payload = b'{"op": "insert", "entity": "votes"}'
    bad = mqtt.MQTTMessage(topic=b"tables/s1/votes")
    bad.payload = b"not json"
    client.on_message(client, None, good)
    client.on_message(client, None, bad)
    client.on_disconnect(client, None, None, ReasonCode(PacketTypes.DISCONNECT, identifier=0x8B), None)
    await asyncio.sleep(0)

    assert messages == [FeedMessage(topic="tables/s1/votes", payload={"op": "insert", "entity": "votes"})]
    assert statuses == [PushStatus.CLOSED]
    runtime.stop()


def test_connect_failure_raises_transport_error(fake_client: type[_FakeClient]) -> None:
    loop = asyncio.new_event_loop()
    try:
        runtime = MqttChangeFeedRuntime(loop=loop, on_message=lambda _m: None, on_status=lambda _s, _d: None)
        with pytest.raises(SyncTransportError):
            runtime.start(build_bootstrap(SyncConfig(mqtt_host="unreachable"), "s1"))
        assert not runtime.is_running
    finally:
        loop.close()
