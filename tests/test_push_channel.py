from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from pytablesync._mqtt import FeedMessage, MqttBootstrap
from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncTransportError
from pytablesync.models.connection import PushStatus
from pytablesync.state.events import Delta, EntityKind
from pytablesync.sync.push import PushChannel


class _FakeRuntime:
    def __init__(
        self,
        *,
        on_message: Callable[[FeedMessage], None],
        on_status: Callable[[PushStatus, str], None],
        fail: bool = False,
    ) -> None:
        self.on_message = on_message
        self.on_status = on_status
        self.fail = fail
        self.started: list[MqttBootstrap] = []
        self.stopped = 0
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, bootstrap: MqttBootstrap) -> None:
        if self.fail:
            raise SyncTransportError("connect failed", reason="connection refused")
        self.started.append(bootstrap)
        self._running = True

    def stop(self) -> None:
        self.stopped += 1
        self._running = False


class _Factory:
    def __init__(self) -> None:
        self.runtimes: list[_FakeRuntime] = []
        self.fail = False

    def __call__(
        self,
        *,
        on_message: Callable[[FeedMessage], None],
        on_status: Callable[[PushStatus, str], None],
    ) -> _FakeRuntime:
        runtime = _FakeRuntime(on_message=on_message, on_status=on_status, fail=self.fail)
        self.runtimes.append(runtime)
        return runtime


class _Recorder:
    def __init__(self) -> None:
        self.statuses: list[PushStatus] = []
        self.deltas: list[Delta] = []

    def status(self, status: PushStatus, _detail: str) -> None:
        self.statuses.append(status)

    def batch(self, deltas: list[Delta]) -> None:
        self.deltas.extend(deltas)


def _channel(factory: _Factory, recorder: _Recorder, *, ack_timeout: float = 5.0) -> PushChannel:
    return PushChannel(
        SyncConfig(ack_timeout=ack_timeout, topic_prefix="tables"),
        on_deltas=recorder.batch,
        on_status=recorder.status,
        runtime_factory=factory,
    )


@pytest.mark.asyncio
async def test_open_subscribes_every_table_and_reports_ack() -> None:
    factory, recorder = _Factory(), _Recorder()
    channel = _channel(factory, recorder)

    handle = await channel.open("s1")
    runtime = factory.runtimes[0]
    runtime.on_status(PushStatus.CONNECTED, "subscribed")

    assert handle.session_id == "s1"
    assert set(runtime.started[0].topics) == {
        "tables/s1/sessions",
        "tables/s1/guests",
        "tables/s1/votes",
        "tables/s1/session_topics",
        "tables/s1/question_pool",
        "tables/s1/picked_questions",
    }
    assert recorder.statuses == [PushStatus.CONNECTING, PushStatus.CONNECTED]
    assert channel.is_acknowledged is True
    await channel.close()


@pytest.mark.asyncio
async def test_messages_become_deltas_and_malformed_are_dropped() -> None:
    factory, recorder = _Factory(), _Recorder()
    channel = _channel(factory, recorder)
    await channel.open("s1")
    runtime = factory.runtimes[0]

    runtime.on_message(
        FeedMessage(
            topic="tables/s1/votes",
            payload={
                "op": "insert",
                "entity": "votes",
                "after": {"session_id": "s1", "guest_id": "g1", "topic_id": "t1", "created_at": "2026-01-01T00:00:00Z"},
            },
        )
    )
    runtime.on_message(FeedMessage(topic="tables/s1/votes", payload={"op": "insert"}))

    assert len(recorder.deltas) == 1
    assert recorder.deltas[0].entity_kind is EntityKind.VOTE
    await channel.close()


@pytest.mark.asyncio
async def test_missing_ack_reports_error_and_restarts() -> None:
    factory, recorder = _Factory(), _Recorder()
    channel = _channel(factory, recorder, ack_timeout=0.02)

    await channel.open("s1")
    await asyncio.sleep(0.1)

    assert PushStatus.ERROR in recorder.statuses
    assert len(factory.runtimes) >= 2
    assert factory.runtimes[0].stopped == 1
    await channel.close()


@pytest.mark.asyncio
async def test_switching_session_closes_previous_and_ignores_its_callbacks() -> None:
    factory, recorder = _Factory(), _Recorder()
    channel = _channel(factory, recorder)

    await channel.open("s1")
    await channel.open("s2")
    old, new = factory.runtimes

    assert old.stopped == 1
    assert new.started[0].topics[0].startswith("tables/s2/")

    old.on_status(PushStatus.CONNECTED, "late")
    old.on_message(
        FeedMessage(
            topic="tables/s1/session_topics",
            payload={"op": "insert", "entity": "session_topics", "after": {"session_id": "s1", "topic_id": "t1"}},
        )
    )

    assert PushStatus.CONNECTED not in recorder.statuses
    assert recorder.deltas == []
    await channel.close()


@pytest.mark.asyncio
async def test_reopen_same_session_reuses_subscription() -> None:
    factory, recorder = _Factory(), _Recorder()
    channel = _channel(factory, recorder)

    first = await channel.open("s1")
    second = await channel.open("s1")

    assert first is second
    assert len(factory.runtimes) == 1
    await channel.close()


@pytest.mark.asyncio
async def test_close_is_idempotent() -> None:
    factory, recorder = _Factory(), _Recorder()
    channel = _channel(factory, recorder)

    await channel.open("s1")
    await channel.close()
    await channel.close()

    assert factory.runtimes[0].stopped == 1
    assert channel.subscription is None


@pytest.mark.asyncio
async def test_start_failure_is_reported_not_raised() -> None:
    factory, recorder = _Factory(), _Recorder()
    factory.fail = True
    channel = _channel(factory, recorder, ack_timeout=0.02)

    await channel.open("s1")

    assert recorder.statuses == [PushStatus.CONNECTING, PushStatus.ERROR]

    factory.fail = False
    await asyncio.sleep(0.1)

    assert len(factory.runtimes) >= 2
    assert factory.runtimes[1].started
    await channel.close()
