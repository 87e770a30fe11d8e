from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncFetchError
from pytablesync.ingestion.rows import snapshot_from_rows
from pytablesync.models.session import SessionPhase
from pytablesync.models.snapshot import SessionSnapshot
from pytablesync.state.events import Delta, EntityKind
from pytablesync.sync.poll import PollScheduler, backoff_delay, interval_for_phase


def _snapshot() -> SessionSnapshot:
    return snapshot_from_rows(session_row={"id": "s1", "phase": "lobby", "updated_at": "2026-01-01T00:00:00Z"})


class _FakeRemote:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.since: list[datetime] = []
        self.fail = False
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def fetch_snapshot(self, session_id: str) -> SessionSnapshot:
        self.calls.append("full")
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.fail:
            raise SyncFetchError("HTTP 503", status_code=503, endpoint="/rest/v1/sessions")
        return _snapshot()

    async def fetch_since(self, session_id: str, since: datetime, kind: EntityKind | None = None) -> list[Delta]:
        self.calls.append("since")
        self.since.append(since)
        if self.fail:
            raise SyncFetchError("HTTP 503", status_code=503, endpoint="/rest/v1/votes")
        return []


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def _scheduler(
    remote: _FakeRemote,
    *,
    phase: SessionPhase | None = SessionPhase.LOBBY,
    clock: _Clock | None = None,
    snapshots: list[SessionSnapshot] | None = None,
    interval: float = 0.01,
) -> PollScheduler:
    config = SyncConfig(poll_interval=interval, backoff_base=2.0, backoff_cap=30.0, poll_overlap=1.0)
    sink = snapshots if snapshots is not None else []
    return PollScheduler(
        config,
        remote,
        on_snapshot=sink.append,
        on_deltas=lambda _deltas: None,
        phase_provider=lambda: phase,
        clock=clock or _Clock(),
        wall_clock=lambda: datetime(2026, 1, 1, 0, 1, tzinfo=UTC),
    )


def test_backoff_sequence_is_capped() -> None:
    delays = [backoff_delay(n, base=2.0, cap=30.0) for n in range(1, 7)]

    assert delays == [2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
    assert backoff_delay(0, base=2.0, cap=30.0) == 0.0


def test_interval_for_phase() -> None:
    config = SyncConfig()

    for phase in SessionPhase:
        expected = 0.0 if phase is SessionPhase.ENDED else 1.0
        assert interval_for_phase(phase, config) == expected


@pytest.mark.asyncio
async def test_first_tick_is_full_reload_then_incremental_with_overlap() -> None:
    remote = _FakeRemote()
    snapshots: list[SessionSnapshot] = []
    scheduler = _scheduler(remote, snapshots=snapshots)

    scheduler.enable("s1")
    await _wait_for(lambda: len(remote.calls) >= 3)
    scheduler.dispose()

    assert remote.calls[0] == "full"
    assert remote.calls[1:3] == ["since", "since"]
    assert remote.since[0] == datetime(2026, 1, 1, 0, 0, 59, tzinfo=UTC)
    assert len(snapshots) == 1
    assert scheduler.last_success_at is not None


@pytest.mark.asyncio
async def test_full_reload_repeats_after_interval() -> None:
    remote = _FakeRemote()
    clock = _Clock()
    scheduler = _scheduler(remote, clock=clock)

    scheduler.enable("s1")
    await _wait_for(lambda: "since" in remote.calls)
    clock.now = 31.0
    await _wait_for(lambda: remote.calls.count("full") == 2)
    scheduler.dispose()


@pytest.mark.asyncio
async def test_failure_schedules_backoff() -> None:
    remote = _FakeRemote()
    remote.fail = True
    scheduler = _scheduler(remote)
    loop = asyncio.get_running_loop()

    scheduler.enable("s1")
    await _wait_for(lambda: scheduler.consecutive_errors == 1)
    await _wait_for(lambda: scheduler._timer is not None)  # type: ignore[attr-defined]

    timer = scheduler._timer  # type: ignore[attr-defined]
    assert timer.when() - loop.time() > 1.5
    scheduler.dispose()


@pytest.mark.asyncio
async def test_manual_refresh_resets_errors_and_reloads() -> None:
    remote = _FakeRemote()
    remote.fail = True
    snapshots: list[SessionSnapshot] = []
    scheduler = _scheduler(remote, snapshots=snapshots)

    scheduler.enable("s1")
    await _wait_for(lambda: scheduler.consecutive_errors == 1)
    remote.fail = False
    await scheduler.manual_refresh()

    assert scheduler.consecutive_errors == 0
    assert len(snapshots) == 1
    scheduler.dispose()


@pytest.mark.asyncio
async def test_results_after_disable_are_discarded() -> None:
    remote = _FakeRemote()
    remote.gate = asyncio.Event()
    snapshots: list[SessionSnapshot] = []
    scheduler = _scheduler(remote, snapshots=snapshots)

    scheduler.enable("s1")
    await _wait_for(lambda: remote.calls == ["full"])
    scheduler.disable()
    remote.gate.set()
    await asyncio.sleep(0.05)

    assert snapshots == []
    assert scheduler.is_polling is False
    assert remote.calls == ["full"]


@pytest.mark.asyncio
async def test_ended_phase_stops_the_loop() -> None:
    remote = _FakeRemote()
    scheduler = _scheduler(remote, phase=SessionPhase.ENDED)

    scheduler.enable("s1")
    await _wait_for(lambda: remote.calls == ["full"])
    await asyncio.sleep(0.05)

    assert remote.calls == ["full"]
    assert scheduler._timer is None  # type: ignore[attr-defined]
    scheduler.dispose()


@pytest.mark.asyncio
async def test_tick_during_running_fetch_is_skipped_not_queued() -> None:
    remote = _FakeRemote()
    snapshots: list[SessionSnapshot] = []
    scheduler = _scheduler(remote, snapshots=snapshots, interval=10.0)

    scheduler.enable("s1")
    await _wait_for(lambda: len(snapshots) == 1)

    remote.gate = asyncio.Event()
    refresh = asyncio.create_task(scheduler.manual_refresh())
    await _wait_for(lambda: remote.calls == ["full", "full"])

    # A timer firing while the refresh holds the fetch slot does nothing.
    scheduler._on_timer(scheduler._generation)  # type: ignore[attr-defined]
    await asyncio.sleep(0.02)
    assert remote.calls == ["full", "full"]

    remote.gate.set()
    await refresh
    await asyncio.sleep(0.05)

    assert remote.calls == ["full", "full"]
    assert len(snapshots) == 2
    assert scheduler._timer is not None  # type: ignore[attr-defined]
    scheduler.dispose()


@pytest.mark.asyncio
async def test_disable_clears_error_count() -> None:
    remote = _FakeRemote()
    remote.fail = True
    scheduler = _scheduler(remote)

    scheduler.enable("s1")
    await _wait_for(lambda: scheduler.consecutive_errors == 1)
    scheduler.disable()

    assert scheduler.consecutive_errors == 0
    scheduler.dispose()


@pytest.mark.asyncio
async def test_unexpected_remote_error_counts_as_failure_and_keeps_polling(caplog: pytest.LogCaptureFixture) -> None:
    remote = _FakeRemote()
    remote.error = RuntimeError("remote exploded")
    scheduler = _scheduler(remote, snapshots=[])
    loop = asyncio.get_running_loop()

    with caplog.at_level(logging.WARNING, logger="pytablesync.sync.poll"):
        scheduler.enable("s1")
        await _wait_for(lambda: scheduler.consecutive_errors == 1)
        await _wait_for(lambda: scheduler._timer is not None)  # type: ignore[attr-defined]

    timer = scheduler._timer  # type: ignore[attr-defined]
    assert timer.when() - loop.time() > 1.5
    assert any("failed unexpectedly" in record.getMessage() for record in caplog.records)

    remote.error = None
    await scheduler.manual_refresh()
    assert scheduler.consecutive_errors == 0
    scheduler.dispose()
