#!/usr/bin/env python3
"""Follow one live session and print every change the engine converges to.

Configuration comes from ``TABLESYNC_*`` environment variables. Useful for
watching push/poll switches while taking the broker or the REST API down.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pytablesync import ConnectionMode, SessionPhase, SessionSnapshot, SyncClient, SyncConfig  # noqa: E402
from pytablesync._redact import redact_for_log  # noqa: E402

_LOG = logging.getLogger("watch_session")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch a live session through pytablesync.")
    parser.add_argument("session_id", help="Session to follow.")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--poll-only",
        action="store_true",
        help="Disable the push channel and poll the REST API only.",
    )
    parser.add_argument(
        "--health-seconds",
        type=float,
        default=10.0,
        help="Print connection health every N seconds.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_snapshot(snapshot: SessionSnapshot) -> None:
    session = snapshot.session
    if session is None:
        return
    guests = ", ".join(p.display_name for p in snapshot.participants_in_join_order())
    print(f"[watch] phase={session.phase} round={session.round} guests=[{guests}]")
    print(f"[watch]   votes  : {redact_for_log(dict(snapshot.votes))}")
    print(f"[watch]   topics : {sorted(snapshot.confirmed_topics)}")
    print(f"[watch]   picks  : {[pick.item_id for pick in snapshot.picks_for_round(session.round)]}")


def _print_phase(previous: SessionPhase | None, new: SessionPhase) -> None:
    print(f"[watch] phase {previous} -> {new}")


def _print_mode(mode: ConnectionMode) -> None:
    print(f"[watch] transport switched to {mode}")


async def _run(args: argparse.Namespace) -> int:
    overrides = {"push_enabled": False} if args.poll_only else {}
    config = SyncConfig.from_env(**overrides)
    deadline = time.monotonic() + args.duration if args.duration > 0 else None

    async with SyncClient(config) as client:
        client.on_snapshot_change(_print_snapshot)
        client.on_phase_change(_print_phase)
        client.on_mode_change(_print_mode)
        await client.connect(args.session_id)

        try:
            while deadline is None or time.monotonic() < deadline:
                await asyncio.sleep(args.health_seconds)
                info = client.get_connection_health()
                print(f"[watch] health mode={info.mode} health={info.health} last_update={info.last_update}")
                if client.snapshot.phase is SessionPhase.ENDED:
                    _LOG.info("Session ended")
                    break
        finally:
            await client.disconnect()
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
