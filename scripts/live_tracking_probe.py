#!/usr/bin/env python3
"""Passive live tracking probe for BridgeCore WebSocket payload observation.

This script reuses pybridgecore login/session handling to:
1) authenticate against BridgeCore (BRIDGECORE_EMAIL / BRIDGECORE_PASSWORD),
2) open the live tracking socket for the logged-in user,
3) subscribe to live tracking and to any extra Odoo model channels,
4) print every decoded frame and connection event.

Use this to verify how often positions arrive and how reconnects behave.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pybridgecore import BridgeCoreClient, BridgeCoreConfig, BridgeCoreError, BridgeCoreEvent, EventType  # noqa: E402

_LOG = logging.getLogger("live_tracking_probe")


@dataclass
class ProbeStats:
    started_at: float
    total_messages: int = 0
    reconnects: int = 0
    first_message_at: float | None = None
    last_message_at: float | None = None

    def on_message(self, now: float) -> float | None:
        previous = self.last_message_at
        self.total_messages += 1
        if self.first_message_at is None:
            self.first_message_at = now
        self.last_message_at = now
        return None if previous is None else now - previous


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Passive probe for the BridgeCore live tracking WebSocket.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--model",
        action="append",
        default=[],
        help="Extra Odoo model channel to subscribe to (repeatable).",
    )
    parser.add_argument(
        "--user-id",
        help="WebSocket user id (defaults to the Odoo user id from /me).",
    )
    parser.add_argument(
        "--ping-seconds",
        type=int,
        default=30,
        help="Send an application ping every N seconds (0 = never).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print frame payloads.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_summary(stats: ProbeStats) -> None:
    runtime = time.time() - stats.started_at
    print("[probe] Summary")
    print(f"[probe]   runtime_s      : {runtime:.1f}")
    print(f"[probe]   total_messages : {stats.total_messages}")
    print(f"[probe]   reconnects     : {stats.reconnects}")
    if stats.first_message_at is not None:
        first_message = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(stats.first_message_at))
        print(f"[probe]   first_message  : {first_message}")
    if stats.last_message_at is not None:
        last_message = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(stats.last_message_at))
        print(f"[probe]   last_message   : {last_message}")


async def _probe(args: argparse.Namespace, config: BridgeCoreConfig, email: str, password: str) -> ProbeStats:
    stats = ProbeStats(started_at=time.time())

    def on_event(event: BridgeCoreEvent) -> None:
        now = time.time()
        if event.type == EventType.WEBSOCKET_MESSAGE:
            delta = stats.on_message(now)
            gap_text = "first" if delta is None else f"{delta:.1f}s"
            print(f"[probe] msg#{stats.total_messages} type={event.data.get('type')} gap={gap_text}")
            payload = event.data.get("message")
            if args.json:
                print(json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True))
            else:
                print(json.dumps(payload, ensure_ascii=False, sort_keys=True))
            return
        if event.type == EventType.WEBSOCKET_RECONNECTING:
            stats.reconnects += 1
        print(f"[probe] {event.type} {event.data}")

    async with BridgeCoreClient(config) as client:
        await client.login(email, password)
        user_id = args.user_id
        if user_id is None:
            me = await client.me()
            user_id = me.user.odoo_user_id or me.user.id

        client.event_bus.on_pattern("websocket.", on_event)
        live = client.live_tracking
        await live.connect(user_id)
        await live.subscribe_live_tracking()
        for model in args.model:
            await live.subscribe_to_model(model)

        last_ping = time.time()
        try:
            while True:
                now = time.time()
                if args.duration > 0 and (now - stats.started_at) >= args.duration:
                    print(f"[probe] Reached --duration={args.duration}s, stopping.")
                    break
                if args.ping_seconds > 0 and (now - last_ping) >= args.ping_seconds:
                    await live.ping()
                    last_ping = now
                await asyncio.sleep(1.0)
        finally:
            await live.disconnect()
            await client.logout()

    return stats


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    email = os.environ.get("BRIDGECORE_EMAIL")
    password = os.environ.get("BRIDGECORE_PASSWORD")
    if not email or not password:
        print("[probe] Set BRIDGECORE_EMAIL and BRIDGECORE_PASSWORD", file=sys.stderr)
        return 2

    try:
        config = BridgeCoreConfig.from_env()
        stats = asyncio.run(_probe(args, config, email, password))
    except KeyboardInterrupt:
        return 0
    except BridgeCoreError as exc:  # pragma: no cover - network/system interaction
        _LOG.debug("Probe failed", exc_info=True)
        print(f"[probe] Failed: {exc}", file=sys.stderr)
        return 2

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
