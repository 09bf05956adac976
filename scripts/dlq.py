#!/usr/bin/env python3
"""Inspect or replay the CDC dead letter queue.

Usage:
    python scripts/dlq.py list [--count 20]
    python scripts/dlq.py replay <dlq-message-id>
"""

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path so we can import src.sfmirror
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.sfmirror.config import get_settings
from src.sfmirror.core.redis import close_redis, get_redis_pool
from src.sfmirror.events.bus import CdcEventBus
from src.sfmirror.events.dlq import DeadLetterQueue


async def list_messages(dlq: DeadLetterQueue, stream: str, count: int) -> None:
    messages = await dlq.list_dlq_messages(stream, count=count)
    if not messages:
        print("DLQ is empty.")
        return
    for message_id, data in messages:
        events = json.loads(data.get("events", "[]"))
        print(
            f"{message_id}  work_id={data.get('work_id')}  kind={data.get('kind')}  "
            f"events={len(events)}  retries={data.get('_dlq_retry_count')}  "
            f"error={data.get('_dlq_error')}"
        )


async def run(args: argparse.Namespace) -> int:
    stream = get_settings().CDC_STREAM_NAME
    dlq = DeadLetterQueue(CdcEventBus(get_redis_pool()))
    try:
        if args.command == "list":
            await list_messages(dlq, stream, args.count)
        else:
            try:
                new_id = await dlq.replay_message(stream, args.message_id)
            except ValueError as exc:
                print(str(exc))
                return 1
            print(f"Replayed {args.message_id} as {new_id}")
        return 0
    finally:
        await close_redis()


def main() -> None:
    parser = argparse.ArgumentParser(description="CDC dead letter queue tools")
    sub = parser.add_subparsers(dest="command", required=True)
    list_cmd = sub.add_parser("list", help="List dead-lettered work items")
    list_cmd.add_argument("--count", type=int, default=50)
    replay_cmd = sub.add_parser("replay", help="Replay one work item onto the CDC stream")
    replay_cmd.add_argument("message_id")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
