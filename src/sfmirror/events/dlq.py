"""Dead letter queue for work items that exhausted their retries.

DLQ streams hold failed work items with failure metadata for manual review
and optional replay back onto the work stream.

DLQ key pattern: sfmirror:events:{original_stream}:dlq
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from src.sfmirror.events.bus import CdcEventBus

logger = structlog.get_logger(__name__)


class DeadLetterQueue:
    """Dead letter queue backed by Redis Streams.

    Args:
        bus: Bus whose Redis client and key namespace the DLQ shares.
    """

    def __init__(self, bus: CdcEventBus) -> None:
        self._bus = bus
        self._redis = bus.redis

    def dlq_key(self, original_stream: str) -> str:
        """Full DLQ key like ``sfmirror:events:{stream}:dlq``."""
        return f"{self._bus.stream_key(original_stream)}:dlq"

    async def send_to_dlq(
        self,
        original_stream: str,
        message_id: str,
        data: dict[str, str],
        error: str,
        retry_count: int,
    ) -> str:
        """Move a failed work item to the dead letter queue.

        Args:
            original_stream: Stream name the item was consumed from.
            message_id: Original Redis message ID.
            data: Raw work item dict from the stream.
            error: Error message from the last processing attempt.
            retry_count: Number of retry attempts made.

        Returns:
            DLQ message ID assigned by XADD.
        """
        dlq_key = self.dlq_key(original_stream)

        dlq_data: dict[str, str] = {
            **data,
            "_dlq_original_stream": original_stream,
            "_dlq_original_id": message_id,
            "_dlq_error": error,
            "_dlq_retry_count": str(retry_count),
            "_dlq_timestamp": datetime.now(timezone.utc).isoformat(),
        }

        dlq_message_id = await self._redis.xadd(dlq_key, dlq_data)

        logger.warning(
            "cdc.work_dead_lettered",
            dlq_key=dlq_key,
            original_id=message_id,
            error=error,
            retry_count=retry_count,
        )
        return dlq_message_id

    async def list_dlq_messages(
        self,
        original_stream: str,
        count: int = 50,
    ) -> list[tuple[str, dict[str, Any]]]:
        """List up to ``count`` DLQ messages as ``(message_id, data)`` tuples."""
        return await self._redis.xrange(self.dlq_key(original_stream), count=count)

    async def replay_message(
        self,
        original_stream: str,
        dlq_message_id: str,
    ) -> str:
        """Replay a DLQ message back to its original stream.

        Strips DLQ metadata and the retry count, re-publishes for fresh
        processing, then deletes the message from the DLQ.

        Args:
            original_stream: Stream name to replay into.
            dlq_message_id: Message ID in the DLQ stream to replay.

        Returns:
            New message ID in the original stream.

        Raises:
            ValueError: If the DLQ message ID is not found.
        """
        dlq_key = self.dlq_key(original_stream)

        messages = await self._redis.xrange(
            dlq_key,
            min=dlq_message_id,
            max=dlq_message_id,
            count=1,
        )
        if not messages:
            msg = f"DLQ message '{dlq_message_id}' not found in {dlq_key}"
            raise ValueError(msg)

        _msg_id, data = messages[0]
        replay_data = {
            k: v for k, v in data.items()
            if not k.startswith("_dlq_") and k != "_retry_count"
        }

        new_id = await self._bus.publish_raw(original_stream, replay_data)
        await self._redis.xdel(dlq_key, dlq_message_id)

        logger.info(
            "cdc.work_replayed",
            original_stream=original_stream,
            dlq_message_id=dlq_message_id,
            new_message_id=new_id,
        )
        return new_id
