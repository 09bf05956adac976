"""CDC work queue bus using Redis Streams.

Provides publish/subscribe of WorkItems with consumer group management,
message acknowledgment, and stream monitoring.

Stream key pattern: sfmirror:events:{stream_name}
"""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
import structlog

from src.sfmirror.events.schemas import WorkItem

logger = structlog.get_logger(__name__)

STREAM_MAXLEN = 10000


class CdcEventBus:
    """Publish and subscribe to the connector's Redis Streams.

    Consumer groups give at-least-once delivery: a message stays pending
    until acknowledged.

    Args:
        redis: Async Redis client.
        prefix: Key namespace for every stream.
    """

    def __init__(self, redis: aioredis.Redis, prefix: str = "sfmirror") -> None:
        self._redis = redis
        self._prefix = prefix

    @property
    def redis(self) -> aioredis.Redis:
        return self._redis

    def stream_key(self, stream: str) -> str:
        """Build a namespaced stream key.

        Args:
            stream: Stream name (e.g. "cdc").

        Returns:
            Full key like ``sfmirror:events:{stream}``.
        """
        return f"{self._prefix}:events:{stream}"

    async def publish(self, stream: str, item: WorkItem) -> str:
        """Append a work item to a stream with approximate trimming.

        Args:
            stream: Stream name to publish to.
            item: WorkItem to publish.

        Returns:
            Redis message ID assigned by XADD.
        """
        return await self.publish_raw(stream, item.to_stream_dict())

    async def publish_raw(self, stream: str, data: dict[str, str]) -> str:
        """Append an already-serialized message (used for retries)."""
        stream_key = self.stream_key(stream)
        message_id = await self._redis.xadd(
            stream_key,
            data,
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )

        logger.debug(
            "cdc.work_published",
            stream=stream_key,
            work_id=data.get("work_id"),
            kind=data.get("kind"),
            message_id=message_id,
        )
        return message_id

    async def ensure_group(self, stream: str, group: str) -> None:
        """Create the consumer group if it does not already exist."""
        try:
            await self._redis.xgroup_create(
                self.stream_key(stream), group, id="0", mkstream=True,
            )
        except aioredis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def subscribe(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int = 10,
        block: int = 5000,
    ) -> list[tuple[str, list[tuple[str, dict[str, str]]]]]:
        """Read new work items as a consumer in a consumer group.

        Args:
            stream: Stream name to consume from.
            group: Consumer group name.
            consumer: Consumer name within the group.
            count: Maximum messages to read per call.
            block: Milliseconds to block waiting for new messages.

        Returns:
            List of ``(stream_key, [(message_id, data), ...])`` tuples.
        """
        await self.ensure_group(stream, group)
        messages = await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={self.stream_key(stream): ">"},
            count=count,
            block=block,
        )
        return messages or []

    async def ack(self, stream: str, group: str, message_id: str) -> None:
        """Acknowledge a processed message."""
        await self._redis.xack(self.stream_key(stream), group, message_id)

    async def get_stream_info(self, stream: str) -> dict[str, Any]:
        """Stream length, groups, first/last entry for monitoring."""
        return await self._redis.xinfo_stream(self.stream_key(stream))

    async def get_pending(self, stream: str, group: str) -> dict[str, Any]:
        """Pending message summary for a consumer group."""
        return await self._redis.xpending(self.stream_key(stream), group)
