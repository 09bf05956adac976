"""Work item consumer with retry logic and consumer group management.

Reads WorkItems from the CDC Redis Stream via a consumer group and invokes
a handler. A handler that raises (infrastructure failure, e.g. database
unreachable) is retried with exponential backoff (1s, 4s, 16s) and the
message is moved to the dead letter queue after 3 attempts. Messages that
cannot be decoded go to the DLQ straight away. Messages left pending by a
consumer that died mid-handler are reclaimed with XAUTOCLAIM when the loop
starts and once per RECLAIM_INTERVAL after that.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog
from pydantic import ValidationError

from src.sfmirror.events.bus import CdcEventBus
from src.sfmirror.events.dlq import DeadLetterQueue
from src.sfmirror.events.schemas import WorkItem

logger = structlog.get_logger(__name__)

WorkHandler = Callable[[WorkItem], Awaitable[None]]


class WorkItemConsumer:
    """Consumer that processes work items from a Redis Stream.

    Args:
        bus: CdcEventBus for reading work items.
        stream: Stream name to consume from.
        group: Consumer group name.
        consumer_name: Unique consumer identifier within the group.
        dlq: DeadLetterQueue for permanently failed messages.
    """

    MAX_RETRIES: int = 3
    RETRY_DELAYS: list[int] = [1, 4, 16]  # Exponential backoff: 1s, 4s, 16s
    READ_ERROR_DELAY: float = 5.0
    RECLAIM_INTERVAL: float = 60.0
    RECLAIM_IDLE_MS: int = 60000

    def __init__(
        self,
        bus: CdcEventBus,
        stream: str,
        group: str,
        consumer_name: str,
        dlq: DeadLetterQueue,
    ) -> None:
        self._bus = bus
        self._stream = stream
        self._group = group
        self._consumer_name = consumer_name
        self._dlq = dlq
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def process_loop(self, handler: WorkHandler) -> None:
        """Main processing loop: read, deserialize, handle, ack.

        Runs until ``stop()`` is called or the task is cancelled. Read
        errors (Redis unavailable) are logged and retried after a pause.

        Args:
            handler: Async callable that processes one WorkItem.
                Must raise on failure for retry to engage.
        """
        self._running = True
        logger.info(
            "cdc.consumer_started",
            stream=self._stream,
            group=self._group,
            consumer=self._consumer_name,
        )

        last_reclaim: float | None = None
        while self._running:
            now = time.monotonic()
            if last_reclaim is None or now - last_reclaim >= self.RECLAIM_INTERVAL:
                last_reclaim = now
                await self._process_reclaimed(handler)
                if not self._running:
                    break

            try:
                messages = await self._bus.subscribe(
                    self._stream,
                    self._group,
                    self._consumer_name,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("cdc.consumer_read_failed", error=str(exc))
                await asyncio.sleep(self.READ_ERROR_DELAY)
                continue

            for _stream_key, stream_messages in messages:
                for message_id, raw_data in stream_messages:
                    await self.process_message(message_id, raw_data, handler)

        logger.info("cdc.consumer_stopped", consumer=self._consumer_name)

    async def process_message(
        self,
        message_id: str,
        raw_data: dict[str, str],
        handler: WorkHandler,
    ) -> None:
        """Process one message with exponential backoff retry.

        On success, acknowledges the original message. On failure:
        - If retry count >= MAX_RETRIES, sends to DLQ and acks original.
        - Otherwise, sleeps with backoff and re-publishes with incremented
          retry count, then acks the original.

        Args:
            message_id: Redis message ID.
            raw_data: Raw string dict from Redis Stream.
            handler: Async handler callable.
        """
        retry_count = int(raw_data.get("_retry_count", "0"))

        try:
            item = WorkItem.from_stream_dict(raw_data)
        except (KeyError, ValueError, ValidationError) as exc:
            await self._dead_letter(message_id, raw_data, f"undecodable: {exc}", retry_count)
            return

        try:
            await handler(item)
            await self._bus.ack(self._stream, self._group, message_id)

            logger.debug(
                "cdc.work_processed",
                work_id=item.work_id,
                kind=item.kind.value,
                message_id=message_id,
            )

        except Exception as exc:
            logger.warning(
                "cdc.work_failed",
                work_id=item.work_id,
                message_id=message_id,
                retry_count=retry_count,
                error=str(exc),
            )

            if retry_count >= self.MAX_RETRIES:
                await self._dead_letter(message_id, raw_data, str(exc), retry_count)
            else:
                delay_idx = min(retry_count, len(self.RETRY_DELAYS) - 1)
                delay = self.RETRY_DELAYS[delay_idx]
                await asyncio.sleep(delay)

                retry_data = dict(raw_data)
                retry_data["_retry_count"] = str(retry_count + 1)
                await self._bus.publish_raw(self._stream, retry_data)
                await self._bus.ack(self._stream, self._group, message_id)

                logger.info(
                    "cdc.work_retried",
                    work_id=item.work_id,
                    message_id=message_id,
                    retry_count=retry_count + 1,
                    delay=delay,
                )

    async def _dead_letter(
        self,
        message_id: str,
        raw_data: dict[str, str],
        error: str,
        retry_count: int,
    ) -> None:
        await self._dlq.send_to_dlq(
            original_stream=self._stream,
            message_id=message_id,
            data=raw_data,
            error=error,
            retry_count=retry_count,
        )
        await self._bus.ack(self._stream, self._group, message_id)
        logger.error(
            "cdc.work_dead_lettered",
            message_id=message_id,
            retry_count=retry_count,
            error=error,
        )

    async def reclaim_abandoned(
        self, idle_time_ms: int | None = None
    ) -> list[tuple[str, dict[str, str]]]:
        """Claim messages left pending by dead or stalled consumers.

        Args:
            idle_time_ms: Minimum idle time in milliseconds
                (default RECLAIM_IDLE_MS).

        Returns:
            ``(message_id, data)`` pairs now owned by this consumer. Entries
            trimmed from the stream since delivery are dropped.
        """
        result = await self._bus.redis.xautoclaim(
            self._bus.stream_key(self._stream),
            self._group,
            self._consumer_name,
            min_idle_time=idle_time_ms if idle_time_ms is not None else self.RECLAIM_IDLE_MS,
            start_id="0",
            count=10,
        )
        if not result or len(result) < 2:
            return []
        return [(message_id, data) for message_id, data in result[1] if data]

    async def _process_reclaimed(self, handler: WorkHandler) -> None:
        try:
            claimed = await self.reclaim_abandoned()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("cdc.consumer_reclaim_failed", error=str(exc))
            return

        if claimed:
            logger.info("cdc.messages_reclaimed", count=len(claimed), consumer=self._consumer_name)
        for message_id, raw_data in claimed:
            await self.process_message(message_id, raw_data, handler)

    def stop(self) -> None:
        """Signal the processing loop to stop after current iteration."""
        self._running = False
