"""Chunk event buses: in-process queue and Redis Streams.

Both satisfy the ChunkEventBus protocol. Publishing never raises: a full queue
or an unreachable broker is logged and counted and the caller carries on.
By default a full in-process queue drops at once; bulk publishers (reindex,
the pending sweep) pass a timeout and wait for room instead. Undelivered
chunks stay unembedded until the pending sweep or a reindex republishes them.

Delivery is at-least-once: a consumer acknowledges each event after handling
it, and an unacknowledged stream message stays pending in the consumer group.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as aioredis
import structlog

from src.app.core.monitoring import chunk_events_dropped_total
from src.app.events.schemas import ChunkCreatedEvent, ReceivedEvent

logger = structlog.get_logger(__name__)

CHUNK_STREAM_KEY = "knowledge:chunk_created"
CHUNK_CONSUMER_GROUP = "embedding_workers"


@runtime_checkable
class ChunkEventBus(Protocol):
    """Message channel between ingestion and the embedding worker."""

    async def publish(self, event: ChunkCreatedEvent, timeout: float | None = None) -> bool:
        """Enqueue an event. Returns False if it was dropped.

        Args:
            event: Event to enqueue.
            timeout: Seconds to wait for queue space. None means do not wait.
        """
        ...

    async def receive(self, timeout: float = 1.0) -> list[ReceivedEvent]:
        """Wait up to ``timeout`` seconds for events. Empty list on timeout."""
        ...

    async def ack(self, received: ReceivedEvent) -> None:
        """Mark an event as handled."""
        ...

    async def backlog(self) -> int:
        """Events published but not yet acknowledged."""
        ...


def _record_drop(event: ChunkCreatedEvent, reason: str) -> None:
    chunk_events_dropped_total.inc()
    logger.warning(
        "chunk_event_dropped",
        reason=reason,
        channel=event.channel,
        chunk_id=event.chunk_id,
        knowledge_item_id=event.knowledge_item_id,
    )


# ── In-process bus ──────────────────────────────────────────────────────────


class InProcessEventBus:
    """Bounded asyncio queue for single-process deployments.

    Args:
        maxsize: Queue capacity. Events that find the queue full, and stay
            full past the publish timeout, are dropped.
    """

    def __init__(self, maxsize: int = 10000) -> None:
        self._queue: asyncio.Queue[ChunkCreatedEvent] = asyncio.Queue(maxsize=maxsize)
        self._unacked = 0

    async def publish(self, event: ChunkCreatedEvent, timeout: float | None = None) -> bool:
        try:
            if timeout is None:
                self._queue.put_nowait(event)
            else:
                await asyncio.wait_for(self._queue.put(event), timeout=timeout)
        except (asyncio.QueueFull, asyncio.TimeoutError):
            _record_drop(event, reason="queue_full")
            return False
        self._unacked += 1
        logger.debug("event_published", channel=event.channel, chunk_id=event.chunk_id)
        return True

    async def receive(self, timeout: float = 1.0) -> list[ReceivedEvent]:
        try:
            event = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return []
        return [ReceivedEvent(event=event)]

    async def ack(self, received: ReceivedEvent) -> None:
        self._queue.task_done()
        self._unacked -= 1

    def qsize(self) -> int:
        return self._queue.qsize()

    async def backlog(self) -> int:
        """Events published but not yet acknowledged."""
        return self._unacked

    async def join(self) -> None:
        """Wait until every published event has been acknowledged."""
        await self._queue.join()


# ── Redis Streams bus ───────────────────────────────────────────────────────


class RedisStreamEventBus:
    """Chunk events over a Redis Stream with a consumer group.

    All workspaces share one stream; each event carries its workspace id and
    channel name. Consumer groups let several worker processes split the
    stream.

    Args:
        redis: Raw async Redis client.
        consumer: Consumer name within the group (unique per worker process).
        stream_key: Stream to publish to and read from.
        group: Consumer group name.
        maxlen: Approximate stream length cap for XADD trimming.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        consumer: str,
        stream_key: str = CHUNK_STREAM_KEY,
        group: str = CHUNK_CONSUMER_GROUP,
        maxlen: int = 10000,
    ) -> None:
        self._redis = redis
        self._consumer = consumer
        self._stream_key = stream_key
        self._group = group
        self._maxlen = maxlen
        self._group_ready = False

    async def publish(self, event: ChunkCreatedEvent, timeout: float | None = None) -> bool:
        # XADD trims instead of rejecting, so timeout is unused
        try:
            message_id = await self._redis.xadd(
                self._stream_key,
                event.to_stream_dict(),
                maxlen=self._maxlen,
                approximate=True,
            )
        except aioredis.RedisError as exc:
            _record_drop(event, reason=f"redis_error: {exc}")
            return False

        logger.debug(
            "event_published",
            stream=self._stream_key,
            channel=event.channel,
            chunk_id=event.chunk_id,
            message_id=message_id,
        )
        return True

    async def _ensure_group(self) -> None:
        if self._group_ready:
            return
        try:
            await self._redis.xgroup_create(self._stream_key, self._group, id="0", mkstream=True)
        except aioredis.ResponseError:
            pass  # Group already exists
        self._group_ready = True

    async def receive(self, timeout: float = 1.0, count: int = 10) -> list[ReceivedEvent]:
        await self._ensure_group()
        messages = await self._redis.xreadgroup(
            groupname=self._group,
            consumername=self._consumer,
            streams={self._stream_key: ">"},
            count=count,
            block=int(timeout * 1000),
        )

        received: list[ReceivedEvent] = []
        for _stream, entries in messages or []:
            for message_id, data in entries:
                try:
                    event = ChunkCreatedEvent.from_stream_dict(data)
                except (KeyError, ValueError):
                    logger.error("malformed_chunk_event", message_id=message_id, data=data)
                    await self._redis.xack(self._stream_key, self._group, message_id)
                    continue
                received.append(ReceivedEvent(event=event, delivery_id=message_id))
        return received

    async def ack(self, received: ReceivedEvent) -> None:
        if received.delivery_id is not None:
            await self._redis.xack(self._stream_key, self._group, received.delivery_id)

    async def get_pending(self) -> dict[str, Any]:
        """Pending summary for the consumer group, for monitoring backlog."""
        await self._ensure_group()
        return await self._redis.xpending(self._stream_key, self._group)

    async def backlog(self) -> int:
        """Messages delivered to a consumer but not yet acknowledged."""
        summary = await self.get_pending()
        return int(summary.get("pending", 0))
