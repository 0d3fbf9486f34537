"""Chunk-created event channel between ingestion and embedding.

Exports:
    ChunkCreatedEvent: Notification that a chunk needs an embedding.
    ReceivedEvent: Delivered event plus its acknowledgment handle.
    ChunkEventBus: Protocol shared by both bus implementations.
    InProcessEventBus: Bounded asyncio queue (single process).
    RedisStreamEventBus: Redis Streams with a consumer group (multi-process).
"""

from __future__ import annotations

from src.app.events.schemas import ChunkCreatedEvent, ReceivedEvent

__all__ = [
    "ChunkCreatedEvent",
    "ChunkEventBus",
    "InProcessEventBus",
    "ReceivedEvent",
    "RedisStreamEventBus",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the bus implementations to avoid circular imports."""
    if name in ("ChunkEventBus", "InProcessEventBus", "RedisStreamEventBus"):
        from src.app.events import bus

        return getattr(bus, name)
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
