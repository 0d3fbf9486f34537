"""Event schemas for chunk-created notifications.

Ingestion and reindex publish one ChunkCreatedEvent per written chunk; the
embedding worker consumes them. Events serialize to flat string dicts for
Redis Streams and deserialize back losslessly.

Channel pattern: ws:{workspace_id}:chunks
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class ChunkCreatedEvent(BaseModel):
    """Notification that a chunk was written and needs an embedding.

    Attributes:
        event_id: Unique identifier (auto-generated UUID4).
        version: Schema version for forward compatibility.
        knowledge_item_id: Item that owns the chunk.
        chunk_id: Chunk to embed.
        workspace_id: Owning workspace.
        timestamp: UTC creation time.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    version: str = "1.0"
    knowledge_item_id: str
    chunk_id: str
    workspace_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def channel(self) -> str:
        """Workspace-scoped channel name, e.g. ``ws:acme:chunks``."""
        return f"ws:{self.workspace_id}:chunks"

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize all fields to a flat dict of strings for Redis Streams.

        Returns:
            Dictionary with string keys and string values suitable for XADD.
        """
        return {
            "event_id": self.event_id,
            "version": self.version,
            "knowledge_item_id": self.knowledge_item_id,
            "chunk_id": self.chunk_id,
            "workspace_id": self.workspace_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> ChunkCreatedEvent:
        """Deserialize from a Redis Streams flat dict.

        Args:
            raw: Dictionary of string key-value pairs from XREADGROUP.

        Returns:
            Reconstructed ChunkCreatedEvent instance.
        """
        return cls(
            event_id=raw["event_id"],
            version=raw.get("version", "1.0"),
            knowledge_item_id=raw["knowledge_item_id"],
            chunk_id=raw["chunk_id"],
            workspace_id=raw["workspace_id"],
            timestamp=datetime.fromisoformat(raw["timestamp"]),
        )


@dataclass(frozen=True)
class ReceivedEvent:
    """An event handed to a consumer, plus the handle needed to ack it.

    ``delivery_id`` is the Redis message ID for stream delivery and ``None``
    for in-process delivery.
    """

    event: ChunkCreatedEvent
    delivery_id: str | None = None
