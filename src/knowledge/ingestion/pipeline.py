"""Ingestion service: validate, chunk, persist, announce.

    validate -> KnowledgeChunker.split() -> KnowledgeRepository.save_item()
    -> ChunkEventBus.publish() per chunk

Embeddings are computed later by the EmbeddingWorker; ingest never waits for
them and never fails because an event could not be published.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.app.core.monitoring import chunks_ingested_total
from src.app.events.bus import ChunkEventBus
from src.app.events.schemas import ChunkCreatedEvent
from src.knowledge.errors import NotFoundError, ValidationError
from src.knowledge.ingestion.chunker import KnowledgeChunker
from src.knowledge.repository import KnowledgeRepository
from src.knowledge.schemas import (
    ENTITY_ID_MAX_LENGTH,
    ENTITY_TYPE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    WORKSPACE_ID_MAX_LENGTH,
    Chunk,
    KnowledgeItem,
    KnowledgeItemCreate,
    SourceType,
)

logger = structlog.get_logger(__name__)


def _parse_source_type(value: SourceType | str | None) -> SourceType:
    if isinstance(value, SourceType):
        return value
    if not value or not str(value).strip():
        raise ValidationError("source_type is required")
    try:
        return SourceType(str(value).strip())
    except ValueError:
        allowed = ", ".join(s.value for s in SourceType)
        raise ValidationError(f"unknown source_type {value!r}; expected one of: {allowed}")


def _check_length(field: str, value: str | None, limit: int) -> None:
    if value is not None and len(value) > limit:
        raise ValidationError(f"{field} must be at most {limit} characters, got {len(value)}")


class IngestionService:
    """Turns raw organizational content into stored, chunked knowledge items.

    Args:
        repository: Knowledge item/chunk persistence.
        chunker: Text windowing strategy.
        bus: Channel the embedding worker listens on.
    """

    def __init__(
        self,
        repository: KnowledgeRepository,
        chunker: KnowledgeChunker,
        bus: ChunkEventBus,
    ) -> None:
        self._repository = repository
        self._chunker = chunker
        self._bus = bus

    async def ingest(
        self,
        workspace_id: str,
        source_type: SourceType | str,
        title: str,
        raw_content: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> KnowledgeItem:
        """Store a knowledge item and its chunks, then announce the chunks.

        Re-ingesting content linked to the same (entity_type, entity_id)
        updates the existing item and replaces its chunks.

        Args:
            workspace_id: Owning workspace.
            source_type: One of the SourceType values.
            title: Item title.
            raw_content: Full text; may be empty.
            entity_type: Optional CRM record type.
            entity_id: Optional CRM record id.
            metadata: Opaque metadata stored with the item.

        Returns:
            The stored KnowledgeItem.

        Raises:
            ValidationError: Missing workspace/title/source type, an
                unrecognized source type, or a workspace id, title or
                linked-record field longer than its stored column.
        """
        if not workspace_id or not workspace_id.strip():
            raise ValidationError("workspace_id is required")
        if not title or not title.strip():
            raise ValidationError("title is required")
        _check_length("workspace_id", workspace_id, WORKSPACE_ID_MAX_LENGTH)
        _check_length("title", title, TITLE_MAX_LENGTH)
        _check_length("entity_type", entity_type, ENTITY_TYPE_MAX_LENGTH)
        _check_length("entity_id", entity_id, ENTITY_ID_MAX_LENGTH)
        parsed_type = _parse_source_type(source_type)

        data = KnowledgeItemCreate(
            workspace_id=workspace_id,
            source_type=parsed_type,
            title=title,
            raw_content=raw_content or "",
            entity_type=entity_type or None,
            entity_id=entity_id or None,
            metadata=metadata,
        )
        chunk_texts = self._chunker.split(data.raw_content)
        item, chunks = await self._repository.save_item(data, chunk_texts)
        chunks_ingested_total.inc(len(chunks))

        logger.info(
            "knowledge_item_ingested",
            workspace_id=workspace_id,
            item_id=item.id,
            source_type=parsed_type.value,
            chunk_count=len(chunks),
            reingested=item.created_at != item.updated_at,
        )

        await self._publish(chunks)
        return item

    async def rechunk(self, item: KnowledgeItem, publish: bool = True) -> list[Chunk]:
        """Re-split an item's content and replace its chunks.

        Args:
            item: Item to re-chunk.
            publish: Announce the new chunks on the bus. Bulk callers pass
                False and publish with their own backpressure.
        """
        chunk_texts = self._chunker.split(item.raw_content)
        chunks = await self._repository.replace_chunks(item.workspace_id, item.id, chunk_texts)
        chunks_ingested_total.inc(len(chunks))
        if publish:
            await self._publish(chunks)
        return chunks

    async def get_item(self, workspace_id: str, item_id: str) -> KnowledgeItem:
        """Look up an item by id.

        Raises:
            ValidationError: Missing workspace id.
            NotFoundError: No such item in the workspace.
        """
        if not workspace_id:
            raise ValidationError("workspace_id is required")
        item = await self._repository.get_item(workspace_id, item_id)
        if item is None:
            raise NotFoundError(f"knowledge item {item_id} not found")
        return item

    async def _publish(self, chunks: list[Chunk]) -> int:
        published = 0
        for chunk in chunks:
            event = ChunkCreatedEvent(
                knowledge_item_id=chunk.knowledge_item_id,
                chunk_id=chunk.id,
                workspace_id=chunk.workspace_id,
            )
            if await self._bus.publish(event):
                published += 1
        return published
