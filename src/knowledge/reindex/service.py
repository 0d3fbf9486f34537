"""Reindexing: re-chunk a workspace's items and re-announce their chunks.

Used after a chunking or embedding-model change. Reindex is fire-and-forget:
it replaces chunks and publishes events, and the embedding worker catches up
in the background. The pending sweep republishes events for chunks that are
still unembedded (dropped events, failed embeddings).

Both bulk paths publish with backpressure: each event may wait up to the
publish timeout for queue space. Once one event is dropped the pass stops
publishing, and the remaining chunks stay unembedded for the next sweep.
"""

from __future__ import annotations

import structlog

from src.app.events.bus import ChunkEventBus
from src.app.events.schemas import ChunkCreatedEvent
from src.knowledge.errors import ValidationError
from src.knowledge.ingestion.pipeline import IngestionService
from src.knowledge.repository import KnowledgeRepository
from src.knowledge.schemas import Chunk

logger = structlog.get_logger(__name__)

REINDEX_BATCH_SIZE = 200

# Fixed per-item estimate shown to callers; not a measurement
REINDEX_SECONDS_PER_ITEM = 0.25


def estimated_time(items_queued: int) -> str:
    """Rough completion estimate, e.g. ``"1s"`` for 4 items."""
    seconds = items_queued * REINDEX_SECONDS_PER_ITEM
    return f"{int(seconds + 0.5)}s"


class ReindexService:
    """Re-queues knowledge for chunking and embedding.

    Args:
        repository: Item and chunk persistence.
        ingestion: Provides the chunking step.
        bus: Channel for republished chunk events.
        batch_size: Items loaded per page while enumerating a workspace.
        publish_timeout: Seconds each event may wait for queue space.
            None publishes without waiting.
    """

    def __init__(
        self,
        repository: KnowledgeRepository,
        ingestion: IngestionService,
        bus: ChunkEventBus,
        batch_size: int = REINDEX_BATCH_SIZE,
        publish_timeout: float | None = None,
    ) -> None:
        self._repository = repository
        self._ingestion = ingestion
        self._bus = bus
        self._batch_size = batch_size
        self._publish_timeout = publish_timeout

    async def queue_workspace_reindex(
        self, workspace_id: str, entity_type: str | None = None
    ) -> int:
        """Re-chunk every item of a workspace (optionally one entity type).

        Every matching item is re-chunked even when the bus is saturated;
        chunks whose event could not be published are left to the sweep.

        Returns:
            Number of items queued.

        Raises:
            ValidationError: Missing workspace id.
        """
        if not workspace_id or not workspace_id.strip():
            raise ValidationError("workspace_id is required")

        queued = 0
        deferred = 0
        offset = 0
        while True:
            items = await self._repository.list_items(
                workspace_id, entity_type=entity_type, offset=offset, limit=self._batch_size
            )
            for item in items:
                chunks = await self._ingestion.rechunk(item, publish=False)
                queued += 1
                if deferred:
                    deferred += len(chunks)
                    continue
                deferred += len(chunks) - await self._announce(chunks)
            if len(items) < self._batch_size:
                break
            offset += self._batch_size

        if deferred:
            logger.warning(
                "reindex_events_deferred",
                workspace_id=workspace_id,
                deferred=deferred,
            )
        logger.info(
            "workspace_reindex_queued",
            workspace_id=workspace_id,
            entity_type=entity_type,
            items_queued=queued,
        )
        return queued

    async def requeue_unembedded(self, limit: int = 500) -> int:
        """Republish events for chunks that still have no vector.

        Stops at the first event the bus cannot take.

        Returns:
            Number of events published.
        """
        chunks = await self._repository.list_unembedded_chunks(limit=limit)
        published = await self._announce(chunks)

        if chunks:
            logger.info(
                "pending_chunks_requeued",
                pending=len(chunks),
                published=published,
                deferred=len(chunks) - published,
            )
        return published

    async def _announce(self, chunks: list[Chunk]) -> int:
        published = 0
        for chunk in chunks:
            event = ChunkCreatedEvent(
                knowledge_item_id=chunk.knowledge_item_id,
                chunk_id=chunk.id,
                workspace_id=chunk.workspace_id,
            )
            if not await self._bus.publish(event, timeout=self._publish_timeout):
                break
            published += 1
        return published
