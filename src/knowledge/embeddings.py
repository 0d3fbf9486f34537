"""Embedding worker: fills in chunk vectors from chunk-created events.

A pool of asyncio tasks consumes the chunk event bus. For every event the
worker loads the chunk, asks the LLM provider for one vector and stores it
with ``embedded_at``. Writing overwrites any previous vector, so duplicate
delivery is harmless.

Failures are isolated per chunk: a provider or storage error is logged and
counted, the event is acknowledged, and the chunk stays unembedded until the
pending sweep or a reindex republishes it. Chunks of the same item are
processed in no particular order.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog

from src.app.core.monitoring import embeddings_total
from src.app.events.bus import ChunkEventBus
from src.app.events.schemas import ChunkCreatedEvent
from src.app.services.llm import LLMProvider
from src.knowledge.errors import ProviderError
from src.knowledge.repository import KnowledgeRepository

logger = structlog.get_logger(__name__)


class EmbeddingWorker:
    """Background consumer that embeds chunks.

    Args:
        repository: Chunk persistence.
        provider: Embedding capability.
        bus: Chunk event channel to consume.
        concurrency: Number of consumer tasks.
        poll_timeout: Seconds each receive call waits before looping.
    """

    def __init__(
        self,
        repository: KnowledgeRepository,
        provider: LLMProvider,
        bus: ChunkEventBus,
        concurrency: int = 2,
        poll_timeout: float = 1.0,
    ) -> None:
        self._repository = repository
        self._provider = provider
        self._bus = bus
        self._concurrency = max(1, concurrency)
        self._poll_timeout = poll_timeout
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        """Spawn the consumer tasks on the running event loop."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._consume(n), name=f"embedding-worker-{n}")
            for n in range(self._concurrency)
        ]
        logger.info("embedding_worker_started", concurrency=self._concurrency)

    async def stop(self) -> None:
        """Cancel the consumer tasks and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("embedding_worker_stopped")

    async def process(self, event: ChunkCreatedEvent) -> bool:
        """Embed the chunk named by one event.

        Returns:
            True if a vector was stored; False if the chunk is gone or
            embedding/storage failed.
        """
        log = logger.bind(chunk_id=event.chunk_id, workspace_id=event.workspace_id)

        try:
            chunk = await self._repository.get_chunk(event.chunk_id)
            if chunk is None:
                # Replaced by a reindex or re-ingestion since the event was published
                log.info("embedding_chunk_missing")
                embeddings_total.labels(status="skipped").inc()
                return False

            vectors = await self._provider.embed([chunk.text])
            if len(vectors) != 1:
                raise ProviderError(f"expected 1 embedding, got {len(vectors)}")

            stored = await self._repository.set_chunk_vector(
                chunk.id, vectors[0], datetime.now(timezone.utc)
            )
        except ProviderError as exc:
            log.warning("embedding_provider_failed", error=str(exc))
            embeddings_total.labels(status="failed").inc()
            return False
        except Exception as exc:
            log.error("embedding_store_failed", error=str(exc), exc_info=True)
            embeddings_total.labels(status="failed").inc()
            return False

        if not stored:
            log.info("embedding_chunk_missing")
            embeddings_total.labels(status="skipped").inc()
            return False

        embeddings_total.labels(status="succeeded").inc()
        log.debug("chunk_embedded", dimension=len(vectors[0]))
        return True

    async def _consume(self, worker_number: int) -> None:
        while True:
            try:
                batch = await self._bus.receive(timeout=self._poll_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("embedding_receive_failed", worker=worker_number, error=str(exc))
                await asyncio.sleep(self._poll_timeout)
                continue

            for received in batch:
                await self.process(received.event)
                try:
                    await self._bus.ack(received)
                except Exception as exc:
                    # Unacked stream messages stay pending and are redelivered
                    logger.warning(
                        "embedding_ack_failed",
                        chunk_id=received.event.chunk_id,
                        error=str(exc),
                    )
