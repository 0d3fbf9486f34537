"""Ingestion for the knowledge store.

The flow is:

    IngestionService.ingest() -> KnowledgeChunker.split()
    -> KnowledgeRepository.save_item() -> ChunkEventBus.publish()

Vectors are filled in asynchronously by the EmbeddingWorker.
"""

from src.knowledge.ingestion.chunker import KnowledgeChunker
from src.knowledge.ingestion.pipeline import IngestionService

__all__ = [
    "IngestionService",
    "KnowledgeChunker",
]
