"""Shared fixtures for knowledge core tests.

Provides:
- InMemoryKnowledgeRepository: KnowledgeRepository test double (no database)
- HashingEmbeddingProvider: deterministic bag-of-words embeddings (no LLM calls)
- Wired services (ingestion, search, evidence, reindex, embedding worker)
  sharing one in-process event bus
- drain_events: processes every queued chunk event through the worker
"""

from __future__ import annotations

import math
import re
import uuid
import zlib
from datetime import datetime, timezone

import pytest

from src.app.events.bus import InProcessEventBus
from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingWorker
from src.knowledge.evidence.service import EvidencePackService
from src.knowledge.ingestion.chunker import KnowledgeChunker
from src.knowledge.ingestion.pipeline import IngestionService
from src.knowledge.reindex.service import ReindexService
from src.knowledge.schemas import Chunk, CorpusChunk, KnowledgeItem, KnowledgeItemCreate
from src.knowledge.search.service import HybridSearchService

WORKSPACE_ID = "ws-test"


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryKnowledgeRepository:
    """In-memory KnowledgeRepository for testing without database."""

    def __init__(self) -> None:
        self.items: dict[str, KnowledgeItem] = {}
        self.chunks: dict[str, Chunk] = {}

    def _new_chunks(self, item: KnowledgeItem, chunk_texts: list[str]) -> list[Chunk]:
        now = datetime.now(timezone.utc)
        for chunk_id in [c.id for c in self.chunks.values() if c.knowledge_item_id == item.id]:
            del self.chunks[chunk_id]
        chunks = [
            Chunk(
                id=str(uuid.uuid4()),
                knowledge_item_id=item.id,
                workspace_id=item.workspace_id,
                position=position,
                text=text,
                created_at=now,
            )
            for position, text in enumerate(chunk_texts)
        ]
        for chunk in chunks:
            self.chunks[chunk.id] = chunk
        return chunks

    async def save_item(
        self, data: KnowledgeItemCreate, chunk_texts: list[str]
    ) -> tuple[KnowledgeItem, list[Chunk]]:
        now = datetime.now(timezone.utc)
        existing = None
        if data.entity_type and data.entity_id:
            existing = next(
                (
                    i
                    for i in self.items.values()
                    if i.workspace_id == data.workspace_id
                    and i.entity_type == data.entity_type
                    and i.entity_id == data.entity_id
                ),
                None,
            )
        if existing is None:
            item = KnowledgeItem(id=str(uuid.uuid4()), created_at=now, updated_at=now, **data.model_dump())
        else:
            item = existing.model_copy(
                update={
                    "source_type": data.source_type,
                    "title": data.title,
                    "raw_content": data.raw_content,
                    "metadata": data.metadata,
                    "updated_at": now,
                }
            )
        self.items[item.id] = item
        return item, self._new_chunks(item, chunk_texts)

    async def get_item(self, workspace_id: str, item_id: str) -> KnowledgeItem | None:
        item = self.items.get(item_id)
        if item and item.workspace_id == workspace_id:
            return item
        return None

    async def list_items(
        self,
        workspace_id: str,
        entity_type: str | None = None,
        offset: int = 0,
        limit: int = 200,
    ) -> list[KnowledgeItem]:
        items = [
            i
            for i in self.items.values()
            if i.workspace_id == workspace_id and (not entity_type or i.entity_type == entity_type)
        ]
        items.sort(key=lambda i: (i.created_at, i.id))
        return items[offset : offset + limit]

    async def replace_chunks(
        self, workspace_id: str, item_id: str, chunk_texts: list[str]
    ) -> list[Chunk]:
        item = await self.get_item(workspace_id, item_id)
        if item is None:
            return []
        return self._new_chunks(item, chunk_texts)

    async def get_chunk(self, chunk_id: str) -> Chunk | None:
        return self.chunks.get(chunk_id)

    async def set_chunk_vector(
        self, chunk_id: str, vector: list[float], embedded_at: datetime
    ) -> bool:
        chunk = self.chunks.get(chunk_id)
        if chunk is None:
            return False
        self.chunks[chunk_id] = chunk.model_copy(update={"vector": vector, "embedded_at": embedded_at})
        return True

    async def load_corpus(self, workspace_id: str) -> list[CorpusChunk]:
        corpus = []
        for chunk in self.chunks.values():
            if chunk.workspace_id != workspace_id:
                continue
            item = self.items[chunk.knowledge_item_id]
            corpus.append(
                CorpusChunk(
                    chunk_id=chunk.id,
                    knowledge_item_id=item.id,
                    position=chunk.position,
                    text=chunk.text,
                    vector=chunk.vector,
                    title=item.title,
                    item_created_at=item.created_at,
                    item_metadata=item.metadata,
                    item_updated_at=item.updated_at,
                )
            )
        return corpus

    async def list_unembedded_chunks(self, limit: int = 500) -> list[Chunk]:
        pending = [c for c in self.chunks.values() if c.embedded_at is None]
        pending.sort(key=lambda c: c.created_at)
        return pending[:limit]


class HashingEmbeddingProvider:
    """Deterministic LLMProvider: hashed bag-of-words vectors.

    Texts sharing words get positive cosine similarity; texts sharing none
    are (barring hash collisions) orthogonal.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension
        self.embed_calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.embed_calls.append(list(texts))
        return [self._vector(t) for t in texts]

    async def complete(self, messages: list[dict]) -> str:
        return ""

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(token.encode()) % self.dimension] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0.0:
            # Empty text still gets a valid, uninformative vector
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def kb_config() -> KnowledgeBaseConfig:
    return KnowledgeBaseConfig(_env_file=None)


@pytest.fixture
def repository() -> InMemoryKnowledgeRepository:
    return InMemoryKnowledgeRepository()


@pytest.fixture
def provider() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture
def bus() -> InProcessEventBus:
    return InProcessEventBus(maxsize=10000)


@pytest.fixture
def ingestion_service(repository, bus, kb_config) -> IngestionService:
    return IngestionService(repository, KnowledgeChunker.from_config(kb_config), bus)


@pytest.fixture
def search_service(repository, provider, kb_config) -> HybridSearchService:
    return HybridSearchService(repository, provider, kb_config)


@pytest.fixture
def evidence_service(search_service, kb_config) -> EvidencePackService:
    return EvidencePackService(search_service, config=kb_config)


@pytest.fixture
def reindex_service(repository, ingestion_service, bus) -> ReindexService:
    return ReindexService(repository, ingestion_service, bus)


@pytest.fixture
def embedding_worker(repository, provider, bus) -> EmbeddingWorker:
    return EmbeddingWorker(repository, provider, bus, concurrency=1, poll_timeout=0.01)


@pytest.fixture
def drain_events(bus, embedding_worker):
    """Async callable that embeds every queued chunk; returns events handled."""

    async def _drain() -> int:
        handled = 0
        while bus.qsize():
            for received in await bus.receive(timeout=0.01):
                await embedding_worker.process(received.event)
                await bus.ack(received)
                handled += 1
        return handled

    return _drain
