"""Tests for the EmbeddingWorker.

Covers:
- process() stores a vector and embedded_at for the chunk
- Duplicate delivery is harmless (overwrite)
- Missing chunks are skipped without error
- Provider and storage failures are isolated per chunk
- start()/stop() consume the bus in background tasks
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.app.events.schemas import ChunkCreatedEvent
from src.knowledge.embeddings import EmbeddingWorker
from src.knowledge.errors import ProviderError

WORKSPACE_ID = "ws-test"


async def _ingest_and_collect(ingestion_service, bus, content="alpha beta gamma"):
    item = await ingestion_service.ingest(WORKSPACE_ID, "document", "Doc", content)
    events = []
    while bus.qsize():
        for received in await bus.receive(timeout=0.01):
            events.append(received.event)
            await bus.ack(received)
    return item, events


class TestProcess:
    @pytest.mark.asyncio
    async def test_process_stores_vector(self, ingestion_service, bus, repository, embedding_worker, provider):
        _, events = await _ingest_and_collect(ingestion_service, bus)

        assert await embedding_worker.process(events[0]) is True

        chunk = await repository.get_chunk(events[0].chunk_id)
        assert chunk.vector is not None
        assert len(chunk.vector) == provider.dimension
        assert chunk.embedded_at is not None

    @pytest.mark.asyncio
    async def test_duplicate_delivery_overwrites(self, ingestion_service, bus, repository, embedding_worker):
        _, events = await _ingest_and_collect(ingestion_service, bus)

        assert await embedding_worker.process(events[0]) is True
        first = await repository.get_chunk(events[0].chunk_id)
        assert await embedding_worker.process(events[0]) is True
        second = await repository.get_chunk(events[0].chunk_id)

        assert second.vector == first.vector
        assert second.embedded_at >= first.embedded_at

    @pytest.mark.asyncio
    async def test_missing_chunk_is_skipped(self, embedding_worker, provider):
        event = ChunkCreatedEvent(knowledge_item_id="gone", chunk_id="gone", workspace_id=WORKSPACE_ID)
        assert await embedding_worker.process(event) is False
        assert provider.embed_calls == []

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_chunk_unembedded(self, ingestion_service, bus, repository):
        failing = AsyncMock()
        failing.embed = AsyncMock(side_effect=ProviderError("rate limited"))
        worker = EmbeddingWorker(repository, failing, bus)
        _, events = await _ingest_and_collect(ingestion_service, bus)

        assert await worker.process(events[0]) is False
        chunk = await repository.get_chunk(events[0].chunk_id)
        assert chunk.vector is None
        assert chunk.embedded_at is None

    @pytest.mark.asyncio
    async def test_storage_failure_is_isolated(self, ingestion_service, bus, repository, provider):
        _, events = await _ingest_and_collect(ingestion_service, bus)
        repository.set_chunk_vector = AsyncMock(side_effect=RuntimeError("db down"))
        worker = EmbeddingWorker(repository, provider, bus)

        assert await worker.process(events[0]) is False

    @pytest.mark.asyncio
    async def test_failed_chunk_does_not_block_others(self, ingestion_service, bus, repository, provider):
        _, events = await _ingest_and_collect(ingestion_service, bus, content="q" * 1000)
        assert len(events) == 3

        real_embed = provider.embed
        calls = {"n": 0}

        async def flaky_embed(texts):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ProviderError("transient")
            return await real_embed(texts)

        provider.embed = flaky_embed
        worker = EmbeddingWorker(repository, provider, bus)

        results = [await worker.process(e) for e in events]
        assert results == [False, True, True]


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_start_consumes_and_acknowledges(self, ingestion_service, bus, repository, provider):
        worker = EmbeddingWorker(repository, provider, bus, concurrency=2, poll_timeout=0.01)
        item = await ingestion_service.ingest(WORKSPACE_ID, "document", "Doc", "w" * 1400)

        worker.start()
        try:
            assert worker.running
            await asyncio.wait_for(bus.join(), timeout=2.0)
        finally:
            await worker.stop()

        assert not worker.running
        chunks = [c for c in repository.chunks.values() if c.knowledge_item_id == item.id]
        assert chunks
        assert all(c.vector is not None for c in chunks)

    @pytest.mark.asyncio
    async def test_loop_survives_provider_errors(self, ingestion_service, bus, repository):
        failing = AsyncMock()
        failing.embed = AsyncMock(side_effect=ProviderError("down"))
        worker = EmbeddingWorker(repository, failing, bus, concurrency=1, poll_timeout=0.01)
        await ingestion_service.ingest(WORKSPACE_ID, "document", "Doc", "v" * 1000)

        worker.start()
        try:
            await asyncio.wait_for(bus.join(), timeout=2.0)
            assert worker.running
        finally:
            await worker.stop()

        assert failing.embed.await_count == 3
