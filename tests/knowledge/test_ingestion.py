"""Tests for IngestionService.

Tests cover:
- Validation of workspace, title and source type, and field lengths
- Item and chunk persistence with contiguous positions
- One chunk-created event per chunk, carrying the workspace channel
- Publication failures never fail the ingest call
- Re-ingestion of a linked CRM record replaces chunks in place
- By-id lookup and NotFoundError
"""

from __future__ import annotations

import pytest

from src.app.events.bus import InProcessEventBus
from src.knowledge.errors import NotFoundError, ValidationError
from src.knowledge.ingestion.chunker import KnowledgeChunker
from src.knowledge.ingestion.pipeline import IngestionService
from src.knowledge.schemas import SourceType

WORKSPACE_ID = "ws-test"


def _chunks_for(repository, item_id):
    return sorted(
        (c for c in repository.chunks.values() if c.knowledge_item_id == item_id),
        key=lambda c: c.position,
    )


# ── Validation ──────────────────────────────────────────────────────────────


class TestValidation:
    @pytest.mark.asyncio
    async def test_missing_workspace_rejected(self, ingestion_service):
        with pytest.raises(ValidationError, match="workspace_id"):
            await ingestion_service.ingest("", "document", "Title", "body")

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, ingestion_service):
        with pytest.raises(ValidationError, match="title"):
            await ingestion_service.ingest(WORKSPACE_ID, "document", "   ", "body")

    @pytest.mark.asyncio
    async def test_missing_source_type_rejected(self, ingestion_service):
        with pytest.raises(ValidationError, match="source_type"):
            await ingestion_service.ingest(WORKSPACE_ID, "", "Title", "body")

    @pytest.mark.asyncio
    async def test_unknown_source_type_rejected(self, ingestion_service, repository):
        with pytest.raises(ValidationError, match="unknown source_type"):
            await ingestion_service.ingest(WORKSPACE_ID, "fax", "Title", "body")
        assert repository.items == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field, kwargs",
        [
            ("workspace_id", {"workspace_id": "w" * 101}),
            ("title", {"title": "T" * 501}),
            ("entity_type", {"entity_type": "e" * 51, "entity_id": "1"}),
            ("entity_id", {"entity_type": "deal", "entity_id": "9" * 101}),
        ],
    )
    async def test_oversized_fields_rejected(self, ingestion_service, repository, field, kwargs):
        args = {"workspace_id": WORKSPACE_ID, "title": "Title", **kwargs}
        with pytest.raises(ValidationError, match=field):
            await ingestion_service.ingest(
                args.pop("workspace_id"), "document", args.pop("title"), "body", **args
            )
        assert repository.items == {}

    @pytest.mark.asyncio
    async def test_fields_at_column_width_accepted(self, ingestion_service):
        item = await ingestion_service.ingest(
            "w" * 100, "document", "T" * 500, "body", entity_type="e" * 50, entity_id="9" * 100
        )
        assert len(item.title) == 500

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source_type", [s.value for s in SourceType])
    async def test_every_recognized_source_type_accepted(self, ingestion_service, source_type):
        item = await ingestion_service.ingest(WORKSPACE_ID, source_type, "Title", "body")
        assert item.source_type == SourceType(source_type)


# ── Persistence and events ──────────────────────────────────────────────────


class TestIngest:
    @pytest.mark.asyncio
    async def test_ingest_persists_item_and_chunks(self, ingestion_service, repository):
        content = "Pricing tiers and discounts. " * 60  # 1740 chars
        item = await ingestion_service.ingest(
            WORKSPACE_ID,
            SourceType.document,
            "Pricing Strategy",
            content,
            metadata={"owner_id": "u-1"},
        )

        stored = await repository.get_item(WORKSPACE_ID, item.id)
        assert stored is not None
        assert stored.title == "Pricing Strategy"
        assert stored.metadata == {"owner_id": "u-1"}

        chunks = _chunks_for(repository, item.id)
        assert len(chunks) == KnowledgeChunker(500, 50).expected_count(len(content))
        assert [c.position for c in chunks] == list(range(len(chunks)))
        assert all(c.vector is None and c.embedded_at is None for c in chunks)
        assert all(c.workspace_id == WORKSPACE_ID for c in chunks)

    @pytest.mark.asyncio
    async def test_empty_content_produces_single_chunk(self, ingestion_service, repository):
        item = await ingestion_service.ingest(WORKSPACE_ID, "note", "Empty note", "")
        chunks = _chunks_for(repository, item.id)
        assert len(chunks) == 1
        assert chunks[0].text == ""

    @pytest.mark.asyncio
    async def test_one_event_per_chunk(self, ingestion_service, repository, bus):
        item = await ingestion_service.ingest(WORKSPACE_ID, "email", "Thread", "x" * 1000)

        received = await bus.receive(timeout=0.01)
        events = [r.event for r in received]
        while bus.qsize():
            events.extend(r.event for r in await bus.receive(timeout=0.01))

        chunk_ids = {c.id for c in _chunks_for(repository, item.id)}
        assert {e.chunk_id for e in events} == chunk_ids
        assert len(events) == 3
        assert all(e.knowledge_item_id == item.id for e in events)
        assert all(e.channel == f"ws:{WORKSPACE_ID}:chunks" for e in events)

    @pytest.mark.asyncio
    async def test_full_queue_does_not_fail_ingest(self, repository):
        bus = InProcessEventBus(maxsize=1)
        service = IngestionService(repository, KnowledgeChunker(500, 50), bus)

        item = await service.ingest(WORKSPACE_ID, "document", "Long doc", "y" * 2000)

        assert item.id in repository.items
        assert len(_chunks_for(repository, item.id)) == 5
        assert bus.qsize() == 1

    @pytest.mark.asyncio
    async def test_unlinked_items_are_never_merged(self, ingestion_service, repository):
        first = await ingestion_service.ingest(WORKSPACE_ID, "note", "Same", "body")
        second = await ingestion_service.ingest(WORKSPACE_ID, "note", "Same", "body")
        assert first.id != second.id
        assert len(repository.items) == 2


# ── Re-ingestion ────────────────────────────────────────────────────────────


class TestReingestion:
    @pytest.mark.asyncio
    async def test_linked_record_updates_item_in_place(self, ingestion_service, repository):
        first = await ingestion_service.ingest(
            WORKSPACE_ID, "case", "Case 42", "z" * 1000, entity_type="case", entity_id="42"
        )
        old_chunk_ids = {c.id for c in _chunks_for(repository, first.id)}

        second = await ingestion_service.ingest(
            WORKSPACE_ID, "case", "Case 42 (updated)", "short", entity_type="case", entity_id="42"
        )

        assert second.id == first.id
        assert second.title == "Case 42 (updated)"
        assert second.created_at == first.created_at
        assert len(repository.items) == 1

        chunks = _chunks_for(repository, first.id)
        assert len(chunks) == 1
        assert chunks[0].text == "short"
        assert old_chunk_ids.isdisjoint(c.id for c in chunks)

    @pytest.mark.asyncio
    async def test_same_record_in_other_workspace_is_separate(self, ingestion_service, repository):
        a = await ingestion_service.ingest("ws-a", "case", "Case", "a", entity_type="case", entity_id="1")
        b = await ingestion_service.ingest("ws-b", "case", "Case", "b", entity_type="case", entity_id="1")
        assert a.id != b.id


# ── Lookup ──────────────────────────────────────────────────────────────────


class TestGetItem:
    @pytest.mark.asyncio
    async def test_get_item_returns_stored_item(self, ingestion_service):
        item = await ingestion_service.ingest(WORKSPACE_ID, "ticket", "Ticket", "body")
        fetched = await ingestion_service.get_item(WORKSPACE_ID, item.id)
        assert fetched.id == item.id

    @pytest.mark.asyncio
    async def test_get_item_unknown_id_raises(self, ingestion_service):
        with pytest.raises(NotFoundError):
            await ingestion_service.get_item(WORKSPACE_ID, "missing")

    @pytest.mark.asyncio
    async def test_get_item_is_workspace_scoped(self, ingestion_service):
        item = await ingestion_service.ingest("ws-a", "ticket", "Ticket", "body")
        with pytest.raises(NotFoundError):
            await ingestion_service.get_item("ws-b", item.id)
