"""Tests for hybrid search: lexical, vector, fusion and the service.

Covers:
- tokenize / rank_lexical (title terms, candidate filter, empty corpus)
- rank_vector (unembedded and mismatched chunks absent, similarity floor)
- reciprocal_rank_fusion and score normalization
- HybridSearchService: validation, limits, lexical-only fallback before
  embedding, hybrid after embedding, roll-up per item, ordering, errors
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.knowledge.errors import ProviderError, SearchTimeoutError, ValidationError
from src.knowledge.schemas import CorpusChunk, RetrievalMethod
from src.knowledge.search.fusion import max_fused_score, normalize_score, reciprocal_rank_fusion
from src.knowledge.search.lexical import rank_lexical, tokenize
from src.knowledge.search.service import HybridSearchService
from src.knowledge.search.vector import rank_vector

WORKSPACE_ID = "ws-test"
NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _corpus_chunk(chunk_id, text, title="Doc", vector=None, item_id=None, position=0, age_days=0):
    return CorpusChunk(
        chunk_id=chunk_id,
        knowledge_item_id=item_id or f"item-{chunk_id}",
        position=position,
        text=text,
        vector=vector,
        title=title,
        item_created_at=NOW - timedelta(days=age_days),
        item_metadata=None,
    )


# ── Lexical ─────────────────────────────────────────────────────────────────


class TestLexical:
    def test_tokenize_lowercases_words(self):
        assert tokenize("Pricing-Strategy, v2!") == ["pricing", "strategy", "v2"]

    def test_only_chunks_sharing_a_term_are_ranked(self):
        corpus = [
            _corpus_chunk("a", "volume discounts for pricing"),
            _corpus_chunk("b", "onboarding checklist"),
        ]
        assert rank_lexical("pricing", corpus, depth=50) == ["a"]

    def test_title_terms_match(self):
        corpus = [_corpus_chunk("a", "enterprise discounts", title="Pricing Strategy")]
        assert rank_lexical("pricing", corpus, depth=50) == ["a"]

    def test_more_matching_terms_rank_higher(self):
        corpus = [
            _corpus_chunk("a", "renewal terms"),
            _corpus_chunk("b", "renewal pricing terms for enterprise"),
            _corpus_chunk("c", "hiring plan"),
            _corpus_chunk("d", "quarterly review"),
        ]
        assert rank_lexical("renewal pricing", corpus, depth=50)[0] == "b"

    def test_repeated_term_ranks_higher_when_term_is_in_every_chunk(self):
        corpus = [
            _corpus_chunk("weak", "pricing other words here"),
            _corpus_chunk("strong", "pricing pricing pricing discount"),
        ]
        assert rank_lexical("pricing", corpus, depth=50) == ["strong", "weak"]

    def test_common_term_still_orders_by_frequency_in_larger_corpus(self):
        corpus = [_corpus_chunk(f"once-{i}", f"pricing note {i}") for i in range(5)]
        corpus.append(_corpus_chunk("thrice", "pricing pricing pricing note"))
        assert rank_lexical("pricing", corpus, depth=50)[0] == "thrice"

    def test_empty_inputs(self):
        assert rank_lexical("pricing", [], depth=50) == []
        assert rank_lexical("!!!", [_corpus_chunk("a", "pricing")], depth=50) == []

    def test_depth_truncates(self):
        corpus = [_corpus_chunk(str(i), "pricing") for i in range(10)]
        assert len(rank_lexical("pricing", corpus, depth=3)) == 3

    def test_ties_prefer_recent_items(self):
        corpus = [
            _corpus_chunk("old", "pricing", age_days=5),
            _corpus_chunk("new", "pricing", age_days=1),
        ]
        assert rank_lexical("pricing", corpus, depth=50) == ["new", "old"]


# ── Vector ──────────────────────────────────────────────────────────────────


class TestVector:
    def test_orders_by_cosine_similarity(self):
        corpus = [
            _corpus_chunk("far", "x", vector=[0.2, 1.0]),
            _corpus_chunk("near", "x", vector=[1.0, 0.1]),
        ]
        assert rank_vector([1.0, 0.0], corpus, depth=50) == ["near", "far"]

    def test_unembedded_and_mismatched_chunks_are_absent(self):
        corpus = [
            _corpus_chunk("none", "x", vector=None),
            _corpus_chunk("wrong-dim", "x", vector=[1.0, 0.0, 0.0]),
            _corpus_chunk("ok", "x", vector=[1.0, 0.0]),
        ]
        assert rank_vector([1.0, 0.0], corpus, depth=50) == ["ok"]

    def test_similarity_at_or_below_floor_is_absent(self):
        corpus = [
            _corpus_chunk("orthogonal", "x", vector=[0.0, 1.0]),
            _corpus_chunk("opposite", "x", vector=[-1.0, 0.0]),
            _corpus_chunk("zero", "x", vector=[0.0, 0.0]),
        ]
        assert rank_vector([1.0, 0.0], corpus, depth=50) == []

    def test_zero_query_vector_ranks_nothing(self):
        corpus = [_corpus_chunk("a", "x", vector=[1.0, 0.0])]
        assert rank_vector([0.0, 0.0], corpus, depth=50) == []


# ── Fusion ──────────────────────────────────────────────────────────────────


class TestFusion:
    def test_rrf_sums_reciprocal_ranks(self):
        fused = reciprocal_rank_fusion([["a", "b"], ["b", "c"]], k=60)
        assert fused["a"] == pytest.approx(1 / 61)
        assert fused["b"] == pytest.approx(1 / 62 + 1 / 61)
        assert fused["c"] == pytest.approx(1 / 62)

    def test_first_in_both_normalizes_to_one(self):
        fused = reciprocal_rank_fusion([["a"], ["a"]], k=60)
        assert normalize_score(fused["a"], 2, 60) == pytest.approx(1.0)

    def test_first_in_one_normalizes_to_half(self):
        fused = reciprocal_rank_fusion([["a"], []], k=60)
        assert normalize_score(fused["a"], 2, 60) == pytest.approx(0.5)

    def test_max_fused_score(self):
        assert max_fused_score(2, 60) == pytest.approx(2 / 61)


# ── Service ─────────────────────────────────────────────────────────────────


class StaticVectorProvider:
    """Returns a fixed vector for every query."""

    def __init__(self, vector):
        self.vector = vector

    async def embed(self, texts):
        return [list(self.vector) for _ in texts]

    async def complete(self, messages):
        return ""


class TestHybridSearchService:
    @pytest.mark.asyncio
    async def test_empty_workspace_returns_empty_list(self, search_service):
        assert await search_service.search(WORKSPACE_ID, "pricing") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("workspace_id, query", [("", "pricing"), (WORKSPACE_ID, "  ")])
    async def test_blank_inputs_rejected(self, search_service, workspace_id, query):
        with pytest.raises(ValidationError):
            await search_service.search(workspace_id, query)

    @pytest.mark.asyncio
    async def test_limit_below_one_rejected(self, search_service):
        with pytest.raises(ValidationError):
            await search_service.search(WORKSPACE_ID, "pricing", limit=0)

    @pytest.mark.asyncio
    async def test_pricing_found_before_embedding(self, ingestion_service, search_service):
        pricing = await ingestion_service.ingest(
            WORKSPACE_ID, "document", "Pricing Strategy", "Enterprise customers get volume discounts."
        )
        await ingestion_service.ingest(WORKSPACE_ID, "document", "Onboarding", "Steps for new hires.")

        results = await search_service.search(WORKSPACE_ID, "pricing")

        assert [r.knowledge_item_id for r in results] == [pricing.id]
        assert results[0].method == RetrievalMethod.bm25
        assert results[0].score == pytest.approx(0.5)
        assert results[0].title == "Pricing Strategy"

    @pytest.mark.asyncio
    async def test_pricing_found_after_embedding(self, ingestion_service, search_service, drain_events):
        pricing = await ingestion_service.ingest(
            WORKSPACE_ID, "document", "Pricing Strategy", "Pricing for enterprise uses volume discounts."
        )
        await ingestion_service.ingest(WORKSPACE_ID, "document", "Onboarding", "Steps for new hires.")
        await drain_events()

        results = await search_service.search(WORKSPACE_ID, "pricing")

        assert results[0].knowledge_item_id == pricing.id
        assert results[0].method == RetrievalMethod.hybrid
        assert results[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_results_are_unique_and_non_increasing(self, ingestion_service, search_service, drain_events):
        long_body = ("Renewal pricing and contract terms. " * 40).strip()
        contract = await ingestion_service.ingest(WORKSPACE_ID, "document", "Contract", long_body)
        call = await ingestion_service.ingest(
            WORKSPACE_ID, "email", "Renewal call", "Customer asked about renewal."
        )
        note = await ingestion_service.ingest(
            WORKSPACE_ID, "note", "Pricing note", "List pricing changed in May."
        )
        await ingestion_service.ingest(WORKSPACE_ID, "ticket", "Bug", "Login page is slow.")
        await drain_events()

        results = await search_service.search(WORKSPACE_ID, "renewal pricing")

        ids = [r.knowledge_item_id for r in results]
        assert len(ids) == len(set(ids))
        assert {contract.id, call.id, note.id} <= set(ids)
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)

    @pytest.mark.asyncio
    async def test_snippet_is_best_chunk_of_item(self, ingestion_service, search_service):
        body = "a" * 900 + " zebra migration notes"
        item = await ingestion_service.ingest(WORKSPACE_ID, "document", "Field notes", body)

        results = await search_service.search(WORKSPACE_ID, "zebra")

        assert results[0].knowledge_item_id == item.id
        assert "zebra" in results[0].snippet

    @pytest.mark.asyncio
    async def test_default_and_maximum_limits(self, ingestion_service, search_service):
        for n in range(60):
            await ingestion_service.ingest(WORKSPACE_ID, "note", f"Note {n}", "alpha release notes")

        assert len(await search_service.search(WORKSPACE_ID, "alpha")) == 10
        assert len(await search_service.search(WORKSPACE_ID, "alpha", limit=5)) == 5
        assert len(await search_service.search(WORKSPACE_ID, "alpha", limit=100)) == 50

    @pytest.mark.asyncio
    async def test_equal_scores_prefer_recent_item(self, ingestion_service, search_service, repository):
        older = await ingestion_service.ingest(WORKSPACE_ID, "note", "Same", "identical text")
        newer = await ingestion_service.ingest(WORKSPACE_ID, "note", "Same", "identical text")
        repository.items[older.id] = older.model_copy(update={"created_at": NOW - timedelta(days=2)})
        repository.items[newer.id] = newer.model_copy(update={"created_at": NOW})

        results = await search_service.search(WORKSPACE_ID, "identical")

        assert [r.knowledge_item_id for r in results] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_vector_only_match(self, ingestion_service, repository, kb_config):
        item = await ingestion_service.ingest(WORKSPACE_ID, "document", "Doc", "unrelated words")
        chunk = next(c for c in repository.chunks.values() if c.knowledge_item_id == item.id)
        await repository.set_chunk_vector(chunk.id, [1.0, 0.0], NOW)
        service = HybridSearchService(repository, StaticVectorProvider([1.0, 0.0]), kb_config)

        results = await service.search(WORKSPACE_ID, "semantic query")

        assert len(results) == 1
        assert results[0].method == RetrievalMethod.vector
        assert results[0].score == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_workspaces_are_isolated(self, ingestion_service, search_service):
        await ingestion_service.ingest("ws-other", "document", "Pricing", "pricing secrets")
        assert await search_service.search(WORKSPACE_ID, "pricing") == []

    @pytest.mark.asyncio
    async def test_provider_failure_surfaces(self, ingestion_service, repository, kb_config):
        class FailingProvider:
            async def embed(self, texts):
                raise ProviderError("provider down")

        await ingestion_service.ingest(WORKSPACE_ID, "document", "Pricing", "pricing")
        service = HybridSearchService(repository, FailingProvider(), kb_config)

        with pytest.raises(ProviderError):
            await service.search(WORKSPACE_ID, "pricing")

    @pytest.mark.asyncio
    async def test_unexpected_provider_exception_is_wrapped(self, repository, kb_config):
        class BrokenProvider:
            async def embed(self, texts):
                raise ConnectionError("socket closed")

        service = HybridSearchService(repository, BrokenProvider(), kb_config)
        with pytest.raises(ProviderError, match="socket closed"):
            await service.search(WORKSPACE_ID, "pricing")

    @pytest.mark.asyncio
    async def test_timeout_raises_search_timeout(self, repository, kb_config):
        class SlowProvider:
            async def embed(self, texts):
                await asyncio.sleep(5)
                return [[1.0]]

        service = HybridSearchService(repository, SlowProvider(), kb_config)
        with pytest.raises(SearchTimeoutError):
            await service.search(WORKSPACE_ID, "pricing", timeout=0.05)
