"""Hybrid search: BM25 and vector rankings fused with RRF, rolled up per item.

    load corpus || embed query
    -> rank_lexical() + rank_vector() -> reciprocal_rank_fusion()
    -> best chunk per knowledge item -> order, truncate

The corpus is read from the relational store on every call; there is no
in-memory index to go stale. Chunks still waiting for an embedding only take
part in lexical ranking.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from src.app.core.monitoring import search_duration_seconds
from src.app.services.llm import LLMProvider
from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.errors import ProviderError, SearchTimeoutError, ValidationError
from src.knowledge.repository import KnowledgeRepository
from src.knowledge.schemas import CorpusChunk, Evidence, RetrievalMethod
from src.knowledge.search.fusion import normalize_score, reciprocal_rank_fusion
from src.knowledge.search.lexical import rank_lexical
from src.knowledge.search.vector import rank_vector

logger = structlog.get_logger(__name__)

N_RANKERS = 2


class HybridSearchService:
    """Ranks a workspace's knowledge items for a free-text query.

    Args:
        repository: Source of the workspace corpus.
        provider: Embeds the query.
        config: Limits, ranking depth, RRF constant and timeout.
    """

    def __init__(
        self,
        repository: KnowledgeRepository,
        provider: LLMProvider,
        config: KnowledgeBaseConfig | None = None,
    ) -> None:
        self._repository = repository
        self._provider = provider
        self._config = config or KnowledgeBaseConfig()

    async def search(
        self,
        workspace_id: str,
        query: str,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list[Evidence]:
        """Return the best-matching items for a query.

        Args:
            workspace_id: Workspace to search.
            query: Free-text query.
            limit: Maximum results; defaults to ``default_limit`` and is
                capped at ``max_limit``.
            timeout: Deadline in seconds; defaults to
                ``search_timeout_seconds``.

        Returns:
            Evidence ordered by descending score, one per item. Empty if
            nothing matches.

        Raises:
            ValidationError: Blank workspace or query, or limit < 1.
            ProviderError: The query could not be embedded.
            SearchTimeoutError: Ranking exceeded the deadline.
        """
        if limit is None:
            limit = self._config.default_limit
        elif limit < 1:
            raise ValidationError("limit must be at least 1")
        return await self.rank(
            workspace_id, query, min(limit, self._config.max_limit), timeout=timeout
        )

    async def rank(
        self,
        workspace_id: str,
        query: str,
        limit: int,
        timeout: float | None = None,
    ) -> list[Evidence]:
        """Like ``search`` but with an uncapped, required limit.

        Evidence assembly ranks a multiple of the caller's limit so that
        permission filtering has candidates to spare.
        """
        if not workspace_id or not workspace_id.strip():
            raise ValidationError("workspace_id is required")
        if not query or not query.strip():
            raise ValidationError("query is required")
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        deadline = timeout if timeout is not None else self._config.search_timeout_seconds
        start = time.perf_counter()
        try:
            results = await asyncio.wait_for(
                self._rank(workspace_id, query, limit), timeout=deadline
            )
        except asyncio.TimeoutError:
            logger.warning(
                "hybrid_search_timeout",
                workspace_id=workspace_id,
                timeout_seconds=deadline,
            )
            raise SearchTimeoutError(f"search exceeded {deadline}s")
        finally:
            search_duration_seconds.observe(time.perf_counter() - start)

        return results

    # ── Internals ───────────────────────────────────────────────────────────

    async def _embed_query(self, query: str) -> list[float]:
        try:
            vectors = await self._provider.embed([query])
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"query embedding failed: {exc}") from exc
        if len(vectors) != 1:
            raise ProviderError(f"expected 1 query embedding, got {len(vectors)}")
        return vectors[0]

    async def _rank(self, workspace_id: str, query: str, limit: int) -> list[Evidence]:
        corpus, query_vector = await asyncio.gather(
            self._repository.load_corpus(workspace_id),
            self._embed_query(query),
        )
        if not corpus:
            logger.debug("hybrid_search_empty_corpus", workspace_id=workspace_id)
            return []

        cfg = self._config
        lexical = rank_lexical(query, corpus, cfg.rank_depth)
        semantic = rank_vector(query_vector, corpus, cfg.rank_depth, cfg.min_vector_similarity)
        fused = reciprocal_rank_fusion([lexical, semantic], k=cfg.rrf_k)

        results = self._roll_up(corpus, fused, set(lexical), set(semantic))[:limit]

        logger.info(
            "hybrid_search_completed",
            workspace_id=workspace_id,
            corpus_size=len(corpus),
            lexical_hits=len(lexical),
            vector_hits=len(semantic),
            result_count=len(results),
        )
        return results

    def _roll_up(
        self,
        corpus: list[CorpusChunk],
        fused: dict[str, float],
        lexical_ids: set[str],
        vector_ids: set[str],
    ) -> list[Evidence]:
        by_id = {c.chunk_id: c for c in corpus}

        # First embedded chunk of each item stands in for the item's vector
        representative: dict[str, list[float]] = {}
        for chunk in sorted(corpus, key=lambda c: c.position):
            if chunk.vector is not None:
                representative.setdefault(chunk.knowledge_item_id, chunk.vector)

        # Best chunk per item; earlier position wins ties
        best: dict[str, tuple[float, CorpusChunk]] = {}
        for chunk_id, score in fused.items():
            chunk = by_id[chunk_id]
            current = best.get(chunk.knowledge_item_id)
            if (
                current is None
                or score > current[0]
                or (score == current[0] and chunk.position < current[1].position)
            ):
                best[chunk.knowledge_item_id] = (score, chunk)

        evidence: list[Evidence] = []
        for item_id, (score, chunk) in best.items():
            in_lexical = chunk.chunk_id in lexical_ids
            in_vector = chunk.chunk_id in vector_ids
            if in_lexical and in_vector:
                method = RetrievalMethod.hybrid
            elif in_lexical:
                method = RetrievalMethod.bm25
            else:
                method = RetrievalMethod.vector

            evidence.append(
                Evidence(
                    knowledge_item_id=item_id,
                    title=chunk.title,
                    method=method,
                    score=normalize_score(score, N_RANKERS, self._config.rrf_k),
                    snippet=chunk.text,
                    metadata=chunk.item_metadata,
                    created_at=chunk.item_created_at,
                    updated_at=chunk.item_updated_at,
                    vector=chunk.vector if chunk.vector is not None else representative.get(item_id),
                )
            )

        evidence.sort(
            key=lambda e: (-e.score, -e.created_at.timestamp(), e.knowledge_item_id)
        )
        return evidence
