"""Evidence pack assembly.

    HybridSearchService.rank(candidate_multiplier x limit)
    -> PermissionFilter.filter() -> select_sources() (near-duplicates out,
       truncate to limit) -> Redactor.redact() -> count_stale()
    -> assess_confidence() + build_warnings()

Filtering and redaction fail closed: if either raises, no pack is returned.
The audit record is written only once the pack is complete.
"""

from __future__ import annotations

from datetime import timedelta

import structlog

from src.app.core.monitoring import evidence_packs_total
from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.errors import PermissionFilterError, RedactionError, ValidationError
from src.knowledge.evidence.confidence import (
    ConfidenceThresholds,
    assess_confidence,
    build_warnings,
)
from src.knowledge.evidence.policy import (
    OwnershipPermissionFilter,
    PermissionFilter,
    PIIRedactor,
    Redactor,
)
from src.knowledge.evidence.selection import count_stale, select_sources
from src.knowledge.schemas import EvidencePack, Requester
from src.knowledge.search.service import HybridSearchService

logger = structlog.get_logger(__name__)


class EvidencePackService:
    """Builds trust-annotated evidence packs for reasoning clients.

    Args:
        search: Hybrid ranking over the workspace.
        permission_filter: Drops items the requester may not read.
        redactor: Masks PII in returned sources.
        config: Limits, candidate multiplier, confidence thresholds, dedup
            threshold and freshness window.
    """

    def __init__(
        self,
        search: HybridSearchService,
        permission_filter: PermissionFilter | None = None,
        redactor: Redactor | None = None,
        config: KnowledgeBaseConfig | None = None,
    ) -> None:
        self._search = search
        self._permission_filter = permission_filter or OwnershipPermissionFilter()
        self._redactor = redactor or PIIRedactor()
        self._config = config or KnowledgeBaseConfig()
        self._thresholds = ConfidenceThresholds(
            high=self._config.high_confidence_threshold,
            low=self._config.low_confidence_threshold,
        )

    async def build(
        self,
        workspace_id: str,
        query: str,
        requester: Requester,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> EvidencePack:
        """Assemble an evidence pack for a query.

        Args:
            workspace_id: Workspace to search.
            query: Free-text query.
            requester: Identity used for permission filtering.
            limit: Maximum sources; defaults to ``default_limit`` and is
                capped at ``max_limit``.
            timeout: Search deadline in seconds.

        Returns:
            EvidencePack with at most ``limit`` redacted sources.

        Raises:
            ValidationError: Blank workspace or query, or limit < 1.
            ProviderError: The query could not be embedded.
            SearchTimeoutError: Ranking exceeded the deadline.
            PermissionFilterError: The permission filter failed.
            RedactionError: The redactor failed.
        """
        cfg = self._config
        if limit is None:
            limit = cfg.default_limit
        elif limit < 1:
            raise ValidationError("limit must be at least 1")
        limit = min(limit, cfg.max_limit)

        candidates = await self._search.rank(
            workspace_id, query, limit * cfg.candidate_multiplier, timeout=timeout
        )
        total_candidates = len(candidates)

        try:
            permitted = self._permission_filter.filter(requester, candidates)
        except Exception as exc:
            logger.error(
                "permission_filter_failed",
                workspace_id=workspace_id,
                user_id=requester.user_id,
                error=str(exc),
            )
            raise PermissionFilterError(f"permission filter failed: {exc}") from exc
        removed_count = total_candidates - len(permitted)

        selected, deduplicated_count = select_sources(permitted, limit, cfg.dedup_threshold)
        try:
            sources = self._redactor.redact(selected)
        except Exception as exc:
            logger.error("redaction_failed", workspace_id=workspace_id, error=str(exc))
            raise RedactionError(f"redaction failed: {exc}") from exc

        filtered_count = len(sources)
        top_score = sources[0].score if sources else 0.0
        redacted_count = sum(1 for s in sources if s.pii_redacted)
        stale_count = count_stale(sources, timedelta(days=cfg.freshness_days))
        confidence = assess_confidence(total_candidates, filtered_count, top_score, self._thresholds)

        pack = EvidencePack(
            sources=sources,
            confidence=confidence,
            total_candidates=total_candidates,
            filtered_count=filtered_count,
            warnings=build_warnings(
                total_candidates,
                removed_count,
                redacted_count,
                confidence,
                deduplicated_count=deduplicated_count,
                stale_count=stale_count,
            ),
        )

        evidence_packs_total.labels(confidence=confidence.value).inc()
        logger.info(
            "evidence_pack_built",
            workspace_id=workspace_id,
            user_id=requester.user_id,
            query_length=len(query),
            total_candidates=total_candidates,
            removed_count=removed_count,
            filtered_count=filtered_count,
            redacted_count=redacted_count,
            deduplicated_count=deduplicated_count,
            stale_count=stale_count,
            confidence=confidence.value,
            source_ids=[s.knowledge_item_id for s in sources],
        )
        return pack
