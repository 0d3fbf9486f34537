"""REST API endpoints for the knowledge retrieval core.

Ingest, search, evidence-pack and reindex operations, all scoped to the
workspace from the X-Workspace-ID header. Services are taken from app.state
(set up in the application lifespan) and domain errors are mapped onto HTTP
status codes.
"""

from __future__ import annotations

from typing import Any, NoReturn

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.app.api.deps import get_requester, get_state_service, get_workspace
from src.app.core.workspace import WorkspaceContext
from src.knowledge.errors import (
    KnowledgeError,
    NotFoundError,
    PermissionFilterError,
    ProviderError,
    RedactionError,
    SearchTimeoutError,
    ValidationError,
)
from src.knowledge.reindex.service import estimated_time
from src.knowledge.schemas import Evidence, KnowledgeItem, Requester

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/knowledge", tags=["knowledge"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class IngestRequest(BaseModel):
    """Request body for ingesting content. Emptiness is checked by the service."""

    source_type: str = ""
    title: str = ""
    raw_content: str = ""
    entity_type: str | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] | None = None


class QueryRequest(BaseModel):
    """Request body for search and evidence."""

    query: str = ""
    limit: int | None = None


class ReindexRequest(BaseModel):
    entity_type: str | None = None


# ── Response Schemas ─────────────────────────────────────────────────────────


class KnowledgeItemResponse(BaseModel):
    """Stored item summary, datetimes as ISO strings."""

    id: str
    workspace_id: str
    source_type: str
    title: str
    entity_type: str | None = None
    entity_id: str | None = None
    created_at: str


class SearchResult(BaseModel):
    id: str
    title: str
    snippet: str | None = None
    score: float
    method: str


class SearchResponse(BaseModel):
    results: list[SearchResult] = Field(default_factory=list)
    query: str


class EvidenceSourceResponse(BaseModel):
    knowledge_item_id: str
    method: str
    score: float
    snippet: str | None = None
    pii_redacted: bool = False
    metadata: dict[str, Any] | None = None
    created_at: str
    updated_at: str | None = None


class EvidencePackResponse(BaseModel):
    sources: list[EvidenceSourceResponse] = Field(default_factory=list)
    confidence: str
    total_candidates: int
    filtered_count: int
    warnings: list[str] = Field(default_factory=list)


class EvidenceResponse(BaseModel):
    data: EvidencePackResponse


class ReindexResponse(BaseModel):
    items_queued: int
    estimated_time: str


# ── Error Mapping ────────────────────────────────────────────────────────────

_STATUS_BY_ERROR: list[tuple[type[KnowledgeError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (SearchTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (PermissionFilterError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (RedactionError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def _raise_http(exc: KnowledgeError) -> NoReturn:
    """Translate a domain error into an HTTPException."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if code >= 500:
        logger.error("knowledge_request_failed", error_type=type(exc).__name__, error=str(exc))
    raise HTTPException(status_code=code, detail=str(exc)) from exc


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _item_to_response(item: KnowledgeItem) -> KnowledgeItemResponse:
    return KnowledgeItemResponse(
        id=item.id,
        workspace_id=item.workspace_id,
        source_type=item.source_type.value,
        title=item.title,
        entity_type=item.entity_type,
        entity_id=item.entity_id,
        created_at=item.created_at.isoformat(),
    )


def _evidence_to_source(evidence: Evidence) -> EvidenceSourceResponse:
    return EvidenceSourceResponse(
        knowledge_item_id=evidence.knowledge_item_id,
        method=evidence.method.value,
        score=evidence.score,
        snippet=evidence.snippet,
        pii_redacted=evidence.pii_redacted,
        metadata=evidence.metadata,
        created_at=evidence.created_at.isoformat(),
        updated_at=evidence.updated_at.isoformat() if evidence.updated_at else None,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/ingest", response_model=KnowledgeItemResponse, status_code=201)
async def ingest(
    body: IngestRequest,
    request: Request,
    workspace: WorkspaceContext = Depends(get_workspace),
) -> KnowledgeItemResponse:
    """Store content as a knowledge item; embeddings follow asynchronously."""
    service = get_state_service(request, "ingestion_service")
    try:
        item = await service.ingest(
            workspace.workspace_id,
            body.source_type,
            body.title,
            body.raw_content,
            entity_type=body.entity_type,
            entity_id=body.entity_id,
            metadata=body.metadata,
        )
    except KnowledgeError as exc:
        _raise_http(exc)
    return _item_to_response(item)


@router.get("/items/{item_id}", response_model=KnowledgeItemResponse)
async def get_item(
    item_id: str,
    request: Request,
    workspace: WorkspaceContext = Depends(get_workspace),
) -> KnowledgeItemResponse:
    """Fetch one knowledge item."""
    service = get_state_service(request, "ingestion_service")
    try:
        item = await service.get_item(workspace.workspace_id, item_id)
    except KnowledgeError as exc:
        _raise_http(exc)
    return _item_to_response(item)


@router.post("/search", response_model=SearchResponse)
async def search(
    body: QueryRequest,
    request: Request,
    workspace: WorkspaceContext = Depends(get_workspace),
) -> SearchResponse:
    """Hybrid search over the workspace."""
    service = get_state_service(request, "search_service")
    try:
        results = await service.search(workspace.workspace_id, body.query, limit=body.limit)
    except KnowledgeError as exc:
        _raise_http(exc)
    return SearchResponse(
        query=body.query,
        results=[
            SearchResult(
                id=e.knowledge_item_id,
                title=e.title,
                snippet=e.snippet,
                score=e.score,
                method=e.method.value,
            )
            for e in results
        ],
    )


@router.post("/evidence", response_model=EvidenceResponse)
async def evidence(
    body: QueryRequest,
    request: Request,
    workspace: WorkspaceContext = Depends(get_workspace),
    requester: Requester = Depends(get_requester),
) -> EvidenceResponse:
    """Build a permission-filtered, redacted evidence pack."""
    service = get_state_service(request, "evidence_service")
    try:
        pack = await service.build(
            workspace.workspace_id, body.query, requester, limit=body.limit
        )
    except KnowledgeError as exc:
        _raise_http(exc)
    return EvidenceResponse(
        data=EvidencePackResponse(
            sources=[_evidence_to_source(s) for s in pack.sources],
            confidence=pack.confidence.value,
            total_candidates=pack.total_candidates,
            filtered_count=pack.filtered_count,
            warnings=pack.warnings,
        )
    )


@router.post("/reindex", response_model=ReindexResponse)
async def reindex(
    request: Request,
    body: ReindexRequest | None = None,
    workspace: WorkspaceContext = Depends(get_workspace),
) -> ReindexResponse:
    """Re-chunk and re-queue the workspace's items for embedding."""
    service = get_state_service(request, "reindex_service")
    entity_type = body.entity_type if body else None
    try:
        queued = await service.queue_workspace_reindex(workspace.workspace_id, entity_type=entity_type)
    except KnowledgeError as exc:
        _raise_http(exc)
    return ReindexResponse(items_queued=queued, estimated_time=estimated_time(queued))
