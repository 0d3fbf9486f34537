"""FastAPI application factory.

Creates the app with workspace middleware, logging middleware, metrics
middleware, lifespan wiring of the knowledge services and background workers,
and the v1 API router.
"""

from __future__ import annotations

import os
import socket
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router
from src.app.config import EventBackend, Settings, get_settings
from src.app.core.database import close_db, get_session, init_db
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response
from src.app.core.redis import close_redis, get_redis_pool
from src.app.core.workspace import WorkspaceMiddleware
from src.app.events.bus import ChunkEventBus, InProcessEventBus, RedisStreamEventBus
from src.app.services.llm import get_llm_provider
from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingWorker
from src.knowledge.evidence.service import EvidencePackService
from src.knowledge.ingestion.chunker import KnowledgeChunker
from src.knowledge.ingestion.pipeline import IngestionService
from src.knowledge.reindex.scheduler import ReindexScheduler
from src.knowledge.reindex.service import ReindexService
from src.knowledge.repository import KnowledgeRepository
from src.knowledge.search.service import HybridSearchService


def _create_event_bus(settings: Settings, kb_config: KnowledgeBaseConfig) -> ChunkEventBus:
    if settings.EVENT_BACKEND == EventBackend.redis:
        consumer = f"{socket.gethostname()}-{os.getpid()}"
        return RedisStreamEventBus(get_redis_pool(), consumer=consumer)
    return InProcessEventBus(maxsize=kb_config.event_queue_size)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and knowledge services on startup, stop workers on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    kb_config = KnowledgeBaseConfig()
    configure_structlog()
    await init_db()

    bus = _create_event_bus(settings, kb_config)
    provider = get_llm_provider()
    repository = KnowledgeRepository(session_factory=get_session)

    ingestion = IngestionService(repository, KnowledgeChunker.from_config(kb_config), bus)
    search = HybridSearchService(repository, provider, kb_config)
    reindex = ReindexService(
        repository, ingestion, bus, publish_timeout=kb_config.publish_timeout_seconds
    )

    app.state.ingestion_service = ingestion
    app.state.search_service = search
    app.state.evidence_service = EvidencePackService(search, config=kb_config)
    app.state.reindex_service = reindex
    app.state.event_bus = bus

    worker = EmbeddingWorker(
        repository, provider, bus, concurrency=kb_config.embedding_concurrency
    )
    worker.start()
    app.state.embedding_worker = worker

    scheduler = ReindexScheduler(
        reindex,
        interval_minutes=kb_config.pending_sweep_minutes,
        batch_size=kb_config.pending_sweep_batch,
    )
    scheduler.start()
    app.state.reindex_scheduler = scheduler

    log.info(
        "knowledge_services_initialized",
        event_backend=settings.EVENT_BACKEND.value,
        embedding_concurrency=kb_config.embedding_concurrency,
        chunk_size=kb_config.chunk_size,
    )

    yield

    scheduler.stop()
    await worker.stop()
    await close_redis()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Knowledge Retrieval API",
        version="0.1.0",
        description="Ingestion, hybrid search and evidence packs for reasoning clients",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Workspace middleware (inner -- resolves workspace context from header)
    app.add_middleware(WorkspaceMiddleware)

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
