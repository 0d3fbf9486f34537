"""Prometheus metrics for HTTP traffic and the knowledge retrieval pipeline.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Knowledge pipeline counters/histograms (ingest, embedding, events, search, evidence)
- track_provider_call(): Context manager for LLM provider call metrics
- get_metrics_response(): Prometheus exposition for the /metrics route
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Provider Metrics ─────────────────────────────────────────────────────────

llm_requests_total = Counter(
    "llm_requests_total",
    "Total LLM provider requests",
    ["model", "operation", "status"],
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM provider request duration in seconds",
    ["model", "operation"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# ── Knowledge Pipeline Metrics ───────────────────────────────────────────────

chunks_ingested_total = Counter(
    "knowledge_chunks_ingested_total",
    "Chunks written by ingestion or reindex",
)

embeddings_total = Counter(
    "knowledge_embeddings_total",
    "Chunk embedding attempts by outcome",
    ["status"],
)

chunk_events_dropped_total = Counter(
    "knowledge_chunk_events_dropped_total",
    "Chunk-created events that could not be published",
)

search_duration_seconds = Histogram(
    "knowledge_search_duration_seconds",
    "Hybrid search duration in seconds",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

evidence_packs_total = Counter(
    "knowledge_evidence_packs_total",
    "Evidence packs built by confidence level",
    ["confidence"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Provider Metrics Helper ─────────────────────────────────────────────────


@asynccontextmanager
async def track_provider_call(
    model: str,
    operation: str,
) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks LLM provider call metrics.

    Usage:
        async with track_provider_call("embedding", "embed"):
            vectors = await router.aembedding(...)

    Records duration and a success/error request count.
    """
    tracker: dict[str, Any] = {}
    start_time = time.perf_counter()
    status = "success"

    try:
        yield tracker
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time

        llm_requests_total.labels(
            model=model,
            operation=operation,
            status=status,
        ).inc()

        llm_request_duration_seconds.labels(
            model=model,
            operation=operation,
        ).observe(duration)


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
