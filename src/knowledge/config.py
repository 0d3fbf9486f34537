"""Knowledge Base configuration via Pydantic BaseSettings.

All settings load from environment variables with the KNOWLEDGE_ prefix.
For example, KNOWLEDGE_CHUNK_SIZE sets chunk_size.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KnowledgeBaseConfig(BaseSettings):
    """Tuning for chunking, ranking, evidence assembly and background work.

    Attributes:
        chunk_size: Character window per chunk.
        chunk_overlap_pct: Overlap between consecutive windows (0.0-1.0 of chunk_size).
        default_limit: Results returned when the caller gives no limit.
        max_limit: Hard cap on any caller-supplied limit.
        rank_depth: Depth of each individual ranker's list before fusion.
        rrf_k: Reciprocal rank fusion smoothing constant.
        min_vector_similarity: Chunks at or below this cosine similarity are
            left out of the vector ranking.
        candidate_multiplier: Evidence packs rank this many times the
            requested limit so permission filtering has headroom.
        high_confidence_threshold: Top score above which a pack of 3+ sources
            is rated high.
        low_confidence_threshold: Top score below which a pack is rated low.
        dedup_threshold: Cosine similarity at or above which a source is a
            near-duplicate of a higher-ranked one and is left out.
        freshness_days: Sources last updated longer ago than this are
            flagged as stale.
        search_timeout_seconds: Deadline for one hybrid search.
        event_queue_size: Capacity of the in-process chunk event queue. Sized
            above pending_sweep_batch and the reindex page so one bulk pass fits.
        publish_timeout_seconds: How long reindex and the pending sweep wait
            for queue space before counting an event as dropped.
        embedding_concurrency: Embedding worker tasks per process.
        pending_sweep_minutes: Interval of the unembedded-chunk sweep.
        pending_sweep_batch: Chunks republished per sweep.
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Chunking
    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap_pct: float = Field(default=0.10, ge=0.0, lt=1.0)

    # Search
    default_limit: int = 10
    max_limit: int = 50
    rank_depth: int = 50
    rrf_k: int = 60
    min_vector_similarity: float = 0.0
    search_timeout_seconds: float = 10.0

    # Evidence
    candidate_multiplier: int = 3
    high_confidence_threshold: float = 0.8
    low_confidence_threshold: float = 0.5
    dedup_threshold: float = Field(default=0.95, gt=0.0, le=1.0)
    freshness_days: int = Field(default=30, gt=0)

    # Background work
    event_queue_size: int = Field(default=10000, gt=0)
    publish_timeout_seconds: float = Field(default=5.0, gt=0)
    embedding_concurrency: int = 2
    pending_sweep_minutes: int = 15
    pending_sweep_batch: int = 500

    @property
    def chunk_overlap(self) -> int:
        """Overlap in characters between consecutive chunks."""
        return round(self.chunk_size * self.chunk_overlap_pct)
