"""Reindexing and the scheduled pending-embedding sweep."""

from src.knowledge.reindex.scheduler import ReindexScheduler
from src.knowledge.reindex.service import (
    REINDEX_SECONDS_PER_ITEM,
    ReindexService,
    estimated_time,
)

__all__ = [
    "REINDEX_SECONDS_PER_ITEM",
    "ReindexScheduler",
    "ReindexService",
    "estimated_time",
]
