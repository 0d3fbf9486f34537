"""Hybrid lexical + semantic search over a workspace's chunks."""

from src.knowledge.search.fusion import normalize_score, reciprocal_rank_fusion
from src.knowledge.search.lexical import rank_lexical, tokenize
from src.knowledge.search.service import HybridSearchService
from src.knowledge.search.vector import rank_vector

__all__ = [
    "HybridSearchService",
    "normalize_score",
    "rank_lexical",
    "rank_vector",
    "reciprocal_rank_fusion",
    "tokenize",
]
