"""Reciprocal rank fusion.

Each ranker contributes ``1 / (k + rank)`` for every chunk it ranked, with
rank starting at 1; contributions are summed per chunk. A chunk absent from a
ranking gets nothing from it.
"""

from __future__ import annotations

from collections.abc import Sequence


def reciprocal_rank_fusion(rankings: Sequence[Sequence[str]], k: int = 60) -> dict[str, float]:
    """Fuse ranked id lists into one score per id."""
    fused: dict[str, float] = {}
    for ranking in rankings:
        for rank, chunk_id in enumerate(ranking, start=1):
            fused[chunk_id] = fused.get(chunk_id, 0.0) + 1.0 / (k + rank)
    return fused


def max_fused_score(n_rankers: int, k: int = 60) -> float:
    """Score of an id ranked first by every ranker."""
    return n_rankers / (k + 1)


def normalize_score(score: float, n_rankers: int, k: int = 60) -> float:
    """Scale a fused score to [0, 1] against ``max_fused_score``."""
    return min(1.0, max(0.0, score / max_fused_score(n_rankers, k)))
