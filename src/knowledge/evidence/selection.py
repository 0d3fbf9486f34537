"""Source selection for evidence packs: near-duplicate removal and staleness.

Candidates arrive best first. A candidate whose representative vector is at
least ``threshold`` cosine-similar to an already selected source is skipped,
so a pack does not spend its slots on copies of the same document. Sources
without a vector (not yet embedded) are never treated as duplicates.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import numpy as np

from src.knowledge.schemas import Evidence


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(a @ b) / norm


def select_sources(
    candidates: list[Evidence], limit: int, threshold: float
) -> tuple[list[Evidence], int]:
    """Take up to ``limit`` candidates in order, skipping near-duplicates.

    Returns:
        The selected sources and how many candidates were skipped as
        near-duplicates before the limit was reached.
    """
    selected: list[Evidence] = []
    selected_vectors: list[np.ndarray] = []
    deduplicated = 0

    for candidate in candidates:
        if len(selected) >= limit:
            break
        vector = None
        if candidate.vector is not None:
            vector = np.asarray(candidate.vector, dtype=np.float64)
            if any(
                existing.shape == vector.shape and _cosine(vector, existing) >= threshold
                for existing in selected_vectors
            ):
                deduplicated += 1
                continue
        selected.append(candidate)
        if vector is not None:
            selected_vectors.append(vector)

    return selected, deduplicated


def count_stale(
    sources: list[Evidence], max_age: timedelta, now: datetime | None = None
) -> int:
    """Count sources last updated more than ``max_age`` ago."""
    now = now or datetime.now(timezone.utc)
    return sum(1 for s in sources if now - (s.updated_at or s.created_at) > max_age)
