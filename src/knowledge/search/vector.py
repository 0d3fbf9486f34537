"""Vector ranking: cosine similarity between the query and chunk embeddings."""

from __future__ import annotations

import numpy as np

from src.knowledge.schemas import CorpusChunk


def rank_vector(
    query_vector: list[float],
    corpus: list[CorpusChunk],
    depth: int,
    min_similarity: float = 0.0,
) -> list[str]:
    """Rank embedded chunks by cosine similarity to the query vector.

    Chunks without a vector, with a vector of a different dimension, or with
    similarity at or below ``min_similarity`` are left out entirely rather
    than ranked last.

    Returns:
        Chunk ids, most similar first, at most ``depth`` of them.
    """
    query = np.asarray(query_vector, dtype=np.float64)
    query_norm = np.linalg.norm(query)
    if query.ndim != 1 or query.size == 0 or query_norm == 0.0:
        return []

    embedded = [c for c in corpus if c.vector is not None and len(c.vector) == query.size]
    if not embedded:
        return []

    matrix = np.asarray([c.vector for c in embedded], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = (matrix @ query) / (norms * query_norm)

    scored = [
        (float(sim), chunk)
        for sim, chunk, norm in zip(similarities, embedded, norms)
        if norm > 0.0 and float(sim) > min_similarity
    ]
    scored.sort(
        key=lambda pair: (
            -pair[0],
            -pair[1].item_created_at.timestamp(),
            pair[1].position,
            pair[1].chunk_id,
        )
    )
    return [chunk.chunk_id for _, chunk in scored[:depth]]
