"""Lexical ranking: BM25 over chunk text plus item title.

Each chunk's document is its item's title tokens followed by its own text
tokens, so a query matching only the title still surfaces the item. Only
chunks that share at least one term with the query are candidates; BM25
scores order the candidates. BM25+ keeps every IDF positive, so a term that
appears in most chunks still rewards the chunks that repeat it.
"""

from __future__ import annotations

import re

from rank_bm25 import BM25Plus

from src.knowledge.schemas import CorpusChunk

_TOKEN_RE = re.compile(r"\w+")

BM25_K1 = 1.5
BM25_B = 0.75
BM25_DELTA = 1.0


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens."""
    return _TOKEN_RE.findall(text.lower())


def rank_lexical(query: str, corpus: list[CorpusChunk], depth: int) -> list[str]:
    """Rank chunks lexically against a query.

    Args:
        query: Free-text query.
        corpus: Workspace chunks to rank.
        depth: Maximum number of chunk ids to return.

    Returns:
        Chunk ids, best first. Chunks with no query term are absent.
    """
    query_terms = tokenize(query)
    if not query_terms or not corpus:
        return []

    documents = [tokenize(c.title) + tokenize(c.text) for c in corpus]
    wanted = set(query_terms)
    candidates = [i for i, doc in enumerate(documents) if wanted.intersection(doc)]
    if not candidates:
        return []

    bm25 = BM25Plus(documents, k1=BM25_K1, b=BM25_B, delta=BM25_DELTA)
    scores = bm25.get_scores(query_terms)

    candidates.sort(
        key=lambda i: (
            -float(scores[i]),
            -corpus[i].item_created_at.timestamp(),
            corpus[i].position,
            corpus[i].chunk_id,
        )
    )
    return [corpus[i].chunk_id for i in candidates[:depth]]
