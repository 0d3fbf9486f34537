"""Confidence rating and advisory warnings for evidence packs.

Both are pure functions of the pack's counts and top score so they can be
tested without running a search.
"""

from __future__ import annotations

from typing import NamedTuple

from src.knowledge.schemas import Confidence

WARNING_NO_RESULTS = "no results found"
WARNING_LOW_CONFIDENCE = "low confidence: evidence is sparse or weakly matched"
WARNING_NO_EVIDENCE = "no evidence available for this query"


class ConfidenceThresholds(NamedTuple):
    high: float = 0.8
    low: float = 0.5


DEFAULT_THRESHOLDS = ConfidenceThresholds()


def assess_confidence(
    total_candidates: int,
    filtered_count: int,
    top_score: float,
    thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
) -> Confidence:
    """Rate how far a consumer should rely on a pack.

    Args:
        total_candidates: Items ranked before permission filtering.
        filtered_count: Items actually returned.
        top_score: Normalized score of the first returned item (0 if none).
        thresholds: High/low score cut-offs.

    Returns:
        ``none`` for an empty pack; ``high`` for 3+ sources led by a score
        above the high threshold; ``low`` for a single source or a top score
        below the low threshold; ``medium`` otherwise.
    """
    if filtered_count <= 0:
        return Confidence.none
    if filtered_count >= 3 and top_score > thresholds.high:
        return Confidence.high
    if filtered_count == 1 or top_score < thresholds.low:
        return Confidence.low
    return Confidence.medium


def build_warnings(
    total_candidates: int,
    removed_count: int,
    redacted_count: int,
    confidence: Confidence,
    deduplicated_count: int = 0,
    stale_count: int = 0,
) -> list[str]:
    """Advisory, human-readable notes about how a pack was assembled.

    Args:
        total_candidates: Items ranked before permission filtering.
        removed_count: Items the permission filter took out.
        redacted_count: Returned sources whose content was redacted.
        confidence: Rating from ``assess_confidence``.
        deduplicated_count: Candidates skipped as near-duplicates.
        stale_count: Returned sources older than the freshness window.
    """
    warnings: list[str] = []
    if total_candidates == 0:
        warnings.append(WARNING_NO_RESULTS)
    if removed_count > 0:
        warnings.append(f"{removed_count} result(s) removed by permission filter")
    if deduplicated_count > 0:
        warnings.append(f"{deduplicated_count} items deduplicated")
    if stale_count > 0:
        warnings.append(f"{stale_count} items stale")
    if redacted_count > 0:
        warnings.append(f"PII redacted in {redacted_count} source(s)")
    if confidence == Confidence.low:
        warnings.append(WARNING_LOW_CONFIDENCE)
    elif confidence == Confidence.none:
        warnings.append(WARNING_NO_EVIDENCE)
    return warnings
