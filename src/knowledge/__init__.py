"""Knowledge retrieval core: ingestion, embedding, hybrid search, evidence packs.

Subpackages:
    ingestion: Chunk and persist incoming content.
    search: BM25 + vector ranking fused with RRF.
    evidence: Permission filtering, PII redaction, confidence.
    reindex: Re-chunking and the pending-embedding sweep.

Only leaf modules are re-exported here so that provider and event modules can
import the error types without pulling in the services.
"""

from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.errors import (
    KnowledgeError,
    NotFoundError,
    PermissionFilterError,
    ProviderError,
    RedactionError,
    SearchTimeoutError,
    ValidationError,
)
from src.knowledge.schemas import (
    Chunk,
    Confidence,
    Evidence,
    EvidencePack,
    KnowledgeItem,
    Requester,
    RetrievalMethod,
    SourceType,
)

__all__ = [
    "Chunk",
    "Confidence",
    "Evidence",
    "EvidencePack",
    "KnowledgeBaseConfig",
    "KnowledgeError",
    "KnowledgeItem",
    "NotFoundError",
    "PermissionFilterError",
    "ProviderError",
    "RedactionError",
    "Requester",
    "RetrievalMethod",
    "SearchTimeoutError",
    "SourceType",
    "ValidationError",
]
