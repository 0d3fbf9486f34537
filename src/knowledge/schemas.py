"""Pydantic models for the knowledge retrieval core.

These are the contract between ingestion, search, evidence assembly and the
HTTP boundary. Repositories convert ORM rows into these models; nothing above
the repository layer touches SQLAlchemy objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# Column widths of knowledge_items; ingestion rejects longer values up front
WORKSPACE_ID_MAX_LENGTH = 100
TITLE_MAX_LENGTH = 500
ENTITY_TYPE_MAX_LENGTH = 50
ENTITY_ID_MAX_LENGTH = 100


class SourceType(str, Enum):
    """Kind of content a knowledge item was ingested from."""

    document = "document"
    email = "email"
    call = "call"
    note = "note"
    case = "case"
    ticket = "ticket"
    kb_article = "kb_article"
    api = "api"
    other = "other"


class RetrievalMethod(str, Enum):
    """Which ranker(s) produced a piece of evidence."""

    bm25 = "bm25"
    vector = "vector"
    hybrid = "hybrid"


class Confidence(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"
    none = "none"


# ── Persistent entities ─────────────────────────────────────────────────────


class KnowledgeItemCreate(BaseModel):
    """Validated input for creating or re-ingesting a knowledge item."""

    workspace_id: str
    source_type: SourceType
    title: str
    raw_content: str = ""
    entity_type: str | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] | None = None


class KnowledgeItem(BaseModel):
    """A stored knowledge item.

    Attributes:
        id: Item identifier (UUID4 string).
        workspace_id: Owning workspace.
        source_type: Origin of the content.
        title: Display title, also indexed for lexical search.
        raw_content: Full text the chunks were cut from.
        entity_type: Optional CRM record type this item describes.
        entity_id: Optional CRM record id this item describes.
        metadata: Opaque caller metadata (may carry ``owner_id``).
        created_at: First ingestion time (UTC).
        updated_at: Last re-ingestion time (UTC).
    """

    id: str
    workspace_id: str
    source_type: SourceType
    title: str
    raw_content: str = ""
    entity_type: str | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class Chunk(BaseModel):
    """An ordered text window of a knowledge item.

    ``vector`` is None until embedded; such chunks are excluded from vector
    ranking but still ranked lexically.
    """

    id: str
    knowledge_item_id: str
    workspace_id: str
    position: int
    text: str
    vector: list[float] | None = None
    embedded_at: datetime | None = None
    created_at: datetime


@dataclass(frozen=True)
class CorpusChunk:
    """A chunk joined with the item fields search needs for ranking and display."""

    chunk_id: str
    knowledge_item_id: str
    position: int
    text: str
    vector: list[float] | None
    title: str
    item_created_at: datetime
    item_metadata: dict[str, Any] | None
    item_updated_at: datetime | None = None


# ── Transient retrieval results ─────────────────────────────────────────────


class Evidence(BaseModel):
    """One ranked knowledge item, as seen by a reasoning client.

    Attributes:
        knowledge_item_id: Item this evidence cites (unique within a pack).
        title: Item title.
        method: Ranker(s) that surfaced the winning chunk.
        score: Fused score normalized to [0, 1]; higher is better.
        snippet: Text of the item's best-ranked chunk.
        pii_redacted: True if redaction altered the snippet or metadata.
        metadata: Item metadata.
        created_at: Item creation time.
        updated_at: Last re-ingestion time of the item.
        vector: Representative embedding of the item, used to spot
            near-duplicates. Never serialized.
    """

    knowledge_item_id: str
    title: str = ""
    method: RetrievalMethod
    score: float = Field(ge=0.0, le=1.0)
    snippet: str | None = None
    pii_redacted: bool = False
    metadata: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime | None = None
    vector: list[float] | None = Field(default=None, exclude=True, repr=False)


class EvidencePack(BaseModel):
    """Trust-annotated bundle of evidence for one query."""

    sources: list[Evidence] = Field(default_factory=list)
    confidence: Confidence = Confidence.none
    total_candidates: int = 0
    filtered_count: int = 0
    warnings: list[str] = Field(default_factory=list)


class Requester(BaseModel):
    """Identity on whose behalf evidence is assembled.

    Attributes:
        user_id: Requesting user.
        permissions: ``scope:action`` grants, e.g. ``records:read_all``.
    """

    model_config = {"frozen": True}

    user_id: str
    permissions: frozenset[str] = frozenset()

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions
