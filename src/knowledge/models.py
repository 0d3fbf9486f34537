"""Knowledge store persistence models.

Two SQLAlchemy models:
- KnowledgeItemModel: One ingested source (document, email, call notes, ...)
- KnowledgeChunkModel: An ordered text window of an item plus its embedding

Every row carries workspace_id; repositories filter on it in every query.
Chunks are owned by their item and deleted with it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.app.core.database import Base
from src.knowledge.schemas import (
    ENTITY_ID_MAX_LENGTH,
    ENTITY_TYPE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    WORKSPACE_ID_MAX_LENGTH,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeItemModel(Base):
    """One ingested piece of organizational content.

    Optionally linked to a CRM record via (entity_type, entity_id); at most
    one item exists per linked record in a workspace, so re-ingesting the same
    record updates the item in place.
    """

    __tablename__ = "knowledge_items"
    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "entity_type",
            "entity_id",
            name="uq_knowledge_item_entity",
        ),
        Index("ix_knowledge_items_workspace_created", "workspace_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(String(WORKSPACE_ID_MAX_LENGTH), nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    raw_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    entity_type: Mapped[str | None] = mapped_column(String(ENTITY_TYPE_MAX_LENGTH), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(ENTITY_ID_MAX_LENGTH), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON(none_as_null=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    chunks: Mapped[list[KnowledgeChunkModel]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="KnowledgeChunkModel.position",
    )


class KnowledgeChunkModel(Base):
    """A text window of a knowledge item, the unit of ranking.

    ``vector`` stays NULL until the embedding worker has processed the chunk;
    unembedded chunks still take part in lexical ranking.
    """

    __tablename__ = "knowledge_chunks"
    __table_args__ = (
        UniqueConstraint("knowledge_item_id", "position", name="uq_knowledge_chunk_position"),
        Index("ix_knowledge_chunks_workspace", "workspace_id"),
        Index("ix_knowledge_chunks_embedded_at", "embedded_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    knowledge_item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("knowledge_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    workspace_id: Mapped[str] = mapped_column(String(WORKSPACE_ID_MAX_LENGTH), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    vector: Mapped[list[float] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    embedded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    item: Mapped[KnowledgeItemModel] = relationship(back_populates="chunks")
