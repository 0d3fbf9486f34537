"""Knowledge store repository -- async persistence for items and chunks.

Provides KnowledgeRepository with the session_factory callable pattern.
Handles conversion between SQLAlchemy models and the Pydantic schemas in
src.knowledge.schemas; callers never see ORM objects.

Every item-level method takes workspace_id as first argument and filters on
it. Chunk-level methods used by background workers address chunks by id.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.knowledge.models import KnowledgeChunkModel, KnowledgeItemModel
from src.knowledge.schemas import (
    Chunk,
    CorpusChunk,
    KnowledgeItem,
    KnowledgeItemCreate,
    SourceType,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _model_to_item(model: KnowledgeItemModel) -> KnowledgeItem:
    """Convert KnowledgeItemModel to KnowledgeItem schema."""
    return KnowledgeItem(
        id=model.id,
        workspace_id=model.workspace_id,
        source_type=SourceType(model.source_type),
        title=model.title,
        raw_content=model.raw_content or "",
        entity_type=model.entity_type,
        entity_id=model.entity_id,
        metadata=model.metadata_json,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
    )


def _model_to_chunk(model: KnowledgeChunkModel) -> Chunk:
    """Convert KnowledgeChunkModel to Chunk schema."""
    return Chunk(
        id=model.id,
        knowledge_item_id=model.knowledge_item_id,
        workspace_id=model.workspace_id,
        position=model.position,
        text=model.text or "",
        vector=model.vector,
        embedded_at=_as_utc(model.embedded_at),
        created_at=_as_utc(model.created_at),
    )


def _new_chunk_models(
    item_id: str, workspace_id: str, chunk_texts: list[str], now: datetime
) -> list[KnowledgeChunkModel]:
    return [
        KnowledgeChunkModel(
            id=str(uuid.uuid4()),
            knowledge_item_id=item_id,
            workspace_id=workspace_id,
            position=position,
            text=text,
            vector=None,
            embedded_at=None,
            created_at=now,
        )
        for position, text in enumerate(chunk_texts)
    ]


# ── Repository ──────────────────────────────────────────────────────────────


class KnowledgeRepository:
    """Async persistence for knowledge items and their chunks.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Items ───────────────────────────────────────────────────────────────

    async def save_item(
        self, data: KnowledgeItemCreate, chunk_texts: list[str]
    ) -> tuple[KnowledgeItem, list[Chunk]]:
        """Create an item with its chunks, or re-ingest a linked one.

        When ``entity_type`` and ``entity_id`` are both set and an item for
        that record already exists in the workspace, the item is updated in
        place and its chunks are replaced. Item and chunks are written in a
        single transaction.

        If a concurrent writer creates the same linked item between lookup
        and insert, the unique constraint rejects the insert; the write is
        rolled back and retried once as an update.

        Args:
            data: Validated item fields.
            chunk_texts: Chunk texts in document order.

        Returns:
            Tuple of (stored item, stored chunks in position order).
        """
        try:
            return await self._write_item(data, chunk_texts)
        except IntegrityError:
            if not (data.entity_type and data.entity_id):
                raise
            logger.info(
                "knowledge_item_upsert_retried",
                workspace_id=data.workspace_id,
                entity_type=data.entity_type,
                entity_id=data.entity_id,
            )
            return await self._write_item(data, chunk_texts)

    async def _find_linked_item(
        self, session: AsyncSession, data: KnowledgeItemCreate
    ) -> KnowledgeItemModel | None:
        if not (data.entity_type and data.entity_id):
            return None
        stmt = select(KnowledgeItemModel).where(
            KnowledgeItemModel.workspace_id == data.workspace_id,
            KnowledgeItemModel.entity_type == data.entity_type,
            KnowledgeItemModel.entity_id == data.entity_id,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _write_item(
        self, data: KnowledgeItemCreate, chunk_texts: list[str]
    ) -> tuple[KnowledgeItem, list[Chunk]]:
        async for session in self._session_factory():
            now = datetime.now(timezone.utc)
            model = await self._find_linked_item(session, data)

            if model is None:
                model = KnowledgeItemModel(
                    id=str(uuid.uuid4()),
                    workspace_id=data.workspace_id,
                    source_type=data.source_type.value,
                    title=data.title,
                    raw_content=data.raw_content,
                    entity_type=data.entity_type,
                    entity_id=data.entity_id,
                    metadata_json=data.metadata,
                    created_at=now,
                    updated_at=now,
                )
                session.add(model)
                try:
                    await session.flush()
                except IntegrityError:
                    await session.rollback()
                    raise
            else:
                model.source_type = data.source_type.value
                model.title = data.title
                model.raw_content = data.raw_content
                model.metadata_json = data.metadata
                model.updated_at = now
                await session.execute(
                    delete(KnowledgeChunkModel).where(
                        KnowledgeChunkModel.knowledge_item_id == model.id
                    )
                )

            chunk_models = _new_chunk_models(model.id, data.workspace_id, chunk_texts, now)
            session.add_all(chunk_models)
            await session.commit()
            return _model_to_item(model), [_model_to_chunk(c) for c in chunk_models]

    async def get_item(self, workspace_id: str, item_id: str) -> KnowledgeItem | None:
        """Get an item by ID within a workspace.

        Returns:
            KnowledgeItem if found, None otherwise.
        """
        async for session in self._session_factory():
            stmt = select(KnowledgeItemModel).where(
                KnowledgeItemModel.workspace_id == workspace_id,
                KnowledgeItemModel.id == item_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                return None
            return _model_to_item(model)

    async def list_items(
        self,
        workspace_id: str,
        entity_type: str | None = None,
        offset: int = 0,
        limit: int = 200,
    ) -> list[KnowledgeItem]:
        """List a page of a workspace's items, oldest first.

        Args:
            workspace_id: Workspace to enumerate.
            entity_type: Only items linked to this CRM record type.
            offset: Rows to skip.
            limit: Page size.
        """
        async for session in self._session_factory():
            stmt = select(KnowledgeItemModel).where(
                KnowledgeItemModel.workspace_id == workspace_id,
            )
            if entity_type:
                stmt = stmt.where(KnowledgeItemModel.entity_type == entity_type)
            stmt = (
                stmt.order_by(KnowledgeItemModel.created_at, KnowledgeItemModel.id)
                .offset(offset)
                .limit(limit)
            )
            models = (await session.execute(stmt)).scalars().all()
            return [_model_to_item(m) for m in models]

    # ── Chunks ──────────────────────────────────────────────────────────────

    async def replace_chunks(
        self, workspace_id: str, item_id: str, chunk_texts: list[str]
    ) -> list[Chunk]:
        """Delete an item's chunks and write new ones in one transaction.

        Returns:
            The new chunks, or an empty list if the item no longer exists.
        """
        async for session in self._session_factory():
            stmt = select(KnowledgeItemModel.id).where(
                KnowledgeItemModel.workspace_id == workspace_id,
                KnowledgeItemModel.id == item_id,
            )
            if (await session.execute(stmt)).scalar_one_or_none() is None:
                logger.warning("rechunk_item_missing", workspace_id=workspace_id, item_id=item_id)
                return []

            await session.execute(
                delete(KnowledgeChunkModel).where(KnowledgeChunkModel.knowledge_item_id == item_id)
            )
            chunk_models = _new_chunk_models(
                item_id, workspace_id, chunk_texts, datetime.now(timezone.utc)
            )
            session.add_all(chunk_models)
            await session.commit()
            return [_model_to_chunk(c) for c in chunk_models]

    async def get_chunk(self, chunk_id: str) -> Chunk | None:
        async for session in self._session_factory():
            model = await session.get(KnowledgeChunkModel, chunk_id)
            if model is None:
                return None
            return _model_to_chunk(model)

    async def set_chunk_vector(
        self, chunk_id: str, vector: list[float], embedded_at: datetime
    ) -> bool:
        """Store a chunk's embedding, overwriting any previous one.

        Returns:
            False if the chunk no longer exists.
        """
        async for session in self._session_factory():
            stmt = (
                update(KnowledgeChunkModel)
                .where(KnowledgeChunkModel.id == chunk_id)
                .values(vector=vector, embedded_at=embedded_at)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def load_corpus(self, workspace_id: str) -> list[CorpusChunk]:
        """Load every chunk of a workspace joined with its item's display fields."""
        async for session in self._session_factory():
            stmt = (
                select(
                    KnowledgeChunkModel.id,
                    KnowledgeChunkModel.knowledge_item_id,
                    KnowledgeChunkModel.position,
                    KnowledgeChunkModel.text,
                    KnowledgeChunkModel.vector,
                    KnowledgeItemModel.title,
                    KnowledgeItemModel.created_at,
                    KnowledgeItemModel.metadata_json,
                    KnowledgeItemModel.updated_at,
                )
                .join(KnowledgeItemModel, KnowledgeChunkModel.knowledge_item_id == KnowledgeItemModel.id)
                .where(KnowledgeChunkModel.workspace_id == workspace_id)
                .order_by(KnowledgeChunkModel.knowledge_item_id, KnowledgeChunkModel.position)
            )
            rows = (await session.execute(stmt)).all()
            return [
                CorpusChunk(
                    chunk_id=row[0],
                    knowledge_item_id=row[1],
                    position=row[2],
                    text=row[3] or "",
                    vector=row[4],
                    title=row[5],
                    item_created_at=_as_utc(row[6]),
                    item_metadata=row[7],
                    item_updated_at=_as_utc(row[8]),
                )
                for row in rows
            ]

    async def list_unembedded_chunks(self, limit: int = 500) -> list[Chunk]:
        """Oldest chunks across all workspaces that have no vector yet."""
        async for session in self._session_factory():
            stmt = (
                select(KnowledgeChunkModel)
                .where(KnowledgeChunkModel.embedded_at.is_(None))
                .order_by(KnowledgeChunkModel.created_at)
                .limit(limit)
            )
            models = (await session.execute(stmt)).scalars().all()
            return [_model_to_chunk(m) for m in models]
