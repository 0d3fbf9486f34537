"""Add knowledge item and chunk tables.

Revision ID: 001_knowledge_tables
Revises:
Create Date: 2026-10-18

Creates the two tables of the knowledge store:
- knowledge_items: Ingested sources, optionally linked to a CRM record
- knowledge_chunks: Ordered text windows per item with their embeddings

Chunks reference their item with ON DELETE CASCADE. Every table carries
workspace_id and is indexed on it for workspace-scoped scans.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_knowledge_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── knowledge_items table ────────────────────────────────────────────

    op.create_table(
        "knowledge_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.String(100), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("raw_content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(100), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "workspace_id", "entity_type", "entity_id", name="uq_knowledge_item_entity"
        ),
    )
    op.create_index(
        "ix_knowledge_items_workspace_created",
        "knowledge_items",
        ["workspace_id", "created_at"],
    )

    # ── knowledge_chunks table ───────────────────────────────────────────

    op.create_table(
        "knowledge_chunks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "knowledge_item_id",
            sa.String(36),
            sa.ForeignKey("knowledge_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("workspace_id", sa.String(100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("vector", sa.JSON(), nullable=True),
        sa.Column("embedded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("knowledge_item_id", "position", name="uq_knowledge_chunk_position"),
    )
    op.create_index("ix_knowledge_chunks_workspace", "knowledge_chunks", ["workspace_id"])
    op.create_index("ix_knowledge_chunks_embedded_at", "knowledge_chunks", ["embedded_at"])


def downgrade() -> None:
    op.drop_index("ix_knowledge_chunks_embedded_at", table_name="knowledge_chunks")
    op.drop_index("ix_knowledge_chunks_workspace", table_name="knowledge_chunks")
    op.drop_table("knowledge_chunks")
    op.drop_index("ix_knowledge_items_workspace_created", table_name="knowledge_items")
    op.drop_table("knowledge_items")
