"""create documents table

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 09:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("collection", sa.String(length=64), nullable=False),
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("body", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("collection", "id", name="uq_documents_collection_id"),
    )
    op.create_index(
        "ix_documents_collection_created_at",
        "documents",
        ["collection", "created_at"],
        unique=False,
    )
    op.create_index("ix_documents_body", "documents", ["body"], unique=False, postgresql_using="gin")


def downgrade() -> None:
    op.drop_index("ix_documents_body", table_name="documents")
    op.drop_index("ix_documents_collection_created_at", table_name="documents")
    op.drop_table("documents")
