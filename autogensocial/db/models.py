from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, MetaData, String, Table, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

documents = Table(
    "documents",
    metadata,
    Column("collection", String(length=64), nullable=False),
    Column("id", String(length=128), nullable=False),
    Column("body", JSONB(astext_type=Text()), nullable=False, server_default=text("'{}'::jsonb")),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    ),
    UniqueConstraint("collection", "id", name="uq_documents_collection_id"),
)

Index("ix_documents_collection_created_at", documents.c.collection, documents.c.created_at)
Index("ix_documents_body", documents.c.body, postgresql_using="gin")

__all__ = ["metadata", "documents"]
