# =============================================================================
# Database Models: SQLAlchemy ORM
# =============================================================================
#
# Schema for the knowledge store. Documents come from an external ingestion
# pipeline; each one owns an ordered set of text chunks, optionally embedded.
#
# SCHEMA OVERVIEW:
#
# ┌─────────────────────┐       ┌─────────────────────────────────────────┐
# │ knowledge_documents │       │ knowledge_chunks                        │
# ├─────────────────────┤       ├─────────────────────────────────────────┤
# │ id (PK, uuid str)   │──1:N─▶│ id (PK, uuid str)                       │
# │ external_id (uniq)  │       │ document_id (FK → knowledge_documents)  │
# │ title               │       │ content (text)                          │
# │ source_url          │       │ order (int)                             │
# │ version             │       │ token_count (int, nullable)             │
# │ metadata_ (jsonb)   │       │ embedding (vector(N), nullable)         │
# │ created_at          │       │ metadata_ (jsonb)                       │
# │ updated_at          │       │ created_at / updated_at                 │
# └─────────────────────┘       └─────────────────────────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. `external_id` is the ingestion pipeline's identifier. Upserts key on it,
#    so re-ingesting a document updates the row instead of duplicating it.
#
# 2. `embedding` is nullable. Chunks ingested while the embedding provider
#    is unavailable are still searchable lexically.
#
# 3. `order` is the chunk's position inside its document. Search uses it as
#    a tie-break so equal scores keep reading order.
#
# 4. JSONB `metadata_`: the trailing underscore avoids SQLAlchemy's
#    `.metadata`; the database column is still called "metadata".
# =============================================================================

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    literal_column,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from hybrid_chat.config import settings


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class KnowledgeDocumentRow(Base):
    """A source document in the knowledge base."""

    __tablename__ = "knowledge_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    external_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    title: Mapped[str] = mapped_column(String(500), nullable=False)

    # Canonical link for citations; chunks of URL-less documents are cited
    # without a link
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[str | None] = mapped_column(String(100), nullable=True)

    metadata_: Mapped[dict] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # ---------------------------------------------------------------------------
    # Relationship: Document → Chunks (one-to-many)
    # ---------------------------------------------------------------------------
    # cascade="all, delete-orphan": deleting a document deletes its chunks.
    # lazy="raise": chunks are always fetched with explicit queries, never
    # through implicit IO on attribute access in async code.
    # ---------------------------------------------------------------------------
    chunks: Mapped[list["KnowledgeChunkRow"]] = relationship(
        "KnowledgeChunkRow",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<KnowledgeDocumentRow(id={self.id}, external_id='{self.external_id}')>"


class KnowledgeChunkRow(Base):
    """One searchable slice of a document, optionally embedded."""

    __tablename__ = "knowledge_chunks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("knowledge_documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)

    order: Mapped[int] = mapped_column("order", Integer, nullable=False)

    token_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # ---------------------------------------------------------------------------
    # Vector Embedding
    # ---------------------------------------------------------------------------
    # Stored as a PostgreSQL `vector(N)` column. Search computes
    # `1 - (embedding <=> query)` (cosine similarity) for chunks that have one.
    # ---------------------------------------------------------------------------
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )

    metadata_: Mapped[dict] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    document: Mapped["KnowledgeDocumentRow"] = relationship(
        "KnowledgeDocumentRow", back_populates="chunks"
    )

    def __repr__(self) -> str:
        return (
            f"<KnowledgeChunkRow(id={self.id}, doc_id={self.document_id}, "
            f"order={self.order})>"
        )


# =============================================================================
# Database Indexes
# =============================================================================
#
# HNSW on embeddings with `vector_cosine_ops`, matching the `<=>` operator
# used at query time.
#
# GIN on `to_tsvector('simple', content)`, matching the expression the
# lexical ranking uses, so full-text matching does not scan every chunk.
# =============================================================================

chunk_embedding_idx = Index(
    "idx_knowledge_chunk_embedding_hnsw",
    KnowledgeChunkRow.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

chunk_content_fts_idx = Index(
    "idx_knowledge_chunk_content_fts",
    func.to_tsvector(literal_column("'simple'"), KnowledgeChunkRow.content),
    postgresql_using="gin",
)

chunk_document_order_idx = Index(
    "idx_knowledge_chunk_document_order",
    KnowledgeChunkRow.document_id,
    KnowledgeChunkRow.order,
)
