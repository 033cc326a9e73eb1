# =============================================================================
# Knowledge Store: Pluggable Hybrid Search Backend
# =============================================================================
#
# Stores documents and their ordered chunks, and answers hybrid
# (vector + lexical) ranked searches over them.
#
# DESIGN DECISION: Protocol (structural typing) over ABC (nominal typing).
# Any class with the right coroutine methods can serve as a store, which
# keeps test doubles free of inheritance.
#
# DESIGN DECISION: Search results are plain dataclasses, never ORM rows.
# Callers outlive the session that loaded the data, and the in-memory
# backend has no session at all.
#
# ARCHITECTURE:
#   KnowledgeStore (Protocol)
#   ├── PgKnowledgeStore       - PostgreSQL + pgvector, ranking in SQL
#   └── InMemoryKnowledgeStore - process-local, ranking via services/ranking.py
#
# Both backends share the ranking contract documented in ranking.py:
# score = vector term + lexical term, ordered by score desc, chunk order
# asc, chunk updated_at desc, truncated to `limit`.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import bindparam, case, delete, func, literal_column, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from hybrid_chat.config import settings
from hybrid_chat.db.models import KnowledgeChunkRow, KnowledgeDocumentRow
from hybrid_chat.services import ranking

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentInput:
    """A document as delivered by the ingestion pipeline."""

    external_id: str
    title: str
    source_url: str | None = None
    version: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ChunkInput:
    """One chunk of a document, optionally with a precomputed embedding."""

    content: str
    order: int
    token_count: int | None = None
    embedding: list[float] | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class KnowledgeDocument:
    id: str
    external_id: str
    title: str
    source_url: str | None
    version: str | None
    metadata: dict
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class KnowledgeChunk:
    id: str
    document_id: str
    content: str
    order: int
    token_count: int | None
    embedding: list[float] | None
    metadata: dict
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class SearchHit:
    """
    A ranked search result.

    `score` is the sum of the vector and lexical terms: non-negative,
    higher is better, not normalised across queries.
    """

    chunk: KnowledgeChunk
    document: KnowledgeDocument
    score: float


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class KnowledgeStore(Protocol):
    """Interface shared by the knowledge store backends."""

    async def upsert_document(self, document: DocumentInput) -> KnowledgeDocument:
        """Insert or update a document, keyed by `external_id`."""
        ...

    async def replace_chunks(
        self,
        document_id: str,
        chunks: list[ChunkInput],
    ) -> list[KnowledgeChunk]:
        """
        Atomically replace every chunk of a document.

        Raises:
            LookupError: If the document does not exist.
        """
        ...

    async def search(
        self,
        query: str,
        limit: int,
        embedding: list[float] | None = None,
    ) -> list[SearchHit]:
        """
        Hybrid ranked search.

        Args:
            query: Free text. Empty or whitespace-only returns [].
            limit: Maximum number of hits (positive integer).
            embedding: Optional query embedding. Without one the ranking is
                purely lexical.

        Raises:
            ValueError: If `limit` is not a positive integer.
        """
        ...

    async def list_documents(self) -> list[KnowledgeDocument]:
        """All documents, most recently updated first."""
        ...


def _check_limit(limit: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")


# ---------------------------------------------------------------------------
# Implementation 1: PostgreSQL + pgvector
# ---------------------------------------------------------------------------

# Text search configuration, inlined as a literal so the expressions match
# the GIN index in db/models.py.
_TS_CONFIG = literal_column("'simple'")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _document_from_row(row: KnowledgeDocumentRow) -> KnowledgeDocument:
    return KnowledgeDocument(
        id=row.id,
        external_id=row.external_id,
        title=row.title,
        source_url=row.source_url,
        version=row.version,
        metadata=dict(row.metadata_ or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _chunk_from_row(row: KnowledgeChunkRow) -> KnowledgeChunk:
    embedding = row.embedding
    return KnowledgeChunk(
        id=row.id,
        document_id=row.document_id,
        content=row.content,
        order=row.order,
        token_count=row.token_count,
        embedding=[float(x) for x in embedding] if embedding is not None else None,
        metadata=dict(row.metadata_ or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PgKnowledgeStore:
    """
    pgvector-backed knowledge store.

    Vector term: `1 - (embedding <=> q)` floored at 0.
    Lexical term: `ts_rank_cd(to_tsvector('simple', content),
    plainto_tsquery('simple', q))`. A chunk is a candidate when it has an
    embedding (and the query does), matches the tsquery, or contains the
    query as an ILIKE substring.
    """

    def __init__(self, session_factory=None) -> None:
        if session_factory is None:
            from hybrid_chat.db.engine import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory

    async def upsert_document(self, document: DocumentInput) -> KnowledgeDocument:
        table = KnowledgeDocumentRow.__table__
        now = datetime.now(timezone.utc)
        stmt = pg_insert(table).values(
            id=str(uuid.uuid4()),
            external_id=document.external_id,
            title=document.title,
            source_url=document.source_url,
            version=document.version,
            metadata=document.metadata,
            created_at=now,
            updated_at=now,
        )
        # `id` and `created_at` keep their original values on conflict
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_id],
            set_={
                "title": stmt.excluded.title,
                "source_url": stmt.excluded.source_url,
                "version": stmt.excluded.version,
                "metadata": stmt.excluded["metadata"],
                "updated_at": now,
            },
        ).returning(*table.c)

        async with self._session_factory() as session:
            async with session.begin():
                row = (await session.execute(stmt)).mappings().one()

        logger.info(
            "Upserted knowledge document external_id=%s id=%s",
            document.external_id, row["id"],
        )
        return KnowledgeDocument(
            id=row["id"],
            external_id=row["external_id"],
            title=row["title"],
            source_url=row["source_url"],
            version=row["version"],
            metadata=dict(row["metadata"] or {}),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def replace_chunks(
        self,
        document_id: str,
        chunks: list[ChunkInput],
    ) -> list[KnowledgeChunk]:
        now = datetime.now(timezone.utc)
        rows: list[KnowledgeChunkRow] = []

        # One transaction: the old set is never visible alongside the new one,
        # and a failed insert leaves the old set in place.
        async with self._session_factory() as session:
            async with session.begin():
                exists = await session.scalar(
                    select(KnowledgeDocumentRow.id).where(
                        KnowledgeDocumentRow.id == document_id
                    )
                )
                if exists is None:
                    raise LookupError(f"Knowledge document {document_id} not found")

                await session.execute(
                    delete(KnowledgeChunkRow).where(
                        KnowledgeChunkRow.document_id == document_id
                    )
                )
                for chunk in chunks:
                    row = KnowledgeChunkRow(
                        id=str(uuid.uuid4()),
                        document_id=document_id,
                        content=chunk.content,
                        order=chunk.order,
                        token_count=chunk.token_count,
                        embedding=chunk.embedding,
                        metadata_=chunk.metadata,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(row)
                    rows.append(row)
                await session.flush()

        logger.info(
            "Replaced chunks for document_id=%s (%d chunks, %d embedded)",
            document_id, len(rows), sum(1 for c in chunks if c.embedding is not None),
        )
        return [_chunk_from_row(row) for row in rows]

    async def search(
        self,
        query: str,
        limit: int,
        embedding: list[float] | None = None,
    ) -> list[SearchHit]:
        _check_limit(limit)
        trimmed = query.strip()
        if not trimmed:
            return []

        chunk = KnowledgeChunkRow
        ts_query = func.plainto_tsquery(_TS_CONFIG, bindparam("q", trimmed))
        ts_vector = func.to_tsvector(_TS_CONFIG, chunk.content)
        text_rank = func.ts_rank_cd(ts_vector, ts_query)

        conditions = [
            ts_vector.bool_op("@@")(ts_query),
            chunk.content.ilike(f"%{_escape_like(trimmed)}%", escape="\\"),
        ]

        if embedding is not None:
            vector_rank = case(
                (chunk.embedding.is_(None), 0.0),
                else_=func.greatest(0.0, 1 - chunk.embedding.cosine_distance(embedding)),
            )
            conditions.append(chunk.embedding.is_not(None))
        else:
            vector_rank = literal_column("0.0")

        score = (vector_rank + func.coalesce(text_rank, 0.0)).label("score")

        stmt = (
            select(chunk, KnowledgeDocumentRow, score)
            .join(KnowledgeDocumentRow, KnowledgeDocumentRow.id == chunk.document_id)
            .where(or_(*conditions))
            .order_by(score.desc(), chunk.order.asc(), chunk.updated_at.desc())
            .limit(limit)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        logger.debug(
            "Hybrid search returned %d rows (limit=%d, with_embedding=%s)",
            len(rows), limit, embedding is not None,
        )

        return [
            SearchHit(
                chunk=_chunk_from_row(chunk_row),
                document=_document_from_row(doc_row),
                score=float(row_score),
            )
            for chunk_row, doc_row, row_score in rows
        ]

    async def list_documents(self) -> list[KnowledgeDocument]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(KnowledgeDocumentRow).order_by(
                    KnowledgeDocumentRow.updated_at.desc()
                )
            )
            return [_document_from_row(row) for row in result.all()]


# ---------------------------------------------------------------------------
# Implementation 2: In-Memory
# ---------------------------------------------------------------------------


class InMemoryKnowledgeStore:
    """
    Process-local knowledge store.

    DESIGN DECISION: Ranking is done by the pure functions in ranking.py,
    so this backend doubles as an executable description of the ranking
    contract in tests. A single asyncio.Lock serialises writers; readers
    work on a snapshot so they never observe a half-replaced chunk set.
    """

    def __init__(self) -> None:
        self._documents: dict[str, KnowledgeDocument] = {}
        self._ids_by_external: dict[str, str] = {}
        self._chunks: dict[str, list[KnowledgeChunk]] = {}
        self._lock = asyncio.Lock()

    async def upsert_document(self, document: DocumentInput) -> KnowledgeDocument:
        async with self._lock:
            now = datetime.now(timezone.utc)
            existing_id = self._ids_by_external.get(document.external_id)
            if existing_id is not None:
                stored = replace(
                    self._documents[existing_id],
                    title=document.title,
                    source_url=document.source_url,
                    version=document.version,
                    metadata=dict(document.metadata),
                    updated_at=now,
                )
            else:
                stored = KnowledgeDocument(
                    id=str(uuid.uuid4()),
                    external_id=document.external_id,
                    title=document.title,
                    source_url=document.source_url,
                    version=document.version,
                    metadata=dict(document.metadata),
                    created_at=now,
                    updated_at=now,
                )
                self._ids_by_external[document.external_id] = stored.id
                self._chunks[stored.id] = []
            self._documents[stored.id] = stored
            return stored

    async def replace_chunks(
        self,
        document_id: str,
        chunks: list[ChunkInput],
    ) -> list[KnowledgeChunk]:
        async with self._lock:
            if document_id not in self._documents:
                raise LookupError(f"Knowledge document {document_id} not found")
            now = datetime.now(timezone.utc)
            stored = [
                KnowledgeChunk(
                    id=str(uuid.uuid4()),
                    document_id=document_id,
                    content=chunk.content,
                    order=chunk.order,
                    token_count=chunk.token_count,
                    embedding=list(chunk.embedding) if chunk.embedding is not None else None,
                    metadata=dict(chunk.metadata),
                    created_at=now,
                    updated_at=now,
                )
                for chunk in chunks
            ]
            # Single assignment: the swap is the commit
            self._chunks[document_id] = stored
            return list(stored)

    async def search(
        self,
        query: str,
        limit: int,
        embedding: list[float] | None = None,
    ) -> list[SearchHit]:
        _check_limit(limit)
        trimmed = query.strip()
        if not trimmed:
            return []

        documents = dict(self._documents)
        chunk_sets = list(self._chunks.items())

        scored: list[tuple[tuple, SearchHit]] = []
        for document_id, chunks in chunk_sets:
            document = documents.get(document_id)
            if document is None:
                continue
            for chunk in chunks:
                score = ranking.combined_score(
                    ranking.vector_score(embedding, chunk.embedding),
                    ranking.lexical_score(trimmed, chunk.content),
                )
                if score is None:
                    continue
                key = ranking.ranking_key(score, chunk.order, chunk.updated_at)
                scored.append((key, SearchHit(chunk=chunk, document=document, score=score)))

        scored.sort(key=lambda item: item[0])
        return [hit for _, hit in scored[:limit]]

    async def list_documents(self) -> list[KnowledgeDocument]:
        return sorted(
            self._documents.values(),
            key=lambda doc: doc.updated_at,
            reverse=True,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_store: KnowledgeStore | None = None


def create_knowledge_store(store_type: str | None = None) -> KnowledgeStore:
    """
    Build the configured backend.

    Reads `knowledge_store_type` from settings:
    - "pgvector" → PgKnowledgeStore (default)
    - "memory" → InMemoryKnowledgeStore
    """
    store_type = store_type or settings.knowledge_store_type

    if store_type == "memory":
        logger.info("Using in-memory knowledge store")
        return InMemoryKnowledgeStore()

    if store_type != "pgvector":
        raise ValueError(f"Unknown knowledge store type: {store_type}")

    logger.info("Using pgvector knowledge store")
    return PgKnowledgeStore()


def get_knowledge_store() -> KnowledgeStore:
    """
    Return the process-wide store, creating it on first use.

    DESIGN DECISION: Lazy singleton, like the LLM provider. The in-memory
    backend only works if every request sees the same instance.
    """
    global _store
    if _store is None:
        _store = create_knowledge_store()
    return _store
