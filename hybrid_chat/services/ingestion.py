# =============================================================================
# Knowledge Ingestion Pipeline
# =============================================================================
#
# Stores a pre-chunked document in the knowledge store.
#
# INGESTION PIPELINE:
#   1. Count tokens for chunks that arrive without a token count (tiktoken)
#   2. Optionally embed all chunks (best effort, see below)
#   3. Upsert the document by external id
#   4. Atomically replace the document's chunk set
#
# Parsing and chunking happen upstream; this service receives chunks with
# their final content and order.
#
# DESIGN DECISION: Embedding failures do not fail ingestion. The chunks are
# stored without vectors and stay searchable through the lexical term of
# hybrid ranking. Re-ingesting the document later adds the vectors.
#
# DESIGN DECISION: Synchronous ingestion, no task queue. Documents arrive
# already chunked, so the only slow step is one batched embedding call,
# which runs in a worker thread to keep the event loop free.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import tiktoken

from hybrid_chat.models.requests import IngestDocumentRequest
from hybrid_chat.services.embedder import embed_batch
from hybrid_chat.services.knowledge_store import (
    ChunkInput,
    DocumentInput,
    KnowledgeChunk,
    KnowledgeDocument,
    KnowledgeStore,
)

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    document: KnowledgeDocument
    chunks: list[KnowledgeChunk]
    embedded_count: int


# ---------------------------------------------------------------------------
# Tiktoken Encoder: Cached Singleton
# ---------------------------------------------------------------------------
# Loading the encoder reads a ~1.7MB BPE file from disk, so it is loaded
# once. cl100k_base is the encoding of text-embedding-3-small, so counts
# match what the embedding model sees.
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    return len(_get_encoder().encode(text))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


async def _embed_chunks(
    texts: list[str],
    embed: Callable[[Sequence[str]], list[list[float]]],
) -> list[list[float]] | None:
    try:
        embeddings = await asyncio.to_thread(embed, texts)
    except Exception as e:
        logger.warning(
            "Failed to generate embeddings, storing %d chunks without vectors: %s",
            len(texts), e,
        )
        return None
    if len(embeddings) != len(texts):
        logger.warning(
            "Embedding count mismatch (%d for %d chunks), storing without vectors",
            len(embeddings), len(texts),
        )
        return None
    return embeddings


async def ingest_document(
    store: KnowledgeStore,
    request: IngestDocumentRequest,
    embed: Callable[[Sequence[str]], list[list[float]]] = embed_batch,
) -> IngestResult:
    """
    Upsert a document and replace its chunks.

    Raises:
        LookupError: If the document disappears between upsert and chunk
            replacement (concurrent delete).
    """
    doc_in = request.document
    logger.info(
        "Ingesting document %s (%d chunks, embeddings=%s)",
        doc_in.external_id, len(request.chunks), request.generate_embeddings,
    )

    # --- Step 1: Token counts ---
    token_counts = [
        chunk.token_count if chunk.token_count is not None else count_tokens(chunk.content)
        for chunk in request.chunks
    ]

    # --- Step 2: Embeddings (best effort) ---
    embeddings: list[list[float]] | None = None
    if request.generate_embeddings:
        embeddings = await _embed_chunks([c.content for c in request.chunks], embed)

    # --- Step 3: Upsert document ---
    document = await store.upsert_document(
        DocumentInput(
            external_id=doc_in.external_id,
            title=doc_in.title,
            source_url=doc_in.source_url,
            version=doc_in.version,
            metadata=dict(doc_in.metadata),
        )
    )

    # --- Step 4: Replace chunks ---
    chunks = await store.replace_chunks(
        document.id,
        [
            ChunkInput(
                content=chunk.content,
                order=chunk.order,
                token_count=token_counts[index],
                embedding=embeddings[index] if embeddings is not None else None,
                metadata=dict(chunk.metadata),
            )
            for index, chunk in enumerate(request.chunks)
        ],
    )

    embedded_count = sum(1 for chunk in chunks if chunk.embedding is not None)
    logger.info(
        "Ingested document %s as %s: %d chunks, %d with embeddings",
        doc_in.external_id, document.id, len(chunks), embedded_count,
    )
    return IngestResult(document=document, chunks=chunks, embedded_count=embedded_count)
