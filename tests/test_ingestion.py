# =============================================================================
# Unit Tests: Knowledge Ingestion Pipeline
# =============================================================================
#
# Runs ingest_document against the in-memory store with a fake embedder.
# Token counting is patched so the tests never load a tiktoken encoding.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from hybrid_chat.models.requests import IngestDocumentRequest
from hybrid_chat.services.ingestion import ingest_document
from hybrid_chat.services.knowledge_store import InMemoryKnowledgeStore


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _request(generate_embeddings=False, **chunk_overrides) -> IngestDocumentRequest:
    first = {"content": "the retry budget is two", "order": 0}
    first.update(chunk_overrides)
    return IngestDocumentRequest.model_validate(
        {
            "document": {"externalId": "guide", "title": "Retry Guide"},
            "chunks": [first, {"content": "pool sizing", "order": 1, "tokenCount": 2}],
            "generateEmbeddings": generate_embeddings,
        }
    )


class TestIngestDocument:
    @patch("hybrid_chat.services.ingestion.count_tokens", return_value=7)
    def test_token_counts_filled_in(self, mock_count):
        store = InMemoryKnowledgeStore()
        result = _run(ingest_document(store, _request(), embed=None))

        assert [c.token_count for c in result.chunks] == [7, 2]
        mock_count.assert_called_once_with("the retry budget is two")
        assert result.embedded_count == 0
        assert result.document.external_id == "guide"

    def test_embeddings_attached(self):
        def fake_embed(texts):
            return [[float(i), 1.0] for i, _ in enumerate(texts)]

        store = InMemoryKnowledgeStore()
        result = _run(ingest_document(store, _request(True, tokenCount=5), embed=fake_embed))

        assert result.embedded_count == 2
        assert [c.embedding for c in result.chunks] == [[0.0, 1.0], [1.0, 1.0]]

    def test_embedding_failure_stores_chunks_without_vectors(self):
        def broken_embed(texts):
            raise RuntimeError("embedding service down")

        store = InMemoryKnowledgeStore()
        result = _run(ingest_document(store, _request(True, tokenCount=5), embed=broken_embed))

        assert len(result.chunks) == 2
        assert result.embedded_count == 0
        hits = _run(store.search("retry budget", 5))
        assert [h.chunk.content for h in hits] == ["the retry budget is two"]

    def test_embedding_count_mismatch_ignored(self):
        store = InMemoryKnowledgeStore()
        result = _run(
            ingest_document(store, _request(True, tokenCount=5), embed=lambda texts: [[1.0]])
        )
        assert result.embedded_count == 0

    def test_reingestion_replaces_chunks(self):
        store = InMemoryKnowledgeStore()
        first = _run(ingest_document(store, _request(tokenCount=5), embed=None))
        second = _run(
            ingest_document(store, _request(content="new retry text", tokenCount=3), embed=None)
        )

        assert second.document.id == first.document.id
        assert [h.chunk.content for h in _run(store.search("budget", 5))] == []
        assert len(_run(store.list_documents())) == 1

    def test_missing_document_propagates_lookup_error(self):
        async def scenario():
            real = InMemoryKnowledgeStore()
            store = AsyncMock()
            store.upsert_document.side_effect = real.upsert_document
            store.replace_chunks.side_effect = LookupError("document gone")
            await ingest_document(store, _request(tokenCount=5), embed=None)

        with pytest.raises(LookupError):
            _run(scenario())
