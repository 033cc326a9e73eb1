# =============================================================================
# Knowledge API: Document Ingestion and Listing
# =============================================================================
#
# ENDPOINTS:
#   POST /api/v1/knowledge/documents  upsert a document + replace its chunks
#   GET  /api/v1/knowledge/documents  list documents, most recently updated first
#
# The ingestion pipeline lives in services/ingestion.py; this module only
# maps between HTTP and the pipeline.
#
# DESIGN DECISION: 201 Created on every successful POST, including
# re-ingestion of an existing external id. The response always describes
# the document as stored after the call.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from hybrid_chat.api.deps import get_knowledge_store
from hybrid_chat.models.requests import IngestDocumentRequest
from hybrid_chat.models.responses import DocumentResponse, IngestResponse
from hybrid_chat.services.ingestion import ingest_document
from hybrid_chat.services.knowledge_store import KnowledgeStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/knowledge", tags=["Knowledge"])


# ---------------------------------------------------------------------------
# POST /api/v1/knowledge/documents
# ---------------------------------------------------------------------------


@router.post(
    "/documents",
    response_model=IngestResponse,
    status_code=201,
    summary="Ingest a pre-chunked document",
    description=(
        "Creates or updates the document identified by externalId and "
        "replaces its chunks atomically. With generateEmbeddings=true the "
        "chunks are embedded first; if that fails they are stored without "
        "vectors and remain searchable by text."
    ),
)
async def ingest_document_endpoint(
    request: IngestDocumentRequest,
    store: KnowledgeStore = Depends(get_knowledge_store),
) -> IngestResponse:
    try:
        result = await ingest_document(store, request)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return IngestResponse(
        document=DocumentResponse.model_validate(result.document),
        chunk_count=len(result.chunks),
        embedded_count=result.embedded_count,
    )


# ---------------------------------------------------------------------------
# GET /api/v1/knowledge/documents
# ---------------------------------------------------------------------------


@router.get(
    "/documents",
    response_model=list[DocumentResponse],
    summary="List knowledge documents",
)
async def list_documents_endpoint(
    store: KnowledgeStore = Depends(get_knowledge_store),
) -> list[DocumentResponse]:
    documents = await store.list_documents()
    return [DocumentResponse.model_validate(doc) for doc in documents]
