# =============================================================================
# API Request Models: Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
#
# DESIGN DECISION: camelCase on the wire, snake_case in Python.
# Browser clients send `topK`, `mimeType`, `dataUrl`, `externalId`; fields
# carry aliases and `populate_by_name=True` lets Python callers and tests
# use either spelling.
#
# DESIGN DECISION: ChatRequest is validated by the orchestrator, not by
# FastAPI. The chat endpoint is a stream, and a bad payload is reported as
# an SSE `error` event with code CHAT_VALIDATION_ERROR, like every other
# chat failure, instead of as an HTTP 422.
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_ATTACHMENT_BYTES = 20 * 1024 * 1024


class ChatHistoryMessage(BaseModel):
    """One prior conversation turn supplied by the client."""

    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class ChatAttachment(BaseModel):
    """
    A client-side attachment, carried as a data URL.

    Accepted and validated; answer generation does not read attachments.
    """

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1, alias="mimeType")
    size: int | None = Field(default=None, ge=0, le=MAX_ATTACHMENT_BYTES)
    data_url: str = Field(..., min_length=1, alias="dataUrl")

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        populate_by_name=True,
    )

    @field_validator("data_url")
    @classmethod
    def _must_be_data_url(cls, value: str) -> str:
        if not value.startswith("data:"):
            raise ValueError("attachment payload must be a data URL")
        return value


class ChatRequest(BaseModel):
    """
    Request body for POST /api/v1/chat.

    Immutable once validated. `top_k` defaults to `settings.retrieval_top_k`
    when omitted.

    Example:
        {
            "question": "How do I configure the retry budget?",
            "topK": 6,
            "history": [{"role": "user", "content": "What is a retry budget?"}]
        }
    """

    question: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="The question to answer",
        examples=["How do I configure the retry budget?"],
    )
    top_k: int | None = Field(
        default=None,
        ge=1,
        le=20,
        alias="topK",
        description="Maximum number of knowledge-base hits to retrieve",
    )
    history: tuple[ChatHistoryMessage, ...] = Field(
        default=(),
        max_length=50,
        description="Prior turns of the conversation, oldest first",
    )
    attachments: tuple[ChatAttachment, ...] = Field(
        default=(),
        max_length=4,
    )

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "question": "How do I configure the retry budget?",
                    "topK": 6,
                },
            ]
        },
    )


# ---------------------------------------------------------------------------
# Knowledge Ingestion
# ---------------------------------------------------------------------------


class KnowledgeDocumentIn(BaseModel):
    external_id: str = Field(..., min_length=1, alias="externalId")
    title: str = Field(..., min_length=1)
    source_url: str | None = Field(default=None, alias="sourceUrl")
    version: str | None = None
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("source_url")
    @classmethod
    def _must_be_http_url(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(("http://", "https://")):
            raise ValueError("sourceUrl must be an http(s) URL")
        return value


class KnowledgeChunkIn(BaseModel):
    content: str = Field(..., min_length=1)
    order: int = Field(..., ge=0)
    token_count: int | None = Field(default=None, ge=0, alias="tokenCount")
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class IngestDocumentRequest(BaseModel):
    """
    Request body for POST /api/v1/knowledge/documents.

    Upserts the document by `externalId` and atomically replaces its chunk
    set. With `generateEmbeddings`, chunks are embedded before storage; if
    the embedding call fails they are stored without vectors and remain
    searchable lexically.
    """

    document: KnowledgeDocumentIn
    chunks: list[KnowledgeChunkIn] = Field(..., min_length=1)
    generate_embeddings: bool = Field(default=False, alias="generateEmbeddings")

    model_config = ConfigDict(populate_by_name=True)
