# =============================================================================
# API Response Models: Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API, including
# every event of the chat stream.
#
# CHAT STREAM EVENTS:
#   status   {step, label, tool?, agent?}   progress of the pipeline
#   sources  [ChatSource, ...]              exactly once, before any delta
#   delta    "text"                         a fragment of the answer
#   done     (no data)                      terminal, success
#   error    {code, message, requestId}     terminal, failure
#
# DESIGN DECISION: The event set is a closed discriminated union on `type`.
# Adding an event kind means adding a model here, and pydantic rejects
# anything outside the union when a client-side parser (or a test) reads
# the stream back with `chat_event_adapter`.
#
# DESIGN DECISION: Separate response models from storage types. Chunk
# embeddings never go over the wire.
# =============================================================================

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class HealthResponse(BaseModel):
    """Response for GET /health: confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


# ---------------------------------------------------------------------------
# Chat Stream
# ---------------------------------------------------------------------------


class ChatSource(BaseModel):
    """
    A citation shown alongside the answer.

    Knowledge citations carry the document id and the chunk id; external
    citations get ids `external-{n}`. `order` is the citation's position in
    the merged list.
    """

    id: str
    title: str
    url: str | None = None
    chunk_id: str = Field(alias="chunkId")
    order: int = Field(ge=0)
    source_type: Literal["knowledge", "external"] = Field(alias="sourceType")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StatusData(BaseModel):
    step: str
    label: str
    tool: str | None = None
    agent: str | None = None


class ErrorData(BaseModel):
    code: str
    message: str
    request_id: str = Field(alias="requestId")

    model_config = ConfigDict(populate_by_name=True)


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    data: StatusData


class SourcesEvent(BaseModel):
    type: Literal["sources"] = "sources"
    data: list[ChatSource]


class DeltaEvent(BaseModel):
    type: Literal["delta"] = "delta"
    data: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    data: ErrorData


ChatEvent = Annotated[
    Union[StatusEvent, SourcesEvent, DeltaEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

chat_event_adapter: TypeAdapter[ChatEvent] = TypeAdapter(ChatEvent)


# ---------------------------------------------------------------------------
# Knowledge Ingestion
# ---------------------------------------------------------------------------


class DocumentResponse(BaseModel):
    """Document metadata, returned after ingestion and in listings."""

    id: str
    external_id: str = Field(alias="externalId")
    title: str
    source_url: str | None = Field(default=None, alias="sourceUrl")
    version: str | None = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class IngestResponse(BaseModel):
    """Response for POST /api/v1/knowledge/documents."""

    document: DocumentResponse
    chunk_count: int = Field(alias="chunkCount")
    embedded_count: int = Field(
        alias="embeddedCount",
        description="Chunks stored with an embedding vector",
    )

    model_config = ConfigDict(populate_by_name=True)
