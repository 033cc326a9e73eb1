# =============================================================================
# Chat API: Streaming Hybrid-Search Answers over SSE
# =============================================================================
#
# POST /api/v1/chat answers a question as a Server-Sent Events stream:
#
#   data: {"type":"status","data":{"step":"searching",...}}
#   data: {"type":"sources","data":[...]}
#   data: {"type":"delta","data":"The retry budget"}
#   data: {"type":"delta","data":" is two."}
#   data: {"type":"done"}
#
# FLOW:
#   1. Assign a request id
#   2. Start the orchestrator as a task writing into a QueueEventSink
#   3. Drain the queue into the response until a terminal event arrives
#   4. Client disconnect → the response generator is closed → the task is
#      cancelled, which cancels agent calls and generation
#
# DESIGN DECISION: The body is taken as a raw JSON object, not a pydantic
# parameter. Validation happens inside the orchestrator so that an invalid
# payload is reported like every other failure: one `error` event with
# code CHAT_VALIDATION_ERROR, not a 422 with a different shape.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import StreamingResponse

from hybrid_chat.agents.orchestrator import ChatOrchestrator
from hybrid_chat.api.deps import get_orchestrator
from hybrid_chat.models.responses import DoneEvent, ErrorEvent
from hybrid_chat.services.events import QueueEventSink, format_sse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Pushed after the orchestrator task ends, whatever the outcome.
_END_OF_STREAM = object()


async def _event_stream(
    orchestrator: ChatOrchestrator,
    payload: Any,
    request_id: str,
) -> AsyncIterator[str]:
    sink = QueueEventSink()

    async def produce() -> None:
        try:
            await orchestrator.run(payload, sink, request_id=request_id)
        finally:
            sink.queue.put_nowait(_END_OF_STREAM)

    task = asyncio.create_task(produce())
    try:
        while True:
            event = await sink.queue.get()
            if event is _END_OF_STREAM:
                break
            yield format_sse(event)
            if isinstance(event, (DoneEvent, ErrorEvent)):
                break
        await task
    finally:
        if not task.done():
            logger.info("Chat request %s: client disconnected, cancelling", request_id)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


# ---------------------------------------------------------------------------
# POST /api/v1/chat
# ---------------------------------------------------------------------------


@router.post(
    "/api/v1/chat",
    summary="Ask a question, stream the answer",
    description=(
        "Searches the knowledge base and the web in parallel, then streams "
        "status updates, the citation list, answer fragments and a terminal "
        "done/error event as Server-Sent Events."
    ),
    response_class=StreamingResponse,
)
async def chat_endpoint(
    payload: Any = Body(...),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    request_id = str(uuid.uuid4())
    return StreamingResponse(
        _event_stream(orchestrator, payload, request_id),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Request-ID": request_id},
    )
