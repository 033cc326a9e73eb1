# =============================================================================
# Chat Event Sink & SSE Framing
# =============================================================================
#
# The orchestrator emits typed events into an EventSink and knows nothing
# about HTTP. The chat endpoint supplies a QueueEventSink and drains it
# into a StreamingResponse, one SSE frame per event:
#
#   data: {"type":"delta","data":"Hello"}\n\n
#
# DESIGN DECISION: An unbounded asyncio.Queue between producer and
# transport. The orchestrator never blocks on a slow client, and a client
# disconnect is handled by cancelling the producer task (see api/chat.py),
# not by back-pressure.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Protocol

from hybrid_chat.models.responses import ChatEvent


class EventSink(Protocol):
    """Receives chat events in emission order."""

    async def emit(self, event: ChatEvent) -> None:
        ...


class QueueEventSink:
    """EventSink backed by an asyncio.Queue."""

    def __init__(self, queue: asyncio.Queue | None = None) -> None:
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()

    async def emit(self, event: ChatEvent) -> None:
        await self.queue.put(event)


class ListEventSink:
    """EventSink that records events in a list. Used by tests."""

    def __init__(self) -> None:
        self.events: list[ChatEvent] = []

    async def emit(self, event: ChatEvent) -> None:
        self.events.append(event)


def format_sse(event: ChatEvent) -> str:
    """Serialise one event as an SSE `data:` frame."""
    payload = event.model_dump_json(by_alias=True, exclude_none=True)
    return f"data: {payload}\n\n"
