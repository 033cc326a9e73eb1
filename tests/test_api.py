# =============================================================================
# API Tests: Chat Stream, Knowledge Endpoints, Health
# =============================================================================
#
# Drives the FastAPI app through TestClient. Dependencies are overridden
# with an orchestrator built from scripted agents and LLM, and with an
# in-memory knowledge store, so no database or API key is needed.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from hybrid_chat.agents.base import AgentSuccess, ExternalHit
from hybrid_chat.agents.orchestrator import ChatOrchestrator
from hybrid_chat.api.chat import _event_stream
from hybrid_chat.api.deps import get_knowledge_store, get_orchestrator
from hybrid_chat.main import app
from hybrid_chat.models.responses import chat_event_adapter
from hybrid_chat.services.heuristics import QueryExpander
from hybrid_chat.services.knowledge_store import InMemoryKnowledgeStore
from hybrid_chat.services.resumable_stream import NetworkErrorClassifier


class _FixedAgent:
    def __init__(self, result):
        self.result = result

    async def search(self, query, top_k):
        return self.result


class _EchoLLM:
    """Streams a fixed answer in two fragments."""

    def stream(self, messages, system=None, temperature=None, max_tokens=None):
        async def tokens():
            yield "The retry budget"
            yield " is two [1]."

        return tokens()

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        raise NotImplementedError


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class _StallingLLM:
    """Streams one fragment, then stalls until cancelled."""

    def __init__(self):
        self.cancelled = False

    def stream(self, messages, system=None, temperature=None, max_tokens=None):
        async def tokens():
            yield "The retry"
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
            yield " budget is two."

        return tokens()

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        raise NotImplementedError


def _parse_sse(body: str) -> list:
    return [
        chat_event_adapter.validate_json(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


@pytest.fixture()
def client():
    store = InMemoryKnowledgeStore()
    orchestrator = ChatOrchestrator(
        knowledge_agent=_FixedAgent(AgentSuccess(agent="knowledge")),
        external_agent=_FixedAgent(AgentSuccess(
            agent="external",
            hits=(ExternalHit("Retry Guide", "https://docs.example.com/retry", "s"),),
        )),
        llm=_EchoLLM(),
        expander=QueryExpander([]),
        max_retries=1,
        classifier=NetworkErrorClassifier(signatures=[]),
    )
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_knowledge_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Test: POST /api/v1/chat
# ---------------------------------------------------------------------------


class TestChatEndpoint:
    def test_streams_events_in_order(self, client):
        response = client.post("/api/v1/chat", json={"question": "What is the retry budget?"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-request-id"]

        events = _parse_sse(response.text)
        types = [event.type for event in events]
        assert types[-1] == "done"
        assert types.index("sources") < types.index("delta")

        sources = next(event for event in events if event.type == "sources").data
        assert [s.source_type for s in sources] == ["external"]
        assert sources[0].id == "external-0"

        answer = "".join(event.data for event in events if event.type == "delta")
        assert answer == "The retry budget is two [1]."

    def test_frames_use_camel_case(self, client):
        response = client.post("/api/v1/chat", json={"question": "What is the retry budget?"})
        assert '"sourceType":"external"' in response.text
        assert '"chunkId":"external-0"' in response.text

    def test_invalid_payload_reported_as_error_event(self, client):
        response = client.post("/api/v1/chat", json={"question": "", "topK": 99})

        assert response.status_code == 200
        events = _parse_sse(response.text)
        assert [event.type for event in events] == ["error"]
        error = events[0].data
        assert error.code == "CHAT_VALIDATION_ERROR"
        assert error.request_id == response.headers["x-request-id"]
        assert response.headers["x-request-id"] in error.message


# ---------------------------------------------------------------------------
# Test: Knowledge Endpoints
# ---------------------------------------------------------------------------


class TestKnowledgeEndpoints:
    PAYLOAD = {
        "document": {
            "externalId": "guide",
            "title": "Retry Guide",
            "sourceUrl": "https://docs.example.com/retry",
        },
        "chunks": [
            {"content": "the retry budget is two", "order": 0, "tokenCount": 6},
            {"content": "pool sizing", "order": 1, "tokenCount": 2},
        ],
    }

    def test_ingest_then_list(self, client):
        response = client.post("/api/v1/knowledge/documents", json=self.PAYLOAD)

        assert response.status_code == 201
        body = response.json()
        assert body["chunkCount"] == 2
        assert body["embeddedCount"] == 0
        assert body["document"]["externalId"] == "guide"

        listing = client.get("/api/v1/knowledge/documents").json()
        assert [doc["id"] for doc in listing] == [body["document"]["id"]]

    def test_invalid_body_rejected(self, client):
        payload = {**self.PAYLOAD, "chunks": []}
        assert client.post("/api/v1/knowledge/documents", json=payload).status_code == 422

    def test_lookup_error_maps_to_404(self, client):
        with patch(
            "hybrid_chat.api.knowledge.ingest_document",
            side_effect=LookupError("document gone"),
        ):
            response = client.post("/api/v1/knowledge/documents", json=self.PAYLOAD)
        assert response.status_code == 404


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["service"]
        assert body["version"]


# ---------------------------------------------------------------------------
# Test: Client Disconnect
# ---------------------------------------------------------------------------


class TestClientDisconnect:
    def test_closing_the_stream_cancels_generation(self):
        llm = _StallingLLM()
        orchestrator = ChatOrchestrator(
            knowledge_agent=_FixedAgent(AgentSuccess(agent="knowledge")),
            external_agent=_FixedAgent(AgentSuccess(agent="external")),
            llm=llm,
            expander=QueryExpander([]),
            max_retries=1,
            classifier=NetworkErrorClassifier(signatures=[]),
        )

        async def scenario():
            frames = []
            stream = _event_stream(orchestrator, {"question": "retry?"}, "req-1")
            async for frame in stream:
                frames.append(frame)
                if '"type":"delta"' in frame:
                    break
            await stream.aclose()
            return frames

        frames = _run(scenario())

        assert '"type":"delta"' in frames[-1]
        assert not any('"type":"done"' in frame for frame in frames)
        assert llm.cancelled
