# =============================================================================
# Chat Orchestrator: Parallel Retrieval, Citations, Resumable Answer
# =============================================================================
#
# Drives one chat request from payload to terminal event:
#
#   validate ──▶ searching ──▶ processing ──▶ generating ──▶ done | error
#
# GRAPH TOPOLOGY (searching + processing):
#
#          ┌──▶ knowledge_search ──┐
#   START ─┤                       ├──▶ merge_sources ──▶ END
#          └──▶ external_search ───┘
#
# Both search nodes run in the same LangGraph superstep, i.e. concurrently.
# merge_sources waits for both. Agents never raise (agents/base.py), so one
# failing branch cannot take the other down; there is no extra global
# timeout beyond each agent's own.
#
# EVENT ORDER GUARANTEES:
#   - status events precede `sources`
#   - exactly one `sources` event, before any `delta`
#   - exactly one terminal event (`done` or `error`), always last
#
# DESIGN DECISION: Plain TypedDict state, compiled once at module level.
# Agents and the sink travel in the state. They are not JSON-serialisable,
# which is fine as long as no checkpointer is configured on the graph.
#
# DESIGN DECISION: The knowledge agent searches the expanded query; the
# external agent gets the unexpanded one. Expansion adds vocabulary of the
# local corpus, which only dilutes a web search.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

from langgraph.graph import END, START, StateGraph
from pydantic import ValidationError
from typing_extensions import TypedDict

from hybrid_chat.agents.base import AgentResult, ExternalHit
from hybrid_chat.agents.composer import stream_answer
from hybrid_chat.agents.external import ExternalAgent
from hybrid_chat.agents.knowledge import KnowledgeAgent
from hybrid_chat.config import settings
from hybrid_chat.errors import ChatError, ChatValidationError, ErrorCode
from hybrid_chat.models.requests import ChatRequest
from hybrid_chat.models.responses import (
    ChatSource,
    DeltaEvent,
    DoneEvent,
    ErrorData,
    ErrorEvent,
    SourcesEvent,
    StatusData,
    StatusEvent,
)
from hybrid_chat.services.events import EventSink
from hybrid_chat.services.heuristics import QueryExpander, build_context_aware_question
from hybrid_chat.services.knowledge_store import SearchHit
from hybrid_chat.services.llm import LLMProvider
from hybrid_chat.services.resumable_stream import (
    Continuation,
    NetworkErrorClassifier,
    ResumableStream,
)

logger = logging.getLogger(__name__)

FALLBACK_WITH_SOURCES = (
    "Related material was found, but no answer could be generated. "
    "Please review the sources listed or try again."
)
FALLBACK_WITHOUT_SOURCES = (
    "No relevant material was found and no answer could be generated. "
    "Try rephrasing the question."
)
INTERNAL_ERROR_MESSAGE = "Internal service error, please try again later"


# ---------------------------------------------------------------------------
# Search Graph State
# ---------------------------------------------------------------------------


class SearchState(TypedDict, total=False):
    """
    State that flows through the search graph.

    Uses total=False so nodes only need to return the keys they update.
    The two search branches write disjoint keys, so no reducer is needed.
    """

    # --- Input (set by caller) ---
    knowledge_agent: KnowledgeAgent
    external_agent: ExternalAgent
    sink: EventSink
    knowledge_query: str
    external_query: str
    top_k: int

    # --- Set by the search nodes ---
    knowledge_result: AgentResult
    external_result: AgentResult

    # --- Set by merge_sources ---
    sources: list[ChatSource]


# ---------------------------------------------------------------------------
# Citations
# ---------------------------------------------------------------------------


def build_sources(
    knowledge_hits: Iterable[SearchHit],
    external_hits: Iterable[ExternalHit],
) -> list[ChatSource]:
    """
    Merge both hit lists into citations, knowledge first.

    Citations are unique by URL: a later hit with an already cited URL is
    dropped and does not move the earlier one. Knowledge hits without a
    source URL are always kept.
    """
    sources: list[ChatSource] = []
    seen_urls: set[str] = set()

    for hit in knowledge_hits:
        url = hit.document.source_url
        if url:
            if url in seen_urls:
                continue
            seen_urls.add(url)
        sources.append(
            ChatSource(
                id=hit.document.id,
                title=hit.document.title,
                url=url,
                chunk_id=hit.chunk.id,
                order=len(sources),
                source_type="knowledge",
            )
        )

    for hit in external_hits:
        if hit.url in seen_urls:
            continue
        seen_urls.add(hit.url)
        external_id = f"external-{len(sources)}"
        sources.append(
            ChatSource(
                id=external_id,
                title=hit.title,
                url=hit.url,
                chunk_id=external_id,
                order=len(sources),
                source_type="external",
            )
        )

    return sources


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def knowledge_search_node(state: SearchState) -> dict:
    result = await state["knowledge_agent"].search(
        state["knowledge_query"], state["top_k"],
    )
    return {"knowledge_result": result}


async def external_search_node(state: SearchState) -> dict:
    result = await state["external_agent"].search(
        state["external_query"], state["top_k"],
    )
    return {"external_result": result}


async def merge_sources_node(state: SearchState) -> dict:
    """Join point: both searches have settled."""
    knowledge = state["knowledge_result"]
    external = state["external_result"]

    if not knowledge.success or not external.success:
        logger.warning(
            "Search issues: knowledge=%s, external=%s",
            "ok" if knowledge.success else f"failed ({knowledge.error})",
            "ok" if external.success else f"failed ({external.error})",
        )

    await state["sink"].emit(
        StatusEvent(data=StatusData(
            step="processing",
            label="Organising search results...",
            tool="citation merge",
            agent="orchestrator",
        ))
    )
    return {"sources": build_sources(knowledge.hits, external.hits)}


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(SearchState)
_builder.add_node("knowledge_search", knowledge_search_node)
_builder.add_node("external_search", external_search_node)
_builder.add_node("merge_sources", merge_sources_node)

_builder.add_edge(START, "knowledge_search")
_builder.add_edge(START, "external_search")
_builder.add_edge(["knowledge_search", "external_search"], "merge_sources")
_builder.add_edge("merge_sources", END)

search_graph = _builder.compile()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


def _validation_message(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "body"
        problems.append(f"{location}: {error['msg']}")
    return "Invalid chat request: " + "; ".join(problems)


class ChatOrchestrator:
    """
    Runs chat requests end to end, emitting events into a sink.

    One instance serves many requests; per-request state lives in `run()`.
    """

    def __init__(
        self,
        knowledge_agent: KnowledgeAgent,
        external_agent: ExternalAgent,
        llm: LLMProvider,
        expander: QueryExpander | None = None,
        max_retries: int | None = None,
        classifier: NetworkErrorClassifier | None = None,
    ) -> None:
        self._knowledge_agent = knowledge_agent
        self._external_agent = external_agent
        self._llm = llm
        self._expander = expander or QueryExpander()
        self._max_retries = (
            max_retries if max_retries is not None else settings.stream_max_retries
        )
        self._classifier = classifier or NetworkErrorClassifier()

    async def run(
        self,
        payload: ChatRequest | Mapping[str, Any],
        sink: EventSink,
        request_id: str | None = None,
    ) -> None:
        """
        Process one chat request. Never raises except on cancellation:
        every failure becomes a single `error` event.
        """
        request_id = request_id or str(uuid.uuid4())
        try:
            request = self._validate(payload)
            logger.info(
                "Chat request %s started (topK=%s, history=%d)",
                request_id, request.top_k or settings.retrieval_top_k,
                len(request.history),
            )
            await self._answer(request, sink)
        except ChatError as e:
            logger.error("Chat request %s failed [%s]: %s", request_id, e.code.value, e.message)
            await self._emit_error(sink, e.code, e.message, request_id)
        except Exception as e:
            logger.exception("Chat request %s failed unexpectedly: %s", request_id, e)
            await self._emit_error(
                sink, ErrorCode.CHAT_INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE, request_id,
            )
        else:
            logger.info("Chat request %s completed", request_id)

    @staticmethod
    def _validate(payload: ChatRequest | Mapping[str, Any]) -> ChatRequest:
        if isinstance(payload, ChatRequest):
            return payload
        try:
            return ChatRequest.model_validate(payload)
        except ValidationError as e:
            raise ChatValidationError(_validation_message(e)) from e

    async def _answer(self, request: ChatRequest, sink: EventSink) -> None:
        top_k = request.top_k or settings.retrieval_top_k
        search_query = build_context_aware_question(request.question, request.history)
        knowledge_query = self._expander.expand(search_query)

        # --- searching ---
        await sink.emit(StatusEvent(data=StatusData(
            step="searching",
            label="Searching the knowledge base and the web...",
            agent="orchestrator",
        )))
        await sink.emit(StatusEvent(data=StatusData(
            step="searching-knowledge",
            label="Searching the knowledge base...",
            tool="hybrid search",
            agent="knowledge",
        )))
        await sink.emit(StatusEvent(data=StatusData(
            step="searching-external",
            label="Searching the web...",
            tool="web search",
            agent="external",
        )))

        state = await search_graph.ainvoke({
            "knowledge_agent": self._knowledge_agent,
            "external_agent": self._external_agent,
            "sink": sink,
            "knowledge_query": knowledge_query,
            "external_query": search_query,
            "top_k": top_k,
        })
        knowledge: AgentResult = state["knowledge_result"]
        external: AgentResult = state["external_result"]
        sources: list[ChatSource] = state["sources"]

        # --- processing ---
        await sink.emit(SourcesEvent(data=sources))

        # --- generating ---
        async def generate(continuation: Continuation) -> AsyncIterator[str]:
            if continuation.is_resume:
                label = f"Resuming the answer... ({continuation.attempt}/{self._max_retries})"
            else:
                label = "Generating the answer..."
            await sink.emit(StatusEvent(data=StatusData(
                step="generating",
                label=label,
                tool=settings.llm_model,
                agent="composer",
            )))
            tokens = stream_answer(
                self._llm,
                request.question,
                knowledge,
                external,
                history=request.history,
                continuation=continuation,
            )
            try:
                async for token in tokens:
                    yield token
            finally:
                aclose = getattr(tokens, "aclose", None)
                if aclose is not None:
                    await aclose()

        resumable = ResumableStream(
            generate,
            max_retries=self._max_retries,
            classifier=self._classifier,
        )
        emitted = 0
        async for token in resumable.stream():
            if not token:
                continue
            emitted += 1
            await sink.emit(DeltaEvent(data=token))

        if emitted == 0:
            logger.warning(
                "Answer stream produced no text (%d sources); sending fallback",
                len(sources),
            )
            fallback = FALLBACK_WITH_SOURCES if sources else FALLBACK_WITHOUT_SOURCES
            await sink.emit(DeltaEvent(data=fallback))

        await sink.emit(DoneEvent())

    @staticmethod
    async def _emit_error(
        sink: EventSink,
        code: ErrorCode,
        message: str,
        request_id: str,
    ) -> None:
        await sink.emit(ErrorEvent(data=ErrorData(
            code=code.value,
            message=f"{message} (request id: {request_id})",
            request_id=request_id,
        )))
