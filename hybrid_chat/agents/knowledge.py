# =============================================================================
# Knowledge Agent: Hybrid Search over the Local Knowledge Base
# =============================================================================
#
# 1. EMBED: best effort. Missing API key, timeout or provider error →
#    log and search without an embedding (lexical-only ranking).
# 2. SEARCH: KnowledgeStore.search(query, top_k, embedding).
# 3. WRAP: hits → AgentSuccess; any exception → AgentFailure.
#
# The whole call is bounded by `agent_timeout_seconds`; the embedding step
# additionally by the embedding client's own timeout.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from hybrid_chat.agents.base import AgentFailure, AgentResult, AgentSuccess
from hybrid_chat.config import settings
from hybrid_chat.services.embedder import embed_query, embeddings_configured
from hybrid_chat.services.knowledge_store import KnowledgeStore

logger = logging.getLogger(__name__)


class KnowledgeAgent:
    """
    Args:
        store: Knowledge store to search.
        embed: Sync query embedder, run in a worker thread. None disables
            vector search.
        timeout: Seconds allowed for embed + search.
    """

    name = "knowledge"

    def __init__(
        self,
        store: KnowledgeStore,
        embed: Callable[[str], list[float]] | None = embed_query,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self._embed = embed
        self._timeout = timeout if timeout is not None else settings.agent_timeout_seconds

    async def search(self, query: str, top_k: int) -> AgentResult:
        try:
            hits = await asyncio.wait_for(self._search(query, top_k), self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Knowledge search timed out after %.1fs", self._timeout)
            return AgentFailure(
                agent="knowledge",
                error=f"Knowledge search timed out after {self._timeout:g}s",
                note="Knowledge base search timed out",
            )
        except Exception as e:
            logger.error("Knowledge search failed: %s", e, exc_info=True)
            return AgentFailure(
                agent="knowledge",
                error=str(e) or type(e).__name__,
                note="Knowledge base search failed",
            )

        logger.debug("Knowledge search returned %d hits for %.50r", len(hits), query)
        return AgentSuccess(agent="knowledge", hits=tuple(hits))

    async def _search(self, query: str, top_k: int):
        embedding = await self._embed_query(query)
        return await self._store.search(query, top_k, embedding=embedding)

    async def _embed_query(self, query: str) -> list[float] | None:
        if self._embed is None or not query.strip():
            return None
        if self._embed is embed_query and not embeddings_configured():
            logger.debug("No embedding API key; using lexical-only search")
            return None
        try:
            return await asyncio.to_thread(self._embed, query)
        except Exception as e:
            logger.warning("Query embedding failed, falling back to lexical search: %s", e)
            return None
