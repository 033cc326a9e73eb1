# =============================================================================
# API Dependencies: FastAPI Dependency Injection for Chat Components
# =============================================================================
#
# Route handlers never build their collaborators. They ask for them via
# Depends(), which keeps the handlers thin and lets tests swap in fakes:
#
#   app.dependency_overrides[get_orchestrator] = lambda: fake_orchestrator
#
# DESIGN DECISION: One process-wide orchestrator, built lazily on first
# use. Building it resolves the LLM provider, which fails fast with a
# clear message when the API key is missing. Doing that at import time
# would break `--help`, migrations and tests.
# =============================================================================

from __future__ import annotations

import logging

from hybrid_chat.agents.external import ExternalAgent
from hybrid_chat.agents.knowledge import KnowledgeAgent
from hybrid_chat.agents.orchestrator import ChatOrchestrator
from hybrid_chat.services.heuristics import QueryExpander, get_priority_scorer
from hybrid_chat.services.knowledge_store import KnowledgeStore
from hybrid_chat.services.knowledge_store import get_knowledge_store as _get_store
from hybrid_chat.services.llm import get_llm_provider
from hybrid_chat.services.search_cache import get_search_cache
from hybrid_chat.services.web_search import get_web_search_client

logger = logging.getLogger(__name__)

_orchestrator: ChatOrchestrator | None = None


def get_knowledge_store() -> KnowledgeStore:
    return _get_store()


def get_orchestrator() -> ChatOrchestrator:
    """Return the shared ChatOrchestrator, wiring it on first call."""
    global _orchestrator
    if _orchestrator is None:
        store = _get_store()
        _orchestrator = ChatOrchestrator(
            knowledge_agent=KnowledgeAgent(store),
            external_agent=ExternalAgent(
                client=get_web_search_client(),
                cache=get_search_cache(),
                scorer=get_priority_scorer(),
            ),
            llm=get_llm_provider(),
            expander=QueryExpander(),
        )
        logger.info("Chat orchestrator initialised (store=%s)", type(store).__name__)
    return _orchestrator
