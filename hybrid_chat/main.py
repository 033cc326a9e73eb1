# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Run locally:
#   uvicorn hybrid_chat.main:app --reload
#
# Routers:
#   POST /api/v1/chat                 streamed answers (api/chat.py)
#   GET  /api/v1/knowledge/documents  document listing (api/knowledge.py)
#   POST /api/v1/knowledge/documents  document ingestion (api/knowledge.py)
#   GET  /health                      liveness probe
#
# DESIGN DECISION: Nothing external is contacted at startup. The LLM
# provider, web search client and database connections are created on
# first use, so /health answers even when a dependency is misconfigured.
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hybrid_chat.api import chat, knowledge
from hybrid_chat.config import settings
from hybrid_chat.db.engine import async_engine
from hybrid_chat.models.responses import HealthResponse

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s v%s (knowledge_store=%s, llm=%s/%s)",
        settings.app_name, settings.app_version,
        settings.knowledge_store_type, settings.llm_provider, settings.llm_model,
    )
    yield
    await async_engine.dispose()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.app_name,
    description=(
        "Hybrid knowledge-base and web search chat with citation-bearing, "
        "resumable streamed answers."
    ),
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router)
app.include_router(knowledge.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
