# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# DESIGN DECISION: Async SQLAlchemy Engine
# FastAPI is an async framework, so we use SQLAlchemy's async engine to avoid
# blocking the event loop during database operations:
# - All DB queries use `await` (e.g., `await session.execute(...)`)
# - We use `asyncpg` as the PostgreSQL driver
# - The knowledge store opens one session per operation
#
# COMMIT POLICY:
# Sessions come from `async_session_factory()` and are used inside
# `async with session.begin():`, which commits on exit and rolls back when
# the block raises. Chunk replacement relies on this to stay atomic.
#
# Creating the engine does not open a connection; the first query does.
# Processes that run with KNOWLEDGE_STORE_TYPE=memory never touch it.
# =============================================================================

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from hybrid_chat.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - echo (debug mode): logs every SQL statement.
# - pool_size / max_overflow: persistent connections plus burst headroom.
#   Each chat request holds a connection only for the duration of one
#   knowledge search.
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
)

# ---------------------------------------------------------------------------
# Session Factory
# ---------------------------------------------------------------------------
# - expire_on_commit=False: ORM objects stay readable after commit, so the
#   store can convert them into plain dataclasses once the session is gone.
# ---------------------------------------------------------------------------
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

