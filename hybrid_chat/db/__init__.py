# =============================================================================
# Database Package
# =============================================================================
# Provides async SQLAlchemy engine, session management, and ORM models.
#
# Key exports:
#   - async_session_factory: sessions for the pgvector knowledge store
#   - Base: SQLAlchemy declarative base for ORM models
#   - KnowledgeDocumentRow, KnowledgeChunkRow: knowledge store tables
# =============================================================================
