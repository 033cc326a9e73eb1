# =============================================================================
# API Package: FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - chat.py: POST /api/v1/chat, answers streamed as SSE
#   - knowledge.py: document ingestion and listing
#   - deps.py: dependency providers (orchestrator, knowledge store)
# =============================================================================
