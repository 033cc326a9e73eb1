# =============================================================================
# Models Package: Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API, including the chat stream
# event union. These are SEPARATE from the database models
# (hybrid_chat/db/models.py) and the store's dataclasses.
#
# DESIGN DECISION: API schemas are separate from storage types:
# 1. API schemas define what clients see (public contract, camelCase)
# 2. Storage types define how data is kept (internal concern)
# 3. Embedding vectors never leave the server
# =============================================================================
