# =============================================================================
# Hybrid Search Chat
# =============================================================================
# Answers questions by searching a local knowledge base and the web in
# parallel, then streams a citation-bearing answer over Server-Sent Events.
# Interrupted answers resume from the text already generated.
#
# Package structure:
#   hybrid_chat/
#   ├── api/          → FastAPI route handlers (chat stream, knowledge ingestion)
#   ├── agents/       → Retrieval agents, LangGraph search graph, answer composer
#   ├── db/           → Database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas, chat events
#   └── services/     → Ranking, stores, LLM/embedding/web-search clients,
#                        resumable streaming, caching
# =============================================================================
