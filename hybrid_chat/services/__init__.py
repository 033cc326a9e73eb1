# =============================================================================
# Services Package: Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - ranking.py: pure hybrid scoring functions (vector + lexical)
#   - knowledge_store.py: pluggable knowledge store (pgvector, in-memory)
#   - ingestion.py: token counting, best-effort embedding, chunk replacement
#   - embedder.py: OpenAI embedding generation (batch processing)
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - web_search.py: Perplexity-style web search client and result parsing
#   - search_cache.py: TTL cache for web search results (memory, Redis)
#   - heuristics.py: follow-up detection, query expansion, result priority
#   - resumable_stream.py: answer streaming with resume after network errors
#   - events.py: event sinks and SSE framing
# =============================================================================
