# =============================================================================
# Agents Package: Parallel Retrieval and Answer Generation
# =============================================================================
#   - base.py: AgentSuccess / AgentFailure result types
#   - knowledge.py: hybrid search over the local knowledge base
#   - external.py: scoped, prioritised, cached web search
#   - orchestrator.py: LangGraph fan-out/fan-in of both agents, citation
#     merge, event emission, resumable generation
#   - composer.py: prompt and message construction for the answering LLM
# =============================================================================
