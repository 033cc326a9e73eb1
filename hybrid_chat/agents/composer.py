# =============================================================================
# Answer Composer: Generation Request Builder
# =============================================================================
#
# Turns the two agent results into the messages for the answering LLM and
# starts a streamed generation.
#
# MESSAGE LAYOUT:
#   system     assistant_system_prompt + answering rules
#   ...        conversation history (blank turns dropped)
#   user       question, retrieval status, evidence sections
#   assistant  text generated before an interruption      (resume only)
#   user       "continue without repeating" instruction   (resume only)
#
# DESIGN DECISION: Retrieval status is spelled out in the prompt, failures
# included. When the web search timed out the model says so instead of
# claiming nothing exists, and still answers from the knowledge base.
#
# DESIGN DECISION: Evidence is numbered [1], [2], ... across both sections,
# knowledge excerpts first, so the model can cite without ambiguity.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence

from hybrid_chat.agents.base import AgentResult
from hybrid_chat.config import settings
from hybrid_chat.services.llm import LLMProvider
from hybrid_chat.services.resumable_stream import Continuation

logger = logging.getLogger(__name__)


ANSWER_RULES = (
    "Rules:\n"
    "- Base the answer on the knowledge-base excerpts first, when there are any\n"
    "- Combine them with the web results when both are relevant\n"
    "- Say where each statement comes from, e.g. 'According to the knowledge "
    "base...' or 'Recent web results show...'\n"
    "- Cite evidence using [1], [2], etc. matching the numbered sections\n"
    "- If web search failed, still answer from the knowledge base and mention "
    "that web results are temporarily unavailable\n"
    "- If no evidence was found, say so and answer cautiously"
)

CONTINUE_INSTRUCTION = (
    "The answer above was cut off by a network interruption. Continue it "
    "from exactly where it stopped. Do not repeat anything already written."
)

NO_EVIDENCE_INSTRUCTION = (
    "Neither the knowledge base nor web search returned relevant material. "
    "Answer cautiously from general knowledge, or say that no sources "
    "were found."
)


def build_system_prompt() -> str:
    return f"{settings.assistant_system_prompt}\n\n{ANSWER_RULES}"


# ---------------------------------------------------------------------------
# User Prompt
# ---------------------------------------------------------------------------


def _status_line(label: str, result: AgentResult) -> str:
    if result.success:
        if result.hits:
            line = f"{label}: succeeded, {len(result.hits)} results."
        else:
            line = f"{label}: succeeded, nothing relevant found."
    else:
        line = f"{label}: failed ({result.error or 'unknown reason'})."
    if result.note:
        line += f" Note: {result.note}"
    return line


def _knowledge_section(result: AgentResult, start: int) -> str:
    blocks = []
    for offset, hit in enumerate(result.hits):
        blocks.append(
            f"[{start + offset}] {hit.document.title}\n{hit.chunk.content}"
        )
    return "\n\n".join(blocks)


def _external_section(result: AgentResult, start: int) -> str:
    blocks = []
    for offset, hit in enumerate(result.hits):
        block = f"[{start + offset}] {hit.title}\nURL: {hit.url}"
        if hit.snippet:
            block += f"\nSummary: {hit.snippet}"
        blocks.append(block)
    return "\n\n".join(blocks)


def build_user_prompt(
    question: str,
    knowledge: AgentResult,
    external: AgentResult,
) -> str:
    """
    The final user turn: question, retrieval status and evidence.

    With no evidence at all, the evidence sections are replaced by an
    instruction to answer cautiously.
    """
    sections = [
        f"Question: {question}",
        "=== Retrieval status ===\n"
        + _status_line("Knowledge base search", knowledge)
        + "\n"
        + _status_line("Web search", external),
    ]

    if not knowledge.hits and not external.hits:
        sections.append(NO_EVIDENCE_INSTRUCTION)
        return "\n\n".join(sections)

    if knowledge.hits:
        sections.append(
            "=== Knowledge base excerpts ===\n" + _knowledge_section(knowledge, 1)
        )
    if external.hits:
        sections.append(
            "=== Web search results ===\n"
            + _external_section(external, len(knowledge.hits) + 1)
        )
    sections.append(
        "Answer the question using the material above. Even if it is "
        "incomplete, give as much useful information as it supports."
    )
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Messages & Generation
# ---------------------------------------------------------------------------


def build_messages(
    question: str,
    knowledge: AgentResult,
    external: AgentResult,
    history: Sequence = (),
    continuation: Continuation | None = None,
) -> list[dict[str, str]]:
    messages = [
        {"role": message.role, "content": message.content}
        for message in history
        if message.content.strip()
    ]
    messages.append(
        {"role": "user", "content": build_user_prompt(question, knowledge, external)}
    )
    if continuation is not None and continuation.is_resume:
        messages.append({"role": "assistant", "content": continuation.prefix})
        messages.append({"role": "user", "content": CONTINUE_INSTRUCTION})
    return messages


def stream_answer(
    llm: LLMProvider,
    question: str,
    knowledge: AgentResult,
    external: AgentResult,
    history: Sequence = (),
    continuation: Continuation | None = None,
) -> AsyncIterator[str]:
    """Start one generation attempt and return its token stream."""
    messages = build_messages(question, knowledge, external, history, continuation)
    logger.info(
        "Composing answer: knowledge=%d, external=%d, history=%d, resume=%s",
        len(knowledge.hits), len(external.hits), len(history),
        bool(continuation and continuation.is_resume),
    )
    return llm.stream(
        messages=messages,
        system=build_system_prompt(),
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )
