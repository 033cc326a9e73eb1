# =============================================================================
# Query Heuristics: Follow-Ups, Expansion, External Priority
# =============================================================================
#
# Small keyword-driven rules applied around retrieval:
#
# - build_context_aware_question(): folds the previous user question into a
#   follow-up ("what about the timeout?") so both agents search for
#   something meaningful.
# - QueryExpander: appends domain vocabulary to the knowledge-base query
#   (configured QueryExpansionRule list).
# - PriorityScorer: ranks external results by title keywords (configured
#   PriorityRule list).
#
# DESIGN DECISION: All keyword lists live in settings, so deployments tune
# them without code changes. With the defaults (no rules), expansion is the
# identity and every external result scores 0.
#
# Keyword matching: ASCII keywords match whole words; other keywords (e.g.
# CJK, written without spaces) match as substrings of the
# whitespace-stripped text.
# =============================================================================

from __future__ import annotations

import re
from collections.abc import Sequence

from hybrid_chat.config import PriorityRule, QueryExpansionRule, settings

_WORD_RE = re.compile(r"[a-z0-9']+")
_WS_RE = re.compile(r"\s+")


def _is_ascii_word(keyword: str) -> bool:
    return keyword.isascii()


def _contains(text: str, terms: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(term.lower() in lowered for term in terms)


# ---------------------------------------------------------------------------
# Follow-up Questions
# ---------------------------------------------------------------------------


def is_follow_up_question(
    question: str,
    max_chars: int | None = None,
    prefix_keywords: Sequence[str] | None = None,
    reference_keywords: Sequence[str] | None = None,
) -> bool:
    """
    Whether `question` only makes sense next to the previous question.

    True when it has at most `max_chars` non-whitespace characters, starts
    with a continuation keyword, or contains a referring keyword.
    """
    if max_chars is None:
        max_chars = settings.followup_max_chars
    if prefix_keywords is None:
        prefix_keywords = settings.followup_prefix_keywords
    if reference_keywords is None:
        reference_keywords = settings.followup_reference_keywords

    lowered = question.lower().strip()
    compact = _WS_RE.sub("", lowered)
    if not compact:
        return False
    if len(compact) <= max_chars:
        return True

    words = _WORD_RE.findall(lowered)

    for keyword in prefix_keywords:
        keyword = keyword.lower()
        if _is_ascii_word(keyword):
            kw_words = keyword.split()
            if words[: len(kw_words)] == kw_words:
                return True
        elif compact.startswith(_WS_RE.sub("", keyword)):
            return True

    word_set = set(words)
    for keyword in reference_keywords:
        keyword = keyword.lower()
        if _is_ascii_word(keyword):
            if keyword in word_set:
                return True
        elif _WS_RE.sub("", keyword) in compact:
            return True

    return False


def latest_user_question(history: Sequence) -> str | None:
    """Most recent non-blank user turn in `history` (objects with role/content)."""
    for message in reversed(history):
        if message.role != "user":
            continue
        content = message.content.strip()
        if content:
            return content
    return None


def build_context_aware_question(
    question: str,
    history: Sequence,
    max_length: int | None = None,
) -> str:
    """
    The search query for `question` given the conversation so far.

    A follow-up is prefixed with the latest user question; the result is
    truncated to its last `max_length` characters, since the new question
    sits at the end and matters most.
    """
    if max_length is None:
        max_length = settings.context_query_max_length

    trimmed = question.strip()
    if not history or not is_follow_up_question(trimmed):
        return trimmed

    previous = latest_user_question(history)
    if not previous:
        return trimmed

    combined = f"{previous} {trimmed}".strip()
    if combined == trimmed:
        return trimmed
    if len(combined) > max_length:
        combined = combined[-max_length:]
    return combined


# ---------------------------------------------------------------------------
# Query Expansion
# ---------------------------------------------------------------------------


class QueryExpander:
    """
    Appends vocabulary from every matching QueryExpansionRule.

    Terms already present in the query, or appended by an earlier rule,
    are not repeated.
    """

    def __init__(self, rules: Sequence[QueryExpansionRule] | None = None) -> None:
        self._rules = list(rules if rules is not None else settings.query_expansion_rules)

    def expand(self, query: str) -> str:
        additions: list[str] = []
        for rule in self._rules:
            if not _contains(query, rule.trigger_terms):
                continue
            if rule.skip_if_present and _contains(query, rule.skip_if_present):
                continue
            for term in rule.append_terms:
                if term not in additions and not _contains(query, [term]):
                    additions.append(term)
        if not additions:
            return query
        return f"{query} {' '.join(additions)}"


# ---------------------------------------------------------------------------
# External Result Priority
# ---------------------------------------------------------------------------


class PriorityScorer:
    """
    Scores an external result title against the query.

    Each applicable PriorityRule (no query_terms, or one of them in the
    query) adds its boost when the title contains one of its title_terms.
    """

    def __init__(self, rules: Sequence[PriorityRule] | None = None) -> None:
        self._rules = list(rules if rules is not None else settings.external_priority_rules)

    def _applicable(self, query: str) -> list[PriorityRule]:
        return [
            rule
            for rule in self._rules
            if not rule.query_terms or _contains(query, rule.query_terms)
        ]

    def score(self, query: str, title: str) -> float:
        return sum(
            rule.boost
            for rule in self._applicable(query)
            if _contains(title, rule.title_terms)
        )

    def hint_terms(self, query: str) -> list[str]:
        """Title terms of query-triggered rules the query does not mention yet."""
        terms: list[str] = []
        for rule in self._applicable(query):
            if not rule.query_terms:
                continue
            for term in rule.title_terms:
                if term not in terms and not _contains(query, [term]):
                    terms.append(term)
        return terms


_scorer: PriorityScorer | None = None


def get_priority_scorer() -> PriorityScorer:
    global _scorer
    if _scorer is None:
        _scorer = PriorityScorer()
    return _scorer
