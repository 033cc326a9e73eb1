# =============================================================================
# Unit Tests: Query Heuristics
# =============================================================================
#
# Follow-up detection, context-aware queries, query expansion and external
# result priority. Keyword lists are passed explicitly so the tests do not
# depend on deployment configuration.
# =============================================================================

from __future__ import annotations

from hybrid_chat.config import PriorityRule, QueryExpansionRule
from hybrid_chat.models.requests import ChatHistoryMessage
from hybrid_chat.services.heuristics import (
    PriorityScorer,
    QueryExpander,
    build_context_aware_question,
    is_follow_up_question,
    latest_user_question,
)

PREFIXES = ["and", "what about", "那"]
REFERENCES = ["it", "those", "这些"]


def _follow_up(question: str) -> bool:
    return is_follow_up_question(
        question, max_chars=10,
        prefix_keywords=PREFIXES, reference_keywords=REFERENCES,
    )


def _history(*turns: tuple[str, str]) -> tuple[ChatHistoryMessage, ...]:
    return tuple(ChatHistoryMessage(role=role, content=content) for role, content in turns)


# ---------------------------------------------------------------------------
# Test: Follow-up Detection
# ---------------------------------------------------------------------------


class TestFollowUpDetection:
    def test_short_question(self):
        assert _follow_up("and why?")

    def test_continuation_prefix(self):
        assert _follow_up("what about the connection timeout setting")

    def test_prefix_must_be_a_whole_word(self):
        assert not _follow_up("andromeda galaxy distance from earth")

    def test_reference_pronoun(self):
        assert _follow_up("how do I configure it for production use")

    def test_reference_must_be_a_whole_word(self):
        assert not _follow_up("how do I configure iterators in python")

    def test_cjk_keywords_match_as_substrings(self):
        assert _follow_up("这些参数在生产环境中应该如何配置比较合适")
        assert _follow_up("那 生产环境下的超时时间应该设置为多少比较合适")

    def test_standalone_question(self):
        assert not _follow_up("how do I configure the connection pool size")

    def test_blank_question(self):
        assert not _follow_up("   ")


class TestContextAwareQuestion:
    def test_without_history_question_is_unchanged(self):
        assert build_context_aware_question("  and it?  ", ()) == "and it?"

    def test_follow_up_prefixed_with_previous_user_question(self):
        history = _history(
            ("user", "How does the retry budget work?"),
            ("assistant", "It caps retries."),
        )
        result = build_context_aware_question("and why?", history)
        assert result == "How does the retry budget work? and why?"

    def test_standalone_question_ignores_history(self):
        history = _history(("user", "How does the retry budget work?"))
        question = "Which database drivers does the connection pool support today?"
        assert build_context_aware_question(question, history) == question

    def test_truncation_keeps_the_tail(self):
        history = _history(("user", "x" * 500))
        result = build_context_aware_question("and why?", history, max_length=50)
        assert len(result) == 50
        assert result.endswith("and why?")

    def test_latest_user_question_skips_assistant_turns(self):
        history = _history(
            ("user", "first"),
            ("user", "second"),
            ("assistant", "reply"),
        )
        assert latest_user_question(history) == "second"

    def test_no_user_turn(self):
        assert latest_user_question(_history(("assistant", "hello"))) is None


# ---------------------------------------------------------------------------
# Test: Query Expansion
# ---------------------------------------------------------------------------


class TestQueryExpander:
    def test_matching_rule_appends_terms(self):
        expander = QueryExpander([
            QueryExpansionRule(trigger_terms=["retry"], append_terms=["backoff", "budget"]),
        ])
        assert expander.expand("how to retry") == "how to retry backoff budget"

    def test_terms_already_present_are_skipped(self):
        expander = QueryExpander([
            QueryExpansionRule(trigger_terms=["retry"], append_terms=["backoff", "budget"]),
        ])
        assert expander.expand("retry budget") == "retry budget backoff"

    def test_skip_if_present(self):
        expander = QueryExpander([
            QueryExpansionRule(
                trigger_terms=["retry"],
                append_terms=["backoff"],
                skip_if_present=["grpc"],
            ),
        ])
        assert expander.expand("grpc retry") == "grpc retry"

    def test_rules_accumulate_without_duplicates(self):
        expander = QueryExpander([
            QueryExpansionRule(trigger_terms=["retry"], append_terms=["backoff"]),
            QueryExpansionRule(trigger_terms=["timeout"], append_terms=["backoff", "deadline"]),
        ])
        assert expander.expand("retry timeout") == "retry timeout backoff deadline"

    def test_no_rules_is_identity(self):
        assert QueryExpander([]).expand("anything") == "anything"


# ---------------------------------------------------------------------------
# Test: External Priority
# ---------------------------------------------------------------------------


class TestPriorityScorer:
    RULES = [
        PriorityRule(title_terms=["official"], boost=10.0),
        PriorityRule(query_terms=["release"], title_terms=["changelog"], boost=100.0),
    ]

    def test_unconditional_rule(self):
        scorer = PriorityScorer(self.RULES)
        assert scorer.score("anything", "Official Guide") == 10.0

    def test_query_triggered_rule(self):
        scorer = PriorityScorer(self.RULES)
        assert scorer.score("latest release", "Changelog 2.0") == 100.0
        assert scorer.score("install steps", "Changelog 2.0") == 0.0

    def test_boosts_add_up(self):
        scorer = PriorityScorer(self.RULES)
        assert scorer.score("release notes", "Official changelog") == 110.0

    def test_hint_terms_only_from_triggered_rules(self):
        scorer = PriorityScorer(self.RULES)
        assert scorer.hint_terms("latest release") == ["changelog"]
        assert scorer.hint_terms("release changelog") == []
        assert scorer.hint_terms("install") == []

    def test_no_rules_scores_zero(self):
        assert PriorityScorer([]).score("q", "title") == 0.0
