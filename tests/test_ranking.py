# =============================================================================
# Unit Tests: Hybrid Ranking Functions
# =============================================================================

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hybrid_chat.services.ranking import (
    combined_score,
    cosine_similarity,
    lexical_score,
    ranking_key,
    tokenize,
    vector_score,
)


class TestTokenize:
    def test_lowercases_and_splits_on_punctuation(self):
        assert tokenize("Retry-Budget, TWO!") == ["retry", "budget", "two"]

    def test_keeps_unicode_words(self):
        assert tokenize("Café Überblick") == ["café", "überblick"]


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch(self):
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0


class TestLexicalScore:
    def test_all_query_tokens_present(self):
        # 2 of 4 content tokens are query tokens
        assert lexical_score("retry budget", "the retry budget applies") == pytest.approx(0.5)

    def test_denser_match_scores_higher(self):
        short = lexical_score("retry", "retry policy")
        long = lexical_score("retry", "the retry policy of the client library")
        assert short > long

    def test_missing_token_is_no_match(self):
        assert lexical_score("retry budget", "the retry policy") is None

    def test_substring_only_match_scores_zero(self):
        # "etry" is not a token of the content, but is a substring of it
        assert lexical_score("etry", "the retry policy") == 0.0

    def test_substring_is_case_insensitive(self):
        assert lexical_score("RETRY POL", "the retry policy") == 0.0

    def test_no_match(self):
        assert lexical_score("timeout", "the retry policy") is None


class TestVectorAndCombinedScore:
    def test_vector_score_needs_both_embeddings(self):
        assert vector_score(None, [1.0]) is None
        assert vector_score([1.0], None) is None

    def test_vector_score_floored_at_zero(self):
        assert vector_score([1.0, 0.0], [-1.0, 0.0]) == 0.0

    def test_combined_sums_present_terms(self):
        assert combined_score(0.75, 0.25) == pytest.approx(1.0)
        assert combined_score(None, 0.25) == pytest.approx(0.25)
        assert combined_score(0.75, None) == pytest.approx(0.75)

    def test_combined_none_when_neither_term(self):
        assert combined_score(None, None) is None

    def test_zero_lexical_term_still_counts_as_match(self):
        assert combined_score(None, 0.0) == 0.0


class TestRankingKey:
    def test_score_then_order_then_recency(self):
        now = datetime.now(timezone.utc)
        older = now - timedelta(minutes=5)
        keys = [
            ("low", ranking_key(0.1, 0, now)),
            ("high-order-2", ranking_key(0.9, 2, now)),
            ("high-order-1-old", ranking_key(0.9, 1, older)),
            ("high-order-1-new", ranking_key(0.9, 1, now)),
        ]
        ranked = [name for name, key in sorted(keys, key=lambda item: item[1])]
        assert ranked == ["high-order-1-new", "high-order-1-old", "high-order-2", "low"]
