# =============================================================================
# Hybrid Ranking: Vector + Lexical Scoring
# =============================================================================
#
# Pure scoring functions shared by the in-memory knowledge store and the
# tests. The PostgreSQL backend computes the same two terms in SQL
# (`1 - (embedding <=> q)` and `ts_rank_cd`), so the functions here mirror
# those semantics rather than any particular relevance model.
#
# SCORING:
#   vector term  = cosine similarity floored at 0, present only when the
#                  query AND the chunk both carry an embedding
#   lexical term = present when every query token occurs in the chunk
#                  (full-text match) or the whole query occurs as a
#                  case-insensitive substring; substring-only matches
#                  contribute 0.0
#   combined     = vector term + lexical term, a missing term counts as 0
#
# A chunk with neither term is not a hit.
#
# ORDERING: combined score desc → chunk order asc → chunk updated_at desc.
# =============================================================================

from __future__ import annotations

import math
import re
from collections import Counter
from datetime import datetime

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens, the in-memory analogue of the 'simple' parser."""
    return _TOKEN_RE.findall(text.lower())


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 for zero-length or zero-norm vectors instead of raising.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def lexical_score(query: str, content: str) -> float | None:
    """
    Lexical relevance of `content` for `query`.

    Returns:
        The share of content tokens that are query tokens when every query
        token occurs in the content; 0.0 when only the raw query occurs as
        a substring; None when the chunk does not match at all.
    """
    query_tokens = set(tokenize(query))
    content_tokens = tokenize(content)

    if query_tokens and content_tokens:
        counts = Counter(content_tokens)
        if all(counts[token] for token in query_tokens):
            matched = sum(counts[token] for token in query_tokens)
            return matched / len(content_tokens)

    needle = query.strip().lower()
    if needle and needle in content.lower():
        return 0.0
    return None


def vector_score(
    query_embedding: list[float] | None,
    chunk_embedding: list[float] | None,
) -> float | None:
    """
    Cosine similarity floored at 0.0, or None when either side has no
    embedding. Opposed vectors rank like unrelated ones.
    """
    if query_embedding is None or chunk_embedding is None:
        return None
    return max(0.0, cosine_similarity(query_embedding, chunk_embedding))


def combined_score(vector: float | None, lexical: float | None) -> float | None:
    """Sum of the present terms, or None when neither is present."""
    if vector is None and lexical is None:
        return None
    return (vector or 0.0) + (lexical or 0.0)


def ranking_key(score: float, order: int, updated_at: datetime) -> tuple:
    """Sort key: score desc, order asc, newest first."""
    return (-score, order, -updated_at.timestamp())
