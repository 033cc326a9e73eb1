# =============================================================================
# External Agent: Web Search with Scoping, Priority and Caching
# =============================================================================
#
# PIPELINE:
#   cache lookup (query::limit)
#     → web search (bounded by agent timeout)
#     → normalise URLs to https, drop results without a usable URL
#     → flag in-scope results (domain allow-list + per-host path prefixes)
#     → priority score (title keywords), stable sort desc
#     → prefer in-scope results; otherwise out-of-scope ones with a note
#     → truncate to `limit`, cache non-empty results for the TTL
#
# Errors never escape: a failed search becomes AgentFailure with a note
# that classifies the cause (timeout, auth, model, rate limit, network).
# The answer is then generated from the knowledge base alone.
#
# DESIGN DECISION: An empty allow-list means "no scoping": every result
# is in scope. Deployments that cite only trusted sites configure
# EXTERNAL_ALLOWED_DOMAINS.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urljoin, urlsplit, urlunsplit

from hybrid_chat.agents.base import AgentFailure, AgentResult, AgentSuccess, ExternalHit
from hybrid_chat.config import settings
from hybrid_chat.services.heuristics import PriorityScorer
from hybrid_chat.services.search_cache import SearchCache, cache_key
from hybrid_chat.services.web_search import RawSearchItem, WebSearchClient

logger = logging.getLogger(__name__)

MAX_SNIPPET_CHARS = 600

NOTE_NOT_CONFIGURED = "Web search is not configured (PERPLEXITY_API_KEY missing)"
NOTE_NO_RESULTS = "No relevant web results found"
NOTE_OUT_OF_SCOPE = "No results from the preferred sites; showing results from other sites"


# ---------------------------------------------------------------------------
# URL Helpers
# ---------------------------------------------------------------------------


def normalize_url(url: str, base: str | None = None) -> str | None:
    """
    Canonical https form of `url`, or None if it has no host.

    Relative links are resolved against `base` when one is given.
    """
    candidate = url.strip()
    parts = urlsplit(candidate)
    if not parts.netloc and base:
        parts = urlsplit(urljoin(base, candidate))
    if not parts.netloc or parts.scheme not in ("", "http", "https"):
        return None
    return urlunsplit(parts._replace(scheme="https", netloc=parts.netloc.lower()))


def _host_matches(host: str, domain: str) -> bool:
    domain = domain.lower().lstrip(".")
    return host == domain or host.endswith("." + domain)


def _under_prefix(url: str, prefix: str) -> bool:
    # Prefixes match whole path segments: "/docs" covers "/docs/x", not "/docs-old"
    base = prefix.rstrip("/")
    return url == base or url.startswith(tuple(base + sep for sep in "/?#"))


def is_in_scope(
    url: str,
    allowed_domains: list[str],
    allowed_path_prefixes: list[str],
) -> bool:
    """
    Whether a normalised URL is on the allow-list.

    The host must match an allowed domain (or be a subdomain of one). Hosts
    that appear in `allowed_path_prefixes` are further restricted to URLs
    under one of their prefixes.
    """
    if not allowed_domains:
        return True
    host = (urlsplit(url).hostname or "").lower()
    if not any(_host_matches(host, domain) for domain in allowed_domains):
        return False

    host_prefixes = [
        prefix
        for prefix in (normalize_url(p) for p in allowed_path_prefixes)
        if prefix and (urlsplit(prefix).hostname or "") == host
    ]
    if not host_prefixes:
        return True
    return any(_under_prefix(url, prefix) for prefix in host_prefixes)


def classify_search_error(exc: BaseException) -> str:
    """Human-readable cause of a failed web search."""
    message = f"{type(exc).__name__}: {exc}".lower()
    if isinstance(exc, asyncio.TimeoutError) or "timeout" in message or "timed out" in message or "abort" in message:
        cause = "Web search timed out, try again later"
    elif "api key" in message or "unauthorized" in message or "authentication" in message or "401" in message:
        cause = "Web search API key is invalid or missing"
    elif "model" in message or "not found" in message or "404" in message:
        cause = "Web search model is unavailable, check the configuration"
    elif "rate limit" in message or "ratelimit" in message or "429" in message:
        cause = "Web search is rate limited, try again later"
    elif "network" in message or "connection" in message or "fetch" in message:
        cause = "Network error while searching the web"
    else:
        cause = "Web search failed"
    return f"{cause}. Answering from the knowledge base."


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class ExternalAgent:
    """
    Args:
        client: Web search client, or None when search is not configured.
        cache: Result cache shared across requests.
        scorer: Title-keyword priority scorer.
        allowed_domains / allowed_path_prefixes: Scoping allow-lists.
        cache_ttl_seconds: Lifetime of cached results.
        timeout: Seconds allowed for one web search.
    """

    name = "external"

    def __init__(
        self,
        client: WebSearchClient | None,
        cache: SearchCache,
        scorer: PriorityScorer | None = None,
        allowed_domains: list[str] | None = None,
        allowed_path_prefixes: list[str] | None = None,
        cache_ttl_seconds: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._scorer = scorer or PriorityScorer()
        self._allowed_domains = (
            allowed_domains if allowed_domains is not None
            else settings.external_allowed_domains
        )
        self._allowed_path_prefixes = (
            allowed_path_prefixes if allowed_path_prefixes is not None
            else settings.external_allowed_path_prefixes
        )
        self._cache_ttl = (
            cache_ttl_seconds if cache_ttl_seconds is not None
            else settings.web_search_cache_ttl_seconds
        )
        self._timeout = timeout if timeout is not None else settings.agent_timeout_seconds

    @property
    def _relative_base(self) -> str | None:
        if self._allowed_path_prefixes:
            return self._allowed_path_prefixes[0]
        if self._allowed_domains:
            return f"https://{self._allowed_domains[0]}/"
        return None

    async def search(self, query: str, limit: int) -> AgentResult:
        trimmed = query.strip()
        if not trimmed:
            return AgentSuccess(agent="external")

        key = cache_key(trimmed, limit)
        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("External search cache hit for %.50r", trimmed)
            return AgentSuccess(
                agent="external",
                hits=tuple(ExternalHit.from_dict(h) for h in cached["hits"]),
                note=cached.get("note"),
            )

        if self._client is None:
            return AgentSuccess(agent="external", note=NOTE_NOT_CONFIGURED)

        try:
            raw_items = await asyncio.wait_for(
                self._client.search(trimmed, limit), self._timeout,
            )
        except Exception as e:
            note = classify_search_error(e)
            logger.warning("External search failed: %s (%s)", str(e) or type(e).__name__, note)
            return AgentFailure(
                agent="external",
                error=str(e) or type(e).__name__,
                note=note,
            )

        ranked = self._rank(trimmed, raw_items)
        in_scope = [hit for hit in ranked if hit.in_scope]

        if in_scope:
            hits, note = in_scope[:limit], None
        elif ranked:
            hits, note = ranked[:limit], NOTE_OUT_OF_SCOPE
        else:
            logger.info(
                "External search for %.50r produced no usable results (%d raw)",
                trimmed, len(raw_items),
            )
            return AgentSuccess(agent="external", note=NOTE_NO_RESULTS)

        await self._cache.set(
            key,
            {"hits": [hit.to_dict() for hit in hits], "note": note},
            self._cache_ttl,
        )
        logger.debug(
            "External search: %d raw, %d ranked, %d in scope, %d returned",
            len(raw_items), len(ranked), len(in_scope), len(hits),
        )
        return AgentSuccess(agent="external", hits=tuple(hits), note=note)

    def _rank(self, query: str, items: list[RawSearchItem]) -> list[ExternalHit]:
        hits: list[ExternalHit] = []
        base = self._relative_base
        for item in items:
            url = normalize_url(item.url, base)
            if url is None:
                logger.debug("Dropping search result with unusable URL: %r", item.url)
                continue
            title = item.title.strip() or url
            hits.append(
                ExternalHit(
                    title=title,
                    url=url,
                    snippet=item.snippet[:MAX_SNIPPET_CHARS].strip(),
                    priority_score=self._scorer.score(query, title),
                    in_scope=is_in_scope(
                        url, self._allowed_domains, self._allowed_path_prefixes,
                    ),
                )
            )
        # list.sort is stable: equal scores keep provider order
        hits.sort(key=lambda hit: hit.priority_score, reverse=True)
        return hits
