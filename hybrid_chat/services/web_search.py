# =============================================================================
# Web Search Client: "Online" LLM as a Search Provider
# =============================================================================
#
# Perplexity's `sonar` models search the web and answer through the OpenAI
# chat completions API. We ask for a bare JSON array of
#   {"title": ..., "url": ..., "snippet": ...}
# and parse the reply into RawSearchItem values.
#
# DESIGN DECISION: Reuse OpenAICompatibleProvider rather than a bespoke
# HTTP client. Base URL, API key and timeout are all the provider's
# constructor arguments, and errors surface as the openai SDK's typed
# exceptions, which the external agent classifies into notes.
#
# DESIGN DECISION: Tolerant parsing. Models ignore "JSON only" instructions
# often enough that we accept, in order:
#   1. the reply itself as a JSON array
#   2. the reply with ```json fences stripped
#   3. the outermost [...] span inside surrounding prose
#   4. failing all of that, bare URLs found in the text (allow-listed hosts
#      only, when an allow-list is configured)
#
# This client only searches. URL normalisation, scoping, ranking and
# caching belong to the external agent (agents/external.py).
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlsplit

from hybrid_chat.config import settings
from hybrid_chat.services.llm import OpenAICompatibleProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawSearchItem:
    """One search result as returned by the provider, before normalisation."""

    title: str
    url: str
    snippet: str = ""


class WebSearchClient(Protocol):
    async def search(self, query: str, limit: int) -> list[RawSearchItem]:
        """
        Search the web.

        Raises on transport, auth and provider errors; an empty list means
        the provider found nothing.
        """
        ...


# ---------------------------------------------------------------------------
# Response Parsing
# ---------------------------------------------------------------------------

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```\s*$")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_URL_RE = re.compile(r"https?://[^\s)\"'<>\]]+")


def _host_allowed(url: str, allowed_domains: list[str]) -> bool:
    if not allowed_domains:
        return True
    host = (urlsplit(url).hostname or "").lower()
    return any(
        host == domain or host.endswith("." + domain)
        for domain in (d.lower() for d in allowed_domains)
    )


def _items_from_json(data: object) -> list[RawSearchItem]:
    if not isinstance(data, list):
        raise ValueError("search reply is not a JSON array")
    items: list[RawSearchItem] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        url = str(entry.get("url") or "").strip()
        if not url:
            logger.debug("Skipping search result without URL: %s", entry)
            continue
        items.append(
            RawSearchItem(
                title=str(entry.get("title") or "").strip(),
                url=url,
                snippet=str(entry.get("snippet") or "").strip(),
            )
        )
    return items


def _title_from_url(url: str) -> str:
    path = urlsplit(url).path.rstrip("/")
    last = path.rsplit("/", 1)[-1] if path else ""
    return last or url


def parse_search_content(
    content: str,
    allowed_domains: list[str] | None = None,
) -> list[RawSearchItem]:
    """Parse a search reply into items. Never raises; unparseable → []."""
    cleaned = content.strip()
    if not cleaned:
        return []

    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", cleaned))

    match = _ARRAY_RE.search(cleaned)
    candidate = match.group(0) if match else cleaned
    try:
        return _items_from_json(json.loads(candidate))
    except ValueError as e:
        logger.warning(
            "Search reply is not a JSON array (%s): %.300s", e, content,
        )

    urls: list[str] = []
    for found in _URL_RE.findall(content):
        url = found.rstrip(".,;")
        if url not in urls and _host_allowed(url, allowed_domains or []):
            urls.append(url)
    if urls:
        logger.info("Extracted %d URLs from unstructured search reply", len(urls))
    return [RawSearchItem(title=_title_from_url(url), url=url) for url in urls]


# ---------------------------------------------------------------------------
# Perplexity Client
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = (
    "You are a search assistant. Find documents that answer the user's "
    "question and reply strictly in the JSON format requested."
)


def build_search_prompt(
    query: str,
    limit: int,
    allowed_domains: list[str],
    preferred_title_terms: list[str] | None = None,
) -> str:
    lines = ["Search the web for documents that answer the question below."]
    if allowed_domains:
        lines.append("Only return pages from these sites:")
        lines.extend(f"- {domain}" for domain in allowed_domains)
    lines.extend(
        [
            "",
            "Requirements:",
            f"1. Return at most {limit} results.",
            "2. Each result has: title, url (full link), snippet (under 100 words).",
            "3. Reply with a JSON array only: no prose, no markdown fences.",
            "4. If nothing relevant is found, reply with [].",
        ]
    )
    if preferred_title_terms:
        terms = ", ".join(f'"{term}"' for term in preferred_title_terms)
        lines.append(f"5. Prefer documents whose titles mention {terms}.")
    lines.extend(
        [
            "",
            f"Question: {query}",
            "",
            'Example: [{"title": "Page title", "url": "https://example.com/page", '
            '"snippet": "Short excerpt..."}]',
        ]
    )
    return "\n".join(lines)


class PerplexitySearchClient:
    """WebSearchClient backed by an OpenAI-compatible search model."""

    def __init__(
        self,
        provider: OpenAICompatibleProvider | None = None,
        allowed_domains: list[str] | None = None,
        hint_terms: Callable[[str], list[str]] | None = None,
    ) -> None:
        self._provider = provider or OpenAICompatibleProvider(
            api_key=settings.perplexity_api_key,
            model=settings.web_search_model,
            base_url=settings.web_search_base_url,
            timeout=settings.web_search_timeout_seconds,
        )
        self._allowed_domains = (
            allowed_domains
            if allowed_domains is not None
            else settings.external_allowed_domains
        )
        # Title terms worth asking the model to prefer for a given query
        self._hint_terms = hint_terms

    async def search(self, query: str, limit: int) -> list[RawSearchItem]:
        preferred = self._hint_terms(query) if self._hint_terms else None
        response = await self._provider.complete(
            messages=[
                {
                    "role": "user",
                    "content": build_search_prompt(
                        query, limit, self._allowed_domains, preferred,
                    ),
                }
            ],
            system=_SYSTEM_PROMPT,
            temperature=0.2,
            max_tokens=2000,
        )
        content = response.content.strip()
        if not content:
            logger.warning("Web search returned empty content for %r", query)
            return []
        items = parse_search_content(content, self._allowed_domains)
        logger.debug("Web search for %r returned %d raw items", query, len(items))
        return items


_client: PerplexitySearchClient | None = None


def get_web_search_client() -> PerplexitySearchClient | None:
    """
    Lazy singleton; None when no PERPLEXITY_API_KEY is configured.

    The external agent treats a missing client as "search not configured"
    and answers from the knowledge base alone.
    """
    global _client
    if _client is None and settings.perplexity_api_key:
        from hybrid_chat.services.heuristics import get_priority_scorer

        _client = PerplexitySearchClient(hint_terms=get_priority_scorer().hint_terms)
    return _client
