# =============================================================================
# Agent Results: Success or Failure, Never an Exception
# =============================================================================
#
# Both retrieval agents return an AgentResult. The orchestrator gathers the
# two concurrently and must always get two results back, so agents convert
# every internal error into an AgentFailure instead of raising.
#
#   AgentSuccess(agent, hits, note=None)
#   AgentFailure(agent, error, note=None)      hits is always empty
#
# DESIGN DECISION: Two frozen dataclasses over one class with a `success`
# flag. A failure cannot carry hits by construction, and callers can
# still read `.success`, `.hits`, `.note` and `.error` uniformly.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

AgentName = Literal["knowledge", "external"]


@dataclass(frozen=True)
class ExternalHit:
    """A normalised web search result."""

    title: str
    url: str               # canonical https URL
    snippet: str = ""      # at most 600 characters
    priority_score: float = 0.0
    in_scope: bool = True  # host (and path) on the configured allow-list

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "url": self.url,
            "snippet": self.snippet,
            "priority_score": self.priority_score,
            "in_scope": self.in_scope,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ExternalHit:
        return cls(
            title=data["title"],
            url=data["url"],
            snippet=data.get("snippet", ""),
            priority_score=data.get("priority_score", 0.0),
            in_scope=data.get("in_scope", True),
        )


@dataclass(frozen=True)
class AgentSuccess:
    agent: AgentName
    hits: tuple = field(default_factory=tuple)  # SearchHit or ExternalHit values
    note: str | None = None

    @property
    def success(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None


@dataclass(frozen=True)
class AgentFailure:
    agent: AgentName
    error: str
    note: str | None = None

    @property
    def success(self) -> bool:
        return False

    @property
    def hits(self) -> tuple:
        return ()


AgentResult = Union[AgentSuccess, AgentFailure]
