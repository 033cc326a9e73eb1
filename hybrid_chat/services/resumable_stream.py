# =============================================================================
# Resumable Stream: Continue Generation After Transport Failures
# =============================================================================
#
# Wraps a token-stream factory so that a network interruption in the middle
# of an answer resumes generation from the text produced so far, instead of
# failing the request or restarting the answer from scratch.
#
# HOW IT WORKS:
#
#   attempt 0:  generate(Continuation(prefix="", attempt=0))
#                 "The retry" " budget" ✗ ConnectionResetError
#   attempt 1:  generate(Continuation(prefix="The retry budget", attempt=1))
#                 " is two." ✓
#
# The caller turns a non-empty prefix into an assistant turn plus a
# "continue without repeating" instruction (agents/composer.py), so the
# model picks up where it stopped. Only new tokens are forwarded; buffered
# text is never re-emitted.
#
# FAILURE MAPPING (all raised as ChatStreamError with the buffer attached):
#   network error, nothing generated yet   → STREAM_NETWORK_ERROR
#   network error, retries used up         → STREAM_RETRY_EXHAUSTED
#   any other error                        → STREAM_ERROR (never retried)
#
# DESIGN DECISION: Retrying with an empty buffer is pointless. Nothing has
# reached the client, so a failure before the first token is reported
# straight away and the client can simply resend the question.
# =============================================================================

from __future__ import annotations

import logging
import socket
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass

import anthropic
import httpx
import openai

from hybrid_chat.config import settings
from hybrid_chat.errors import ChatStreamError, ErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Continuation:
    """What a generation attempt should continue from."""

    prefix: str = ""
    attempt: int = 0

    @property
    def is_resume(self) -> bool:
        return bool(self.prefix)


@dataclass
class StreamState:
    """Per-request stream bookkeeping. The buffer only ever grows."""

    buffer: str = ""
    retry_count: int = 0
    finished: bool = False


# ---------------------------------------------------------------------------
# Network Error Classification
# ---------------------------------------------------------------------------

DEFAULT_NETWORK_ERROR_TYPES: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    httpx.TransportError,
    openai.APIConnectionError,
    anthropic.APIConnectionError,
)


class NetworkErrorClassifier:
    """
    Decides whether an exception means "the transport broke".

    An exception counts as a network error when it, or any exception in its
    `__cause__` / `__context__` chain, is an instance of one of the network
    exception types or its message contains one of the signatures
    (case-insensitive). SDKs often wrap the socket error, hence the chain walk.
    """

    def __init__(
        self,
        signatures: Iterable[str] | None = None,
        exception_types: Iterable[type[BaseException]] | None = None,
    ) -> None:
        if signatures is None:
            signatures = settings.stream_network_error_signatures
        if exception_types is None:
            exception_types = DEFAULT_NETWORK_ERROR_TYPES
        self._signatures = tuple(s.lower() for s in signatures if s)
        self._types = tuple(exception_types)

    def is_network_error(self, exc: BaseException) -> bool:
        seen: set[int] = set()
        current: BaseException | None = exc
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            if isinstance(current, self._types):
                return True
            message = f"{type(current).__name__}: {current}".lower()
            if any(signature in message for signature in self._signatures):
                return True
            current = current.__cause__ or current.__context__
        return False


# ---------------------------------------------------------------------------
# Stream Controller
# ---------------------------------------------------------------------------

TokenStreamFactory = Callable[[Continuation], AsyncIterator[str]]


class ResumableStream:
    """
    One resumable answer stream. Single use: create one per request.

    Args:
        generate: Called once per attempt with the continuation to honour;
            returns an async iterator of text fragments.
        max_retries: Resume attempts allowed after the first attempt.
            Defaults to `settings.stream_max_retries`.
        classifier: Network error classifier. Defaults to one built from
            settings.
    """

    def __init__(
        self,
        generate: TokenStreamFactory,
        max_retries: int | None = None,
        classifier: NetworkErrorClassifier | None = None,
    ) -> None:
        if max_retries is None:
            max_retries = settings.stream_max_retries
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._generate = generate
        self._max_retries = max_retries
        self._classifier = classifier or NetworkErrorClassifier()
        self.state = StreamState()

    async def stream(self) -> AsyncIterator[str]:
        """Yield answer tokens, resuming transparently after network errors."""
        state = self.state
        continuation = Continuation()

        while True:
            source = self._generate(continuation)
            iterator = source.__aiter__()
            try:
                while True:
                    try:
                        token = await iterator.__anext__()
                    except StopAsyncIteration:
                        state.finished = True
                        return
                    except Exception as exc:
                        continuation = self._handle_failure(exc)
                        break
                    state.buffer += token
                    yield token
            finally:
                await _close(iterator)

    def _handle_failure(self, exc: Exception) -> Continuation:
        """Return the next continuation, or raise the mapped ChatStreamError."""
        state = self.state

        if not self._classifier.is_network_error(exc):
            logger.error(
                "Answer generation failed after %d chars: %s",
                len(state.buffer), exc,
            )
            raise ChatStreamError(
                ErrorCode.STREAM_ERROR,
                "Answer generation failed",
                accumulated_content=state.buffer,
            ) from exc

        if not state.buffer:
            logger.warning("Answer stream interrupted before any output: %s", exc)
            raise ChatStreamError(
                ErrorCode.STREAM_NETWORK_ERROR,
                "Network connection lost before the answer started",
                accumulated_content=state.buffer,
            ) from exc

        if state.retry_count >= self._max_retries:
            logger.warning(
                "Answer stream interrupted again, retries exhausted (%d/%d, %d chars)",
                state.retry_count, self._max_retries, len(state.buffer),
            )
            raise ChatStreamError(
                ErrorCode.STREAM_RETRY_EXHAUSTED,
                f"Network connection lost; gave up after {state.retry_count} resume attempts",
                accumulated_content=state.buffer,
            ) from exc

        state.retry_count += 1
        logger.warning(
            "Answer stream interrupted (%s); resuming (retry %d/%d) from %d chars",
            exc, state.retry_count, self._max_retries, len(state.buffer),
        )
        return Continuation(prefix=state.buffer, attempt=state.retry_count)


async def _close(iterator: AsyncIterator[str]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()
