# =============================================================================
# Unit Tests: Resumable Stream Controller
# =============================================================================
#
# Token streams are scripted per attempt: each attempt yields some tokens
# and then either finishes or raises. No LLM involved.
# =============================================================================

from __future__ import annotations

import asyncio
import socket

import httpx
import pytest

from hybrid_chat.errors import ChatStreamError, ErrorCode
from hybrid_chat.services.resumable_stream import (
    Continuation,
    NetworkErrorClassifier,
    ResumableStream,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _scripted(*attempts):
    """
    Build a token-stream factory from (tokens, error) pairs, one per attempt.

    Returns the factory and the list of continuations it was called with.
    """
    calls: list[Continuation] = []

    def generate(continuation: Continuation):
        calls.append(continuation)
        tokens, error = attempts[len(calls) - 1]

        async def tokens_then_error():
            for token in tokens:
                yield token
            if error is not None:
                raise error

        return tokens_then_error()

    return generate, calls


async def _drain(stream: ResumableStream, out: list[str]) -> list[str]:
    async for token in stream.stream():
        out.append(token)
    return out


_CLASSIFIER = NetworkErrorClassifier(signatures=["connection reset", "fetch failed"])


# ---------------------------------------------------------------------------
# Test: Happy Path & Resumption
# ---------------------------------------------------------------------------


class TestResumableStream:
    def test_tokens_forwarded_in_order(self):
        generate, calls = _scripted((["The", " answer"], None))
        stream = ResumableStream(generate, max_retries=2, classifier=_CLASSIFIER)

        out = _run(_drain(stream, []))

        assert out == ["The", " answer"]
        assert stream.state.buffer == "The answer"
        assert stream.state.finished is True
        assert stream.state.retry_count == 0
        assert calls == [Continuation(prefix="", attempt=0)]

    def test_network_error_resumes_from_prefix(self):
        generate, calls = _scripted(
            (["The retry", " budget"], ConnectionResetError("peer reset")),
            ([" is two."], None),
        )
        stream = ResumableStream(generate, max_retries=2, classifier=_CLASSIFIER)

        out = _run(_drain(stream, []))

        assert out == ["The retry", " budget", " is two."]
        assert calls[1] == Continuation(prefix="The retry budget", attempt=1)
        assert calls[1].is_resume
        assert stream.state.retry_count == 1
        assert stream.state.buffer == "The retry budget is two."

    def test_buffered_text_not_re_emitted(self):
        generate, _ = _scripted(
            (["abc"], ConnectionError("connection reset")),
            (["def"], ConnectionError("connection reset")),
            (["ghi"], None),
        )
        stream = ResumableStream(generate, max_retries=2, classifier=_CLASSIFIER)

        out = _run(_drain(stream, []))

        assert "".join(out) == "abcdefghi"
        assert stream.state.retry_count == 2

    def test_resume_after_signature_match(self):
        generate, calls = _scripted(
            (["partial"], RuntimeError("TypeError: fetch failed")),
            (["rest"], None),
        )
        stream = ResumableStream(generate, max_retries=1, classifier=_CLASSIFIER)

        assert _run(_drain(stream, [])) == ["partial", "rest"]
        assert len(calls) == 2


# ---------------------------------------------------------------------------
# Test: Failure Mapping
# ---------------------------------------------------------------------------


class TestResumableStreamFailures:
    def test_network_error_before_first_token(self):
        generate, calls = _scripted(([], ConnectionResetError("peer reset")))
        stream = ResumableStream(generate, max_retries=2, classifier=_CLASSIFIER)

        with pytest.raises(ChatStreamError) as exc_info:
            _run(_drain(stream, []))

        assert exc_info.value.code == ErrorCode.STREAM_NETWORK_ERROR
        assert exc_info.value.accumulated_content == ""
        assert len(calls) == 1

    def test_retries_exhausted(self):
        generate, calls = _scripted(
            (["a"], ConnectionError("reset")),
            (["b"], ConnectionError("reset")),
            (["c"], ConnectionError("reset")),
        )
        stream = ResumableStream(generate, max_retries=2, classifier=_CLASSIFIER)
        out: list[str] = []

        with pytest.raises(ChatStreamError) as exc_info:
            _run(_drain(stream, out))

        assert exc_info.value.code == ErrorCode.STREAM_RETRY_EXHAUSTED
        assert exc_info.value.accumulated_content == "abc"
        assert out == ["a", "b", "c"]
        assert len(calls) == 3
        assert stream.state.retry_count == 2

    def test_zero_retries(self):
        generate, calls = _scripted((["a"], ConnectionError("reset")))
        stream = ResumableStream(generate, max_retries=0, classifier=_CLASSIFIER)

        with pytest.raises(ChatStreamError) as exc_info:
            _run(_drain(stream, []))

        assert exc_info.value.code == ErrorCode.STREAM_RETRY_EXHAUSTED
        assert len(calls) == 1

    def test_non_network_error_is_not_retried(self):
        generate, calls = _scripted((["a"], ValueError("invalid response payload")))
        stream = ResumableStream(generate, max_retries=2, classifier=_CLASSIFIER)

        with pytest.raises(ChatStreamError) as exc_info:
            _run(_drain(stream, []))

        assert exc_info.value.code == ErrorCode.STREAM_ERROR
        assert exc_info.value.accumulated_content == "a"
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert len(calls) == 1

    def test_negative_max_retries_rejected(self):
        generate, _ = _scripted(([], None))
        with pytest.raises(ValueError):
            ResumableStream(generate, max_retries=-1)


# ---------------------------------------------------------------------------
# Test: Network Error Classification
# ---------------------------------------------------------------------------


class TestNetworkErrorClassifier:
    def test_builtin_types(self):
        classifier = NetworkErrorClassifier(signatures=[])
        assert classifier.is_network_error(ConnectionRefusedError())
        assert classifier.is_network_error(TimeoutError())
        assert classifier.is_network_error(socket.gaierror(-2, "Name unknown"))
        assert classifier.is_network_error(httpx.ReadError("boom"))

    def test_signature_is_case_insensitive(self):
        classifier = NetworkErrorClassifier(signatures=["terminated"])
        assert classifier.is_network_error(RuntimeError("Stream TERMINATED"))

    def test_wrapped_cause_is_found(self):
        classifier = NetworkErrorClassifier(signatures=[])
        wrapper = RuntimeError("provider failed")
        wrapper.__cause__ = ConnectionResetError("reset")
        assert classifier.is_network_error(wrapper)

    def test_plain_errors_are_not_network(self):
        classifier = NetworkErrorClassifier(signatures=["econnreset"])
        assert not classifier.is_network_error(ValueError("bad input"))
        assert not classifier.is_network_error(KeyError("choices"))

    def test_custom_signatures_extend_classification(self):
        classifier = NetworkErrorClassifier(signatures=["upstream hiccup"])
        assert classifier.is_network_error(RuntimeError("Upstream hiccup, retry"))

    def test_default_signatures_from_settings(self):
        classifier = NetworkErrorClassifier()
        assert classifier.is_network_error(RuntimeError("ECONNRESET"))
        assert classifier.is_network_error(OSError("Temporary failure in name resolution"))
