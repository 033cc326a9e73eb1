# =============================================================================
# Chat Error Taxonomy
# =============================================================================
#
# Every failure a chat client can observe maps to one stable code. Codes
# travel inside the SSE `error` event; the human-readable message always
# carries the request id so a report can be matched to server logs.
#
# Failures below the orchestrator never reach the client as exceptions:
# - agent failures become AgentFailure values (agents/base.py)
# - generation failures become ChatStreamError (services/resumable_stream.py)
# - invalid payloads become ChatValidationError
# Anything else is reported as CHAT_INTERNAL_ERROR.
# =============================================================================

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    CHAT_VALIDATION_ERROR = "CHAT_VALIDATION_ERROR"
    STREAM_NETWORK_ERROR = "STREAM_NETWORK_ERROR"      # no text produced yet
    STREAM_RETRY_EXHAUSTED = "STREAM_RETRY_EXHAUSTED"  # resumed max_retries times
    STREAM_ERROR = "STREAM_ERROR"                      # non-network generation failure
    CHAT_INTERNAL_ERROR = "CHAT_INTERNAL_ERROR"


class ChatError(Exception):
    """Base class for errors reported to chat clients with a stable code."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class ChatValidationError(ChatError):
    """The chat payload failed validation."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.CHAT_VALIDATION_ERROR, message)


class ChatStreamError(ChatError):
    """
    Answer generation failed.

    `accumulated_content` holds the text already streamed to the client,
    kept for diagnostics.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        accumulated_content: str = "",
    ) -> None:
        super().__init__(code, message)
        self.accumulated_content = accumulated_content
