"""
Error taxonomy for gateway LLM operations.

This module provides errors with rich context:
- Transport establishment failures (non-2xx status, network failure)
- Mid-stream failures and explicit error events
- Protocol violations (missing DONE marker, unexpected response shape)
- Cooperative cancellation
- Programmer misuse (bad configuration, restarted sessions)
"""

from __future__ import annotations


class LLMError(Exception):
    """Base LLM error with rich context."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        model: str = "unknown",
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.response_data = response_data or {}


class TransportError(LLMError):
    """The request could not be sent or the backend refused it."""

    def __init__(
        self,
        message: str,
        response_text: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.response_text = response_text


class StreamingError(LLMError):
    """Streaming-specific errors."""
    pass


class ProtocolError(StreamingError):
    """The backend broke the expected wire protocol."""
    pass


class StreamCancelledError(StreamingError):
    """A cancellation token stopped the stream."""

    def __init__(self, message: str = "stream cancelled", **kwargs):
        super().__init__(message, **kwargs)


class ConfigurationError(LLMError, ValueError):
    """Invalid client configuration or call arguments."""
    pass


class SessionStateError(LLMError, RuntimeError):
    """A streaming session was driven out of order."""
    pass
