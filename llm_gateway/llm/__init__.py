"""
Gateway LLM integration with dataclass-based architecture.

This package provides:
- Type-safe dataclass models
- An SSE streaming pipeline with explicit session states
- An aggregating client for the Einstein streaming gateway
- A chat-completion client for the LLM Express gateway
"""

from __future__ import annotations

from .cancellation import CancellationToken
from .client import ChatOptions, EinsteinChatClient, LLMExpressClient, ModelClient
from .exceptions import (
    ConfigurationError,
    LLMError,
    ProtocolError,
    SessionStateError,
    StreamCancelledError,
    StreamingError,
    TransportError,
)
from .models import (
    DEFAULT_MAX_TOKENS,
    AggregatedResult,
    ChatMessage,
    MessageRole,
    ModelConfiguration,
    RequestSpec,
)
from .transport import HttpxStreamTransport, StreamTransport

__all__ = [
    "DEFAULT_MAX_TOKENS",
    "AggregatedResult",
    "CancellationToken",
    "ChatMessage",
    "ChatOptions",
    # Exceptions
    "ConfigurationError",
    # Clients
    "EinsteinChatClient",
    "HttpxStreamTransport",
    "LLMError",
    "LLMExpressClient",
    "MessageRole",
    "ModelClient",
    "ModelConfiguration",
    "ProtocolError",
    "RequestSpec",
    "SessionStateError",
    "StreamCancelledError",
    "StreamTransport",
    "StreamingError",
    "TransportError",
]
