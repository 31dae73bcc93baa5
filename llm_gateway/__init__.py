"""Clients for the Einstein streaming gateway and the LLM Express gateway."""

from __future__ import annotations

from .config import Configuration, EinsteinDevModel, LLMExpressModel
from .llm import (
    AggregatedResult,
    CancellationToken,
    ChatMessage,
    ChatOptions,
    EinsteinChatClient,
    LLMError,
    LLMExpressClient,
    MessageRole,
    ModelConfiguration,
)

__all__ = [
    "AggregatedResult",
    "CancellationToken",
    "ChatMessage",
    "ChatOptions",
    "Configuration",
    "EinsteinChatClient",
    "EinsteinDevModel",
    "LLMError",
    "LLMExpressClient",
    "LLMExpressModel",
    "MessageRole",
    "ModelConfiguration",
]
