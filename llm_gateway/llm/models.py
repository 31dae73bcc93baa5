"""
Core dataclasses for gateway chat interactions.

This module provides the foundational dataclasses shared by both clients:
- Message structures
- Per-call request specification
- The terminal result of a chat call
- Model/endpoint configuration supplied by the configuration layer
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import ConfigurationError

DEFAULT_MAX_TOKENS = 2048


class MessageRole(Enum):
    """Conversation roles understood by both gateways."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    """One turn of a conversation."""
    role: MessageRole
    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.role, MessageRole):
            object.__setattr__(self, "role", MessageRole(self.role))

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(MessageRole.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(MessageRole.ASSISTANT, content)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChatMessage:
        return cls(MessageRole(data["role"]), str(data["content"]))

    def to_dict(self) -> dict[str, str]:
        """Wire form: ``{"role": ..., "content": ...}``."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class RequestSpec:
    """Everything needed to build one outbound streaming request."""
    model_id: str
    messages: tuple[ChatMessage, ...]
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float | None = None
    extra_parameters: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregatedResult:
    """
    Terminal value of a chat call.

    Exactly one of ``error`` and ``messages`` is set.
    """
    error: Exception | None = None
    messages: tuple[ChatMessage, ...] | None = None

    def __post_init__(self) -> None:
        if (self.error is None) == (self.messages is None):
            raise ValueError(
                "AggregatedResult needs exactly one of error or messages"
            )

    @classmethod
    def success(cls, messages: Sequence[ChatMessage]) -> AggregatedResult:
        return cls(error=None, messages=tuple(messages))

    @classmethod
    def failure(cls, error: Exception) -> AggregatedResult:
        return cls(error=error, messages=None)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def text(self) -> str:
        """Concatenated content of all returned messages ("" on failure)."""
        if self.messages is None:
            return ""
        return "".join(message.content for message in self.messages)


@dataclass(frozen=True)
class ModelConfiguration:
    """
    Endpoint and model settings.

    Built by the configuration layer and passed by value into a client;
    the clients never read process-wide state themselves.
    """
    model: str
    base_url: str
    api_key: str = ""
    tenant_id: str = ""
    feature_id: str = "EinsteinForDevelopers"
    max_tokens: int | None = None
    model_provider: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=dict)

    # Connection settings, honoured by the HTTP transport only
    timeout: float = 60.0

    @property
    def resolved_max_tokens(self) -> int:
        return self.max_tokens if self.max_tokens is not None else DEFAULT_MAX_TOKENS

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if this configuration is unusable."""
        if not self.model:
            raise ConfigurationError("Model identifier must not be empty")
        if not self.base_url:
            raise ConfigurationError(
                f"Base URL must be configured for model '{self.model}'",
                model=self.model,
            )
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ConfigurationError(
                f"max_tokens must be positive, got {self.max_tokens}",
                model=self.model,
            )
        if self.timeout <= 0:
            raise ConfigurationError(
                f"timeout must be positive, got {self.timeout}",
                model=self.model,
            )
