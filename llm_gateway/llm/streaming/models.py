"""
Streaming-specific models.

Three layers live here:
- ``SSERecord``: one raw ``event:``/``data:`` record split out of the byte stream
- pydantic payload schemas mirroring the gateway's generation envelope
- the classified chunk union handed to sessions and observers
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..models import MessageRole

GENERATION_EVENT = "generation"
ERROR_EVENT = "error"
DONE_TOKEN = "DONE"


class SessionState(Enum):
    """Lifecycle of one streaming session."""
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)


class AccumulationPolicy(Enum):
    """How repeated generations with the same id are merged."""
    APPEND = "append"
    REPLACE = "replace"


@dataclass(frozen=True)
class SSERecord:
    """One server-sent event as split from the text stream."""
    event: str | None
    data: str
    id: str | None = None


# --------------------------------------------------------------------------- #
# Wire payloads                                                               #
# --------------------------------------------------------------------------- #


class ToolFunctionPayload(BaseModel):
    name: str
    arguments: str = ""


class ToolInvocationPayload(BaseModel):
    id: str
    function: ToolFunctionPayload


class GenerationParametersPayload(BaseModel):
    finish_reason: str | None = None
    index: int | None = None
    logprobs: Any = None


class GenerationPayload(BaseModel):
    """One entry of ``generation_details.generations``."""
    model_config = ConfigDict(extra="allow")

    id: str
    role: Literal["system", "user", "assistant"] = "assistant"
    content: str | None = None
    timestamp: float | None = None
    parameters: GenerationParametersPayload = Field(
        default_factory=GenerationParametersPayload
    )
    tool_invocations: list[ToolInvocationPayload] | None = None


class BatchParametersPayload(BaseModel):
    """Provider metadata sent alongside each batch of generations."""
    model_config = ConfigDict(extra="allow")

    provider: str | None = None
    created: int | float | None = None
    model: str | None = None
    system_fingerprint: str | None = None
    object: str | None = None
    usage: Any = None


# --------------------------------------------------------------------------- #
# Classified chunks                                                           #
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call requested by the model."""
    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class GenerationEvent:
    """One validated generation; ``id`` is the accumulation key."""
    id: str
    role: MessageRole
    content: str
    finish_reason: str | None = None
    index: int | None = None
    log_probability: Any = None
    tool_invocations: tuple[ToolInvocation, ...] | None = None
    timestamp: float | None = None


@dataclass(frozen=True)
class GenerationBatch:
    """A generation chunk: its events in list order plus provider metadata."""
    events: tuple[GenerationEvent, ...]
    batch_id: str | None = None
    provider: str | None = None
    model: str | None = None
    created: int | float | None = None
    system_fingerprint: str | None = None
    usage: Any = None
    dropped_generations: int = 0
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class DoneSignal:
    """The stream ended normally."""


@dataclass(frozen=True)
class ErrorSignal:
    """The backend reported a failure inside the stream."""
    message: str
    raw: Any = None


@dataclass(frozen=True)
class Unrecognized:
    """Keep-alives, metadata and anything else that is not ours to handle."""
    reason: str
    raw: Any = None


ClassifiedChunk = GenerationBatch | DoneSignal | ErrorSignal | Unrecognized
