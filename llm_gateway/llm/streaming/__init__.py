"""
Streaming pipeline for the generation gateway.

This package contains:
- SSE decoding and chunk classification
- Generation accumulation
- The streaming session state machine and its observers
"""

from __future__ import annotations

from .models import (
    AccumulationPolicy,
    ClassifiedChunk,
    DoneSignal,
    ErrorSignal,
    GenerationBatch,
    GenerationEvent,
    SessionState,
    SSERecord,
    ToolInvocation,
    Unrecognized,
)
from .parser import (
    EventCodec,
    GenerationAccumulator,
    SSEDecoder,
    classify,
    decode_record,
)
from .session import (
    CallbackObserver,
    StreamingSession,
    StreamObserver,
    build_request_body,
)

__all__ = [
    "AccumulationPolicy",
    "CallbackObserver",
    "ClassifiedChunk",
    "DoneSignal",
    "ErrorSignal",
    "EventCodec",
    "GenerationAccumulator",
    "GenerationBatch",
    "GenerationEvent",
    "SSEDecoder",
    "SSERecord",
    "SessionState",
    "StreamObserver",
    "StreamingSession",
    "ToolInvocation",
    "Unrecognized",
    "build_request_body",
    "classify",
    "decode_record",
]
