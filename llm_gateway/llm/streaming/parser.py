"""
SSE event codec and generation accumulation for the generation gateway.

The codec turns the gateway's text stream into classified chunks:
- ``SSEDecoder`` splits text into records, buffering partial lines
- ``decode_record`` parses a record's data payload
- ``classify`` maps a decoded object onto the chunk union
- ``EventCodec`` ties the three together and keeps counters

``GenerationAccumulator`` merges generations that share an id.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from ..exceptions import ProtocolError, SessionStateError
from ..models import ChatMessage, MessageRole
from .models import (
    DONE_TOKEN,
    ERROR_EVENT,
    GENERATION_EVENT,
    AccumulationPolicy,
    BatchParametersPayload,
    ClassifiedChunk,
    DoneSignal,
    ErrorSignal,
    GenerationBatch,
    GenerationEvent,
    GenerationPayload,
    SSERecord,
    ToolInvocation,
    Unrecognized,
)

logger = structlog.get_logger(__name__)

DONE_LITERALS = frozenset({DONE_TOKEN, "[DONE]"})
HEARTBEAT_LITERALS = frozenset({"", "ping", "heartbeat"})


class SSEDecoder:
    """
    Incremental ``text/event-stream`` decoder.

    Text may arrive split at any point; incomplete lines and records are
    held until the next ``feed`` or ``flush``.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._bytes_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._event: str | None = None
        self._id: str | None = None
        self._data_lines: list[str] = []

    def feed(self, chunk: str | bytes) -> list[SSERecord]:
        """Consume one transport chunk, returning every record it completes."""
        if isinstance(chunk, bytes):
            chunk = self._bytes_decoder.decode(chunk)
        self._buffer += chunk

        # A trailing CR may be the first half of a CRLF split across reads
        held = ""
        work = self._buffer
        if work.endswith("\r"):
            work, held = work[:-1], "\r"
        work = work.replace("\r\n", "\n").replace("\r", "\n")

        *lines, rest = work.split("\n")
        self._buffer = rest + held

        records = []
        for line in lines:
            record = self._process_line(line)
            if record is not None:
                records.append(record)
        return records

    def flush(self) -> list[SSERecord]:
        """End of stream: emit whatever complete-enough record remains."""
        tail = self._bytes_decoder.decode(b"", final=True)
        remaining = (self._buffer + tail).replace("\r\n", "\n").replace("\r", "\n")
        self._buffer = ""

        records = []
        for line in remaining.split("\n"):
            if line:
                self._process_line(line)
        record = self._dispatch()
        if record is not None:
            records.append(record)
        return records

    def _process_line(self, line: str) -> SSERecord | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data_lines.append(value)
        elif name == "id":
            self._id = value
        # retry and unknown fields carry nothing we use
        return None

    def _dispatch(self) -> SSERecord | None:
        if not self._data_lines:
            self._event = None
            return None
        record = SSERecord(
            event=self._event,
            data="\n".join(self._data_lines),
            id=self._id,
        )
        self._event = None
        self._data_lines = []
        return record


def decode_record(record: SSERecord) -> dict[str, Any] | None:
    """
    Parse a record into the ``{"event": ..., "data": ...}`` object shape.

    Returns None when the data is not JSON (and not one of the bare
    DONE/heartbeat tokens), so the caller can skip it.
    """
    data = record.data.strip()

    if data in DONE_LITERALS:
        return {"event": record.event, "data": DONE_TOKEN}
    if data in HEARTBEAT_LITERALS:
        return {"event": record.event, "data": data}

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        if record.event == ERROR_EVENT:
            return {"event": record.event, "data": data}
        return None

    if _is_done(payload):
        payload = DONE_TOKEN
    return {"event": record.event, "data": payload}


def classify(obj: Any) -> ClassifiedChunk:
    """
    Classify one decoded object.

    Accepts both ``decode_record`` output and objects already decoded by
    an upstream SSE library.
    """
    if not isinstance(obj, Mapping):
        return Unrecognized("chunk is not an object", raw=obj)

    event = obj.get("event")
    data = obj.get("data")

    if event == ERROR_EVENT:
        return ErrorSignal(_error_message(data), raw=obj)
    if event != GENERATION_EVENT:
        return Unrecognized(f"unhandled event type {event!r}", raw=obj)
    if _is_done(data):
        return DoneSignal()
    if not isinstance(data, Mapping):
        return Unrecognized("generation data is not an object", raw=obj)

    details = data.get("generation_details")
    if not isinstance(details, Mapping) or not isinstance(
        details.get("generations"), list
    ):
        return Unrecognized("missing generation_details.generations", raw=obj)

    events = []
    dropped = 0
    for item in details["generations"]:
        try:
            events.append(_to_event(GenerationPayload.model_validate(item)))
        except ValidationError as e:
            dropped += 1
            logger.debug(
                "Dropping invalid generation",
                errors=e.error_count(),
                generation_id=item.get("id") if isinstance(item, Mapping) else None,
            )

    batch_id = data.get("id")
    return GenerationBatch(
        events=tuple(events),
        batch_id=batch_id if isinstance(batch_id, str) else None,
        dropped_generations=dropped,
        raw=obj,
        **_batch_metadata(details.get("parameters")),
    )


def _batch_metadata(parameters: Any) -> dict[str, Any]:
    """Provider metadata for a batch; unusable metadata reads as empty."""
    try:
        params = BatchParametersPayload.model_validate(parameters or {})
    except ValidationError as e:
        logger.debug("Ignoring invalid batch parameters", errors=e.error_count())
        params = BatchParametersPayload()
    return {
        "provider": params.provider,
        "model": params.model,
        "created": params.created,
        "system_fingerprint": params.system_fingerprint,
        "usage": params.usage,
    }


def _is_done(data: Any) -> bool:
    if isinstance(data, str):
        return data.strip() in DONE_LITERALS
    return isinstance(data, list) and len(data) == 1 and data[0] == DONE_TOKEN


def _error_message(data: Any) -> str:
    if isinstance(data, Mapping):
        if isinstance(data.get("message"), str):
            return data["message"]
        error = data.get("error")
        if isinstance(error, Mapping) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        return json.dumps(data)
    if data is None or data == "":
        return "backend reported an error"
    return str(data)


def _to_event(generation: GenerationPayload) -> GenerationEvent:
    invocations = None
    if generation.tool_invocations is not None:
        invocations = tuple(
            ToolInvocation(
                id=invocation.id,
                name=invocation.function.name,
                arguments=invocation.function.arguments,
            )
            for invocation in generation.tool_invocations
        )
    return GenerationEvent(
        id=generation.id,
        role=MessageRole(generation.role),
        content=generation.content or "",
        finish_reason=generation.parameters.finish_reason,
        index=generation.parameters.index,
        log_probability=generation.parameters.logprobs,
        tool_invocations=invocations,
        timestamp=generation.timestamp,
    )


class EventCodec:
    """SSE codec with counters for monitoring."""

    def __init__(self) -> None:
        self._decoder = SSEDecoder()
        self.stats = self._empty_stats()

    def feed(self, chunk: Any) -> list[ClassifiedChunk]:
        """
        Classify one transport chunk.

        Text and bytes go through the SSE decoder. Mappings are treated as
        already-decoded records; event objects from an SSE library (anything
        with ``event`` and ``data`` attributes) are decoded like raw records.
        """
        if isinstance(chunk, (str, bytes)):
            return self._classify_records(self._decoder.feed(chunk))
        if isinstance(chunk, Mapping):
            return [self._classify(chunk)]
        if hasattr(chunk, "event") and hasattr(chunk, "data"):
            return self._classify_event_object(chunk)
        raise ProtocolError(
            f"Unsupported stream chunk type: {type(chunk).__name__}",
            response_data={"chunk": repr(chunk)[:200]},
        )

    def _classify_event_object(self, chunk: Any) -> list[ClassifiedChunk]:
        if isinstance(chunk.data, str):
            record = SSERecord(
                event=chunk.event or None,
                data=chunk.data,
                id=getattr(chunk, "id", None),
            )
            return self._classify_records([record])
        self.stats["records"] += 1
        return [self._classify({"event": chunk.event, "data": chunk.data})]

    def flush(self) -> list[ClassifiedChunk]:
        """Classify the trailing record left at end of stream, if any."""
        return self._classify_records(self._decoder.flush())

    def _classify_records(self, records: list[SSERecord]) -> list[ClassifiedChunk]:
        chunks = []
        for record in records:
            self.stats["records"] += 1
            decoded = decode_record(record)
            if decoded is None:
                self.stats["malformed_records"] += 1
                logger.debug(
                    "Skipping malformed SSE record",
                    sse_event=record.event,
                    data_preview=record.data[:80],
                )
                continue
            chunks.append(self._classify(decoded))
        return chunks

    def _classify(self, obj: Mapping[str, Any]) -> ClassifiedChunk:
        chunk = classify(obj)
        match chunk:
            case GenerationBatch(events=events, dropped_generations=dropped):
                self.stats["generation_events"] += len(events)
                self.stats["dropped_generations"] += dropped
            case DoneSignal():
                self.stats["done_signals"] += 1
            case ErrorSignal():
                self.stats["error_signals"] += 1
            case Unrecognized():
                self.stats["unrecognized_chunks"] += 1
        return chunk

    def get_stats(self) -> dict[str, int]:
        """Get codec counters for monitoring."""
        return self.stats.copy()

    def reset_stats(self) -> None:
        """Reset codec counters."""
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> dict[str, int]:
        return {
            "records": 0,
            "malformed_records": 0,
            "unrecognized_chunks": 0,
            "generation_events": 0,
            "dropped_generations": 0,
            "done_signals": 0,
            "error_signals": 0,
        }


@dataclass
class GenerationRecord:
    """Accumulated state for one generation id."""
    id: str
    role: MessageRole
    parts: list[str] = field(default_factory=list)
    finish_reason: str | None = None
    tool_invocations: tuple[ToolInvocation, ...] | None = None
    updates: int = 0

    @property
    def content(self) -> str:
        return "".join(self.parts)

    def to_message(self) -> ChatMessage:
        return ChatMessage(self.role, self.content)


class GenerationAccumulator:
    """
    Merges generation events into one message per generation id.

    With ``APPEND`` each event's content is appended to what the id already
    holds, so upstream must send deltas; a backend that resends the full
    text on every chunk needs ``REPLACE``. Ids keep first-seen order.
    """

    def __init__(self, policy: AccumulationPolicy = AccumulationPolicy.APPEND):
        self.policy = policy
        self._records: dict[str, GenerationRecord] = {}
        self._finalized = False

    def on_event(self, event: GenerationEvent) -> None:
        if self._finalized:
            raise SessionStateError("Accumulator already finalized")

        record = self._records.get(event.id)
        if record is None:
            record = GenerationRecord(id=event.id, role=event.role)
            self._records[event.id] = record

        if self.policy is AccumulationPolicy.REPLACE:
            record.parts = [event.content]
        else:
            record.parts.append(event.content)

        record.updates += 1
        if event.finish_reason is not None:
            record.finish_reason = event.finish_reason
        if event.tool_invocations:
            record.tool_invocations = event.tool_invocations

    def records(self) -> list[GenerationRecord]:
        """Accumulated records in first-seen order."""
        return list(self._records.values())

    def finalize(self) -> list[ChatMessage]:
        """One message per generation id, in first-seen order."""
        if self._finalized:
            raise SessionStateError("Accumulator already finalized")
        self._finalized = True
        return [record.to_message() for record in self._records.values()]

    def __len__(self) -> int:
        return len(self._records)
