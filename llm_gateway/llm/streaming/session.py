"""
One streaming chat turn, from request to terminal state.

A ``StreamingSession`` moves ``idle -> requesting -> streaming`` and ends in
exactly one of ``completed`` or ``failed``. Observers see, per chunk,
``on_chunk`` then ``on_generation``/``on_content`` for each event in list
order; ``on_error`` (failures only) and ``on_end`` close the session.
``on_end`` is always the last notification and fires exactly once.

Establishment failures are raised from ``start`` and notify nobody.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AsyncExitStack
from typing import Any

import httpx

from ...logging_utils import ErrorClassifier, get_logger
from ..cancellation import CancellationToken
from ..exceptions import (
    LLMError,
    ProtocolError,
    SessionStateError,
    StreamingError,
    TransportError,
)
from ..models import RequestSpec
from ..transport import PROVIDER_NAME, StreamChunkSource, StreamTransport
from .models import (
    ClassifiedChunk,
    DoneSignal,
    ErrorSignal,
    GenerationBatch,
    GenerationEvent,
    SessionState,
    Unrecognized,
)
from .parser import EventCodec

logger = get_logger(__name__)


class StreamObserver:
    """
    Receives session notifications; override the ones you need.

    ``on_chunk`` fires only for generation batches. DONE markers, keep-alives
    and unrecognized chunks are consumed by the session without a notification.
    """

    def on_chunk(self, chunk: GenerationBatch) -> None:
        pass

    def on_generation(self, event: GenerationEvent) -> None:
        pass

    def on_content(self, content: str) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass

    def on_end(self) -> None:
        pass


class CallbackObserver(StreamObserver):
    """Adapts plain callables to ``StreamObserver``."""

    def __init__(
        self,
        *,
        on_chunk: Callable[[GenerationBatch], Any] | None = None,
        on_generation: Callable[[GenerationEvent], Any] | None = None,
        on_content: Callable[[str], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
        on_end: Callable[[], Any] | None = None,
    ) -> None:
        self._on_chunk = on_chunk
        self._on_generation = on_generation
        self._on_content = on_content
        self._on_error = on_error
        self._on_end = on_end

    def on_chunk(self, chunk: GenerationBatch) -> None:
        if self._on_chunk:
            self._on_chunk(chunk)

    def on_generation(self, event: GenerationEvent) -> None:
        if self._on_generation:
            self._on_generation(event)

    def on_content(self, content: str) -> None:
        if self._on_content:
            self._on_content(content)

    def on_error(self, error: Exception) -> None:
        if self._on_error:
            self._on_error(error)

    def on_end(self) -> None:
        if self._on_end:
            self._on_end()


def build_request_body(request: RequestSpec) -> dict[str, Any]:
    """Outbound JSON body for the streaming generation endpoint."""
    body: dict[str, Any] = {
        "model": request.model_id,
        "messages": [message.to_dict() for message in request.messages],
        "max_tokens": request.max_tokens,
        "generation_settings": {
            "max_tokens": request.max_tokens,
            "parameters": dict(request.extra_parameters),
        },
        "stream": True,
    }
    if request.temperature is not None:
        body["temperature"] = request.temperature
    return body


class StreamingSession:
    """Owns one streaming request and its notifications."""

    def __init__(
        self,
        transport: StreamTransport,
        *,
        require_done: bool = False,
        codec: EventCodec | None = None,
    ) -> None:
        self._transport = transport
        self.require_done = require_done
        self.codec = codec or EventCodec()
        self._state = SessionState.IDLE
        self._observers: list[StreamObserver] = []
        self._model = "unknown"
        self.error: Exception | None = None
        self.done_received = False

    @property
    def state(self) -> SessionState:
        return self._state

    def add_observer(self, observer: StreamObserver) -> StreamObserver:
        """Register an observer; only allowed before ``start``."""
        if self._state is not SessionState.IDLE:
            raise SessionStateError(
                f"Cannot add observers to a session in state {self._state.value}"
            )
        self._observers.append(observer)
        return observer

    def subscribe(self, **callbacks: Callable[..., Any] | None) -> StreamObserver:
        """Register plain callables (``on_content=...``, ``on_end=...``)."""
        return self.add_observer(CallbackObserver(**callbacks))

    async def start(
        self,
        request: RequestSpec,
        cancel_token: CancellationToken | None = None,
    ) -> SessionState:
        """
        Run the session to a terminal state.

        Returns the terminal state. Raises ``SessionStateError`` if the
        session was already started, and ``TransportError`` (or
        ``StreamCancelledError``) when the stream never opened.
        """
        if self._state is not SessionState.IDLE:
            raise SessionStateError(
                "A streaming session can only be started once",
                provider=PROVIDER_NAME,
                model=request.model_id,
            )
        self._model = request.model_id
        self._transition(SessionState.REQUESTING)

        stack = AsyncExitStack()
        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            stream = await stack.enter_async_context(
                self._transport.open(build_request_body(request))
            )
        except LLMError as e:
            self._fail_establishment(e)
            raise
        except (httpx.HTTPError, OSError) as e:
            error = TransportError(
                f"Failed to open stream: {e!s}",
                provider=PROVIDER_NAME,
                model=self._model,
            )
            self._fail_establishment(error)
            raise error from e
        except Exception:
            self._transition(SessionState.FAILED)
            raise

        failure: Exception | None = None
        async with stack:
            self._transition(SessionState.STREAMING)
            try:
                await self._consume(stream, cancel_token)
            except Exception as e:
                failure = e

        if failure is not None:
            self._finish_failed(failure)
        else:
            self._finish_completed()
        return self._state

    async def _consume(
        self,
        stream: StreamChunkSource,
        cancel_token: CancellationToken | None,
    ) -> None:
        async for raw in stream:
            for chunk in self.codec.feed(raw):
                if self._dispatch(chunk):
                    return
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

        for chunk in self.codec.flush():
            if self._dispatch(chunk):
                return

        if self.require_done:
            raise ProtocolError(
                "Stream ended without a DONE marker",
                provider=PROVIDER_NAME,
                model=self._model,
            )
        logger.debug("Stream ended without DONE marker", model=self._model)

    def _dispatch(self, chunk: ClassifiedChunk) -> bool:
        """Notify observers about one chunk; True once the stream is done."""
        match chunk:
            case GenerationBatch(events=events):
                self._notify("on_chunk", chunk)
                for event in events:
                    self._notify("on_generation", event)
                    if event.content:
                        self._notify("on_content", event.content)
                return False
            case DoneSignal():
                self.done_received = True
                return True
            case ErrorSignal(message=message, raw=raw):
                raise StreamingError(
                    message,
                    provider=PROVIDER_NAME,
                    model=self._model,
                    response_data=raw if isinstance(raw, dict) else None,
                )
            case Unrecognized(reason=reason):
                logger.debug("Ignoring unrecognized chunk", reason=reason)
                return False

    def _notify(self, method: str, *args: Any) -> None:
        for observer in self._observers:
            getattr(observer, method)(*args)

    def _notify_terminal(self, error: Exception | None = None) -> None:
        """
        Deliver ``on_error`` (when failing) and ``on_end`` to every observer.

        An observer that raises does not stop the others; the first
        exception is re-raised once everyone has seen ``on_end``.
        """
        raised: list[Exception] = []
        methods = ["on_end"] if error is None else ["on_error", "on_end"]
        for method in methods:
            args = (error,) if method == "on_error" else ()
            for observer in self._observers:
                try:
                    getattr(observer, method)(*args)
                except Exception as e:
                    logger.warning(
                        "Observer raised during terminal notification",
                        model=self._model,
                        notification=method,
                        **ErrorClassifier.error_context(e),
                    )
                    raised.append(e)
        if raised:
            raise raised[0]

    def _transition(self, state: SessionState) -> None:
        logger.debug(
            "Session state change",
            model=self._model,
            from_state=self._state.value,
            to_state=state.value,
        )
        self._state = state

    def _fail_establishment(self, error: Exception) -> None:
        self.error = error
        self._transition(SessionState.FAILED)
        logger.warning(
            "Stream could not be established",
            model=self._model,
            **ErrorClassifier.error_context(error),
        )

    def _finish_completed(self) -> None:
        self._transition(SessionState.COMPLETED)
        logger.info(
            "Streaming session completed",
            model=self._model,
            done_received=self.done_received,
            **self.codec.get_stats(),
        )
        self._notify_terminal()

    def _finish_failed(self, error: Exception) -> None:
        self.error = error
        self._transition(SessionState.FAILED)
        logger.warning(
            "Streaming session failed",
            model=self._model,
            **ErrorClassifier.error_context(error),
        )
        self._notify_terminal(error)
