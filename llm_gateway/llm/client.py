"""
Chat clients for the Einstein streaming gateway and the LLM Express gateway.

Both clients turn a conversation into one ``AggregatedResult``. Backend and
transport failures come back in ``result.error``; only programmer errors
(bad configuration, empty conversation) are raised.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from ..logging_utils import ErrorClassifier, get_logger, operation_context
from .cancellation import CancellationToken
from .exceptions import ConfigurationError, LLMError, ProtocolError, TransportError
from .models import AggregatedResult, ChatMessage, ModelConfiguration, RequestSpec
from .streaming.models import AccumulationPolicy, GenerationBatch
from .streaming.parser import GenerationAccumulator
from .streaming.session import StreamingSession
from .transport import HttpxStreamTransport, StreamTransport

if TYPE_CHECKING:                                        # pragma: no cover
    from ..config import Configuration, EinsteinDevModel

logger = get_logger(__name__)

COMPLETIONS_PATH = "/chat/completions"


@dataclass
class ChatOptions:
    """Per-call options for ``ModelClient.chat``."""
    max_tokens: int | None = None
    temperature: float | None = None
    follow_up_messages: Sequence[ChatMessage] = ()
    on_content: Callable[[str], Any] | None = None
    on_chunk: Callable[[GenerationBatch], Any] | None = None
    cancel_token: CancellationToken | None = None


class ModelClient(ABC):
    """A chat backend that answers a conversation with one result."""

    config: ModelConfiguration

    @abstractmethod
    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> AggregatedResult:
        """Send ``messages`` and return the backend's answer or error."""

    async def close(self) -> None:
        """Release network resources."""

    def _conversation(
        self, messages: Sequence[ChatMessage], options: ChatOptions
    ) -> tuple[ChatMessage, ...]:
        conversation = tuple(messages) + tuple(options.follow_up_messages)
        if not conversation:
            raise ConfigurationError(
                "A chat needs at least one message", model=self.config.model
            )
        for message in conversation:
            if not isinstance(message, ChatMessage):
                raise ConfigurationError(
                    f"Expected ChatMessage, got {type(message).__name__}",
                    model=self.config.model,
                )
        return conversation

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class EinsteinChatClient(ModelClient):
    """
    Aggregating client for the streaming generation gateway.

    Every ``chat`` call runs one fresh ``StreamingSession`` and
    ``GenerationAccumulator``; nothing is shared between calls.
    """

    def __init__(
        self,
        config: ModelConfiguration,
        *,
        transport: StreamTransport | None = None,
        accumulation: AccumulationPolicy = AccumulationPolicy.APPEND,
        require_done: bool = False,
    ) -> None:
        config.validate()
        self.config = config
        self.accumulation = accumulation
        self.require_done = require_done
        self._owns_transport = transport is None
        self.transport: StreamTransport = transport or HttpxStreamTransport(config)

    @classmethod
    def from_model(
        cls,
        model: EinsteinDevModel | str,
        configuration: Configuration | None = None,
        **kwargs: Any,
    ) -> EinsteinChatClient:
        """Build a client from a named entry of the Einstein model table."""
        from ..config import Configuration

        configuration = configuration or Configuration()
        return cls(configuration.einstein_model(model), **kwargs)

    def build_request(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> RequestSpec:
        """Resolve the per-call request; max tokens: option, config, 2048."""
        options = options or ChatOptions()
        max_tokens = (
            options.max_tokens
            if options.max_tokens is not None
            else self.config.resolved_max_tokens
        )
        if max_tokens <= 0:
            raise ConfigurationError(
                f"max_tokens must be positive, got {max_tokens}",
                model=self.config.model,
            )
        return RequestSpec(
            model_id=self.config.model,
            messages=self._conversation(messages, options),
            max_tokens=max_tokens,
            temperature=options.temperature,
            extra_parameters=dict(self.config.parameters),
        )

    def create_session(self) -> StreamingSession:
        return StreamingSession(self.transport, require_done=self.require_done)

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> AggregatedResult:
        options = options or ChatOptions()
        request = self.build_request(messages, options)

        session = self.create_session()
        accumulator = GenerationAccumulator(self.accumulation)
        errors: list[Exception] = []

        def capture(error: Exception) -> None:
            # First failure wins
            if not errors:
                errors.append(error)

        session.subscribe(
            on_generation=accumulator.on_event,
            on_error=capture,
            on_content=options.on_content,
            on_chunk=options.on_chunk,
        )

        log = logger.bind(model=request.model_id, message_count=len(request.messages))
        start_time = time.perf_counter()
        try:
            await session.start(request, options.cancel_token)
        except LLMError as e:
            capture(e)
        duration = round((time.perf_counter() - start_time) * 1000, 2)

        if errors:
            log.warning(
                "Chat failed",
                duration_ms=duration,
                **ErrorClassifier.error_context(errors[0]),
            )
            return AggregatedResult.failure(errors[0])

        messages_out = accumulator.finalize()
        log.info(
            "Chat completed",
            duration_ms=duration,
            generations=len(messages_out),
            done_received=session.done_received,
        )
        return AggregatedResult.success(messages_out)

    async def close(self) -> None:
        if self._owns_transport and isinstance(self.transport, HttpxStreamTransport):
            await self.transport.close()


class LLMExpressClient(ModelClient):
    """Client for the plain (non-streaming) chat-completion gateway."""

    def __init__(
        self,
        config: ModelConfiguration,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self._owns_client = client is None
        self.client: httpx.AsyncClient = client or httpx.AsyncClient(
            timeout=config.timeout
        )

    @classmethod
    def from_model(
        cls,
        model: str,
        configuration: Configuration | None = None,
        **kwargs: Any,
    ) -> LLMExpressClient:
        """Build a client for a model served by the LLM Express gateway."""
        from ..config import Configuration

        configuration = configuration or Configuration()
        return cls(configuration.llm_express_model(model), **kwargs)

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}{COMPLETIONS_PATH}"

    def build_payload(self, conversation: Sequence[ChatMessage], options: ChatOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [message.to_dict() for message in conversation],
            "stream": False,
        }
        if options.max_tokens is not None:
            payload["max_tokens"] = options.max_tokens
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        return payload

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> AggregatedResult:
        options = options or ChatOptions()
        payload = self.build_payload(self._conversation(messages, options), options)
        headers = {"Authorization": f"Bearer {self.config.api_key}"}

        try:
            async with operation_context(
                "llm_express_chat", context={"model": self.config.model}
            ):
                if options.cancel_token is not None:
                    options.cancel_token.raise_if_cancelled()
                response = await self.client.post(self.url, json=payload, headers=headers)
                if not response.is_success:
                    raise TransportError(
                        f"Failed to chat: {response.status_code} {response.reason_phrase}",
                        provider="llm_express",
                        model=self.config.model,
                        status_code=response.status_code,
                        response_text=response.text,
                    )
                content = self._extract_content(response)
        except httpx.HTTPError as e:
            return AggregatedResult.failure(
                TransportError(
                    f"Failed to chat: {e!s}",
                    provider="llm_express",
                    model=self.config.model,
                )
            )
        except LLMError as e:
            return AggregatedResult.failure(e)

        return AggregatedResult.success([ChatMessage.assistant(content)])

    def _extract_content(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProtocolError(
                f"Unexpected response format: {e!s}",
                provider="llm_express",
                model=self.config.model,
            ) from e
        if not isinstance(content, str):
            raise ProtocolError(
                "Response message has no text content",
                provider="llm_express",
                model=self.config.model,
            )
        return content

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
