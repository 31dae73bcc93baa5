#!/usr/bin/env python3
"""
Tests for the aggregating Einstein chat client over a mocked HTTP gateway.
"""

import json

import httpx
import pytest

from llm_gateway.llm.cancellation import CancellationToken
from llm_gateway.llm.client import ChatOptions, EinsteinChatClient
from llm_gateway.llm.exceptions import (
    ConfigurationError,
    StreamCancelledError,
    StreamingError,
    TransportError,
)
from llm_gateway.llm.models import ChatMessage, MessageRole, ModelConfiguration
from llm_gateway.llm.streaming.models import AccumulationPolicy, GenerationBatch
from llm_gateway.llm.transport import HttpxStreamTransport


def _client(config, handler, **kwargs):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EinsteinChatClient(
        config, transport=HttpxStreamTransport(config, client=http), **kwargs
    )


def _stream_response(body: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content=body.encode(),
    )


class TestEinsteinChatClient:
    """End-to-end chat calls against a mocked gateway."""

    @pytest.mark.asyncio
    async def test_happy_path(self, einstein_config, sse_record, generation_payload, done_record):
        body = (
            sse_record(generation_payload("g1", "Hel"))
            + sse_record(generation_payload("g1", "lo"))
            + done_record
        )
        client = _client(einstein_config, lambda request: _stream_response(body))

        result = await client.chat([ChatMessage.user("Hi")])

        assert result.error is None
        assert result.messages == (ChatMessage(MessageRole.ASSISTANT, "Hello"),)
        assert result.text == "Hello"

    @pytest.mark.asyncio
    async def test_no_done_marker(self, einstein_config, sse_record, generation_payload):
        body = sse_record(generation_payload("g1", "Hel")) + sse_record(generation_payload("g1", "lo"))
        client = _client(einstein_config, lambda request: _stream_response(body))

        result = await client.chat([ChatMessage.user("Hi")])

        assert result.error is None
        assert result.messages == (ChatMessage.assistant("Hello"),)

    @pytest.mark.asyncio
    async def test_malformed_json_is_ignored(
        self, einstein_config, sse_record, generation_payload, done_record
    ):
        body = (
            sse_record(generation_payload("g1", "Hel"))
            + "event: generation\ndata: {this is not json\n\n"
            + sse_record(generation_payload("g1", "lo"))
            + done_record
        )
        client = _client(einstein_config, lambda request: _stream_response(body))

        result = await client.chat([ChatMessage.user("Hi")])

        assert result.error is None
        assert result.text == "Hello"

    @pytest.mark.asyncio
    async def test_unexpected_metadata_does_not_lose_content(
        self, einstein_config, sse_record, generation_payload, done_record
    ):
        first = generation_payload("g1", "Hel")
        first["generation_details"]["generations"][0]["parameters"]["logprobs"] = {"content": []}
        second = generation_payload("g1", "lo")
        second["generation_details"]["parameters"]["created"] = 1700000000.25
        second["generation_details"]["generations"].append({"id": "g2", "role": "tool"})
        body = sse_record(first) + sse_record(second) + done_record
        client = _client(einstein_config, lambda request: _stream_response(body))

        result = await client.chat([ChatMessage.user("Hi")])

        assert result.error is None
        assert result.messages == (ChatMessage.assistant("Hello"),)

    @pytest.mark.asyncio
    async def test_unauthorized(self, einstein_config):
        client = _client(
            einstein_config,
            lambda request: httpx.Response(401, text="invalid api key"),
        )

        result = await client.chat([ChatMessage.user("Hi")])

        assert result.messages is None
        assert isinstance(result.error, TransportError)
        assert result.error.status_code == 401
        assert "failed" in str(result.error).lower()
        assert "invalid api key" in str(result.error)

    @pytest.mark.asyncio
    async def test_connection_failure(self, einstein_config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(einstein_config, handler)

        result = await client.chat([ChatMessage.user("Hi")])

        assert isinstance(result.error, TransportError)
        assert result.messages is None

    @pytest.mark.asyncio
    async def test_read_error_mid_stream(self, einstein_config, sse_record, generation_payload):
        first = sse_record(generation_payload("g1", "partial")).encode()

        async def body():
            yield first
            raise httpx.ReadError("connection reset")

        client = _client(
            einstein_config,
            lambda request: httpx.Response(200, content=body()),
        )
        seen = []

        result = await client.chat(
            [ChatMessage.user("Hi")], ChatOptions(on_content=seen.append)
        )

        assert seen == ["partial"]
        assert isinstance(result.error, StreamingError)
        assert result.messages is None

    @pytest.mark.asyncio
    async def test_error_event(self, einstein_config, sse_record, generation_payload):
        body = (
            sse_record(generation_payload("g1", "a"))
            + sse_record({"error": "model overloaded"}, event="error")
        )
        client = _client(einstein_config, lambda request: _stream_response(body))

        result = await client.chat([ChatMessage.user("Hi")])

        assert str(result.error) == "model overloaded"
        assert result.messages is None

    @pytest.mark.asyncio
    async def test_outbound_request(self, einstein_config, done_record):
        captured = []

        def handler(request):
            captured.append(request)
            return _stream_response(done_record)

        config = ModelConfiguration(
            model="xgen_stream",
            base_url="https://gateway.test/v1.1/",
            api_key="k",
            tenant_id="tenant",
            feature_id="feature",
            model_provider="InternalTextGeneration",
            parameters={"command_source": "Chat"},
        )
        client = _client(config, handler)

        result = await client.chat([ChatMessage.system("Be brief"), ChatMessage.user("Hi")])

        assert result.messages == ()
        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == "https://gateway.test/v1.1/chat/generations/stream"
        assert request.headers["Authorization"] == "API_KEY k"
        assert request.headers["X-Sfdc-Core-Tenant-Id"] == "tenant"
        assert request.headers["X-Client-Feature-Id"] == "feature"
        assert request.headers["X-LLM-Provider"] == "InternalTextGeneration"
        assert request.headers["Accept"] == "text/event-stream"

        body = json.loads(request.content)
        assert body["model"] == "xgen_stream"
        assert body["stream"] is True
        assert body["generation_settings"]["parameters"] == {"command_source": "Chat"}
        assert body["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Hi"},
        ]

    @pytest.mark.asyncio
    async def test_provider_header_omitted_without_provider(self, einstein_config, done_record):
        captured = []

        def handler(request):
            captured.append(request)
            return _stream_response(done_record)

        await _client(einstein_config, handler).chat([ChatMessage.user("Hi")])

        assert "X-LLM-Provider" not in captured[0].headers

    @pytest.mark.asyncio
    async def test_sinks_receive_live_updates(
        self, einstein_config, sse_record, generation_payload, done_record
    ):
        body = (
            sse_record(generation_payload("g1", "Hel", usage={"total_tokens": 5}))
            + sse_record(generation_payload("g1", "lo"))
            + done_record
        )
        client = _client(einstein_config, lambda request: _stream_response(body))
        contents, chunks = [], []

        await client.chat(
            [ChatMessage.user("Hi")],
            ChatOptions(on_content=contents.append, on_chunk=chunks.append),
        )

        assert contents == ["Hel", "lo"]
        assert all(isinstance(chunk, GenerationBatch) for chunk in chunks)
        assert chunks[0].usage == {"total_tokens": 5}

    @pytest.mark.asyncio
    async def test_replace_policy(self, einstein_config, sse_record, generation_payload, done_record):
        body = (
            sse_record(generation_payload("g1", "Hel"))
            + sse_record(generation_payload("g1", "Hello"))
            + done_record
        )
        client = _client(
            einstein_config,
            lambda request: _stream_response(body),
            accumulation=AccumulationPolicy.REPLACE,
        )

        result = await client.chat([ChatMessage.user("Hi")])

        assert result.text == "Hello"

    @pytest.mark.asyncio
    async def test_require_done(self, einstein_config, sse_record, generation_payload):
        body = sse_record(generation_payload("g1", "a"))
        client = _client(
            einstein_config, lambda request: _stream_response(body), require_done=True
        )

        result = await client.chat([ChatMessage.user("Hi")])

        assert result.error is not None
        assert result.messages is None

    @pytest.mark.asyncio
    async def test_cancelled_call(self, einstein_config, done_record):
        client = _client(einstein_config, lambda request: _stream_response(done_record))
        token = CancellationToken()
        token.cancel()

        result = await client.chat([ChatMessage.user("Hi")], ChatOptions(cancel_token=token))

        assert isinstance(result.error, StreamCancelledError)

    @pytest.mark.asyncio
    async def test_calls_do_not_share_state(
        self, einstein_config, sse_record, generation_payload, done_record
    ):
        body = sse_record(generation_payload("g1", "Hi")) + done_record
        client = _client(einstein_config, lambda request: _stream_response(body))

        first = await client.chat([ChatMessage.user("Hi")])
        second = await client.chat([ChatMessage.user("Hi")])

        assert first.text == "Hi"
        assert second.text == "Hi"


class TestRequestConstruction:
    """Test RequestSpec resolution and programmer errors."""

    def test_default_token_budget(self, einstein_config, scripted_transport):
        client = EinsteinChatClient(einstein_config, transport=scripted_transport([]))
        request = client.build_request([ChatMessage.user("Hi")])
        assert request.max_tokens == 2048

    def test_config_token_budget(self, einstein_config, scripted_transport):
        config = ModelConfiguration(
            model=einstein_config.model, base_url=einstein_config.base_url, max_tokens=1024
        )
        client = EinsteinChatClient(config, transport=scripted_transport([]))
        assert client.build_request([ChatMessage.user("Hi")]).max_tokens == 1024
        assert client.build_request(
            [ChatMessage.user("Hi")], ChatOptions(max_tokens=64)
        ).max_tokens == 64

    def test_follow_up_messages_appended(self, einstein_config, scripted_transport):
        client = EinsteinChatClient(einstein_config, transport=scripted_transport([]))
        request = client.build_request(
            [ChatMessage.user("Hi")],
            ChatOptions(follow_up_messages=[ChatMessage.assistant("Hello"), ChatMessage.user("More")]),
        )
        assert [message.content for message in request.messages] == ["Hi", "Hello", "More"]

    @pytest.mark.asyncio
    async def test_default_token_budget_on_the_wire(self, einstein_config, scripted_transport, done_record):
        transport = scripted_transport([done_record])
        client = EinsteinChatClient(einstein_config, transport=transport)

        await client.chat([ChatMessage.user("Hi")])

        assert transport.bodies[0]["max_tokens"] == 2048
        assert transport.bodies[0]["generation_settings"]["max_tokens"] == 2048

    def test_invalid_configuration_raises(self, scripted_transport):
        with pytest.raises(ConfigurationError):
            EinsteinChatClient(
                ModelConfiguration(model="", base_url="https://x"),
                transport=scripted_transport([]),
            )
        with pytest.raises(ConfigurationError):
            EinsteinChatClient(
                ModelConfiguration(model="m", base_url=""),
                transport=scripted_transport([]),
            )

    @pytest.mark.asyncio
    async def test_empty_conversation_raises(self, einstein_config, scripted_transport):
        client = EinsteinChatClient(einstein_config, transport=scripted_transport([]))
        with pytest.raises(ConfigurationError):
            await client.chat([])

    @pytest.mark.asyncio
    async def test_non_message_raises(self, einstein_config, scripted_transport):
        client = EinsteinChatClient(einstein_config, transport=scripted_transport([]))
        with pytest.raises(ConfigurationError):
            await client.chat([{"role": "user", "content": "Hi"}])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", ["success", "open_error", "mid_stream_error"])
    async def test_result_invariant(
        self, outcome, einstein_config, scripted_transport, sse_record, generation_payload, done_record
    ):
        if outcome == "open_error":
            transport = scripted_transport([], open_error=TransportError("refused"))
        elif outcome == "mid_stream_error":
            transport = scripted_transport([
                sse_record(generation_payload("g1", "a")),
                StreamingError("reset"),
            ])
        else:
            transport = scripted_transport([sse_record(generation_payload("g1", "a")), done_record])
        client = EinsteinChatClient(einstein_config, transport=transport)

        result = await client.chat([ChatMessage.user("Hi")])

        assert (result.error is None) != (result.messages is None)
        assert result.ok is (outcome == "success")
