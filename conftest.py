"""Shared fixtures for the gateway client test suites."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any

import pytest

from llm_gateway.llm.models import ModelConfiguration


def _generation_payload(
    gen_id: str,
    content: str | None,
    *,
    role: str = "assistant",
    finish_reason: str | None = None,
    batch_id: str = "batch-1",
    usage: dict[str, Any] | None = None,
    tool_invocations: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "id": batch_id,
        "generation_details": {
            "generations": [
                {
                    "id": gen_id,
                    "role": role,
                    "content": content,
                    "timestamp": 1700000000,
                    "parameters": {
                        "finish_reason": finish_reason,
                        "index": 0,
                        "logprobs": None,
                    },
                    "generation_safety_score": None,
                    "generation_content_quality": None,
                    "tool_invocations": tool_invocations,
                }
            ],
            "parameters": {
                "provider": "OpenAI",
                "created": 1700000000,
                "model": "gpt-5",
                "system_fingerprint": "fp_test",
                "object": "chat.completion.chunk",
                "usage": usage,
            },
            "other_details": None,
        },
    }


def _sse_record(data: Any, event: str | None = "generation") -> str:
    payload = data if isinstance(data, str) else json.dumps(data)
    lines = []
    if event is not None:
        lines.append(f"event: {event}")
    lines.append(f"data: {payload}")
    return "\n".join(lines) + "\n\n"


class ScriptedTransport:
    """Stream transport that replays a fixed list of chunks.

    An exception instance in ``chunks`` is raised when reached; ``open_error``
    is raised before the stream opens.
    """

    def __init__(self, chunks: list[Any], *, open_error: Exception | None = None):
        self.chunks = chunks
        self.open_error = open_error
        self.bodies: list[dict[str, Any]] = []
        self.consumed = 0
        self.closed = False

    @asynccontextmanager
    async def open(self, body: dict[str, Any]):
        self.bodies.append(body)
        if self.open_error is not None:
            raise self.open_error
        try:
            yield self._iterate()
        finally:
            self.closed = True

    async def _iterate(self):
        for chunk in self.chunks:
            self.consumed += 1
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def generation_payload():
    return _generation_payload


@pytest.fixture
def sse_record():
    return _sse_record


@pytest.fixture
def done_record():
    return _sse_record("DONE")


@pytest.fixture
def scripted_transport():
    return ScriptedTransport


@pytest.fixture
def einstein_config() -> ModelConfiguration:
    return ModelConfiguration(
        model="llmgateway__OpenAIGPT5",
        base_url="https://gateway.test/einstein/gpt/code/v1.1",
        api_key="test-key",
        tenant_id="core/test/00D000000000001",
        feature_id="EinsteinForDevelopers",
    )


@pytest.fixture
def express_config() -> ModelConfiguration:
    return ModelConfiguration(
        model="gpt-4o-mini",
        base_url="https://express.test",
        api_key="express-key",
    )
