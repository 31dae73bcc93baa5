"""
HTTP transport for the streaming generation endpoint.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

import httpx

from .exceptions import StreamingError, TransportError
from .models import ModelConfiguration

STREAM_PATH = "/chat/generations/stream"
PROVIDER_NAME = "einstein"

StreamChunkSource = AsyncIterator[str | bytes | Mapping[str, Any]]


class StreamTransport(Protocol):
    """Opens one streaming response for a request body."""

    def open(
        self, body: dict[str, Any]
    ) -> AbstractAsyncContextManager[StreamChunkSource]:
        """
        Send ``body`` and yield the response's chunks.

        Entering the context must raise ``TransportError`` when the stream
        cannot be established; iterating may raise ``StreamingError``.
        """
        ...


class HttpxStreamTransport:
    """Streams ``text/event-stream`` responses from the generation gateway."""

    def __init__(
        self,
        config: ModelConfiguration,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self.client: httpx.AsyncClient = client or httpx.AsyncClient(
            timeout=config.timeout
        )

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}{STREAM_PATH}"

    def build_headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"API_KEY {self.config.api_key}",
            "X-Client-Feature-Id": self.config.feature_id,
            "X-Sfdc-Core-Tenant-Id": self.config.tenant_id,
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if self.config.model_provider:
            headers["X-LLM-Provider"] = self.config.model_provider
        return headers

    @asynccontextmanager
    async def open(self, body: dict[str, Any]) -> AsyncIterator[StreamChunkSource]:
        request = self.client.build_request(
            "POST", self.url, json=body, headers=self.build_headers()
        )
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(
                f"Failed to open stream: {e!s}",
                provider=PROVIDER_NAME,
                model=self.config.model,
            ) from e

        chunks = self._iter_text(response)
        try:
            if not response.is_success:
                await self._raise_for_status(response)
            yield chunks
        finally:
            await chunks.aclose()
            await response.aclose()

    async def _raise_for_status(self, response: httpx.Response) -> None:
        try:
            error_text = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError:
            error_text = ""
        message = (
            f"Streaming request failed with status {response.status_code} "
            f"{response.reason_phrase}"
        )
        if error_text:
            message = f"{message}: {error_text}"
        raise TransportError(
            message,
            provider=PROVIDER_NAME,
            model=self.config.model,
            status_code=response.status_code,
            response_text=error_text,
        )

    async def _iter_text(self, response: httpx.Response) -> AsyncIterator[str]:
        try:
            async for text in response.aiter_text():
                yield text
        except httpx.HTTPError as e:
            raise StreamingError(
                f"Stream error: {e!s}",
                provider=PROVIDER_NAME,
                model=self.config.model,
            ) from e

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            await self.client.aclose()
