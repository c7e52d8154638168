"""Provider adapter contract and shared HTTP plumbing.

Every vendor family implements :class:`ChatProvider`. Adapters perform exactly
one network round trip per call (retries belong to the middleware stack) and
classify every failure into the :mod:`unillm.errors` taxonomy before it leaves
the adapter.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Iterable, Optional

import httpx

from ..errors import (
    AuthenticationError,
    DecodeError,
    classify_status,
    classify_transport_error,
)
from ..streaming import Translator, decode_sse
from ..types import ChatRequest, ChatResponse, ChatStreamEvent, ProviderIdentity

DEFAULT_HTTP_TIMEOUT = 60.0


class ChatProvider(ABC):
    """Capability contract shared by every adapter."""

    # Rough characters-per-token ratio used by estimate_tokens()
    chars_per_token: float = 4.0

    @abstractmethod
    def identity(self) -> ProviderIdentity:
        """Static metadata for this adapter. Pure, no I/O."""

    @property
    def name(self) -> str:
        return self.identity().name

    @abstractmethod
    async def chat_completion(self, request: ChatRequest, model: str) -> ChatResponse:
        """Send one chat completion request and map the result."""

    @abstractmethod
    def chat_completion_stream(
        self, request: ChatRequest, model: str
    ) -> AsyncIterator[ChatStreamEvent]:
        """Open a streaming completion.

        Returns a lazy, single-use async iterator. Connection-level failures
        raise the classified :class:`~unillm.errors.LlmError` on the first pull;
        failures after that are delivered as a terminal ERROR event.
        """

    @abstractmethod
    async def available_models(self) -> frozenset[str]:
        """Models this provider can serve (empty means "pass one explicitly")."""

    @abstractmethod
    async def health_check(self) -> None:
        """Verify credential and connectivity with one lightweight request."""

    def estimate_tokens(self, text: str) -> int:
        """Rough token estimate for ``text``."""
        return math.ceil(len(text) / self.chars_per_token)

    async def aclose(self) -> None:
        """Release network resources."""


class HttpChatProvider(ChatProvider):
    """Base for adapters talking JSON over HTTP through one httpx client.

    Args:
        identity: Provider metadata
        api_key: Resolved credential
        base_url: Endpoint override (defaults to identity.default_base_url)
        timeout: Per-request HTTP timeout in seconds
        http_client: Pre-built client (tests inject a MockTransport here)
    """

    def __init__(
        self,
        identity: ProviderIdentity,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise AuthenticationError(
                f"No API key configured (expected in {identity.env_key or 'config'})",
                provider=identity.name,
            )
        self._identity = identity
        self.api_key = api_key
        self.base_url = (base_url or identity.default_base_url).rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._models: Optional[frozenset[str]] = None

    def identity(self) -> ProviderIdentity:
        return self._identity

    # ------------------------------------------------------------------
    # Vendor hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Auth and content headers for every request."""

    @abstractmethod
    def _models_url(self) -> str:
        """Endpoint used for model listing and health checks."""

    @abstractmethod
    def _parse_models(self, data: Any) -> Iterable[str]:
        """Extract model names from a listing payload."""

    # ------------------------------------------------------------------
    # Shared operations
    # ------------------------------------------------------------------

    async def available_models(self) -> frozenset[str]:
        if self._models is None:
            data = await self._get_json(self._models_url())
            listed = frozenset(self._parse_models(data))
            self._models = listed or self._identity.known_models
        return self._models

    async def health_check(self) -> None:
        await self._get_json(self._models_url())

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get_json(self, url: str) -> Any:
        try:
            response = await self._client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise classify_transport_error(self.name, e) from e
        self._raise_for_status(response)
        return self._json(response)

    async def _post_json(self, url: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            raise classify_transport_error(self.name, e) from e
        self._raise_for_status(response)
        return self._json(response)

    async def _stream_events(
        self,
        url: str,
        payload: dict[str, Any],
        translate: Translator,
    ) -> AsyncIterator[ChatStreamEvent]:
        headers = {**self._headers(), "Accept": "text/event-stream"}
        request = self._client.build_request("POST", url, json=payload, headers=headers)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise classify_transport_error(self.name, e) from e

        try:
            if not response.is_success:
                try:
                    await response.aread()
                except httpx.HTTPError as e:
                    raise classify_transport_error(self.name, e) from e
                raise classify_status(
                    self.name, response.status_code, response.text, response.headers
                )
            async for event in decode_sse(response.aiter_lines(), translate, provider=self.name):
                yield event
        finally:
            await response.aclose()

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        raise classify_status(self.name, response.status_code, response.text, response.headers)

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Response is not valid JSON: {e}", provider=self.name) from e


def optional_fields(**fields: Any) -> dict[str, Any]:
    """Drop None values; used when building vendor payloads."""
    return {key: value for key, value in fields.items() if value is not None}


__all__ = [
    "DEFAULT_HTTP_TIMEOUT",
    "ChatProvider",
    "HttpChatProvider",
    "optional_fields",
]
