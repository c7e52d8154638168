"""Unified client - one call surface over every provider.

Example:
    async with create_client("openai", api_key) as client:
        request = ChatRequestBuilder().user("Hello!").build()
        response = await client.chat_completion(request, "gpt-4o-mini")
        print(response.content)

        async for event in client.chat_completion_stream(request, "gpt-4o-mini"):
            if event.is_token:
                print(event.text, end="")

Or bind a default model with a selector:
    client = UnifiedClient.from_selector("claude:claude-3-5-haiku-latest", api_key)
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Optional, Union

import httpx

from .errors import InvalidRequestError, LlmError
from .middleware import MiddlewarePolicy, MiddlewareStack
from .middleware.breaker import Clock
from .middleware.retry import Sleep
from .providers import ChatProvider, create_provider, parse_selector
from .types import ChatRequest, ChatResponse, ChatStreamEvent, ProviderIdentity


class UnifiedClient:
    """Resilient client bound to one provider adapter.

    Args:
        provider: Adapter to call
        policy: Resilience policy (defaults to ``MiddlewarePolicy()``)
        default_model: Model used when a call does not name one
        sleep: Backoff sleep, injectable for tests
        clock: Breaker clock, injectable for tests
    """

    def __init__(
        self,
        provider: ChatProvider,
        policy: Optional[MiddlewarePolicy] = None,
        *,
        default_model: Optional[str] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self.provider = provider
        self.default_model = default_model
        self.stack = MiddlewareStack(provider, policy, sleep=sleep, clock=clock)

    @classmethod
    def from_selector(
        cls,
        selector: str,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        policy: Optional[MiddlewarePolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        **provider_options: Any,
    ) -> UnifiedClient:
        """Build a client from ``provider:model``; the model becomes the default.

        Raises:
            ValueError: If the selector is malformed or names an unknown provider
        """
        identity, model = parse_selector(selector)
        return create_client(
            identity,
            api_key,
            base_url=base_url,
            policy=policy,
            http_client=http_client,
            default_model=model,
            **provider_options,
        )

    @property
    def policy(self) -> MiddlewarePolicy:
        return self.stack.policy

    def identity(self) -> ProviderIdentity:
        return self.provider.identity()

    async def chat_completion(
        self, request: ChatRequest, model: Optional[str] = None
    ) -> ChatResponse:
        """Send a one-shot completion through the middleware stack.

        Raises:
            LlmError: Exactly one classified error on failure
        """
        target = self._resolve_model(model)
        if request.stream:
            request = request.with_stream(False)
        return await self.stack.call(request, target)

    async def chat_completion_stream(
        self, request: ChatRequest, model: Optional[str] = None
    ) -> AsyncIterator[ChatStreamEvent]:
        """Stream a completion through the middleware stack.

        Yields zero or more TOKEN events and then exactly one DONE or ERROR
        event. Failures never raise; they arrive as the ERROR event.
        """
        try:
            target = self._resolve_model(model)
        except LlmError as e:
            yield ChatStreamEvent.failure(e)
            return

        if not request.stream:
            request = request.with_stream(True)
        events = self.stack.stream(request, target)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    async def available_models(self) -> frozenset[str]:
        return await self.stack.bounded(self.provider.available_models())

    async def health_check(self) -> None:
        """Check credential and connectivity; raises the classified error."""
        await self.stack.bounded(self.provider.health_check())

    def estimate_tokens(self, text: str) -> int:
        return self.provider.estimate_tokens(text)

    async def aclose(self) -> None:
        await self.provider.aclose()

    async def __aenter__(self) -> UnifiedClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _resolve_model(self, model: Optional[str]) -> str:
        target = (model or self.default_model or "").strip()
        if not target:
            raise InvalidRequestError(
                "No model given and the client has no default model",
                provider=self.provider.name,
            )
        return target


def create_client(
    provider: Union[str, ProviderIdentity],
    api_key: str,
    *,
    base_url: Optional[str] = None,
    policy: Optional[MiddlewarePolicy] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    default_model: Optional[str] = None,
    **provider_options: Any,
) -> UnifiedClient:
    """Build a :class:`UnifiedClient` for a provider name, alias or identity.

    Args:
        provider: e.g. "openai", "claude" or a ProviderIdentity
        api_key: Resolved credential (see ``unillm.config.resolve_api_key``)
        base_url: Endpoint override
        policy: Resilience policy
        http_client: Pre-built httpx client
        default_model: Model used when calls do not name one
        **provider_options: Adapter options (e.g. organization, project, timeout)

    Raises:
        ValueError: Unknown provider
        AuthenticationError: Empty credential
    """
    adapter = create_provider(
        provider, api_key, base_url=base_url, http_client=http_client, **provider_options
    )
    return UnifiedClient(adapter, policy, default_model=default_model)


__all__ = ["UnifiedClient", "create_client"]
