"""unillm - one async client for many chat-completion APIs.

Talk to OpenAI-compatible, Anthropic and Google models through a single
request/response model, with timeouts, rate limiting, circuit breaking and
retries applied uniformly:

Quick Start:
    ```python
    from unillm import ChatRequestBuilder, create_client

    async with create_client("openai", api_key) as client:
        request = ChatRequestBuilder().system("Be brief.").user("Hi!").build()
        response = await client.chat_completion(request, "gpt-4o-mini")
        print(response.content, response.usage.total_tokens)
    ```

Streaming:
    ```python
    async for event in client.chat_completion_stream(request, "gpt-4o-mini"):
        if event.is_token:
            print(event.text, end="")
        elif event.error:
            print(f"failed: {event.error}")
    ```

Module structure:
    - types: Vendor-neutral request/response model
    - errors: Error taxonomy
    - streaming: SSE decoder
    - providers/: Vendor adapters and registry
    - middleware/: Timeout, circuit breaker, rate limiter, retry
    - client: UnifiedClient facade
    - config: unillm.toml, .env and credential lookup
    - telemetry: OpenTelemetry setup
    - cli: Command line interface
"""

__version__ = "0.1.0"

# Client
from .client import UnifiedClient, create_client

# Config
from .config import UnillmConfig, load_config, resolve_api_key, resolve_selector

# Errors
from .errors import (
    AuthenticationError,
    CircuitOpenError,
    DecodeError,
    InvalidRequestError,
    LlmError,
    LlmTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    StreamDroppedError,
    StreamError,
)

# Middleware
from .middleware import BreakerPolicy, MiddlewarePolicy, RateLimitPolicy, RetryPolicy

# Providers
from .providers import ChatProvider, create_provider, list_identities, parse_selector

# Telemetry
from .telemetry import init_telemetry, shutdown_telemetry

# Types
from .types import (
    ChatMessage,
    ChatRequest,
    ChatRequestBuilder,
    ChatResponse,
    ChatRole,
    ChatStreamEvent,
    ProviderIdentity,
    StreamEventKind,
    TokenUsage,
)

__all__ = [
    "__version__",
    # Client
    "UnifiedClient",
    "create_client",
    # Types
    "ChatRole",
    "ChatMessage",
    "ChatRequest",
    "ChatRequestBuilder",
    "ChatResponse",
    "TokenUsage",
    "ChatStreamEvent",
    "StreamEventKind",
    "ProviderIdentity",
    # Errors
    "LlmError",
    "AuthenticationError",
    "InvalidRequestError",
    "RateLimitedError",
    "ProviderUnavailableError",
    "CircuitOpenError",
    "DecodeError",
    "LlmTimeoutError",
    "StreamError",
    "StreamDroppedError",
    # Middleware
    "MiddlewarePolicy",
    "RetryPolicy",
    "RateLimitPolicy",
    "BreakerPolicy",
    # Providers
    "ChatProvider",
    "create_provider",
    "list_identities",
    "parse_selector",
    # Config
    "UnillmConfig",
    "load_config",
    "resolve_api_key",
    "resolve_selector",
    # Telemetry
    "init_telemetry",
    "shutdown_telemetry",
]
