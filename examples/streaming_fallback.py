"""Streaming with a fallback provider.

Streams from the first selector; if the stream ends with an error before any
token arrived, the same request is replayed against the next selector.
Spans for every attempt are printed to stdout.

    python examples/streaming_fallback.py "Write a haiku about retries"
"""
import asyncio
import sys

from unillm import (
    ChatRequestBuilder,
    LlmError,
    MiddlewarePolicy,
    RetryPolicy,
    UnifiedClient,
    init_telemetry,
    resolve_api_key,
    shutdown_telemetry,
)
from unillm.providers import parse_selector

SELECTORS = ["claude:claude-3-5-haiku-latest", "openai:gpt-4o-mini", "groq:llama-3.1-8b-instant"]


async def stream_once(selector: str, request) -> bool:
    identity, _ = parse_selector(selector)
    try:
        api_key = resolve_api_key(identity)
    except LlmError as e:
        print(f"[skip] {selector}: {e}")
        return False

    policy = MiddlewarePolicy(timeout=60.0, retry=RetryPolicy(max_attempts=2))
    received = 0
    async with UnifiedClient.from_selector(selector, api_key, policy=policy) as client:
        async for event in client.chat_completion_stream(request):
            if event.is_token:
                received += 1
                print(event.text, end="", flush=True)
            elif event.error is not None:
                print(f"\n[error] {selector}: {event.error}")
                # partial output cannot be replayed elsewhere
                return received > 0
    print()
    return True


async def main(prompt: str) -> None:
    request = ChatRequestBuilder().user(prompt).max_tokens(200).build()
    for selector in SELECTORS:
        print(f"== {selector}")
        if await stream_once(selector, request):
            return
    print("All providers failed")


if __name__ == "__main__":
    init_telemetry("unillm-example", console=True)
    try:
        asyncio.run(main(" ".join(sys.argv[1:]) or "Write a haiku about retries"))
    finally:
        shutdown_telemetry()
