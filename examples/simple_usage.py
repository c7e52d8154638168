"""Simple usage: one request, one reply.

Reads the credential from OPENAI_API_KEY (or unillm.toml) and asks a single
question through the middleware stack.

    python examples/simple_usage.py openai:gpt-4o-mini "What is SSE?"
"""
import asyncio
import sys

from unillm import ChatRequestBuilder, LlmError, UnifiedClient, load_config, resolve_api_key, resolve_selector


async def main(selector: str, question: str) -> int:
    config = load_config()
    identity, model = resolve_selector(selector, config)
    api_key = resolve_api_key(identity, config)

    request = (
        ChatRequestBuilder()
        .system("Answer in two sentences.")
        .user(question)
        .temperature(0.3)
        .build()
    )

    async with UnifiedClient.from_selector(f"{identity.name}:{model}", api_key, policy=config.middleware) as client:
        try:
            response = await client.chat_completion(request)
        except LlmError as e:
            print(f"Request failed ({type(e).__name__}): {e}")
            return 1

    print(response.content)
    print(f"-- {response.model}, {response.usage.total_tokens} tokens")
    return 0


if __name__ == "__main__":
    selector = sys.argv[1] if len(sys.argv) > 1 else "openai:gpt-4o-mini"
    question = sys.argv[2] if len(sys.argv) > 2 else "What is Server-Sent Events?"
    sys.exit(asyncio.run(main(selector, question)))
