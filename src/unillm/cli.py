from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from pathlib import Path
from typing import Any, Coroutine, Optional

from .client import UnifiedClient, create_client
from .config import UnillmConfig, load_config, resolve_api_key, resolve_selector
from .errors import LlmError
from .providers import list_identities, resolve_identity
from .types import ChatRequestBuilder, ProviderIdentity


def _load(args) -> UnillmConfig:
    return load_config(Path(args.config) if args.config else None)


def _build_client(
    identity: ProviderIdentity,
    config: UnillmConfig,
    args,
    model: Optional[str] = None,
) -> UnifiedClient:
    api_key = resolve_api_key(identity, config)
    settings = config.provider_settings(identity)
    options = settings.client_options() if settings else {}
    policy = config.middleware
    if getattr(args, "timeout", None):
        policy = dataclasses.replace(policy, timeout=args.timeout)
    return create_client(identity, api_key, policy=policy, default_model=model, **options)


def _run(coro: Coroutine[Any, Any, None]) -> int:
    try:
        asyncio.run(coro)
    except LlmError as e:
        print(f"[unillm] Error: {e}", file=sys.stderr)
        return 1
    except (ValueError, RuntimeError) as e:
        print(f"[unillm] {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\n[unillm] Interrupted", file=sys.stderr)
        return 130
    return 0


async def _chat(args) -> None:
    config = _load(args)
    identity, model = resolve_selector(args.selector, config)

    builder = ChatRequestBuilder()
    if args.system:
        builder.system(args.system)
    builder.user(args.prompt)
    if args.temperature is not None:
        builder.temperature(args.temperature)
    if args.max_tokens is not None:
        builder.max_tokens(args.max_tokens)
    request = builder.build()

    async with _build_client(identity, config, args, model) as client:
        if args.stream:
            error: Optional[LlmError] = None
            async for event in client.chat_completion_stream(request):
                if event.is_token:
                    print(event.text, end="", flush=True)
                elif event.error is not None:
                    error = event.error
            print()
            if error is not None:
                raise error
            return

        response = await client.chat_completion(request)
        print(response.content)
        usage = response.usage
        print(
            f"[unillm] {response.model}: prompt={usage.prompt_tokens} "
            f"completion={usage.completion_tokens} total={usage.total_tokens}",
            file=sys.stderr,
        )


def cmd_chat(args) -> int:
    """Send one prompt to PROVIDER:MODEL (or an alias) and print the reply."""
    return _run(_chat(args))


async def _models(args) -> None:
    config = _load(args)
    identity = resolve_identity(args.provider)
    async with _build_client(identity, config, args) as client:
        models = await client.available_models()
    if not models:
        print(f"[unillm] {identity.name} did not list any models; pass one explicitly")
        return
    for name in sorted(models):
        print(name)


def cmd_models(args) -> int:
    """List models served by PROVIDER."""
    return _run(_models(args))


async def _health(args) -> None:
    config = _load(args)
    identity = resolve_identity(args.provider)
    async with _build_client(identity, config, args) as client:
        await client.health_check()
    print(f"[unillm] {identity.name}: ok")


def cmd_health(args) -> int:
    """Check credential and connectivity of PROVIDER."""
    return _run(_health(args))


def cmd_providers(args) -> int:
    """Print every registered provider and whether a credential is available."""
    config = _load(args)
    for identity in list_identities():
        settings = config.provider_settings(identity)
        has_key = bool((settings and settings.api_key) or os.environ.get(identity.env_key))
        aliases = f" (aliases: {', '.join(identity.aliases)})" if identity.aliases else ""
        status = "key found" if has_key else f"set {identity.env_key}"
        print(f"{identity.name}{aliases}: {identity.default_base_url} [{status}]")
    for alias, selector in sorted(config.aliases.items()):
        print(f"alias {alias} -> {selector}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="unillm", description="Unified chat-completion client CLI")
    p.add_argument("--config", default=None, help="Path to unillm.toml (default: search)")
    p.add_argument("-v", "--verbose", action="store_true", help="Log retries and breaker events")
    p.add_argument("--trace", action="store_true", help="Print OpenTelemetry spans to stdout")
    sub = p.add_subparsers(dest="cmd", required=True)

    sc = sub.add_parser("chat", help="Send a prompt to PROVIDER:MODEL or a configured alias")
    sc.add_argument("selector", help="provider:model (e.g. openai:gpt-4o-mini) or alias")
    sc.add_argument("prompt")
    sc.add_argument("--system", default=None, help="System prompt")
    sc.add_argument("--stream", action="store_true", help="Print tokens as they arrive")
    sc.add_argument("--temperature", type=float, default=None)
    sc.add_argument("--max-tokens", type=int, default=None)
    sc.add_argument("--timeout", type=float, default=None, help="Overall deadline in seconds")
    sc.set_defaults(func=cmd_chat)

    sm = sub.add_parser("models", help="List models available from PROVIDER")
    sm.add_argument("provider")
    sm.set_defaults(func=cmd_models)

    sh = sub.add_parser("health", help="Check credential and connectivity of PROVIDER")
    sh.add_argument("provider")
    sh.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")
    sh.set_defaults(func=cmd_health)

    sp = sub.add_parser("providers", help="List registered providers")
    sp.set_defaults(func=cmd_providers)

    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="[unillm] %(levelname)s %(name)s: %(message)s",
    )
    if args.trace:
        from .telemetry import init_telemetry, shutdown_telemetry

        init_telemetry(console=True)
        try:
            return args.func(args)
        finally:
            shutdown_telemetry()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
