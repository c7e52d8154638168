"""Configuration management for unillm.

Parses unillm.toml files with support for:
- Middleware policy (timeout, rate limit, breaker, retry)
- Per-provider credentials and endpoint overrides
- Model aliases

Example unillm.toml structure:

    [middleware]
    timeout = 20.0

    [middleware.retry]
    max_attempts = 5

    [middleware.rate_limit]
    enabled = true
    capacity = 10
    refill_interval = 0.1

    [providers.openai]
    api_key = "${OPENAI_API_KEY}"
    organization = "org-..."
    model = "gpt-4o-mini"

    [providers.groq]
    base_url = "https://api.groq.com/openai/v1"

    [aliases]
    fast = "groq:llama-3.1-8b-instant"
    smart = "claude:claude-3-5-sonnet-latest"

The file is searched from the working directory upwards, then in the user
config directory (``platformdirs.user_config_dir("unillm")``).
"""

from __future__ import annotations

import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import platformdirs

from .errors import AuthenticationError
from .middleware import (
    BreakerPolicy,
    MiddlewarePolicy,
    RateLimitPolicy,
    RetryPolicy,
)
from .providers import parse_selector, resolve_identity
from .types import ProviderIdentity

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "unillm.toml"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def _load_env_file(env_path: Path) -> None:
    """Load KEY=VALUE pairs from a .env file without overriding the environment."""
    try:
        lines = env_path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        logger.warning("Failed to load %s: %s", env_path, e)
        return

    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip().removeprefix("export ").strip()
        value = value.strip()
        if value and value[0] in ('"', "'") and value[-1] == value[0]:
            value = value[1:-1]
        if key and key not in os.environ:
            os.environ[key] = value


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ${VAR} and $VAR references; unknown names are kept."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(
            lambda m: os.environ.get(m.group(1) or m.group(2), m.group(0)), value
        )
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


@dataclass
class ProviderSettings:
    """Settings of one ``[providers.<name>]`` table."""

    name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None

    def client_options(self) -> dict[str, Any]:
        """Keyword arguments for ``create_client`` (None values dropped)."""
        options = {
            "base_url": self.base_url,
            "organization": self.organization,
            "project": self.project,
        }
        return {key: value for key, value in options.items() if value}


@dataclass
class UnillmConfig:
    """Complete unillm configuration."""

    middleware: MiddlewarePolicy = field(default_factory=MiddlewarePolicy)
    providers: dict[str, ProviderSettings] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    path: Optional[Path] = None

    @classmethod
    def load(cls, path: Path = Path(CONFIG_FILENAME)) -> UnillmConfig:
        """Load configuration from a unillm.toml file.

        Loads the first .env found next to the file or in the working
        directory, then expands ${VAR} references in the whole document.

        Raises:
            RuntimeError: If the file is not valid TOML or holds invalid values
        """
        if not path.exists():
            return cls()

        for env_path in (path.parent / ".env", Path.cwd() / ".env"):
            if env_path.exists():
                _load_env_file(env_path)
                break

        try:
            data = _expand_env_vars(tomllib.loads(path.read_text(encoding="utf-8")))
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise RuntimeError(f"Failed to parse {path}: {e}") from e

        config = cls(path=path)
        try:
            if "middleware" in data:
                config.middleware = _parse_middleware(data["middleware"])
        except (TypeError, ValueError) as e:
            raise RuntimeError(f"Invalid [middleware] settings in {path}: {e}") from e

        for name, table in data.get("providers", {}).items():
            if not isinstance(table, dict):
                logger.warning("Ignoring [providers.%s]: expected a table", name)
                continue
            config.providers[name.lower()] = ProviderSettings(
                name=name.lower(),
                api_key=table.get("api_key"),
                base_url=table.get("base_url"),
                model=table.get("model"),
                organization=table.get("organization"),
                project=table.get("project"),
            )

        for alias, selector in data.get("aliases", {}).items():
            if isinstance(selector, str):
                config.aliases[alias] = selector
            else:
                logger.warning("Ignoring alias %r: expected a 'provider:model' string", alias)

        return config

    def provider_settings(self, identity: ProviderIdentity) -> Optional[ProviderSettings]:
        """Settings stored under the provider's name or one of its aliases."""
        for key in (identity.name, *identity.aliases):
            if key in self.providers:
                return self.providers[key]
        return None


def _parse_middleware(data: Mapping[str, Any]) -> MiddlewarePolicy:
    defaults = MiddlewarePolicy()

    timeout = data.get("timeout", defaults.timeout)
    # 0 disables the deadline
    timeout = float(timeout) if timeout else None

    rate_limit: Optional[RateLimitPolicy] = defaults.rate_limit
    if "rate_limit" in data:
        table = dict(data["rate_limit"])
        enabled = table.pop("enabled", True)
        rate_limit = RateLimitPolicy(**table) if enabled else None

    breaker = BreakerPolicy(**data.get("breaker", {}))
    retry = RetryPolicy(**data.get("retry", {}))
    return MiddlewarePolicy(timeout=timeout, rate_limit=rate_limit, breaker=breaker, retry=retry)


def default_config_dir() -> Path:
    return Path(platformdirs.user_config_dir("unillm"))


def find_config_file(start_dir: Path = Path(".")) -> Optional[Path]:
    """Search upwards from start_dir, then the user config directory."""
    current = start_dir.resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        if current == current.parent:
            break
        current = current.parent

    candidate = default_config_dir() / CONFIG_FILENAME
    return candidate if candidate.exists() else None


def load_config(path: Optional[Path] = None) -> UnillmConfig:
    """Load an explicit config file or the first one found; defaults otherwise."""
    path = path or find_config_file()
    if path is None:
        return UnillmConfig()
    return UnillmConfig.load(path)


def resolve_api_key(
    identity: ProviderIdentity,
    config: Optional[UnillmConfig] = None,
) -> str:
    """Find the credential for a provider: config first, then its env var.

    Raises:
        AuthenticationError: If neither source has a key
    """
    settings = config.provider_settings(identity) if config else None
    # An unexpanded ${VAR} means the variable is unset
    if settings and settings.api_key and not settings.api_key.startswith("$"):
        return settings.api_key

    if identity.env_key:
        key = os.environ.get(identity.env_key)
        if key:
            return key

    raise AuthenticationError(
        f"No API key found. Set {identity.env_key or 'an API key'} or add api_key "
        f"under [providers.{identity.name}] in {CONFIG_FILENAME}",
        provider=identity.name,
    )


def resolve_selector(
    text: str,
    config: Optional[UnillmConfig] = None,
) -> tuple[ProviderIdentity, str]:
    """Resolve an alias, a bare provider name or ``provider:model``.

    A bare provider name works when its config table names a model.

    Raises:
        ValueError: Unknown alias/provider or malformed selector
    """
    text = text.strip()
    target = config.aliases.get(text, text) if config else text

    if ":" not in target and config is not None:
        try:
            identity = resolve_identity(target)
        except ValueError:
            identity = None
        settings = config.provider_settings(identity) if identity else None
        if identity is not None and settings is not None and settings.model:
            return identity, settings.model

    return parse_selector(target)


__all__ = [
    "CONFIG_FILENAME",
    "ProviderSettings",
    "UnillmConfig",
    "default_config_dir",
    "find_config_file",
    "load_config",
    "resolve_api_key",
    "resolve_selector",
]
