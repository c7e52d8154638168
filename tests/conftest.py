"""Test fixtures and configuration for unillm tests.

Test Structure:
    tests/
    ├── conftest.py          # Shared fixtures
    ├── fakes.py             # Scripted providers, fake clock, SSE helpers
    └── unit/                # Unit tests (no network, httpx.MockTransport or fakes)

Running tests:
    pytest tests/unit -v
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add tests directory to path for imports
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from fakes import FakeClock, FakeProvider  # noqa: E402

from unillm.types import ChatRequest, ChatRequestBuilder  # noqa: E402


@pytest.fixture
def chat_request() -> ChatRequest:
    """A minimal valid request."""
    return ChatRequestBuilder().system("Be brief.").user("Say hello").build()


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Provider that answers every call successfully."""
    return FakeProvider()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Backoff sleep that returns immediately and records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep real credentials and config files out of the tests."""
    for key in (
        "OPENAI_API_KEY",
        "GROQ_API_KEY",
        "OPENROUTER_API_KEY",
        "ANTHROPIC_API_KEY",
        "GOOGLE_AI_API_KEY",
        "FAKE_API_KEY",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(
        "unillm.config.default_config_dir", lambda: tmp_path / "user-config"
    )
