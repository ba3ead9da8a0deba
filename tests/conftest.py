"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, test doubles and
automatic API test skipping. Environment fixtures here are autouse.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import TYPE_CHECKING, Any

import pytest

from switchyard.content import GenerationResponse, TextPart
from switchyard.providers.base import ProviderCapabilities
from switchyard.tokens import estimate_tokens

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from switchyard.cancellation import CancellationToken
    from switchyard.content import GenerationRequest

GROK_MODEL = "grok-3-latest"
GEMINI_MODEL = "gemini-2.5-flash"
OPENAI_MODEL = "gpt-4o-mini"

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeProvider:
    """Provider test double that replays a script of replies.

    Each script item is a reply string, a GenerationResponse, or an exception
    to raise. Requests are recorded for assertions.
    """

    script: list[str | GenerationResponse | BaseException] = field(default_factory=list)
    requests: list[GenerationRequest] = field(default_factory=list)
    name: str = "fake"
    _capabilities: ProviderCapabilities = field(default_factory=ProviderCapabilities)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    async def generate_content(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> GenerationResponse:
        if cancel is not None:
            cancel.raise_if_cancelled()
        self.requests.append(request)
        item = self.script.pop(0) if self.script else "ok"
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, GenerationResponse):
            return item
        return GenerationResponse(parts=(TextPart(item),))

    async def generate_content_stream(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[GenerationResponse]:
        yield await self.generate_content(request, cancel=cancel)

    async def count_tokens(self, request: GenerationRequest) -> int:
        return estimate_tokens(" ".join(m.text for m in request.messages))

    async def embed_content(self, text: str, *, model: str | None = None) -> list[float]:
        del model
        return [float(len(text))]

    async def aclose(self) -> None:
        return None


@pytest.fixture
def grok_model() -> str:
    return GROK_MODEL


@pytest.fixture
def gemini_model() -> str:
    return GEMINI_MODEL


@pytest.fixture
def openai_model() -> str:
    return OPENAI_MODEL


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears GEMINI_*, OPENAI_* and XAI_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("GEMINI_", "OPENAI_", "XAI_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Filesystem
# =============================================================================


@pytest.fixture
def make_tree(tmp_path: Path):
    """Write ``{relative_path: content}`` under tmp_path and return the root."""

    def _make(files: dict[str, str | bytes]) -> Path:
        for rel, content in files.items():
            target = tmp_path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content, encoding="utf-8")
        return tmp_path

    return _make


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# API Test Configuration
# =============================================================================


@pytest.fixture
def xai_api_key() -> Any:
    """Return XAI_API_KEY or skip the test if unavailable."""
    key = os.getenv("XAI_API_KEY")
    if not key:
        pytest.skip("XAI_API_KEY not set")
    return key


@pytest.fixture
def gemini_api_key() -> Any:
    """Return GEMINI_API_KEY or skip the test if unavailable."""
    key = os.getenv("GEMINI_API_KEY")
    if not key:
        pytest.skip("GEMINI_API_KEY not set")
    return key


@pytest.fixture
def openai_api_key() -> Any:
    """Return OPENAI_API_KEY or skip the test if unavailable."""
    key = os.getenv("OPENAI_API_KEY")
    if not key:
        pytest.skip("OPENAI_API_KEY not set")
    return key
