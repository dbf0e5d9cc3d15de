"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker handling,
automatic API test skipping and a scripted provider double for facade tests.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
import time
from typing import Any

import pytest

from switchyard.providers.base import ProviderCapabilities
from switchyard.rate_limit import RateLimiter, RateLimits
from switchyard.streaming import CompletionStream
from switchyard.types import (
    Choice,
    ChunkChoice,
    CompletionResponse,
    Embedding,
    EmbeddingResponse,
    Message,
    MessageDelta,
    StreamChunk,
)

OPENAI_MODEL = "gpt-4o-mini"
ANTHROPIC_MODEL = "claude-sonnet-4-5"
GEMINI_MODEL = "gemini-2.5-flash"

# =============================================================================
# Test Doubles
# =============================================================================


def make_response(text: str = "ok", *, provider: str = "fake") -> CompletionResponse:
    return CompletionResponse(
        id=f"{provider}-1",
        created=int(time.time()),
        model=f"{provider}-model",
        choices=(
            Choice(
                index=0,
                message=Message(role="assistant", content=text),
                finish_reason="stop",
            ),
        ),
        provider=provider,
    )


def make_chunk(
    text: str = "", *, finish_reason: Any = None, provider: str = "fake"
) -> StreamChunk:
    return StreamChunk(
        id=f"{provider}-1",
        created=0,
        model=f"{provider}-model",
        choices=(
            ChunkChoice(
                index=0,
                delta=MessageDelta(content=text or None),
                finish_reason=finish_reason,
            ),
        ),
        provider=provider,
    )


@dataclass
class FakeProvider:
    """Provider test double for facade behavior verification.

    ``outcomes`` is consumed one entry per ``complete``/``embed`` call: an
    exception instance is raised, anything else is returned. ``stream_script``
    is a list of chunks and/or exceptions played back lazily. Every call is
    recorded in ``calls`` and runs under a real ``RateLimiter`` so permit
    balance can be asserted.
    """

    name: str
    outcomes: list[Any] = field(default_factory=list)
    stream_script: list[Any] = field(default_factory=list)
    embeddings: bool = True
    calls: list[str] = field(default_factory=list)
    closed: bool = False
    limiter: RateLimiter = field(
        default_factory=lambda: RateLimiter(
            RateLimits(requests_per_minute=1000, tokens_per_minute=10**9, max_concurrent=100),
            poll_interval_s=0.01,
        )
    )

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(embeddings=self.embeddings)

    @property
    def default_model(self) -> str:
        return f"{self.name}-model"

    def _next(self) -> Any:
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def complete(self, request: Any) -> CompletionResponse:
        self.calls.append("complete")
        async with self.limiter.permit():
            outcome = self._next()
        return outcome if outcome is not None else make_response(provider=self.name)

    async def embed(self, request: Any) -> EmbeddingResponse:
        self.calls.append("embed")
        async with self.limiter.permit():
            outcome = self._next()
        if outcome is not None:
            return outcome
        return EmbeddingResponse(
            model=f"{self.name}-embed",
            data=(Embedding(index=0, vector=(0.1, 0.2)),),
            provider=self.name,
        )

    def stream(self, request: Any) -> CompletionStream:
        return CompletionStream(self._play())

    async def _play(self) -> Any:
        self.calls.append("stream")
        async with self.limiter.permit():
            for item in self.stream_script:
                if isinstance(item, BaseException):
                    raise item
                yield item

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_PROVIDER_ENV_PREFIXES = ("OPENAI_", "ANTHROPIC_", "GEMINI_", "GOOGLE_")


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

    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_PROVIDER_ENV_PREFIXES):
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
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_configure(config):
    config.addinivalue_line("markers", "allow_dotenv: let python-dotenv read .env")
    config.addinivalue_line(
        "markers", "allow_env_pollution: keep provider env vars for this test"
    )


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)
