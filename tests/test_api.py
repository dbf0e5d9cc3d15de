"""Real API integration tests.

These make real vendor calls and are intentionally compact:
- ENABLE_API_TESTS=1 is required to run any API tests
- OPENAI_API_KEY / ANTHROPIC_API_KEY / GEMINI_API_KEY are required per provider
"""

from __future__ import annotations

import os

import pytest

from switchyard import (
    CompletionRequest,
    EmbeddingRequest,
    Message,
    ProviderConfig,
    Switchyard,
)
from switchyard.config import API_KEY_ENV_VARS

pytestmark = pytest.mark.api

_PROVIDERS = ["openai", "anthropic", "gemini"]


def _switchyard_for(provider: str) -> Switchyard:
    if not any(os.getenv(name) for name in API_KEY_ENV_VARS[provider]):  # type: ignore[index]
        pytest.skip(f"{provider} API key not set")
    return Switchyard([ProviderConfig(provider=provider, max_retries=1)])  # type: ignore[arg-type]


@pytest.mark.parametrize("provider", _PROVIDERS)
@pytest.mark.asyncio
async def test_complete_round_trip(provider: str) -> None:
    async with _switchyard_for(provider) as switchyard:
        response = await switchyard.complete(
            CompletionRequest(
                messages=(
                    Message.system("Answer with a single word."),
                    Message.user("What color is the sky on a clear day?"),
                ),
                max_tokens=16,
                temperature=0,
            )
        )

    assert response.provider == provider
    assert "blue" in response.text.lower()
    assert response.choices[0].finish_reason in {"stop", "length"}


@pytest.mark.parametrize("provider", _PROVIDERS)
@pytest.mark.asyncio
async def test_stream_ends_with_finish_reason(provider: str) -> None:
    async with _switchyard_for(provider) as switchyard:
        stream = switchyard.stream(
            CompletionRequest(messages=(Message.user("Count from 1 to 3."),), max_tokens=32)
        )
        chunks = await stream.collect()

    assert chunks
    assert chunks[-1].finish_reason is not None
    assert "".join(c.text for c in chunks).strip()


@pytest.mark.parametrize("provider", ["openai", "gemini"])
@pytest.mark.asyncio
async def test_embed_returns_one_vector_per_input(provider: str) -> None:
    async with _switchyard_for(provider) as switchyard:
        response = await switchyard.embed(EmbeddingRequest(input=("alpha", "beta")))

    assert len(response.data) == 2
    assert all(len(e.vector) > 0 for e in response.data)
