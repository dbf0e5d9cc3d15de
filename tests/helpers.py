"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: vendor SDK clients are faked with
``MagicMock`` plus these pieces so request shapes can be captured without
network calls.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from unittest.mock import MagicMock


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAsyncStream:
    """Async-iterable stand-in for SDK stream objects.

    Items that are exceptions are raised when reached. ``close`` and
    ``aclose`` are both offered since vendors differ on the name.
    """

    def __init__(self, items: Iterable[Any]) -> None:
        self._items = list(items)
        self.closed = False

    def __aiter__(self) -> FakeAsyncStream:
        return self

    async def __anext__(self) -> Any:
        if not self._items:
            raise StopAsyncIteration
        item = self._items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    async def aclose(self) -> None:
        self.closed = True


class Recorder:
    """Async callable that records kwargs and replays scripted outcomes."""

    def __init__(self, *outcomes: Any) -> None:
        self.calls: list[dict[str, Any]] = []
        self._outcomes = list(outcomes)

    async def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def last(self) -> dict[str, Any]:
        return self.calls[-1]


def openai_client(*, create: Recorder | None = None, embed: Recorder | None = None) -> Any:
    client = MagicMock()
    if create is not None:
        client.chat.completions.create = create
    if embed is not None:
        client.embeddings.create = embed
    return client


def anthropic_client(create: Recorder) -> Any:
    client = MagicMock()
    client.messages.create = create
    return client


def gemini_client(
    *,
    generate: Recorder | None = None,
    generate_stream: Recorder | None = None,
    embed: Recorder | None = None,
) -> Any:
    client = MagicMock()
    if generate is not None:
        client.aio.models.generate_content = generate
    if generate_stream is not None:
        client.aio.models.generate_content_stream = generate_stream
    if embed is not None:
        client.aio.models.embed_content = embed
    return client
