"""Pull-based stream handle with explicit close."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from types import TracebackType

    from switchyard.types import StreamChunk


class CompletionStream:
    """Single-pass async sequence of :class:`StreamChunk`.

    Nothing happens until the first chunk is requested. Resources held by the
    producer (rate-limit permit, vendor connection) are released when the
    stream is exhausted, fails, or is closed via :meth:`aclose`. Prefer the
    context-manager form so abandoning a stream early still closes it::

        async with switchyard.stream(request) as stream:
            async for chunk in stream:
                ...
    """

    def __init__(self, source: AsyncGenerator[StreamChunk, None]) -> None:
        self._source = source
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> CompletionStream:
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            self._closed = True
            raise
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        """Stop the producer and release what it holds. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._source.aclose()

    async def collect(self) -> list[StreamChunk]:
        """Drain the stream into a list."""
        return [chunk async for chunk in self]

    async def __aenter__(self) -> CompletionStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
