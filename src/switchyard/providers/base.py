"""Provider protocol and the shared call discipline for vendor adapters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
import uuid

from switchyard.errors import APIError, ErrorKind, UnsupportedOperationError
from switchyard.providers._errors import wrap_provider_error
from switchyard.rate_limit import limiter_for
from switchyard.retry import RetryPolicy, retry_async, should_retry
from switchyard.streaming import CompletionStream
from switchyard.tokens import count_request_tokens, count_tokens
from switchyard.types import ChunkChoice, MessageDelta, StreamChunk

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.config import ProviderConfig
    from switchyard.rate_limit import RateLimiter
    from switchyard.types import (
        CompletionRequest,
        CompletionResponse,
        EmbeddingRequest,
        EmbeddingResponse,
        FinishReason,
    )

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    embeddings: bool
    tools: bool = True
    vision: bool = True


@runtime_checkable
class Provider(Protocol):
    """Unified interface every vendor adapter implements."""

    name: str

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Static feature flags for this vendor."""
        ...

    @property
    def default_model(self) -> str:
        """Model used when a request names none."""
        ...

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Run a non-streaming completion."""
        ...

    def stream(self, request: CompletionRequest) -> CompletionStream:
        """Return a lazy stream of chunks; nothing is sent until first pull."""
        ...

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Embed one or more strings."""
        ...

    async def aclose(self) -> None:
        """Release client resources."""
        ...


class BaseProvider:
    """Call discipline shared by the three adapters.

    Subclasses supply the vendor mapping through ``_complete_once``,
    ``_stream_events`` and ``_embed_once``. This class wraps each vendor call
    in a rate-limit permit, bounded retries and error normalization.
    """

    name: str = "provider"

    def __init__(
        self,
        config: ProviderConfig,
        *,
        limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize from a resolved config."""
        self.config = config
        self.limiter = (
            limiter
            if limiter is not None
            else limiter_for(config.provider, config.rate_limits)
        )
        self.retry_policy = RetryPolicy.from_max_retries(config.max_retries)
        self._client: Any = None

    @property
    def capabilities(self) -> ProviderCapabilities:
        raise NotImplementedError

    @property
    def default_model(self) -> str:
        return self.config.resolved_model

    def _model_for(self, request: CompletionRequest) -> str:
        return request.model or self.default_model

    def _effective_max_tokens(self, request: CompletionRequest) -> int:
        """Output budget the vendor call will actually carry."""
        return request.max_tokens or 0

    def _estimate_tokens(self, request: CompletionRequest) -> int:
        return count_request_tokens(request) + self._effective_max_tokens(request)

    def _should_retry(self, exc: BaseException) -> bool:
        # Rate limits go to the facade so the next provider is tried at once.
        if isinstance(exc, APIError) and exc.kind is ErrorKind.RATE_LIMIT:
            return False
        return should_retry(exc)

    # -- completion ---------------------------------------------------------

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Run a completion under a rate-limit permit with bounded retries."""
        estimate = self._estimate_tokens(request)

        async def attempt() -> CompletionResponse:
            async with self.limiter.permit(estimate):
                try:
                    return await self._complete_once(request)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    raise wrap_provider_error(
                        e,
                        provider=self.name,
                        phase="complete",
                        message=f"{self.name} completion failed",
                    ) from e

        return await retry_async(
            attempt, policy=self.retry_policy, should_retry=self._should_retry
        )

    async def _complete_once(self, request: CompletionRequest) -> CompletionResponse:
        raise NotImplementedError

    # -- streaming ----------------------------------------------------------

    def stream(self, request: CompletionRequest) -> CompletionStream:
        """Return a lazy stream; the permit is held until the stream ends."""
        return CompletionStream(self._stream_chunks(request))

    async def _stream_chunks(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        async with self.limiter.permit(self._estimate_tokens(request)):
            finished = False
            last: StreamChunk | None = None
            events = self._stream_events(request)
            try:
                async for chunk in events:
                    last = chunk
                    if chunk.finish_reason is not None:
                        finished = True
                    yield chunk
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(
                    e,
                    provider=self.name,
                    phase="stream",
                    message=f"{self.name} stream failed",
                ) from e
            finally:
                try:
                    await events.aclose()
                except Exception as exc:
                    # Cleanup should never mask the primary failure.
                    logger.warning("Closing %s stream failed: %s", self.name, exc)
            if not finished:
                yield self._final_chunk(request, last)

    def _stream_events(self, request: CompletionRequest) -> Any:
        """Async generator translating vendor events into ``StreamChunk``."""
        raise NotImplementedError

    def _final_chunk(
        self, request: CompletionRequest, last: StreamChunk | None
    ) -> StreamChunk:
        """Synthesize a terminating chunk when the vendor sent no finish reason."""
        reason: FinishReason = "stop"
        return StreamChunk(
            id=last.id if last is not None else new_response_id(self.name),
            created=last.created if last is not None else int(time.time()),
            model=last.model if last is not None else self._model_for(request),
            choices=(ChunkChoice(index=0, delta=MessageDelta(), finish_reason=reason),),
            provider=self.name,
        )

    # -- embeddings ---------------------------------------------------------

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Embed inputs under a rate-limit permit with bounded retries."""
        if not self.capabilities.embeddings:
            raise UnsupportedOperationError(
                f"{self.name} does not offer an embeddings endpoint",
                provider=self.name,
                hint="Configure an embedding-capable provider such as openai or gemini.",
            )
        estimate = sum(count_tokens(text) for text in request.inputs)

        async def attempt() -> EmbeddingResponse:
            async with self.limiter.permit(estimate):
                try:
                    return await self._embed_once(request)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    raise wrap_provider_error(
                        e,
                        provider=self.name,
                        phase="embed",
                        message=f"{self.name} embedding failed",
                    ) from e

        return await retry_async(
            attempt, policy=self.retry_policy, should_retry=self._should_retry
        )

    async def _embed_once(self, request: EmbeddingRequest) -> EmbeddingResponse:
        raise NotImplementedError

    # -- lifecycle ----------------------------------------------------------

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        close = getattr(client, "close", None)
        if callable(close):
            result = close()
            if asyncio.iscoroutine(result):
                await result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config})"


def new_response_id(provider: str) -> str:
    """Generate an id for vendors that do not return one."""
    return f"{provider}-{uuid.uuid4().hex[:24]}"
