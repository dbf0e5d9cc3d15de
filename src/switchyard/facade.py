"""Registry/facade: ordered providers with cross-provider fallback."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from switchyard.config import resolve_api_key
from switchyard.errors import (
    APIError,
    ConfigurationError,
    ErrorKind,
    UnsupportedOperationError,
)
from switchyard.providers import build_provider
from switchyard.streaming import CompletionStream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence
    from types import TracebackType

    from switchyard.config import ProviderConfig
    from switchyard.providers.base import Provider
    from switchyard.types import (
        CompletionRequest,
        CompletionResponse,
        EmbeddingRequest,
        EmbeddingResponse,
        StreamChunk,
    )

logger = logging.getLogger(__name__)


def _exhausted(last_error: APIError | None) -> Exception:
    if last_error is None:
        return ConfigurationError("No providers to try")
    return last_error


def should_fall_back(exc: APIError) -> bool:
    """Whether *exc* justifies trying the next provider.

    Rate limits and errors marked retryable fall through; anything else
    (bad credentials, malformed input) is raised at once. Note that an
    authentication failure on one vendor says nothing about another vendor's
    credentials, yet still stops the whole call.
    """
    return exc.retryable or exc.kind is ErrorKind.RATE_LIMIT


class Switchyard:
    """Unified ``complete`` / ``stream`` / ``embed`` over ordered providers.

    The first configured provider is primary; the rest are tried in order
    when it fails with a rate limit or a retryable error.

    Example:
        switchyard = Switchyard(
            [ProviderConfig(provider="openai"), ProviderConfig(provider="gemini")]
        )
        response = await switchyard.complete(
            CompletionRequest(messages=(Message.user("Hello"),))
        )
    """

    def __init__(self, configs: Sequence[ProviderConfig]) -> None:
        """Build one adapter per config, skipping configs without a usable key.

        Raises:
            ConfigurationError: when *configs* is empty, lists a provider twice,
                or no config has a resolvable API key.
        """
        if not configs:
            raise ConfigurationError(
                "No providers configured",
                hint="Pass at least one ProviderConfig, e.g. from configs_from_env().",
            )
        providers: list[Provider] = []
        last_error: ConfigurationError | None = None
        for config in configs:
            try:
                resolved = resolve_api_key(config)
            except ConfigurationError as exc:
                last_error = exc
                logger.warning("Skipping provider %s: %s", config.provider, exc)
                continue
            providers.append(build_provider(resolved))
        if not providers:
            raise ConfigurationError(
                "No provider has a usable API key",
                hint=last_error.hint if last_error is not None else None,
            ) from last_error
        self._init_providers(providers)

    @classmethod
    def from_providers(cls, providers: Sequence[Provider]) -> Switchyard:
        """Wrap already-constructed adapters, keeping their order."""
        if not providers:
            raise ConfigurationError("No providers configured")
        instance = cls.__new__(cls)
        instance._init_providers(list(providers))
        return instance

    def _init_providers(self, providers: list[Provider]) -> None:
        names = [p.name for p in providers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Provider configured more than once: {', '.join(duplicates)}",
                hint="Each vendor may appear once in the fallback list.",
            )
        self._providers: dict[str, Provider] = {p.name: p for p in providers}
        self._order: list[str] = names

    @property
    def providers(self) -> list[Provider]:
        """Adapters in the order they will be tried."""
        return [self._providers[name] for name in self._order]

    @property
    def primary(self) -> Provider:
        return self._providers[self._order[0]]

    def set_provider(self, name: str) -> None:
        """Try *name* first; the others keep their relative order."""
        if name not in self._providers:
            raise ConfigurationError(
                f"Provider not configured: {name!r}",
                hint=f"Configured providers: {', '.join(self._order)}",
            )
        self._order = [name] + [n for n in self._order if n != name]

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Complete with the first provider that succeeds."""
        return await self._with_fallback(
            self.providers, "complete", lambda p: p.complete(request)
        )

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Embed with the first embedding-capable provider that succeeds."""
        capable = [p for p in self.providers if p.capabilities.embeddings]
        if not capable:
            raise UnsupportedOperationError(
                "No configured provider supports embeddings",
                provider=self._order[0],
                hint="Add an openai or gemini ProviderConfig.",
            )
        return await self._with_fallback(capable, "embed", lambda p: p.embed(request))

    def stream(self, request: CompletionRequest) -> CompletionStream:
        """Stream from the first provider that starts successfully.

        Fallback happens only before the first chunk is delivered; after that
        a provider failure terminates the stream with its error.
        """
        return CompletionStream(self._stream_with_fallback(request))

    async def _with_fallback(
        self,
        providers: list[Provider],
        operation: str,
        call: Any,
    ) -> Any:
        last_error: APIError | None = None
        for index, provider in enumerate(providers):
            try:
                return await call(provider)
            except APIError as exc:
                if not should_fall_back(exc):
                    raise
                last_error = exc
                self._log_fallback(operation, provider, exc, providers[index + 1 :])
        raise _exhausted(last_error)

    async def _stream_with_fallback(
        self, request: CompletionRequest
    ) -> AsyncIterator[StreamChunk]:
        providers = self.providers
        last_error: APIError | None = None
        for index, provider in enumerate(providers):
            stream = provider.stream(request)
            try:
                first = await stream.__anext__()
            except StopAsyncIteration:
                return
            except APIError as exc:
                await stream.aclose()
                if not should_fall_back(exc):
                    raise
                last_error = exc
                self._log_fallback("stream", provider, exc, providers[index + 1 :])
                continue
            except BaseException:
                await stream.aclose()
                raise

            try:
                yield first
                async for chunk in stream:
                    yield chunk
            finally:
                await stream.aclose()
            return
        raise _exhausted(last_error)

    @staticmethod
    def _log_fallback(
        operation: str, provider: Provider, exc: APIError, remaining: list[Provider]
    ) -> None:
        if remaining:
            logger.warning(
                "%s via %s failed (%s); falling back to %s",
                operation,
                provider.name,
                exc.kind.value,
                remaining[0].name,
            )
        else:
            logger.warning(
                "%s via %s failed (%s); no providers left",
                operation,
                provider.name,
                exc.kind.value,
            )

    async def aclose(self) -> None:
        """Close every adapter's client; cleanup failures are logged."""
        for provider in self._providers.values():
            try:
                await provider.aclose()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Cleanup should never mask the primary failure.
                logger.warning("Provider cleanup failed for %s: %s", provider.name, exc)

    async def __aenter__(self) -> Switchyard:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"Switchyard(providers={self._order!r})"
