"""Configuration: frozen per-provider records with explicit key resolution."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import os
from types import MappingProxyType
from typing import TYPE_CHECKING, Literal, get_args

from switchyard.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from switchyard.rate_limit import RateLimits

ProviderName = Literal["openai", "anthropic", "gemini"]

PROVIDER_NAMES: tuple[ProviderName, ...] = get_args(ProviderName)

# Checked in order; first non-empty value wins.
API_KEY_ENV_VARS: dict[ProviderName, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
}

DEFAULT_MODELS: dict[ProviderName, str] = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-5",
    "gemini": "gemini-2.5-flash",
}

DEFAULT_EMBEDDING_MODELS: dict[ProviderName, str] = {
    "openai": "text-embedding-3-small",
    "gemini": "gemini-embedding-001",
}


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable configuration for one vendor.

    Owned by the provider adapter built from it. ``api_key`` may be left as
    *None*; the facade resolves it from the environment at construction time.

    Example:
        config = ProviderConfig(provider="anthropic", model="claude-sonnet-4-5")
    """

    provider: ProviderName
    api_key: str | None = None
    #: Falls back to the vendor default in ``DEFAULT_MODELS`` when *None*.
    model: str | None = None
    embedding_model: str | None = None
    base_url: str | None = None
    organization: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout_s: float = 60.0
    max_retries: int = 2
    #: Overrides the vendor entry in ``DEFAULT_RATE_LIMITS``.
    rate_limits: RateLimits | None = None

    def __post_init__(self) -> None:
        """Validate values and freeze the header mapping."""
        if self.provider not in PROVIDER_NAMES:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint=f"Supported providers: {', '.join(PROVIDER_NAMES)}",
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This bounds each vendor call in seconds.",
            )
        if self.max_retries < 0:
            raise ConfigurationError(
                f"max_retries must be >= 0, got {self.max_retries}",
                hint="Use 0 to disable per-provider retries.",
            )
        if not isinstance(self.headers, MappingProxyType):
            object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]

    @property
    def resolved_embedding_model(self) -> str | None:
        return self.embedding_model or DEFAULT_EMBEDDING_MODELS.get(self.provider)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"ProviderConfig(provider={self.provider!r}, model={self.resolved_model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r})"
        )

    __repr__ = __str__


def env_api_key(provider: ProviderName) -> str | None:
    """Look up the provider's key in the standard environment variables."""
    for name in API_KEY_ENV_VARS[provider]:
        value = os.environ.get(name)
        if value:
            return value
    return None


def resolve_api_key(config: ProviderConfig) -> ProviderConfig:
    """Return *config* with ``api_key`` filled from the environment if missing.

    Raises:
        ConfigurationError: when neither the config nor the environment
            provides a key.
    """
    if config.api_key:
        return config
    key = env_api_key(config.provider)
    if not key:
        env_vars = " or ".join(API_KEY_ENV_VARS[config.provider])
        raise ConfigurationError(
            f"API key required for {config.provider}",
            hint=f"Set {env_vars} or pass ProviderConfig(api_key=...).",
        )
    return replace(config, api_key=key)


def configs_from_env(
    providers: Iterable[ProviderName] | None = None,
    *,
    dotenv: bool = True,
) -> list[ProviderConfig]:
    """Build configs for every provider whose key is present in the environment.

    Order follows *providers* (default: ``PROVIDER_NAMES``), which becomes the
    fallback order once passed to the facade. When *dotenv* is true a ``.env``
    file is loaded first without overriding variables already set.
    """
    if dotenv:
        from dotenv import load_dotenv

        load_dotenv()
    configs: list[ProviderConfig] = []
    for name in providers if providers is not None else PROVIDER_NAMES:
        key = env_api_key(name)
        if key:
            configs.append(ProviderConfig(provider=name, api_key=key))
    return configs
