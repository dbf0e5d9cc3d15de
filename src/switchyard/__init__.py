"""Switchyard: one async interface over OpenAI, Anthropic and Gemini.

Public API:
    - Switchyard: facade with complete(), stream(), embed(), set_provider()
    - ProviderConfig / configs_from_env(): per-vendor configuration
    - Message, CompletionRequest, EmbeddingRequest: unified inputs
    - count_tokens(), truncate_messages(): context-budget helpers
"""

from __future__ import annotations

import logging

from switchyard.config import ProviderConfig, configs_from_env, resolve_api_key
from switchyard.errors import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    InvalidRequestError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    SwitchyardError,
    UnsupportedOperationError,
)
from switchyard.facade import Switchyard
from switchyard.rate_limit import DEFAULT_RATE_LIMITS, RateLimiter, RateLimits
from switchyard.retry import RetryPolicy
from switchyard.streaming import CompletionStream
from switchyard.tokens import count_message_tokens, count_tokens, truncate_messages
from switchyard.types import (
    Choice,
    CompletionRequest,
    CompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    ImagePart,
    Message,
    StreamChunk,
    TextPart,
    Tool,
    ToolCall,
    ToolCallPart,
    ToolResultPart,
    Usage,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchyard")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchyard").addHandler(logging.NullHandler())

__all__ = [
    "DEFAULT_RATE_LIMITS",
    "APIError",
    "AuthenticationError",
    "Choice",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionStream",
    "ConfigurationError",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "ErrorKind",
    "ImagePart",
    "InvalidRequestError",
    "Message",
    "ProviderConfig",
    "RateLimitError",
    "RateLimiter",
    "RateLimits",
    "RequestTimeoutError",
    "RetryPolicy",
    "ServerError",
    "StreamChunk",
    "Switchyard",
    "SwitchyardError",
    "TextPart",
    "Tool",
    "ToolCall",
    "ToolCallPart",
    "ToolResultPart",
    "UnsupportedOperationError",
    "Usage",
    "configs_from_env",
    "count_message_tokens",
    "count_tokens",
    "resolve_api_key",
    "truncate_messages",
]
