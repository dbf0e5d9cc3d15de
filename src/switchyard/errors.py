"""Exception hierarchy for Switchyard.

Every vendor failure is collapsed into :class:`APIError` (or one of its
kind-specific subclasses) before it leaves a provider adapter, so callers only
ever see the types defined here.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class SwitchyardError(Exception):
    """Base exception for all Switchyard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchyardError):
    """Configuration validation or credential resolution failed."""


class UnsupportedOperationError(SwitchyardError):
    """The provider categorically lacks the requested capability.

    Not transient: the facade never falls back or retries on this error.
    """

    def __init__(
        self, message: str, *, provider: str | None = None, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider


class ErrorKind(str, Enum):
    """Vendor-agnostic failure classification."""

    RATE_LIMIT = "rate_limit"
    INVALID_REQUEST = "invalid_request"
    AUTHENTICATION = "authentication"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"


class APIError(SwitchyardError):
    """A provider call failed.

    Carries the originating provider tag, a classification and retry metadata
    so the facade can decide on fallback without inspecting vendor exceptions.
    """

    default_kind: ErrorKind = ErrorKind.SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        kind: ErrorKind | None = None,
        retryable: bool = False,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
        raw: Any = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind if kind is not None else self.default_kind
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase
        self.raw = raw

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({str(self)!r}, kind={self.kind.value!r}, "
            f"provider={self.provider!r}, status_code={self.status_code!r}, "
            f"retryable={self.retryable!r})"
        )


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""

    default_kind = ErrorKind.RATE_LIMIT


class InvalidRequestError(APIError):
    """The vendor rejected the request as malformed."""

    default_kind = ErrorKind.INVALID_REQUEST


class AuthenticationError(APIError):
    """Credentials were missing, invalid or lacked permission."""

    default_kind = ErrorKind.AUTHENTICATION


class ServerError(APIError):
    """The vendor failed server-side or the transport broke."""

    default_kind = ErrorKind.SERVER_ERROR


class RequestTimeoutError(APIError):
    """The call did not complete within the configured timeout."""

    default_kind = ErrorKind.TIMEOUT


ERROR_CLASSES: dict[ErrorKind, type[APIError]] = {
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.INVALID_REQUEST: InvalidRequestError,
    ErrorKind.AUTHENTICATION: AuthenticationError,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.TIMEOUT: RequestTimeoutError,
}


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
