"""Shared provider-side error mapping.

Every vendor call site funnels exceptions through :func:`wrap_provider_error`
so that only ``APIError`` subclasses cross the adapter boundary.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from switchyard.config import API_KEY_ENV_VARS
from switchyard.errors import (
    ERROR_CLASSES,
    APIError,
    ErrorKind,
    _walk_exception_chain,
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_raw_payload(exc: BaseException) -> Any:
    """Return the vendor's error body when the SDK exposes one."""
    for e in _walk_exception_chain(exc):
        for attr in ("body", "details", "response_json"):
            value = getattr(e, attr, None)
            if value is not None:
                return value
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _extract_retry_info_seconds(exc: BaseException) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    Gemini SDK ``ClientError`` exposes the parsed JSON body via a ``.details``
    attribute shaped like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is not None:
            raw: Any = None
            try:
                raw = headers.get("Retry-After")
            except (AttributeError, TypeError):
                raw = None
            if isinstance(raw, str) and raw.strip():
                try:
                    seconds = float(raw)
                except ValueError:
                    seconds = None
                if seconds is not None and seconds >= 0:
                    return seconds

        retry_info = _extract_retry_info_seconds(e)
        if retry_info is not None:
            return retry_info
    return None


def classify_status(status_code: int) -> tuple[ErrorKind, bool]:
    """Map an HTTP status to ``(kind, retryable)``."""
    if status_code == 429:
        return ErrorKind.RATE_LIMIT, True
    if status_code in (401, 403):
        return ErrorKind.AUTHENTICATION, False
    if status_code == 408:
        return ErrorKind.TIMEOUT, True
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR, True
    return ErrorKind.INVALID_REQUEST, False


def _classify_transport(exc: BaseException) -> tuple[ErrorKind, bool] | None:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
            return ErrorKind.TIMEOUT, True
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.RequestError, ConnectionError)):
            return ErrorKind.SERVER_ERROR, True
    return None


def _auth_hint(provider: str) -> str:
    env_vars = " or ".join(API_KEY_ENV_VARS.get(provider, ("the API key",)))  # type: ignore[call-overload]
    return f"Check credentials/permissions (try setting {env_vars})."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
) -> APIError:
    """Map a vendor SDK exception into an ``APIError`` subclass."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    if status_code is not None:
        kind, retryable = classify_status(status_code)
    else:
        transport = _classify_transport(exc)
        if transport is not None:
            kind, retryable = transport
        else:
            # Unknown failure with no status: surface it, don't retry blindly.
            kind, retryable = ErrorKind.SERVER_ERROR, False

    # Gemini reports bad keys as 400 INVALID_ARGUMENT.
    cause = str(exc)
    lowered = cause.lower()
    if kind is ErrorKind.INVALID_REQUEST and (
        "api key not valid" in lowered or "api_key_invalid" in lowered
    ):
        kind = ErrorKind.AUTHENTICATION

    hint = _auth_hint(provider) if kind is ErrorKind.AUTHENTICATION else None
    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    err_cls = ERROR_CLASSES[kind]
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint,
        kind=kind,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
        raw=extract_raw_payload(exc),
    )
