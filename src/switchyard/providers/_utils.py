"""Shared utilities for provider implementations."""

from __future__ import annotations

import base64
import binascii
import json
import mimetypes
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from switchyard.errors import InvalidRequestError

if TYPE_CHECKING:
    from switchyard.types import ImagePart


def split_data_uri(uri: str) -> tuple[str, str]:
    """Split ``data:<mime>;base64,<payload>`` into ``(mime, payload)``.

    The payload is returned still base64-encoded, without the prefix.
    """
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise InvalidRequestError(
            "Invalid image data URI: expected 'data:<mime>;base64,<payload>'"
        )
    mime_type = header[len("data:") : -len(";base64")]
    if not mime_type:
        raise InvalidRequestError("Invalid image data URI: missing media type")
    return mime_type, payload


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Return ``(mime, raw bytes)`` for a base64 data URI."""
    mime_type, payload = split_data_uri(uri)
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequestError(
            "Invalid image data URI: malformed base64 payload"
        ) from e
    return mime_type, data


def require_http_url(uri: str, *, provider: str) -> str:
    parsed = urlparse(uri)
    if parsed.scheme not in {"http", "https"}:
        raise InvalidRequestError(
            f"Unsupported image URI for {provider}: {uri[:64]}",
            provider=provider,
            hint="Use an http(s) URL or a base64 data URI.",
        )
    return uri


def guess_image_mime(part: ImagePart) -> str:
    """Best-effort media type for a URL image."""
    if part.mime_type:
        return part.mime_type
    guessed, _ = mimetypes.guess_type(urlparse(part.url).path)
    return guessed or "image/jpeg"


def loads_object(raw: str | None) -> dict[str, Any]:
    """Parse tool arguments/results into a dict, tolerating non-JSON text."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return {"result": raw}
    return value if isinstance(value, dict) else {"result": value}


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read *name* from an SDK model or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def as_int(value: Any) -> int:
    return int(value) if isinstance(value, (int, float)) else 0
