"""Errors — exception hierarchy plus the backend error taxonomy.

Vertex AI failures arrive in several shapes: SDK ``APIError`` objects,
exceptions whose message is a JSON document (OAuth failures look like
``{"error": "invalid_grant", "error_description": "..."}``), nested Google
API errors (``{"error": {"message", "status", "code"}}``), or plain text.
They are decoded once into a ``BackendErrorPayload`` and classified into the
OpenAI error types clients already understand.
"""

from __future__ import annotations

import json
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from google.genai import errors as genai_errors

from agent_proxy.schemas import ErrorEnvelope


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class AgentProxyError(Exception):
    """Base class for errors raised by the proxy itself."""


class ConfigError(AgentProxyError):
    """Missing or invalid configuration. Fatal at command time."""


class PromptError(AgentProxyError):
    """Prompt composition failed. Fails the current request only."""


class PromptPathError(PromptError):
    """A prompt or include reference resolves outside its root directory."""


class IncludeNotFoundError(PromptError):
    def __init__(self, reference: str, path: str) -> None:
        super().__init__(f"Include file not found: {reference} ({path})")
        self.reference = reference
        self.path = path


class CircularIncludeError(PromptError):
    def __init__(self, chain: list[str]) -> None:
        super().__init__(f"Circular include detected: {' -> '.join(chain)}")
        self.chain = chain


class PromptNotFoundError(PromptError):
    """The file named by a ``{{prompt:...}}`` directive does not exist."""


class PromptResolutionError(PromptError):
    """Wraps any composition failure with the reference that triggered it."""


# ---------------------------------------------------------------------------
# Backend error payloads
# ---------------------------------------------------------------------------


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication_error"
    PERMISSION = "permission_error"
    RATE_LIMIT = "rate_limit_error"
    INVALID_REQUEST = "invalid_request_error"
    NOT_FOUND = "not_found_error"
    API = "api_error"
    SERVER = "server_error"


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.PERMISSION: 403,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.API: 500,
    ErrorKind.SERVER: 500,
}

# Checked in order; the first kind with a matching keyword wins.
_KEYWORDS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (ErrorKind.AUTHENTICATION, ("invalid_grant", "unauthorized", "auth", "invalid_rapt")),
    (ErrorKind.PERMISSION, ("permission", "forbidden", "access_denied")),
    (ErrorKind.RATE_LIMIT, ("rate_limit", "quota", "too_many_requests")),
    (
        ErrorKind.INVALID_REQUEST,
        (
            "invalid_request",
            "bad_request",
            "invalid_parameter",
            "invalid_argument",
            "invalid json payload",
        ),
    ),
    (ErrorKind.NOT_FOUND, ("not_found", "resource_not_found")),
]

_UNKNOWN_MESSAGE = "Unknown error occurred"


@dataclass(frozen=True)
class ErrorDetail:
    """Nested-object variant: ``{"error": {"message", "status", "code"}}``."""

    message: str | None = None
    status: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class BackendErrorPayload:
    """A decoded backend error.

    ``error`` is the tagged part: a bare string code (OAuth style), an
    ``ErrorDetail`` (Google API style), or ``None`` when the payload carried
    no error object at all.
    """

    error: str | ErrorDetail | None
    description: str | None = None
    uri: str | None = None


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _payload_from_json(data: dict[str, Any]) -> BackendErrorPayload:
    raw_error = data.get("error")
    error: str | ErrorDetail | None
    if isinstance(raw_error, str):
        error = raw_error or None
    elif isinstance(raw_error, dict):
        error = ErrorDetail(
            message=_optional_str(raw_error.get("message")),
            status=_optional_str(raw_error.get("status")),
            code=_optional_str(raw_error.get("code")),
        )
    else:
        error = None
    return BackendErrorPayload(
        error=error,
        description=_optional_str(data.get("error_description")),
        uri=_optional_str(data.get("error_uri")),
    )


def raw_message(raw: object) -> str | None:
    """The message string an error value carries, if any."""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, BaseException):
        message = getattr(raw, "message", None)
        if isinstance(message, str) and message:
            return message
        return str(raw)
    return None


def decode_backend_error(raw: object) -> BackendErrorPayload | None:
    """Decode ``raw`` into a payload, or ``None`` when nothing structured is found."""
    if isinstance(raw, genai_errors.APIError):
        return BackendErrorPayload(
            error=ErrorDetail(
                message=_optional_str(raw.message),
                status=_optional_str(raw.status),
                code=_optional_str(raw.code),
            )
        )

    message = raw_message(raw)
    if not message:
        return None
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return _payload_from_json(data)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _error_text(payload: BackendErrorPayload) -> str:
    match payload.error:
        case str() as code:
            return code
        case ErrorDetail(message=message) if message:
            return message
        case ErrorDetail(status=status, code=code):
            return " - ".join(p for p in (status, code) if p)
        case _:
            return ""


def _format_message(payload: BackendErrorPayload | None, fallback: str) -> str:
    if payload is None:
        return fallback
    message = _error_text(payload)
    if payload.description:
        message = f"{message}: {payload.description}" if message else payload.description
    if payload.uri:
        message += f" (See: {payload.uri})"
    return message or fallback


def _error_code(payload: BackendErrorPayload | None) -> str | None:
    if payload is None:
        return None
    match payload.error:
        case str() as code:
            return code
        case ErrorDetail(status=status, code=code):
            return status or code
        case _:
            return None


def _error_kind(payload: BackendErrorPayload | None) -> ErrorKind:
    if payload is None or payload.error is None:
        return ErrorKind.SERVER

    match payload.error:
        case str() as code:
            haystack = code
        case ErrorDetail(message=message, status=status, code=code):
            haystack = " ".join(p for p in (message, status, code) if p)
        case _:
            return ErrorKind.SERVER

    haystack = haystack.lower()
    for kind, keywords in _KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return kind
    return ErrorKind.API


def classify_error(raw: object) -> ErrorEnvelope:
    """Map any backend failure to a normalized ``ErrorEnvelope``.

    Never raises and never logs; callers decide what to record.
    """
    try:
        payload = decode_backend_error(raw)
        fallback = raw_message(raw) or _UNKNOWN_MESSAGE
    except Exception:  # noqa: BLE001 - exotic __str__ implementations
        payload, fallback = None, _UNKNOWN_MESSAGE

    return ErrorEnvelope(
        message=_format_message(payload, fallback),
        type=_error_kind(payload).value,
        code=_error_code(payload),
    )


def status_for_kind(kind: str | ErrorKind) -> int:
    """HTTP status for an error type; unknown types map to 500."""
    try:
        return HTTP_STATUS_BY_KIND[ErrorKind(kind)]
    except ValueError:
        return 500


def is_authentication_error(raw: object) -> bool:
    return classify_error(raw).type == ErrorKind.AUTHENTICATION.value


def stream_error_chunk(raw: object) -> dict[str, Any]:
    """The final SSE event sent when a stream fails."""
    now = time.time()
    return {
        "id": f"error-{int(now * 1000)}-{random.randint(0, 9999)}",
        "object": "error",
        "created": int(now),
        "error": classify_error(raw).model_dump(),
    }
