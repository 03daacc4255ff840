"""Failure taxonomy and classification for remote generation calls.

Every failure raised or returned by the Gemini service, the artifact download
or the cancellation machinery is mapped to exactly one :class:`FailureKind`.
Callers switch on the kind; nothing downstream inspects raw error text.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Any

import httpx

# Sentinels the studio raises explicitly to force a classification.
REAUTH_SENTINEL = "RETRY_KEY_SELECTION"
DAILY_QUOTA_SENTINEL = "DAILY_QUOTA_EXHAUSTED"
ABORT_SENTINEL = "AbortError"

_AUTH_PATTERNS: tuple[str, ...] = (
    "requested entity was not found",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "429",
)


class FailureKind(str, enum.Enum):
    CANCELLED = "cancelled"
    RATE_LIMITED = "rate_limited"
    AUTH_REQUIRED = "auth_required"
    QUOTA_EXHAUSTED = "quota_exhausted"
    FATAL = "fatal"


class GenerationError(Exception):
    """Structured error from the generation service or artifact download."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        status: str = "",
        code: str | int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = status
        self.code = code


class OperationCancelled(GenerationError):
    """Raised when a cancellation token is aborted at a check point."""

    def __init__(self, message: str = ABORT_SENTINEL):
        super().__init__(message)


class MissingArtifactError(GenerationError):
    """A finished operation carried no retrievable media."""


@dataclass(frozen=True)
class FailureInfo:
    """Classified failure with the raw underlying message."""

    kind: FailureKind
    message: str
    status_code: int = 0

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.RATE_LIMITED


def _fields(failure: Any) -> tuple[str, str, str]:
    """Extract lower-cased (message, status, code) from any failure shape."""
    if failure is None:
        return "", "", ""
    if isinstance(failure, str):
        return failure.lower(), "", ""
    if isinstance(failure, dict):
        inner = failure.get("error") if isinstance(failure.get("error"), dict) else {}
        message = failure.get("message") or inner.get("message") or ""
        status = failure.get("status") or inner.get("status") or ""
        code = failure.get("code") or inner.get("code") or ""
        return str(message).lower(), str(status).lower(), str(code).lower()

    message = str(getattr(failure, "message", "") or failure)
    status = str(getattr(failure, "status", "") or "")
    code = getattr(failure, "code", None)
    status_code = getattr(failure, "status_code", 0)
    if isinstance(failure, httpx.HTTPStatusError):
        status_code = failure.response.status_code
    if not code and status_code:
        code = status_code
    return message.lower(), status.lower(), str(code or "").lower()


def _raw_message(failure: Any) -> str:
    if isinstance(failure, dict):
        inner = failure.get("error") if isinstance(failure.get("error"), dict) else {}
        return str(failure.get("message") or inner.get("message") or "Generation failed")
    if isinstance(failure, GenerationError):
        return failure.message
    return str(failure) or type(failure).__name__


def _status_code(failure: Any) -> int:
    if isinstance(failure, httpx.HTTPStatusError):
        return failure.response.status_code
    if isinstance(failure, dict):
        code = failure.get("code")
        return code if isinstance(code, int) else 0
    return int(getattr(failure, "status_code", 0) or 0)


def classify(failure: Any, token: Any = None) -> FailureKind:
    """Label *failure* with a :class:`FailureKind`.

    Pure: never touches the token beyond reading ``aborted``.
    """
    if token is not None and token.aborted:
        return FailureKind.CANCELLED
    if isinstance(failure, (OperationCancelled, asyncio.CancelledError)):
        return FailureKind.CANCELLED

    message, status, code = _fields(failure)
    if message == ABORT_SENTINEL.lower():
        return FailureKind.CANCELLED
    if DAILY_QUOTA_SENTINEL.lower() in message:
        return FailureKind.QUOTA_EXHAUSTED
    if REAUTH_SENTINEL.lower() in message or any(p in message for p in _AUTH_PATTERNS):
        return FailureKind.AUTH_REQUIRED
    if code == "429" or "429" in status or "resource_exhausted" in status:
        return FailureKind.RATE_LIMITED
    if any(p in message for p in _RATE_LIMIT_PATTERNS):
        return FailureKind.RATE_LIMITED
    return FailureKind.FATAL


def describe(failure: Any, token: Any = None) -> FailureInfo:
    """Classify *failure* and keep its raw message for display."""
    return FailureInfo(
        kind=classify(failure, token),
        message=_raw_message(failure),
        status_code=_status_code(failure),
    )


def error_from_response(response: httpx.Response) -> GenerationError:
    """Build a :class:`GenerationError` from a non-2xx service response."""
    message = response.reason_phrase or f"HTTP {response.status_code}"
    status = ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message") or message
        status = body["error"].get("status") or ""
    return GenerationError(
        message,
        status_code=response.status_code,
        status=status,
        code=response.status_code,
    )
