"""Exceptions raised by the GitHub REST client.

Every failure carries an ``ErrorKind`` so callers can decide on retries
without matching on exception types. A 304 "not modified" reply is not an
error and never shows up here; see ``models.NotModified``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

    from .models import Rate, RequestDescriptor


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    TRANSPORT = "transport"
    CANCELLED = "cancelled"
    API_ERROR = "api_error"
    RATE_LIMITED = "rate_limited"
    DECODE = "decode"


class GitHubError(Exception):
    """Base exception for all client failures."""

    kind: ErrorKind

    def __init__(
        self,
        message: str,
        request: RequestDescriptor | None = None,
        response: httpx.Response | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.request = request
        self.response = response

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.TRANSPORT, ErrorKind.RATE_LIMITED)

    def __str__(self) -> str:
        if self.request is None:
            return self.message
        return f"{self.request.method} {self.request.url}: {self.message}"


class InvalidRequestError(GitHubError):
    """The request could not be built; nothing was sent."""

    kind = ErrorKind.INVALID_REQUEST


class TransportError(GitHubError):
    """Connection, DNS, TLS or timeout failure, or credentials could not be obtained."""

    kind = ErrorKind.TRANSPORT


class RequestCancelledError(GitHubError):
    """The caller's context was cancelled or its deadline passed."""

    kind = ErrorKind.CANCELLED


class DecodeError(GitHubError):
    """A 2xx response body did not match the requested shape."""

    kind = ErrorKind.DECODE


class APIError(GitHubError):
    """GitHub answered with a non-2xx status.

    ``message`` is the server's message verbatim. ``errors`` holds the
    per-field validation details GitHub attaches to 422 responses.
    """

    kind = ErrorKind.API_ERROR

    def __init__(
        self,
        status: int,
        message: str,
        request: RequestDescriptor | None = None,
        response: httpx.Response | None = None,
        errors: list[dict[str, Any]] | None = None,
        documentation_url: str | None = None,
    ):
        super().__init__(message, request=request, response=response)
        self.status = status
        self.errors = errors or []
        self.documentation_url = documentation_url

    def __str__(self) -> str:
        text = f"{self.status} {self.message}"
        if self.errors:
            text = f"{text} {self.errors}"
        if self.request is None:
            return text
        return f"{self.request.method} {self.request.url}: {text}"


class RateLimitError(APIError):
    """Quota for a bucket is exhausted; retryable once ``reset_at`` has passed.

    Raised both for 403/429 responses and, in fail-fast mode, locally before
    the request is sent (``status`` is 0 and ``response`` is None then).
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        status: int,
        message: str,
        reset_at: datetime | None = None,
        rate: Rate | None = None,
        request: RequestDescriptor | None = None,
        response: httpx.Response | None = None,
        errors: list[dict[str, Any]] | None = None,
        documentation_url: str | None = None,
    ):
        super().__init__(
            status,
            message,
            request=request,
            response=response,
            errors=errors,
            documentation_url=documentation_url,
        )
        self.reset_at = reset_at
        self.rate = rate

    def wait_seconds(self, now: datetime) -> float | None:
        """Seconds until the limit lifts, or None when the server gave no hint."""
        if self.reset_at is None:
            return None
        return max(0.0, (self.reset_at - now).total_seconds())


class SecondaryRateLimitError(RateLimitError):
    """GitHub's secondary ("abuse") limit: too many requests in a short burst."""

    def __init__(self, *args, retry_after: float | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.retry_after = retry_after
