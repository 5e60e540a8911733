"""Data models shared by the request builder, dispatcher and pagination helper."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Generic, Mapping, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict

T = TypeVar("T")

CORE_BUCKET = "core"


class Rate(BaseModel):
    """Quota state of one rate-limit bucket as reported by GitHub."""

    model_config = ConfigDict(frozen=True)

    limit: int
    remaining: int
    reset: datetime
    used: int = 0
    resource: str = CORE_BUCKET

    def seconds_until_reset(self, now: float) -> float:
        """Seconds from ``now`` (epoch) until reset, clamped to zero."""
        reset = self.reset if self.reset.tzinfo else self.reset.replace(tzinfo=timezone.utc)
        return max(0.0, reset.timestamp() - now)


@dataclass(frozen=True)
class RequestDescriptor:
    """A fully resolved request, built once per logical call."""

    method: str
    url: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None
    bucket: str = CORE_BUCKET
    bypass_rate_limit: bool = False

    def __post_init__(self):
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def to_httpx(self) -> httpx.Request:
        """Fresh mutable request for one send; credentials are applied to this copy."""
        return httpx.Request(
            self.method,
            self.url,
            headers=dict(self.headers),
            content=self.body,
        )


@dataclass(frozen=True)
class PageLinks:
    """Pagination relations parsed from a ``Link`` header.

    Page numbers are 0 when the relation is absent. Cursor-style endpoints
    report ``after`` / ``before`` / ``cursor`` instead of page numbers.
    """

    first_page: int = 0
    prev_page: int = 0
    next_page: int = 0
    last_page: int = 0
    first_url: str | None = None
    prev_url: str | None = None
    next_url: str | None = None
    last_url: str | None = None
    after: str = ""
    before: str = ""
    cursor: str = ""
    next_page_token: str = ""

    @property
    def has_next(self) -> bool:
        return bool(self.next_page or self.after or self.next_page_token)

    def next_options(self, per_page: int = 0, cls=None):
        """``ListOptions`` (or ``cls``) for the next page; ``per_page`` overrides the linked size."""
        from .pagination import ListOptions, next_options

        options = next_options(self, cls or ListOptions)
        if options is not None and per_page:
            options = replace(options, per_page=per_page)
        return options


@dataclass(frozen=True)
class Response(Generic[T]):
    """Successful (2xx) reply. ``data`` is None unless a destination type was given."""

    request: RequestDescriptor
    status: int
    headers: httpx.Headers
    links: PageLinks
    rate: Rate | None = None
    etag: str | None = None
    data: T | None = None

    @property
    def not_modified(self) -> bool:
        return False


@dataclass(frozen=True)
class NotModified:
    """Reply to a conditional request: the caller's cached copy is still valid."""

    request: RequestDescriptor
    status: int
    headers: httpx.Headers
    links: PageLinks
    rate: Rate | None = None
    etag: str | None = None

    @property
    def not_modified(self) -> bool:
        return True


Result = Response[T] | NotModified
