"""Per-bucket rate-limit accounting.

GitHub splits quota into named buckets ("core", "search", "graphql"...) and
reports the bucket a response counted against in ``X-RateLimit-Resource``.
The tracker keeps the last reported state for every bucket it has seen; a
bucket it has never seen is unknown and never blocks.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Mapping
from urllib.parse import urlsplit

from .models import CORE_BUCKET, Rate

logger = logging.getLogger(__name__)

HEADER_LIMIT = "x-ratelimit-limit"
HEADER_REMAINING = "x-ratelimit-remaining"
HEADER_RESET = "x-ratelimit-reset"
HEADER_USED = "x-ratelimit-used"
HEADER_RESOURCE = "x-ratelimit-resource"

SEARCH_BUCKET = "search"
CODE_SEARCH_BUCKET = "code_search"
GRAPHQL_BUCKET = "graphql"

# (method or None for any, path pattern, bucket); first match wins
_CATEGORY_RULES = [
    ("GET", re.compile(r"^/search/code(/|$)"), CODE_SEARCH_BUCKET),
    (None, re.compile(r"^/search/"), SEARCH_BUCKET),
    (None, re.compile(r"^/graphql$"), GRAPHQL_BUCKET),
    ("POST", re.compile(r"^/app-manifests/[^/]+/conversions$"), "integration_manifest"),
    (None, re.compile(r"^/repos/[^/]+/[^/]+/import(/|$)"), "source_import"),
    ("POST", re.compile(r"^/repos/[^/]+/[^/]+/code-scanning/sarifs$"), "code_scanning_upload"),
    (
        "POST",
        re.compile(r"^/(orgs/[^/]+|repos/[^/]+/[^/]+|enterprises/[^/]+)/actions/runners/registration-token$"),
        "actions_runner_registration",
    ),
    (None, re.compile(r"^/scim/"), "scim"),
    ("POST", re.compile(r"^/repos/[^/]+/[^/]+/dependency-graph/snapshots$"), "dependency_snapshots"),
    ("GET", re.compile(r"^/(orgs|enterprises)/[^/]+/audit-log$"), "audit_log"),
]


@dataclass(frozen=True)
class Proceed:
    """The bucket has quota (or is unknown); send now."""


@dataclass(frozen=True)
class Wait:
    """The bucket is exhausted; quota returns after ``seconds``."""

    seconds: float


PROCEED = Proceed()


def category_for_path(method: str, path: str) -> str:
    """Bucket a request to ``path`` is counted against."""
    path = "/" + urlsplit(path).path.lstrip("/")
    method = method.upper()
    for rule_method, pattern, bucket in _CATEGORY_RULES:
        if rule_method is not None and rule_method != method:
            continue
        if pattern.search(path):
            return bucket
    return CORE_BUCKET


def parse_reset(value: str) -> datetime | None:
    """Reset time from epoch seconds or an HTTP-date; None if unparseable."""
    value = value.strip()
    try:
        return datetime.fromtimestamp(int(float(value)), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        pass
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_rate(headers: Mapping[str, str], default_bucket: str = CORE_BUCKET) -> Rate | None:
    """Rate reported by a response, or None when the headers are absent or malformed."""
    limit = headers.get(HEADER_LIMIT)
    remaining = headers.get(HEADER_REMAINING)
    reset = headers.get(HEADER_RESET)
    if limit is None or remaining is None or reset is None:
        return None
    reset_at = parse_reset(reset)
    if reset_at is None:
        return None
    try:
        used = int(headers.get(HEADER_USED) or 0)
        return Rate(
            limit=int(limit),
            remaining=int(remaining),
            reset=reset_at,
            used=used,
            resource=headers.get(HEADER_RESOURCE) or default_bucket,
        )
    except ValueError:
        logger.debug("Ignoring malformed rate-limit headers: %s/%s", limit, remaining)
        return None


class RateLimitTracker:
    """Thread-safe store of the last known quota per bucket.

    One tracker is shared by every call made through a client. Values come
    from the server; the only local change is the optimistic decrement made
    when a request is dispatched, which the next response overwrites.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._rates: dict[str, Rate] = {}

    def _check(self, bucket: str) -> Proceed | Wait:
        rate = self._rates.get(bucket)
        if rate is None or rate.remaining > 0:
            return PROCEED
        return Wait(rate.seconds_until_reset(self._clock()))

    def _decrement(self, bucket: str) -> None:
        rate = self._rates.get(bucket)
        if rate is not None and rate.remaining > 0:
            self._rates[bucket] = rate.model_copy(update={"remaining": rate.remaining - 1})

    def check(self, bucket: str) -> Proceed | Wait:
        with self._lock:
            return self._check(bucket)

    def record_optimistic_send(self, bucket: str) -> None:
        with self._lock:
            self._decrement(bucket)

    def reserve(self, bucket: str) -> Proceed | Wait:
        """Check and, when allowed, claim one request from the bucket atomically."""
        with self._lock:
            decision = self._check(bucket)
            if decision is PROCEED:
                self._decrement(bucket)
            return decision

    def update(self, rate: Rate) -> None:
        with self._lock:
            self._rates[rate.resource] = rate

    def update_from_headers(self, headers: Mapping[str, str], default_bucket: str = CORE_BUCKET) -> Rate | None:
        rate = parse_rate(headers, default_bucket)
        if rate is not None:
            self.update(rate)
        return rate

    def get(self, bucket: str) -> Rate | None:
        with self._lock:
            return self._rates.get(bucket)

    def snapshot(self) -> dict[str, Rate]:
        with self._lock:
            return dict(self._rates)

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)
