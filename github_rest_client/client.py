"""GitHub REST API client: request dispatch, error mapping and rate-limit back-pressure."""

import concurrent.futures
import logging
import random
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Mapping, TypeVar, overload

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from .auth import CredentialError, CredentialSource, TokenCredentials
from .context import Context
from .errors import (
    APIError,
    DecodeError,
    RateLimitError,
    RequestCancelledError,
    SecondaryRateLimitError,
    TransportError,
)
from .models import NotModified, Rate, RequestDescriptor, Response
from .pagination import ListOptions, parse_links
from .rate_limit import PROCEED, RateLimitTracker, parse_reset
from .request_builder import DEFAULT_ACCEPT, RATE_LIMIT_PATH, RequestBuilder
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Secondary limits without a Retry-After hint: GitHub asks for at least a minute
SECONDARY_RATE_LIMIT_WAIT = 60.0
# How often an in-flight request checks its context for cancellation
CANCEL_POLL_INTERVAL = 0.05


class _RateLimitsBody(BaseModel):
    resources: dict[str, Rate]


class Client:
    """Synchronous GitHub REST client safe to share between threads.

    Explicit arguments override the values from ``Settings``. The rate-limit
    tracker is the only state shared between calls; pass one in to share it
    between clients or to control its clock in tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        credentials: CredentialSource | None = None,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
        tracker: RateLimitTracker | None = None,
        self_throttle: bool | None = None,
        fail_fast_rate_limit: bool | None = None,
        rate_limit_retries: int | None = None,
        throttle_jitter: float | None = None,
        timeout: float | None = None,
    ):
        settings = settings or get_settings()
        if credentials is None and settings.github_token:
            credentials = TokenCredentials(settings.github_token)
        self.credentials = credentials
        self.builder = RequestBuilder(
            base_url=base_url or settings.github_api_url,
            user_agent=settings.github_user_agent,
            accept=DEFAULT_ACCEPT,
            api_version=settings.github_api_version,
        )
        self.tracker = tracker or RateLimitTracker()
        self.self_throttle = settings.github_self_throttle if self_throttle is None else self_throttle
        self.fail_fast_rate_limit = (
            settings.github_fail_fast_rate_limit if fail_fast_rate_limit is None else fail_fast_rate_limit
        )
        self.rate_limit_retries = (
            settings.github_rate_limit_retries if rate_limit_retries is None else rate_limit_retries
        )
        self.throttle_jitter = settings.github_throttle_jitter if throttle_jitter is None else throttle_jitter
        self._client = httpx.Client(
            transport=transport,
            timeout=settings.github_timeout if timeout is None else timeout,
        )
        # threads start on first submit
        self._executor = concurrent.futures.ThreadPoolExecutor(thread_name_prefix="github-rest")

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._client.close()

    def new_request(
        self,
        method: str,
        path: str,
        body: Any = None,
        **kwargs,
    ) -> RequestDescriptor:
        """Build a request descriptor; see ``RequestBuilder.build``."""
        return self.builder.build(method, path, body, **kwargs)

    @overload
    def do(self, request: RequestDescriptor, into: None = None, *, ctx: Context | None = None) -> Response[None] | NotModified: ...

    @overload
    def do(self, request: RequestDescriptor, into: type[T], *, ctx: Context | None = None) -> Response[T] | NotModified: ...

    def do(self, request, into=None, *, ctx=None):
        """Send ``request`` and decode a 2xx JSON body into ``into``.

        Returns ``NotModified`` for a 304 reply to a conditional request.
        With self-throttle enabled, waits for exhausted buckets to reset and
        re-invokes a rate-limited call up to ``rate_limit_retries`` times.

        Raises:
            TransportError: connection failure, timeout, or credentials unavailable.
            RequestCancelledError: ``ctx`` was cancelled or its deadline passed.
            RateLimitError: quota exhausted (403/429), or locally in fail-fast mode.
            APIError: any other non-2xx status.
            DecodeError: the body did not match ``into``.
        """
        ctx = ctx or Context()
        attempt = 0
        waited = False
        while True:
            self._acquire(request, ctx, waited=waited)
            try:
                return self._send_once(request, into, ctx)
            except RateLimitError as e:
                if not self.self_throttle or attempt >= self.rate_limit_retries:
                    raise
                attempt += 1
                waited = True
                wait = e.wait_seconds(self.tracker.now())
                if wait is None:
                    wait = SECONDARY_RATE_LIMIT_WAIT
                logger.warning(
                    "Rate limited on %s (%s), retrying in %.1fs (%d/%d)",
                    request.bucket,
                    e.message,
                    wait,
                    attempt,
                    self.rate_limit_retries,
                )
                self._sleep(wait, request, ctx)

    def _acquire(self, request: RequestDescriptor, ctx: Context, waited: bool = False) -> None:
        """Apply back-pressure for the request's bucket, then claim one request from it.

        ``waited`` means the caller already slept out a rate-limited response
        for this request, so the bucket is not waited on a second time.
        """
        if ctx.done():
            raise RequestCancelledError(ctx.reason, request=request)
        if request.bypass_rate_limit:
            return
        decision = self.tracker.reserve(request.bucket)
        if decision is PROCEED:
            return
        if decision.seconds > 0 and not waited:
            if self.self_throttle:
                logger.info("Bucket %s exhausted, waiting %.1fs for reset", request.bucket, decision.seconds)
                self._sleep(decision.seconds, request, ctx)
            elif self.fail_fast_rate_limit:
                rate = self.tracker.get(request.bucket)
                raise RateLimitError(
                    0,
                    f"API rate limit of {rate.limit if rate else '?'} still exceeded until "
                    f"{rate.reset if rate else '?'}, not making remote request",
                    reset_at=rate.reset if rate else None,
                    rate=rate,
                    request=request,
                )
        self.tracker.record_optimistic_send(request.bucket)

    def _sleep(self, seconds: float, request: RequestDescriptor, ctx: Context) -> None:
        if self.throttle_jitter > 0:
            seconds += random.uniform(0, self.throttle_jitter)
        if ctx.wait(seconds):
            raise RequestCancelledError(ctx.reason, request=request)

    def _send_once(self, request: RequestDescriptor, into, ctx: Context):
        http_request = request.to_httpx()
        if self.credentials is not None:
            try:
                self.credentials.authenticate(http_request)
            except CredentialError as e:
                raise TransportError(str(e), request=request) from e

        logger.debug("%s %s", request.method, request.url)
        try:
            resp = self._send(http_request, request, ctx)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", request=request) from e
        except httpx.RequestError as e:
            raise TransportError(f"{type(e).__name__}: {e}", request=request) from e

        rate = self.tracker.update_from_headers(resp.headers, default_bucket=request.bucket)
        etag = resp.headers.get("etag")

        if resp.status_code == 304:
            return NotModified(
                request=request,
                status=resp.status_code,
                headers=resp.headers,
                links=parse_links(resp.headers),
                rate=rate,
                etag=etag,
            )

        if not 200 <= resp.status_code < 300:
            raise self._error_for(request, resp, rate)

        body = None
        body_error = None
        if resp.content:
            try:
                body = resp.json()
            except ValueError as e:
                body_error = e
        links = parse_links(resp.headers, body)

        data = None
        # 204 has no body; any other empty body must validate as None
        if into is not None and resp.status_code != 204:
            if body_error is not None:
                raise DecodeError(
                    f"Response body is not valid JSON: {body_error}", request=request, response=resp
                ) from body_error
            try:
                data = _adapter(into).validate_python(body)
            except ValidationError as e:
                message = "Empty response body" if not resp.content else "Could not decode response body"
                raise DecodeError(f"{message}: {e}", request=request, response=resp) from e

        return Response(
            request=request,
            status=resp.status_code,
            headers=resp.headers,
            links=links,
            rate=rate,
            etag=etag,
            data=data,
        )

    def _send(self, http_request: httpx.Request, request: RequestDescriptor, ctx: Context) -> httpx.Response:
        """Send on a worker thread so the caller can abandon it when ``ctx`` finishes."""
        future = self._executor.submit(self._client.send, http_request)
        while True:
            try:
                return future.result(timeout=CANCEL_POLL_INTERVAL)
            except concurrent.futures.TimeoutError:
                if ctx.done():
                    future.cancel()
                    raise RequestCancelledError(ctx.reason, request=request) from None

    def _error_for(self, request: RequestDescriptor, resp: httpx.Response, rate: Rate | None) -> APIError:
        message = resp.reason_phrase or ""
        errors = None
        documentation_url = None
        try:
            body = resp.json() if resp.content else None
        except ValueError:
            body = None
            message = resp.text or message
        if isinstance(body, dict):
            message = body.get("message", message)
            errors = body.get("errors")
            documentation_url = body.get("documentation_url")

        status = resp.status_code
        lowered = str(message).lower()
        is_secondary = "secondary rate limit" in lowered or "abuse" in lowered or (
            documentation_url is not None and "secondary-rate-limits" in documentation_url
        )
        if status == 429 or (status == 403 and ("rate limit" in lowered or is_secondary)):
            kwargs = dict(
                rate=rate,
                request=request,
                response=resp,
                errors=errors,
                documentation_url=documentation_url,
            )
            retry_after = _parse_retry_after(resp)
            if is_secondary:
                if retry_after is not None:
                    reset_at = self.tracker.now() + timedelta(seconds=retry_after)
                else:
                    reset_at = _header_reset(resp)
                logger.warning("Secondary rate limit hit: %s", message)
                return SecondaryRateLimitError(
                    status, message, reset_at=reset_at, retry_after=retry_after, **kwargs
                )
            if rate is not None and rate.remaining == 0:
                reset_at = rate.reset
            elif retry_after is not None:
                reset_at = self.tracker.now() + timedelta(seconds=retry_after)
            else:
                reset_at = _header_reset(resp)
            logger.warning("Rate limit exhausted for %s until %s", request.bucket, reset_at)
            return RateLimitError(status, message, reset_at=reset_at, **kwargs)

        return APIError(
            status,
            message,
            request=request,
            response=resp,
            errors=errors,
            documentation_url=documentation_url,
        )

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        into: type[T] | None = None,
        *,
        options: ListOptions | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        etag: str | None = None,
        ctx: Context | None = None,
    ) -> Response[T] | NotModified:
        """Build and dispatch in one step."""
        req = self.new_request(method, path, body, options=options, params=params, headers=headers, etag=etag)
        return self.do(req, into, ctx=ctx)

    def get(self, path: str, into: type[T] | None = None, **kwargs) -> Response[T] | NotModified:
        return self.request("GET", path, into=into, **kwargs)

    def post(self, path: str, body: Any = None, into: type[T] | None = None, **kwargs) -> Response[T] | NotModified:
        return self.request("POST", path, body, into=into, **kwargs)

    def patch(self, path: str, body: Any = None, into: type[T] | None = None, **kwargs) -> Response[T] | NotModified:
        return self.request("PATCH", path, body, into=into, **kwargs)

    def put(self, path: str, body: Any = None, into: type[T] | None = None, **kwargs) -> Response[T] | NotModified:
        return self.request("PUT", path, body, into=into, **kwargs)

    def delete(self, path: str, **kwargs) -> Response[None] | NotModified:
        return self.request("DELETE", path, **kwargs)

    def rate_limits(self, ctx: Context | None = None) -> dict[str, Rate]:
        """Fetch the quota of every bucket and load it into the tracker.

        This endpoint does not count against any quota, so it bypasses the
        throttle gate.
        """
        req = self.new_request("GET", RATE_LIMIT_PATH, bypass_rate_limit=True)
        resp = self.do(req, _RateLimitsBody, ctx=ctx)
        rates = {}
        for name, rate in resp.data.resources.items():
            rate = rate.model_copy(update={"resource": name})
            self.tracker.update(rate)
            rates[name] = rate
        return rates


# Client instances keyed by config
_clients: dict[tuple, Client] = {}


def get_client(self_throttle: bool | None = None) -> Client:
    """Get or create a shared client for the current settings."""
    key = (self_throttle,)
    if key not in _clients:
        _clients[key] = Client(self_throttle=self_throttle)
    return _clients[key]


def _parse_retry_after(resp: httpx.Response) -> float | None:
    val = resp.headers.get("retry-after")
    if val is None:
        return None
    try:
        return max(0.0, float(val))
    except ValueError:
        pass
    when = parse_reset(val)
    if when is None:
        return None
    return max(0.0, (when - datetime.now(when.tzinfo)).total_seconds())


def _header_reset(resp: httpx.Response) -> datetime | None:
    val = resp.headers.get("x-ratelimit-reset")
    return parse_reset(val) if val else None


@lru_cache(maxsize=256)
def _adapter(into) -> TypeAdapter:
    return TypeAdapter(into)
