"""Builds immutable request descriptors relative to the API base URL."""

import re
from typing import Any, Mapping

import httpx
from pydantic_core import PydanticSerializationError, to_json

from .errors import InvalidRequestError
from .models import RequestDescriptor
from .pagination import ListOptions, add_options
from .rate_limit import category_for_path
from .settings import DEFAULT_API_URL, DEFAULT_API_VERSION, DEFAULT_USER_AGENT

DEFAULT_ACCEPT = "application/vnd.github+json"
RATE_LIMIT_PATH = "rate_limit"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_METHODS = {"GET", "POST", "PATCH", "PUT", "DELETE", "HEAD"}


class RequestBuilder:
    """Resolves paths against ``base_url`` and attaches the default headers.

    Paths are relative (``repos/o/r``; a leading slash is ignored so it does
    not escape an enterprise base such as ``https://ghe.example.com/api/v3/``).
    Absolute URLs, e.g. from pagination links, are used unchanged.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        accept: str = DEFAULT_ACCEPT,
        api_version: str | None = DEFAULT_API_VERSION,
    ):
        if not base_url.endswith("/"):
            base_url += "/"
        try:
            self.base_url = httpx.URL(base_url)
        except httpx.InvalidURL as e:
            raise ValueError(f"Invalid base URL {base_url!r}: {e}") from e
        self.user_agent = user_agent
        self.accept = accept
        self.api_version = api_version

    def _resolve(self, path: str) -> tuple[httpx.URL, str]:
        if _CONTROL_CHARS.search(path):
            raise InvalidRequestError(f"Path contains control characters: {path!r}")
        try:
            url = httpx.URL(path)
            if url.is_absolute_url:
                return url, url.raw_path.decode("ascii")
            relative = path.lstrip("/")
            resolved = self.base_url.join(relative)
        except (httpx.InvalidURL, UnicodeError) as e:
            raise InvalidRequestError(f"Invalid request path {path!r}: {e}") from e
        return resolved, relative

    def _relative_path(self, url: httpx.URL, fallback: str) -> str:
        """Path below the base, used to pick the rate-limit bucket."""
        base_path = self.base_url.path
        if url.host == self.base_url.host and url.path.startswith(base_path):
            return url.path[len(base_path):]
        return fallback

    def build(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        options: ListOptions | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        etag: str | None = None,
        bypass_rate_limit: bool = False,
    ) -> RequestDescriptor:
        """Create a request descriptor.

        Args:
            method: HTTP method
            path: API path relative to the base URL, or an absolute URL
            body: Value serialized as the JSON body (models, dataclasses, dicts...)
            options: Pagination/filter options merged into the query string
            params: Extra query parameters, applied after ``options``
            headers: Header overrides, e.g. a preview ``Accept`` media type
            etag: Previously seen ETag; sent as ``If-None-Match``

        Raises:
            InvalidRequestError: the path does not parse or the body does not serialize.
        """
        method = method.upper()
        if method not in _METHODS:
            raise InvalidRequestError(f"Unsupported HTTP method: {method}")

        url, relative = self._resolve(add_options(path, options, params))

        content = None
        if body is not None:
            try:
                content = to_json(body)
            except (PydanticSerializationError, TypeError, ValueError) as e:
                raise InvalidRequestError(f"Request body is not JSON serializable: {e}") from e

        request_headers = {
            "Accept": self.accept,
            "User-Agent": self.user_agent,
        }
        if self.api_version:
            request_headers["X-GitHub-Api-Version"] = self.api_version
        if content is not None:
            request_headers["Content-Type"] = "application/json"
        if etag:
            request_headers["If-None-Match"] = etag
        if headers:
            request_headers.update(headers)

        return RequestDescriptor(
            method=method,
            url=str(url),
            path=path,
            headers=request_headers,
            body=content,
            bucket=category_for_path(method, self._relative_path(url, relative)),
            bypass_rate_limit=bypass_rate_limit,
        )
