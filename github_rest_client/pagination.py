"""Pagination options and Link header parsing.

GitHub paginates list endpoints two ways: page numbers (``page``/``per_page``)
and opaque cursors (``after``/``before``/``cursor``). Both show up as query
parameters of the URLs in the ``Link`` response header:

    Link: <https://api.github.com/user/repos?page=3&per_page=100>; rel="next",
          <https://api.github.com/user/repos?page=50&per_page=100>; rel="last"
"""

import dataclasses
import re
from typing import Callable, Iterable, Iterator, Mapping, TypeVar
from urllib.parse import parse_qs, parse_qsl, urlencode, urlsplit, urlunsplit

from .models import PageLinks, Response

T = TypeVar("T")
O = TypeVar("O", bound="ListOptions")

_LINK_RE = re.compile(r"<(?P<url>[^>]*)>(?P<params>[^<]*)")
_REL_RE = re.compile(r'rel\s*=\s*"?(?P<rel>[^";,]+)"?')


@dataclasses.dataclass(frozen=True)
class ListOptions:
    """Pagination options understood by every list endpoint.

    Resource-specific option sets subclass this and add their own filter
    fields (``state``, ``sort``...); ``encode`` serializes those too.
    """

    page: int = 0
    per_page: int = 0
    cursor: str = ""
    after: str = ""
    before: str = ""


def _is_zero(value) -> bool:
    return value is None or value is False or value == 0 or value == "" or value == [] or value == ()


def _query_value(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return [_query_value(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def encode_params(options: ListOptions | None) -> dict[str, str | list[str]]:
    """Non-zero option fields as query parameters, keys sorted."""
    if options is None:
        return {}
    params = {}
    for f in sorted(dataclasses.fields(options), key=lambda f: f.name):
        value = getattr(options, f.name)
        if _is_zero(value):
            continue
        params[f.name] = _query_value(value)
    return params


def encode(options: ListOptions | None) -> str:
    """Serialize options into a deterministic query string (no leading ``?``)."""
    return urlencode(encode_params(options), doseq=True)


def decode(query: str, cls: type[O] = ListOptions) -> O:
    """Inverse of ``encode`` for the fields ``cls`` declares. Unknown keys are ignored."""
    values = parse_qs(query.lstrip("?"), keep_blank_values=False)
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name not in values:
            continue
        default = f.default
        if default is dataclasses.MISSING and f.default_factory is not dataclasses.MISSING:
            default = f.default_factory()
        if isinstance(default, (list, tuple)):
            kwargs[f.name] = type(default)(values[f.name])
            continue
        raw = values[f.name][-1]
        if isinstance(default, bool):
            kwargs[f.name] = raw.lower() in ("1", "true")
        elif isinstance(default, int):
            try:
                kwargs[f.name] = int(raw)
            except ValueError:
                continue
        else:
            kwargs[f.name] = raw
    return cls(**kwargs)


def add_options(path: str, options: ListOptions | None, extra: Mapping[str, object] | None = None) -> str:
    """Merge encoded options, then ``extra`` query parameters, into the query string of ``path``."""
    params = encode_params(options)
    for key, value in (extra or {}).items():
        if value is None:
            continue
        params[key] = _query_value(value)
    if not params:
        return path
    parts = urlsplit(path)
    merged: dict[str, list[str]] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        merged.setdefault(key, []).append(value)
    for key, value in params.items():
        merged[key] = value if isinstance(value, list) else [value]
    query = urlencode(sorted(merged.items()), doseq=True)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _page_number(query: dict[str, list[str]]) -> int:
    try:
        return int(query.get("page", [""])[0])
    except ValueError:
        return 0


def parse_links(headers: Mapping[str, str], body=None) -> PageLinks:
    """Extract first/prev/next/last relations; missing or malformed entries are skipped."""
    fields: dict = {}
    link = headers.get("link") or headers.get("Link") or ""
    for match in _LINK_RE.finditer(link):
        rel_match = _REL_RE.search(match.group("params"))
        if rel_match is None:
            continue
        url = match.group("url").strip()
        query = parse_qs(urlsplit(url).query)
        for rel in rel_match.group("rel").split():
            if rel == "next":
                fields["next_url"] = url
                page = query.get("page", [""])[0]
                fields["next_page"] = _page_number(query)
                if page and not fields["next_page"]:
                    fields["next_page_token"] = page
                fields["after"] = query.get("after", [""])[0]
                fields["cursor"] = query.get("cursor", [""])[0]
            elif rel == "prev":
                fields["prev_url"] = url
                fields["prev_page"] = _page_number(query)
                fields["before"] = query.get("before", [""])[0]
            elif rel == "first":
                fields["first_url"] = url
                fields["first_page"] = _page_number(query)
            elif rel == "last":
                fields["last_url"] = url
                fields["last_page"] = _page_number(query)

    if isinstance(body, dict) and isinstance(body.get("next_page_token"), str):
        fields.setdefault("next_page_token", body["next_page_token"])

    return PageLinks(**fields)


def next_options(links: PageLinks, cls: type[O] = ListOptions) -> O | None:
    """Options that request exactly the page ``links`` calls next, or None on the last page."""
    if links.next_url:
        return decode(urlsplit(links.next_url).query, cls)
    if links.next_page_token:
        return cls(cursor=links.next_page_token)
    return None


def scan(
    fetch: Callable[[O], tuple[Iterable[T], Response]],
    options: O | None = None,
) -> Iterator[T]:
    """Yield every item of a paginated listing, fetching pages lazily.

    ``fetch`` receives the options for one page and returns that page's items
    together with its response. Iteration stops once the response links no
    further page. Errors raised by ``fetch`` propagate to the consumer.
    """
    options = options if options is not None else ListOptions()
    while True:
        items, response = fetch(options)
        yield from items
        links = response.links
        if links.next_page:
            options = dataclasses.replace(options, page=links.next_page)
        elif links.after:
            options = dataclasses.replace(options, after=links.after)
        else:
            return
