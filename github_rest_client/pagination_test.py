"""Unit tests for pagination options and Link parsing."""

from dataclasses import dataclass, field
from unittest.mock import MagicMock

import pytest

from .models import PageLinks
from .pagination import ListOptions, add_options, decode, encode, next_options, parse_links, scan

GITHUB_LINK = (
    '<https://api.github.com/user/repos?page=3&per_page=100>; rel="next", '
    '<https://api.github.com/user/repos?page=1&per_page=100>; rel="prev", '
    '<https://api.github.com/user/repos?page=1&per_page=100>; rel="first", '
    '<https://api.github.com/user/repos?page=50&per_page=100>; rel="last"'
)


@dataclass(frozen=True)
class IssueListOptions(ListOptions):
    state: str = ""
    labels: tuple = ()


def describe_encode():
    def it_omits_zero_values():
        assert encode(ListOptions()) == ""
        assert encode(None) == ""

    def it_sorts_keys():
        assert encode(ListOptions(page=3, per_page=50)) == "page=3&per_page=50"
        assert encode(ListOptions(per_page=10, after="abc")) == "after=abc&per_page=10"

    def it_encodes_subclass_fields():
        opts = IssueListOptions(page=2, state="open", labels=("bug", "ui"))
        assert encode(opts) == "labels=bug&labels=ui&page=2&state=open"


def describe_decode():
    def it_round_trips_page_options():
        opts = ListOptions(page=3, per_page=50)
        assert decode(encode(opts)) == opts

    def it_round_trips_cursor_options():
        opts = ListOptions(per_page=25, after="Y3Vyc29y")
        assert decode(encode(opts)) == opts

    def it_ignores_unknown_and_invalid_keys():
        assert decode("?page=x&per_page=5&sort=created") == ListOptions(per_page=5)

    def it_decodes_into_subclass():
        assert decode("state=closed&page=4", IssueListOptions) == IssueListOptions(page=4, state="closed")

    def it_round_trips_repeated_filter_values():
        opts = IssueListOptions(page=2, labels=("bug", "ui"))
        assert decode(encode(opts), IssueListOptions) == opts

    def it_keeps_list_fields_as_lists():
        @dataclass(frozen=True)
        class RepoListOptions(ListOptions):
            topics: list = field(default_factory=list)

        assert decode("topics=python&topics=http", RepoListOptions).topics == ["python", "http"]


def describe_add_options():
    def it_leaves_path_without_options_unchanged():
        assert add_options("repos/o/r/issues", None) == "repos/o/r/issues"

    def it_appends_query():
        assert add_options("repos/o/r/issues", ListOptions(page=2)) == "repos/o/r/issues?page=2"

    def it_merges_with_existing_query():
        result = add_options("search/code?q=foo", ListOptions(page=2, per_page=10))
        assert result == "search/code?page=2&per_page=10&q=foo"

    def it_overrides_existing_values():
        assert add_options("x?page=1", ListOptions(page=5)) == "x?page=5"


def describe_parse_links():
    def it_returns_empty_links_without_header():
        links = parse_links({})
        assert links == PageLinks()
        assert not links.has_next

    def it_parses_all_relations():
        links = parse_links({"link": GITHUB_LINK})
        assert links.next_page == 3
        assert links.prev_page == 1
        assert links.first_page == 1
        assert links.last_page == 50
        assert links.next_url == "https://api.github.com/user/repos?page=3&per_page=100"
        assert links.has_next

    def it_tolerates_a_subset():
        links = parse_links({"Link": '<https://api.github.com/x?page=2>; rel="next"'})
        assert links.next_page == 2
        assert links.last_page == 0
        assert links.prev_url is None

    def it_skips_malformed_segments():
        links = parse_links({"link": 'garbage, <https://api.github.com/x?page=2>; foo=bar, <https://api.github.com/x?page=9>; rel="last"'})
        assert links.next_page == 0
        assert links.last_page == 9

    def it_parses_cursors():
        header = (
            '<https://api.github.com/orgs/o/audit-log?after=MTY%3D&before=>; rel="next", '
            '<https://api.github.com/orgs/o/audit-log?after=&before=MTU%3D>; rel="prev"'
        )
        links = parse_links({"link": header})
        assert links.after == "MTY="
        assert links.before == "MTU="
        assert links.next_page == 0
        assert links.has_next

    def it_keeps_non_numeric_page_as_token():
        links = parse_links({"link": '<https://api.github.com/x?page=abc123>; rel="next"'})
        assert links.next_page == 0
        assert links.next_page_token == "abc123"

    def it_reads_token_from_body():
        links = parse_links({}, body={"next_page_token": "tok"})
        assert links.next_page_token == "tok"


def describe_next_options():
    def it_reproduces_the_next_page_request():
        links = parse_links({"link": GITHUB_LINK})
        opts = next_options(links)
        assert opts == ListOptions(page=3, per_page=100)
        assert encode(opts) == "page=3&per_page=100"

    def it_returns_none_on_last_page():
        assert next_options(PageLinks(last_page=5)) is None

    def it_is_available_on_links():
        links = parse_links({"link": GITHUB_LINK})
        assert links.next_options() == ListOptions(page=3, per_page=100)
        assert links.next_options(per_page=20) == ListOptions(page=3, per_page=20)
        assert PageLinks().next_options() is None


def describe_scan():
    def _response(next_page=0, after=""):
        resp = MagicMock()
        resp.links = PageLinks(next_page=next_page, after=after)
        return resp

    def it_follows_page_numbers():
        pages = {
            0: ([1, 2], _response(next_page=2)),
            2: ([3, 4], _response(next_page=3)),
            3: ([5], _response()),
        }
        seen = []

        def fetch(opts):
            seen.append(opts)
            return pages[opts.page]

        assert list(scan(fetch, ListOptions(per_page=2))) == [1, 2, 3, 4, 5]
        assert [o.page for o in seen] == [0, 2, 3]
        assert all(o.per_page == 2 for o in seen)

    def it_follows_after_cursors():
        pages = {
            "": (["a"], _response(after="c1")),
            "c1": (["b"], _response()),
        }
        assert list(scan(lambda o: pages[o.after])) == ["a", "b"]

    def it_keeps_filter_fields():
        seen = []

        def fetch(opts):
            seen.append(opts)
            return [], _response(next_page=2) if opts.page == 0 else _response()

        list(scan(fetch, IssueListOptions(state="open")))
        assert seen[1] == IssueListOptions(page=2, state="open")

    def it_propagates_errors():
        def fetch(opts):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            list(scan(fetch))
