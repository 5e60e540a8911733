"""Unit tests for the rate-limit tracker."""

import threading
from datetime import datetime, timezone

import pytest

from .models import Rate
from .rate_limit import (
    PROCEED,
    RateLimitTracker,
    Wait,
    category_for_path,
    parse_rate,
    parse_reset,
)

NOW = 1_700_000_000.0


def _headers(limit=60, remaining=0, reset=NOW + 5, resource=None, used=None):
    headers = {
        "x-ratelimit-limit": str(limit),
        "x-ratelimit-remaining": str(remaining),
        "x-ratelimit-reset": str(int(reset)),
    }
    if resource:
        headers["x-ratelimit-resource"] = resource
    if used is not None:
        headers["x-ratelimit-used"] = str(used)
    return headers


def describe_RateLimitTracker():
    @pytest.fixture
    def tracker():
        return RateLimitTracker(clock=lambda: NOW)

    def describe_check():
        def it_proceeds_for_unknown_bucket(tracker):
            assert tracker.check("core") is PROCEED
            assert tracker.get("core") is None

        def it_proceeds_while_remaining(tracker):
            tracker.update_from_headers(_headers(remaining=10))
            assert tracker.check("core") is PROCEED

        def it_waits_until_reset_when_exhausted(tracker):
            tracker.update_from_headers(_headers(limit=60, remaining=0, reset=NOW + 5))
            decision = tracker.check("core")
            assert isinstance(decision, Wait)
            assert decision.seconds == pytest.approx(5.0)

        def it_clamps_wait_after_reset(tracker):
            tracker.update_from_headers(_headers(remaining=0, reset=NOW - 30))
            assert tracker.check("core") == Wait(0.0)

        def it_tracks_buckets_independently(tracker):
            tracker.update_from_headers(_headers(remaining=0, resource="search"))
            assert isinstance(tracker.check("search"), Wait)
            assert tracker.check("core") is PROCEED

    def describe_update():
        def it_ignores_responses_without_headers(tracker):
            assert tracker.update_from_headers({}) is None
            assert tracker.snapshot() == {}

        def it_uses_default_bucket_without_resource_header(tracker):
            rate = tracker.update_from_headers(_headers(remaining=3), default_bucket="search")
            assert rate.resource == "search"
            assert tracker.get("search").remaining == 3

        def it_overwrites_stale_values(tracker):
            tracker.update_from_headers(_headers(remaining=0))
            tracker.update_from_headers(_headers(remaining=42))
            assert tracker.get("core").remaining == 42

        def it_is_idempotent_for_identical_headers(tracker):
            headers = _headers(limit=5000, remaining=4990, used=10)
            first = tracker.update_from_headers(headers)
            second = tracker.update_from_headers(headers)
            assert first == second
            assert tracker.get("core").remaining == 4990

    def describe_record_optimistic_send():
        def it_decrements_known_bucket(tracker):
            tracker.update_from_headers(_headers(remaining=2))
            tracker.record_optimistic_send("core")
            assert tracker.get("core").remaining == 1

        def it_never_goes_below_zero(tracker):
            tracker.update_from_headers(_headers(remaining=0))
            tracker.record_optimistic_send("core")
            assert tracker.get("core").remaining == 0

        def it_leaves_unknown_bucket_unknown(tracker):
            tracker.record_optimistic_send("core")
            assert tracker.get("core") is None

        def it_is_corrected_by_next_response(tracker):
            tracker.update_from_headers(_headers(remaining=5))
            tracker.record_optimistic_send("core")
            tracker.update_from_headers(_headers(remaining=5))
            assert tracker.get("core").remaining == 5

    def describe_reserve():
        def it_claims_one_request(tracker):
            tracker.update_from_headers(_headers(remaining=1))
            assert tracker.reserve("core") is PROCEED
            assert isinstance(tracker.reserve("core"), Wait)

        def it_admits_at_most_one_of_two_threads(tracker):
            tracker.update_from_headers(_headers(remaining=1, reset=NOW + 60))
            barrier = threading.Barrier(2)
            results = []

            def worker():
                barrier.wait()
                results.append(tracker.reserve("core"))

            threads = [threading.Thread(target=worker) for _ in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert results.count(PROCEED) == 1
            waits = [r for r in results if isinstance(r, Wait)]
            assert len(waits) == 1
            assert waits[0].seconds == pytest.approx(60.0)

        def it_admits_exactly_remaining_under_contention(tracker):
            tracker.update_from_headers(_headers(remaining=10, reset=NOW + 60))
            results = []
            lock = threading.Lock()

            def worker():
                decision = tracker.reserve("core")
                with lock:
                    results.append(decision)

            threads = [threading.Thread(target=worker) for _ in range(25)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert results.count(PROCEED) == 10


def describe_parse_rate():
    def it_parses_all_headers():
        rate = parse_rate(_headers(limit=5000, remaining=4999, reset=NOW + 3600, resource="core", used=1))
        assert rate == Rate(
            limit=5000,
            remaining=4999,
            reset=datetime.fromtimestamp(int(NOW + 3600), tz=timezone.utc),
            used=1,
            resource="core",
        )

    def it_returns_none_when_partial():
        headers = _headers()
        del headers["x-ratelimit-reset"]
        assert parse_rate(headers) is None

    def it_returns_none_when_malformed():
        assert parse_rate(_headers(remaining="lots")) is None

    def it_accepts_http_date_reset():
        headers = _headers()
        headers["x-ratelimit-reset"] = "Wed, 21 Oct 2015 07:28:00 GMT"
        rate = parse_rate(headers)
        assert rate.reset == datetime(2015, 10, 21, 7, 28, tzinfo=timezone.utc)


def describe_parse_reset():
    def it_parses_epoch_seconds():
        assert parse_reset("0") == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def it_rejects_garbage():
        assert parse_reset("soon") is None


def describe_category_for_path():
    @pytest.mark.parametrize(
        "method,path,bucket",
        [
            ("GET", "repos/o/r", "core"),
            ("GET", "/search/issues?q=x", "search"),
            ("GET", "search/code?q=x", "code_search"),
            ("POST", "graphql", "graphql"),
            ("POST", "app-manifests/abc/conversions", "integration_manifest"),
            ("GET", "repos/o/r/import", "source_import"),
            ("POST", "repos/o/r/code-scanning/sarifs", "code_scanning_upload"),
            ("GET", "repos/o/r/code-scanning/sarifs", "core"),
            ("POST", "orgs/o/actions/runners/registration-token", "actions_runner_registration"),
            ("GET", "scim/v2/organizations/o/Users", "scim"),
            ("POST", "repos/o/r/dependency-graph/snapshots", "dependency_snapshots"),
            ("GET", "orgs/o/audit-log", "audit_log"),
        ],
    )
    def it_classifies(method, path, bucket):
        assert category_for_path(method, path) == bucket
