"""CLI commands for ad-hoc GitHub REST calls."""

import argparse
import json
import logging
import sys
from typing import Any


def _rate_to_dict(rate) -> dict:
    return rate.model_dump(mode="json")


def main():
    parser = argparse.ArgumentParser(
        description="Call the GitHub REST API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log requests and rate-limit waits to stderr",
    )
    parser.add_argument(
        "--throttle",
        action="store_true",
        help="Wait for exhausted rate-limit buckets to reset instead of failing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # api subcommand
    api_parser = subparsers.add_parser(
        "api",
        help="Make a GitHub REST API call",
    )
    api_parser.add_argument(
        "endpoint",
        help="API endpoint path (e.g., repos/owner/repo/contents/path)",
    )
    api_parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Query parameter (repeatable, e.g., --param per_page=100)",
    )
    api_parser.add_argument(
        "--method",
        default="GET",
        help="HTTP method (default: GET)",
    )
    api_parser.add_argument(
        "--data",
        default=None,
        help="JSON request body",
    )
    api_parser.add_argument(
        "--etag",
        default=None,
        help="Send If-None-Match with this ETag",
    )
    api_parser.add_argument(
        "--include",
        action="store_true",
        help="Print status, rate limit and pagination info to stderr",
    )

    # rate-limit subcommand
    subparsers.add_parser(
        "rate-limit",
        help="Show the quota of every rate-limit bucket",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "api":
        from . import client as client_mod
        from .errors import GitHubError

        params = {}
        for p in args.param:
            k, _, v = p.partition("=")
            params[k] = v

        body: Any = json.loads(args.data) if args.data else None

        client = client_mod.get_client(self_throttle=args.throttle or None)
        try:
            resp = client.request(
                args.method, args.endpoint, body, into=Any, params=params or None, etag=args.etag
            )
        except GitHubError as e:
            print(f"error ({e.kind.value}): {e}", file=sys.stderr)
            sys.exit(1)

        if args.include:
            print(f"status: {resp.status}", file=sys.stderr)
            if resp.etag:
                print(f"etag: {resp.etag}", file=sys.stderr)
            if resp.rate:
                print(f"rate: {json.dumps(_rate_to_dict(resp.rate))}", file=sys.stderr)
            if resp.links.next_url:
                print(f"next: {resp.links.next_url}", file=sys.stderr)

        if resp.not_modified:
            print("Not modified", file=sys.stderr)
            return
        json.dump(resp.data, sys.stdout, indent=2)
        sys.stdout.write("\n")
    elif args.command == "rate-limit":
        from . import client as client_mod
        from .errors import GitHubError

        client = client_mod.get_client()
        try:
            rates = client.rate_limits()
        except GitHubError as e:
            print(f"error ({e.kind.value}): {e}", file=sys.stderr)
            sys.exit(1)

        json.dump({name: _rate_to_dict(rate) for name, rate in rates.items()}, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
