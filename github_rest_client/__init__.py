"""Shared request/response core for the GitHub REST API.

Builds requests, authenticates them, follows pagination links, handles
conditional requests and keeps per-bucket rate-limit accounting with
optional self-throttling.
"""

from .auth import BasicCredentials, CredentialSource, InstallationCredentials, OAuthCredentials, TokenCredentials
from .cli import main
from .client import Client, get_client
from .context import Context
from .errors import (
    APIError,
    DecodeError,
    ErrorKind,
    GitHubError,
    InvalidRequestError,
    RateLimitError,
    RequestCancelledError,
    SecondaryRateLimitError,
    TransportError,
)
from .models import NotModified, PageLinks, Rate, RequestDescriptor, Response
from .pagination import ListOptions, scan
from .rate_limit import RateLimitTracker

__all__ = [
    "main",
    "Client",
    "get_client",
    "Context",
    "CredentialSource",
    "TokenCredentials",
    "BasicCredentials",
    "OAuthCredentials",
    "InstallationCredentials",
    "ErrorKind",
    "GitHubError",
    "InvalidRequestError",
    "TransportError",
    "RequestCancelledError",
    "APIError",
    "RateLimitError",
    "SecondaryRateLimitError",
    "DecodeError",
    "RequestDescriptor",
    "Response",
    "NotModified",
    "PageLinks",
    "Rate",
    "ListOptions",
    "scan",
    "RateLimitTracker",
]

if __name__ == "__main__":
    main()
