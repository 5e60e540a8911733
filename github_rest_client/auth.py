"""Credential sources that set the Authorization header of outgoing requests.

The dispatcher calls ``authenticate`` once per request and never looks at
which kind of credential it holds. Sources with short-lived tokens renew them
themselves, ``leeway`` seconds before they expire.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable

import httpx
from github import Auth, GithubException, GithubIntegration

logger = logging.getLogger(__name__)

OAUTH_TOKEN_URL = "https://github.com/login/oauth/access_token"
DEFAULT_LEEWAY = 60.0


class CredentialError(Exception):
    """A credential could not be obtained or renewed."""


class CredentialSource(ABC):
    @abstractmethod
    def authenticate(self, request: httpx.Request) -> None:
        """Set the Authorization header on ``request``."""


class TokenCredentials(CredentialSource):
    """Personal access token (or any other long-lived token)."""

    def __init__(self, token: str):
        self._auth = Auth.Token(token)

    def authenticate(self, request: httpx.Request) -> None:
        request.headers["Authorization"] = f"{self._auth.token_type} {self._auth.token}"


class BasicCredentials(CredentialSource):
    """HTTP basic auth with a login and password or token."""

    def __init__(self, login: str, password: str):
        self._auth = Auth.Login(login, password)

    def authenticate(self, request: httpx.Request) -> None:
        request.headers["Authorization"] = f"{self._auth.token_type} {self._auth.token}"


class _ExpiringTokenSource(CredentialSource):
    """Caches a bearer token and renews it shortly before it expires."""

    def __init__(self, leeway: float = DEFAULT_LEEWAY, clock: Callable[[], float] = time.time):
        self.leeway = leeway
        self._clock = clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at: datetime | None = None

    @abstractmethod
    def _renew(self) -> tuple[str, datetime | None]:
        """Return a fresh token and its expiry (None if it never expires)."""

    def _is_fresh(self) -> bool:
        if self._token is None:
            return False
        if self._expires_at is None:
            return True
        return self._clock() + self.leeway < self._expires_at.timestamp()

    def token(self) -> str:
        with self._lock:
            if not self._is_fresh():
                self._token, self._expires_at = self._renew()
                logger.info("Renewed %s, expires at %s", type(self).__name__, self._expires_at)
            return self._token

    @property
    def expires_at(self) -> datetime | None:
        return self._expires_at

    def authenticate(self, request: httpx.Request) -> None:
        request.headers["Authorization"] = f"Bearer {self.token()}"


class OAuthCredentials(_ExpiringTokenSource):
    """OAuth user-to-server token, refreshed with the refresh-token grant."""

    def __init__(
        self,
        access_token: str,
        refresh_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        expires_at: datetime | None = None,
        leeway: float = DEFAULT_LEEWAY,
        http: httpx.Client | None = None,
        token_url: str = OAUTH_TOKEN_URL,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(leeway=leeway, clock=clock)
        self._token = access_token
        self._expires_at = expires_at
        self.refresh_token = refresh_token
        self._client_id = client_id
        self._client_secret = client_secret
        self._http = http
        self._owns_http = http is None
        self._token_url = token_url

    def _renew(self) -> tuple[str, datetime | None]:
        if not (self.refresh_token and self._client_id and self._client_secret):
            raise CredentialError("OAuth token expired and no refresh token is configured")
        if self._http is None:
            self._http = httpx.Client(timeout=30.0)
        try:
            resp = self._http.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": self.refresh_token,
                },
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CredentialError(f"OAuth token refresh failed: {e}") from e

        # GitHub answers 200 with an "error" field for rejected grants
        if "error" in body or "access_token" not in body:
            raise CredentialError(
                f"OAuth token refresh rejected: {body.get('error_description') or body.get('error')}"
            )
        self.refresh_token = body.get("refresh_token", self.refresh_token)
        expires_at = None
        if body.get("expires_in"):
            expires_at = datetime.fromtimestamp(self._clock() + int(body["expires_in"]), tz=timezone.utc)
        return body["access_token"], expires_at

    def close(self) -> None:
        """Close the token-endpoint client if this source created it."""
        with self._lock:
            if self._owns_http and self._http is not None:
                self._http.close()
                self._http = None


class InstallationCredentials(_ExpiringTokenSource):
    """GitHub App installation token (valid for one hour).

    ``mint`` returns a new ``(token, expires_at)`` pair; use ``from_app`` to
    mint through the GitHub App JWT flow.
    """

    def __init__(
        self,
        mint: Callable[[], tuple[str, datetime]],
        leeway: float = DEFAULT_LEEWAY,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(leeway=leeway, clock=clock)
        self._mint = mint

    @classmethod
    def from_app(
        cls,
        app_id: int | str,
        private_key: str,
        installation_id: int,
        base_url: str | None = None,
        leeway: float = DEFAULT_LEEWAY,
    ) -> "InstallationCredentials":
        kwargs = {"base_url": base_url.rstrip("/")} if base_url else {}
        integration = GithubIntegration(auth=Auth.AppAuth(app_id, private_key), **kwargs)

        def mint() -> tuple[str, datetime]:
            try:
                authorization = integration.get_access_token(installation_id)
            except GithubException as e:
                raise CredentialError(f"Installation token request failed: {e}") from e
            return authorization.token, authorization.expires_at

        return cls(mint, leeway=leeway)

    def _renew(self) -> tuple[str, datetime | None]:
        token, expires_at = self._mint()
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return token, expires_at
