"""Google OAuth 2.0 token endpoint client used for refresh grants."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType

import httpx

from job_inbox.core.config import GmailSettings

LOGGER = logging.getLogger(__name__)


class OAuthError(RuntimeError):
    """Raised when the token endpoint does not return a usable grant."""


@dataclass(frozen=True, slots=True)
class RefreshGrant:
    """Tokens returned by a refresh-token exchange."""

    access_token: str
    refresh_token: str | None
    expires_in: int | None


class GoogleOAuthClient:
    """Synchronous client for the OAuth token endpoint."""

    def __init__(
        self, settings: GmailSettings, http_client: httpx.Client | None = None
    ) -> None:
        """Initialise the client with settings and an optional HTTP client."""
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=settings.timeout_seconds)

    def __enter__(self) -> GoogleOAuthClient:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the underlying HTTP client when owned."""
        self.close()

    def refresh(self, refresh_token: str) -> RefreshGrant:
        """Exchange ``refresh_token`` for a fresh access token."""
        if not self._settings.client_id or not self._settings.client_secret:
            raise OAuthError("OAuth client id and secret are not configured")

        LOGGER.info("Attempting to refresh access token")
        try:
            response = self._client.post(
                self._settings.token_url,
                data={
                    "client_id": self._settings.client_id,
                    "client_secret": self._settings.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as exc:
            raise OAuthError("Token endpoint request failed") from exc

        if response.status_code != 200:
            # The error body names the grant failure (e.g. invalid_grant) but
            # never echoes the token.
            LOGGER.error(
                "Token refresh failed: %s %s", response.status_code, response.text
            )
            raise OAuthError(f"Token endpoint returned HTTP {response.status_code}")

        try:
            tokens = response.json()
        except ValueError as exc:
            raise OAuthError("Token endpoint returned invalid JSON") from exc
        if not isinstance(tokens, dict):
            raise OAuthError("Token endpoint returned an unexpected payload")

        access_token = tokens.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise OAuthError("Token endpoint response missing access_token")

        expires_in = tokens.get("expires_in")
        try:
            lifetime = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError) as exc:
            raise OAuthError("Token endpoint returned an invalid expires_in") from exc
        new_refresh = tokens.get("refresh_token")
        LOGGER.info(
            "Successfully refreshed access token (new refresh token issued: %s)",
            bool(new_refresh),
        )
        return RefreshGrant(
            access_token=access_token,
            refresh_token=new_refresh if isinstance(new_refresh, str) else None,
            expires_in=lifetime,
        )

    def close(self) -> None:
        """Release the HTTP connection pool if this client created it."""
        if self._owns_client:
            self._client.close()


__all__ = ["GoogleOAuthClient", "OAuthError", "RefreshGrant"]
