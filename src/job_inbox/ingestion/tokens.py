"""Access-token freshness gate for provider calls."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import cast

from job_inbox.core.datetime_utils import ensure_utc, utcnow
from job_inbox.core.interfaces import (
    MissingRefreshToken,
    RefreshFailed,
    TokenRefresher,
)
from job_inbox.core.models import OAuthCredential
from job_inbox.transport.oauth import OAuthError

LOGGER = logging.getLogger(__name__)

# Google access tokens last one hour when the grant omits expires_in.
DEFAULT_TOKEN_LIFETIME = 3600

RECONNECT_HINT = "Please reconnect the account and grant offline access."


class TokenLifecycle:
    """Guarantee a non-expired access token before authenticated calls.

    Refreshed credentials are returned to the caller rather than written
    anywhere; persisting them is the caller's job.
    """

    def __init__(
        self,
        refresher: TokenRefresher,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._refresher = refresher
        self._clock = clock

    def is_expired(self, credential: OAuthCredential) -> bool:
        """Return ``True`` when the expiry is unknown or already reached."""
        if credential.expires_at is None:
            return True
        return self._clock() >= cast(datetime, ensure_utc(credential.expires_at))

    def ensure_fresh(self, credential: OAuthCredential) -> OAuthCredential:
        """Return a credential whose access token is usable right now."""
        needs_refresh = self.is_expired(credential) or not credential.access_token
        if not needs_refresh:
            return credential
        if not credential.has_refresh_token:
            raise MissingRefreshToken(
                f"Access token expired and no refresh token is stored. {RECONNECT_HINT}"
            )
        return self.refresh(credential)

    def refresh(self, credential: OAuthCredential) -> OAuthCredential:
        """Force a refresh grant and return the updated credential."""
        if not credential.has_refresh_token:
            raise MissingRefreshToken(f"No refresh token is stored. {RECONNECT_HINT}")
        try:
            grant = self._refresher.refresh(cast(str, credential.refresh_token))
        except OAuthError as exc:
            raise RefreshFailed(
                f"Failed to refresh the access token. {RECONNECT_HINT}"
            ) from exc

        lifetime = grant.expires_in
        if lifetime is None:
            lifetime = DEFAULT_TOKEN_LIFETIME
        expires_at = self._clock() + timedelta(seconds=lifetime)
        LOGGER.debug("Access token refreshed; valid until %s", expires_at)
        return OAuthCredential(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or credential.refresh_token,
            expires_at=expires_at,
        )


__all__ = ["RECONNECT_HINT", "TokenLifecycle"]
