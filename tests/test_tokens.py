"""Tests for the access-token freshness gate."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from job_inbox.core.interfaces import MissingRefreshToken, RefreshFailed
from job_inbox.core.models import OAuthCredential
from job_inbox.ingestion.tokens import RECONNECT_HINT, TokenLifecycle
from job_inbox.transport.oauth import OAuthError, RefreshGrant

NOW = datetime(2024, 10, 10, 12, 0, tzinfo=UTC)


class StubRefresher:
    def __init__(self, grant: RefreshGrant | None = None, error: Exception | None = None):
        self.grant = grant or RefreshGrant("new-access", None, 3600)
        self.error = error
        self.calls: list[str] = []

    def refresh(self, refresh_token: str) -> RefreshGrant:
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        return self.grant


def test_fresh_credential_is_returned_untouched() -> None:
    refresher = StubRefresher()
    lifecycle = TokenLifecycle(refresher, clock=lambda: NOW)
    credential = OAuthCredential("access", "refresh", NOW + timedelta(minutes=5))

    assert lifecycle.ensure_fresh(credential) is credential
    assert refresher.calls == []


def test_expired_credential_is_refreshed_once() -> None:
    refresher = StubRefresher()
    lifecycle = TokenLifecycle(refresher, clock=lambda: NOW)
    credential = OAuthCredential("stale", "refresh", NOW - timedelta(seconds=1))

    fresh = lifecycle.ensure_fresh(credential)

    assert refresher.calls == ["refresh"]
    assert fresh.access_token == "new-access"
    assert fresh.refresh_token == "refresh"
    assert fresh.expires_at == NOW + timedelta(hours=1)


def test_expiry_equal_to_now_counts_as_expired() -> None:
    refresher = StubRefresher()
    lifecycle = TokenLifecycle(refresher, clock=lambda: NOW)

    lifecycle.ensure_fresh(OAuthCredential("access", "refresh", NOW))

    assert len(refresher.calls) == 1


def test_unknown_expiry_or_missing_access_token_triggers_refresh() -> None:
    refresher = StubRefresher()
    lifecycle = TokenLifecycle(refresher, clock=lambda: NOW)

    lifecycle.ensure_fresh(OAuthCredential("access", "refresh", None))
    lifecycle.ensure_fresh(OAuthCredential(None, "refresh", NOW + timedelta(hours=1)))

    assert len(refresher.calls) == 2


def test_new_refresh_token_replaces_stored_one() -> None:
    refresher = StubRefresher(RefreshGrant("new-access", "rotated", None))
    lifecycle = TokenLifecycle(refresher, clock=lambda: NOW)

    fresh = lifecycle.refresh(OAuthCredential("old", "refresh", NOW))

    assert fresh.refresh_token == "rotated"
    assert fresh.expires_at == NOW + timedelta(seconds=3600)


@pytest.mark.parametrize("refresh_token", [None, "", "   "])
def test_missing_refresh_token_fails_without_remote_call(refresh_token) -> None:
    refresher = StubRefresher()
    lifecycle = TokenLifecycle(refresher, clock=lambda: NOW)

    with pytest.raises(MissingRefreshToken):
        lifecycle.ensure_fresh(OAuthCredential("stale", refresh_token, NOW))

    assert refresher.calls == []


def test_provider_failure_asks_user_to_reconnect() -> None:
    refresher = StubRefresher(error=OAuthError("invalid_grant"))
    lifecycle = TokenLifecycle(refresher, clock=lambda: NOW)

    with pytest.raises(RefreshFailed) as excinfo:
        lifecycle.ensure_fresh(OAuthCredential(None, "refresh", None))

    assert RECONNECT_HINT in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, OAuthError)
    assert len(refresher.calls) == 1
