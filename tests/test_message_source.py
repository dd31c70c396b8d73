"""Tests for pagination, backoff and auth recovery in MessageSource."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from job_inbox.core.interfaces import RefreshFailed
from job_inbox.core.models import MessagePage, MessageRef, OAuthCredential
from job_inbox.ingestion.source import (
    BackoffPolicy,
    MessageSource,
    RetryBudgetExhausted,
)
from job_inbox.ingestion.tokens import TokenLifecycle
from job_inbox.transport.gmail_client import (
    GmailApiError,
    RateLimitedError,
    UnauthorizedError,
)
from job_inbox.transport.oauth import OAuthError, RefreshGrant

NOW = datetime(2024, 10, 10, 12, 0, tzinfo=UTC)
CREDENTIAL = OAuthCredential("access-1", "refresh-1", NOW + timedelta(hours=1))


class StopRetrying(Exception):
    """Raised by the fake sleeper to interrupt an endless retry loop."""


class FakeProvider:
    """Scripted mail provider; each call pops the next outcome."""

    def __init__(self, pages: dict[str | None, MessagePage] | None = None) -> None:
        self.pages = pages or {}
        self.list_errors: list[Exception] = []
        self.get_errors: list[Exception] = []
        self.list_calls: list[tuple[str, str | None, int]] = []
        self.tokens: list[str] = []
        self.closed = False

    def list_messages(self, query, page_token, max_results):
        self.list_calls.append((query, page_token, max_results))
        if self.list_errors:
            raise self.list_errors.pop(0)
        return self.pages[page_token]

    def get_message(self, message_id):
        if self.get_errors:
            raise self.get_errors.pop(0)
        return {"id": message_id}

    def set_access_token(self, access_token):
        self.tokens.append(access_token)

    def close(self):
        self.closed = True


class StubRefresher:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = 0

    def refresh(self, refresh_token: str) -> RefreshGrant:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return RefreshGrant(f"access-{self.calls + 1}", None, 3600)


def _refs(*ids: str) -> tuple[MessageRef, ...]:
    return tuple(MessageRef(id=value, thread_id=f"t-{value}") for value in ids)


def _source(provider, refresher=None, **kwargs) -> MessageSource:
    tokens = TokenLifecycle(refresher or StubRefresher(), clock=lambda: NOW)
    kwargs.setdefault("sleep", lambda delay: None)
    return MessageSource(provider, tokens, CREDENTIAL, query="q", **kwargs)


def test_backoff_delays_double_and_cap() -> None:
    policy = BackoffPolicy(base_seconds=1.0, cap_seconds=30.0)

    assert [policy.delay(attempt) for attempt in range(7)] == [1, 2, 4, 8, 16, 30, 30]
    assert policy.delay(5000) == 30


def test_list_candidates_follows_pages_in_provider_order() -> None:
    provider = FakeProvider(
        {
            None: MessagePage(_refs("m3", "m2"), "p2"),
            "p2": MessagePage(_refs("m1"), None),
        }
    )

    result = _source(provider, page_size=2).list_candidates()

    assert [ref.id for ref in result.refs] == ["m3", "m2", "m1"]
    assert result.error is None
    assert provider.list_calls == [("q", None, 2), ("q", "p2", 2)]


def test_list_candidates_stops_at_run_cap() -> None:
    provider = FakeProvider(
        {
            None: MessagePage(_refs("a", "b", "c"), "p2"),
            "p2": MessagePage(_refs("d", "e", "f"), "p3"),
        }
    )

    result = _source(provider, max_messages=4, page_size=3).list_candidates()

    assert [ref.id for ref in result.refs] == ["a", "b", "c", "d"]
    assert provider.list_calls == [("q", None, 3), ("q", "p2", 1)]


def test_rate_limited_listing_sleeps_with_exponential_backoff() -> None:
    provider = FakeProvider({None: MessagePage(_refs("a"), None)})
    provider.list_errors = [RateLimitedError("slow down", 429) for _ in range(3)]
    delays: list[float] = []

    result = _source(provider, sleep=delays.append).list_candidates()

    assert delays == [1, 2, 4]
    assert [ref.id for ref in result.refs] == ["a"]
    assert result.error is None


def test_always_rate_limited_provider_is_interrupted_externally() -> None:
    provider = FakeProvider()
    provider.list_errors = [RateLimitedError("slow down", 429) for _ in range(100)]
    delays: list[float] = []

    def sleeper(delay: float) -> None:
        delays.append(delay)
        if len(delays) == 8:
            raise StopRetrying

    with pytest.raises(StopRetrying):
        _source(provider, sleep=sleeper).list_page(None, 10)

    assert delays == [1, 2, 4, 8, 16, 30, 30, 30]


def test_deadline_ends_rate_limit_retries() -> None:
    provider = FakeProvider()
    provider.list_errors = [RateLimitedError("slow down", 429) for _ in range(100)]
    clock = {"now": 0.0}
    delays: list[float] = []

    def sleeper(delay: float) -> None:
        delays.append(delay)
        clock["now"] += delay

    source = _source(
        provider, sleep=sleeper, monotonic=lambda: clock["now"], deadline=10.0
    )

    with pytest.raises(RetryBudgetExhausted):
        source.list_page(None, 10)
    assert delays == [1, 2, 4]

    result = source.list_candidates()
    assert isinstance(result.error, RetryBudgetExhausted)
    assert result.refs == ()


def test_unauthorized_call_refreshes_once_and_retries() -> None:
    provider = FakeProvider({None: MessagePage(_refs("a"), None)})
    provider.list_errors = [UnauthorizedError("expired", 401)]
    refresher = StubRefresher()
    source = _source(provider, refresher)

    page = source.list_page(None, 10)

    assert [ref.id for ref in page.refs] == ["a"]
    assert refresher.calls == 1
    assert provider.tokens == ["access-2"]
    assert source.credential.access_token == "access-2"
    assert source.credential.refresh_token == "refresh-1"


def test_unauthorized_fetch_refreshes_and_retries_with_new_token() -> None:
    provider = FakeProvider()
    provider.get_errors = [UnauthorizedError("expired", 401)]
    refresher = StubRefresher()
    source = _source(provider, refresher)

    envelope = source.fetch(MessageRef("a", None))

    assert envelope == {"id": "a"}
    assert refresher.calls == 1
    assert provider.tokens == ["access-2"]
    assert source.credential.access_token == "access-2"


def test_unauthorized_fetch_with_failing_refresh_raises_credential_error() -> None:
    provider = FakeProvider()
    provider.get_errors = [UnauthorizedError("expired", 401)]
    refresher = StubRefresher(error=OAuthError("invalid_grant"))

    with pytest.raises(RefreshFailed):
        _source(provider, refresher).fetch(MessageRef("a", None))

    assert refresher.calls == 1
    assert provider.tokens == []


def test_second_unauthorized_response_propagates() -> None:
    provider = FakeProvider()
    provider.get_errors = [UnauthorizedError("expired", 401), UnauthorizedError("still", 401)]
    refresher = StubRefresher()

    with pytest.raises(UnauthorizedError):
        _source(provider, refresher).fetch(MessageRef("a", None))

    assert refresher.calls == 1


def test_refresh_failure_during_listing_keeps_gathered_refs() -> None:
    provider = FakeProvider()
    refresher = StubRefresher(error=OAuthError("invalid_grant"))
    source = _source(provider, refresher, page_size=2)

    def list_then_expire(query, page_token, max_results):
        if page_token == "p2":
            raise UnauthorizedError("expired", 401)
        return MessagePage(_refs("a", "b"), "p2")

    provider.list_messages = list_then_expire  # type: ignore[method-assign]

    result = source.list_candidates()

    assert [ref.id for ref in result.refs] == ["a", "b"]
    assert isinstance(result.error, RefreshFailed)


def test_other_errors_stop_pagination_without_raising() -> None:
    provider = FakeProvider()

    def failing(query, page_token, max_results):
        if page_token is None:
            return MessagePage(_refs("a"), "p2")
        raise GmailApiError("boom", 500)

    provider.list_messages = failing  # type: ignore[method-assign]

    result = _source(provider).list_candidates()

    assert [ref.id for ref in result.refs] == ["a"]
    assert isinstance(result.error, GmailApiError)
    assert result.failed


def test_fetch_returns_envelope_and_close_releases_client() -> None:
    provider = FakeProvider()
    source = _source(provider)

    assert source.fetch(MessageRef("abc", None)) == {"id": "abc"}
    source.close()
    assert provider.closed
