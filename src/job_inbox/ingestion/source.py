"""Paginated, rate-limit aware access to one account's mailbox."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from job_inbox.core.interfaces import MailProvider
from job_inbox.core.models import MessagePage, MessageRef, OAuthCredential
from job_inbox.transport.gmail_client import RateLimitedError, UnauthorizedError

from .tokens import TokenLifecycle

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Past this exponent every delay is already clamped to the cap.
_MAX_EXPONENT = 64


class RetryBudgetExhausted(RuntimeError):
    """Raised when waiting out a rate limit would overrun the run deadline."""


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Exponential backoff schedule for rate-limited calls."""

    base_seconds: float = 1.0
    cap_seconds: float = 30.0
    factor: float = 2.0

    def delay(self, attempt: int) -> float:
        """Return the sleep before retry number ``attempt`` (zero based)."""
        exponent = min(max(attempt, 0), _MAX_EXPONENT)
        return min(self.cap_seconds, self.base_seconds * self.factor**exponent)


@dataclass(frozen=True, slots=True)
class ListingResult:
    """Message references gathered for a run and the error that cut it short."""

    refs: tuple[MessageRef, ...]
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        """Return ``True`` when listing stopped because of an error."""
        return self.error is not None


class MessageSource:
    """List and fetch messages for one account during one run.

    Rate-limited calls are retried with exponential backoff for as long as the
    optional ``deadline`` (a ``monotonic`` timestamp) allows. An unauthorized
    response triggers one forced token refresh and a single retry of the same
    call. The refreshed credential is exposed through :attr:`credential`; the
    caller decides when to persist it.
    """

    # pylint: disable=too-many-instance-attributes
    def __init__(
        self,
        client: MailProvider,
        tokens: TokenLifecycle,
        credential: OAuthCredential,
        *,
        query: str,
        max_messages: int = 50,
        page_size: int = 50,
        backoff: BackoffPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        deadline: float | None = None,
    ) -> None:
        # pylint: disable=too-many-arguments
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._client = client
        self._tokens = tokens
        self._credential = credential
        self._query = query
        self._max_messages = max_messages
        self._page_size = page_size
        self._backoff = backoff or BackoffPolicy()
        self._sleep = sleep
        self._monotonic = monotonic
        self._deadline = deadline

    @property
    def credential(self) -> OAuthCredential:
        """Return the credential currently used by the client."""
        return self._credential

    @property
    def query(self) -> str:
        """Return the search predicate used for listing."""
        return self._query

    # Public API ---------------------------------------------------------------
    def list_page(self, page_token: str | None, max_results: int) -> MessagePage:
        """Return one page of references, recovering from rate limits and 401s."""
        return self._call_with_recovery(
            lambda: self._client.list_messages(self._query, page_token, max_results),
            "list messages",
        )

    def list_candidates(self) -> ListingResult:
        """Accumulate references up to the per-run cap in provider order.

        Never raises: a failure stops pagination and is returned alongside the
        references gathered before it.
        """
        refs: list[MessageRef] = []
        page_token: str | None = None
        error: Exception | None = None
        try:
            while len(refs) < self._max_messages:
                remaining = self._max_messages - len(refs)
                page = self.list_page(page_token, min(self._page_size, remaining))
                refs.extend(page.refs[:remaining])
                if not page.refs or not page.next_page_token:
                    break
                page_token = page.next_page_token
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning(
                "Listing stopped after %s references: %s", len(refs), exc
            )
            error = exc
        return ListingResult(refs=tuple(refs), error=error)

    def fetch(self, ref: MessageRef) -> dict[str, Any]:
        """Return the full provider envelope for ``ref``."""
        return self._call_with_recovery(
            lambda: self._client.get_message(ref.id), f"fetch message {ref.id}"
        )

    def close(self) -> None:
        """Release the underlying provider client."""
        self._client.close()

    # Internal helpers ---------------------------------------------------------
    def _call_with_recovery(self, operation: Callable[[], T], description: str) -> T:
        attempt = 0
        reauthenticated = False
        while True:
            try:
                return operation()
            except RateLimitedError as exc:
                delay = self._backoff.delay(attempt)
                if (
                    self._deadline is not None
                    and self._monotonic() + delay > self._deadline
                ):
                    raise RetryBudgetExhausted(
                        f"Run deadline reached while rate limited ({description})"
                    ) from exc
                LOGGER.warning(
                    "Rate limited during %s; retrying in %.1fs (attempt %s)",
                    description,
                    delay,
                    attempt + 1,
                )
                self._sleep(delay)
                attempt += 1
            except UnauthorizedError:
                if reauthenticated:
                    raise
                LOGGER.info("Access token rejected during %s; refreshing", description)
                self._reauthenticate()
                reauthenticated = True

    def _reauthenticate(self) -> None:
        refreshed = self._tokens.refresh(self._credential)
        self._credential = refreshed
        self._client.set_access_token(refreshed.access_token or "")


__all__ = ["BackoffPolicy", "ListingResult", "MessageSource", "RetryBudgetExhausted"]
