"""Gmail REST API adapter providing message listing and retrieval."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import httpx

from job_inbox.core.config import GmailSettings
from job_inbox.core.interfaces import MailProvider
from job_inbox.core.models import MessagePage, MessageRef

LOGGER = logging.getLogger(__name__)

_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


class GmailApiError(RuntimeError):
    """Wrap Gmail API failures with the HTTP status when known."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(GmailApiError):
    """The provider asked the caller to slow down."""


class UnauthorizedError(GmailApiError):
    """The provider rejected the bearer token."""


class GmailClient(MailProvider):
    """Thin wrapper around ``httpx`` for the ``users.messages`` resource."""

    def __init__(
        self,
        settings: GmailSettings,
        access_token: str | None,
        *,
        http_client: httpx.Client | None = None,
        user_id: str = "me",
    ) -> None:
        """Initialise the client for one mailbox and bearer token."""
        self._settings = settings
        self._access_token = access_token
        self._user_id = user_id
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=settings.timeout_seconds)

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> GmailClient:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    def set_access_token(self, access_token: str) -> None:
        """Replace the bearer token used for subsequent calls."""
        self._access_token = access_token

    def list_messages(
        self, query: str, page_token: str | None, max_results: int
    ) -> MessagePage:
        """Return one page of message references matching ``query``."""
        params: dict[str, Any] = {"q": query, "maxResults": max_results}
        if page_token:
            params["pageToken"] = page_token
        LOGGER.debug(
            "Listing messages (maxResults=%s, pageToken=%s)", max_results, page_token
        )
        data = self._request("GET", "messages", params=params)
        refs = tuple(
            MessageRef(id=str(item["id"]), thread_id=item.get("threadId"))
            for item in data.get("messages") or ()
            if item.get("id")
        )
        next_token = data.get("nextPageToken") or None
        return MessagePage(refs=refs, next_page_token=next_token)

    def get_message(self, message_id: str) -> dict[str, Any]:
        """Return the full envelope for ``message_id``."""
        LOGGER.debug("Fetching message %s", message_id)
        return self._request("GET", f"messages/{message_id}", params={"format": "full"})

    def close(self) -> None:
        """Release the HTTP connection pool if this client created it."""
        if self._owns_client:
            self._client.close()

    # Internal helpers ---------------------------------------------------------
    def _request(
        self, method: str, path: str, *, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if not self._access_token:
            raise UnauthorizedError("No access token available", status_code=401)

        url = f"{self._settings.api_base_url.rstrip('/')}/users/{self._user_id}/{path}"
        try:
            response = self._client.request(
                method,
                url,
                params=params,
                headers={"Authorization": f"Bearer {self._access_token}"},
            )
        except httpx.HTTPError as exc:
            raise GmailApiError(f"Gmail request to {path} failed") from exc

        if response.status_code == 200:
            try:
                payload = response.json()
            except ValueError as exc:
                raise GmailApiError("Gmail returned invalid JSON", 200) from exc
            if not isinstance(payload, dict):
                raise GmailApiError("Gmail returned an unexpected payload", 200)
            return payload

        raise _classify_error(response)


def _error_reasons(response: httpx.Response) -> set[str]:
    try:
        body = response.json()
    except ValueError:
        return set()
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return set()
    reasons = {
        str(item.get("reason"))
        for item in error.get("errors") or ()
        if isinstance(item, dict) and item.get("reason")
    }
    status = error.get("status")
    if isinstance(status, str):
        reasons.add(status)
    return reasons


def _classify_error(response: httpx.Response) -> GmailApiError:
    status = response.status_code
    if status == 429:
        return RateLimitedError("Gmail rate limit hit", status)
    if status == 401:
        return UnauthorizedError("Gmail rejected the access token", status)
    if status == 403 and _error_reasons(response) & _RATE_LIMIT_REASONS:
        return RateLimitedError("Gmail quota exceeded", status)
    LOGGER.warning("Gmail request failed with HTTP %s", status)
    return GmailApiError(f"Gmail request failed with HTTP {status}", status)


__all__ = ["GmailApiError", "GmailClient", "RateLimitedError", "UnauthorizedError"]
