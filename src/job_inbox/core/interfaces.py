"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

from .models import (
    Account,
    ApplicationEvent,
    ApplicationUpsert,
    IngestedMessage,
    JobApplication,
    MessagePage,
    OAuthCredential,
    ParsedEvent,
)


class CredentialError(RuntimeError):
    """Raised when an account cannot obtain a usable access token."""


class MissingRefreshToken(CredentialError):
    """The access token is unusable and no refresh token is stored."""


class RefreshFailed(CredentialError):
    """The provider rejected or failed the refresh grant."""


class StorageError(RuntimeError):
    """Raised when the persistent store cannot complete an operation."""


class TokenGrant(Protocol):
    """Result of a refresh-token exchange."""

    access_token: str
    refresh_token: str | None
    expires_in: int | None


class TokenRefresher(Protocol):
    """Exchanges a refresh token for a new access token."""

    def refresh(self, refresh_token: str) -> TokenGrant:
        """Perform the refresh grant against the provider."""
        raise NotImplementedError


class MailProvider(Protocol):
    """Abstraction over the provider's list and get operations."""

    def list_messages(
        self, query: str, page_token: str | None, max_results: int
    ) -> MessagePage:
        """Return one page of message references matching ``query``."""
        raise NotImplementedError

    def get_message(self, message_id: str) -> dict[str, Any]:
        """Return the full provider envelope for ``message_id``."""
        raise NotImplementedError

    def set_access_token(self, access_token: str) -> None:
        """Replace the bearer token used for subsequent calls."""
        raise NotImplementedError

    def close(self) -> None:
        """Release any network resources."""
        raise NotImplementedError


class JobRepository(Protocol):
    """Abstraction for the persistent store consumed by ingestion."""

    def get_account(self, account_id: str) -> Account | None:
        """Return a connected account by id."""
        raise NotImplementedError

    def list_accounts(
        self, user_id: str, *, provider: str | None = None
    ) -> list[Account]:
        """Return accounts owned by ``user_id``."""
        raise NotImplementedError

    def update_account_credentials(
        self, account_id: str, credential: OAuthCredential
    ) -> None:
        """Persist a refreshed credential pair."""
        raise NotImplementedError

    def update_account_metadata(
        self, account_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge ``updates`` into the account metadata and return the result."""
        raise NotImplementedError

    def existing_message_ids(
        self, account_id: str, provider_message_ids: Iterable[str]
    ) -> set[str]:
        """Return the subset of ids already ingested for the account."""
        raise NotImplementedError

    def upsert_ingested_message(self, message: IngestedMessage) -> None:
        """Insert or update the record for one provider message."""
        raise NotImplementedError

    def upsert_job_application(
        self, upsert: ApplicationUpsert
    ) -> tuple[JobApplication, bool]:
        """Create or update the job keyed by its dedupe hash.

        Returns the stored job and ``True`` when the row was created.
        """
        raise NotImplementedError

    def append_event(self, event: ApplicationEvent) -> ApplicationEvent:
        """Append an immutable event and return it with its identifier."""
        raise NotImplementedError

    def list_events(
        self, job_application_id: int, *, limit: int | None = None
    ) -> list[ApplicationEvent]:
        """Return events for a job, newest first."""
        raise NotImplementedError

    def list_jobs(
        self,
        user_id: str,
        *,
        status: str | None = None,
        query: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[JobApplication]:
        """Return a user's jobs ordered by most recent update."""
        raise NotImplementedError

    def get_job(self, job_id: int) -> JobApplication | None:
        """Return a job application by id."""
        raise NotImplementedError

    def update_job(
        self,
        job_id: int,
        *,
        status: str | None = None,
        company: str | None = None,
        role: str | None = None,
    ) -> JobApplication | None:
        """Apply a manual correction to a job."""
        raise NotImplementedError

    def close(self) -> None:
        """Close database connections if necessary."""
        raise NotImplementedError


class MessageClassifier(Protocol):
    """Derives a structured event from extracted email content."""

    def classify(
        self,
        subject: str | None,
        headers: Mapping[str, str],
        snippet: str | None,
        body_text: str | None,
    ) -> ParsedEvent:
        """Return a :class:`ParsedEvent` for the supplied content."""
        raise NotImplementedError


__all__ = [
    "CredentialError",
    "JobRepository",
    "MailProvider",
    "MessageClassifier",
    "MissingRefreshToken",
    "RefreshFailed",
    "StorageError",
    "TokenGrant",
    "TokenRefresher",
]
