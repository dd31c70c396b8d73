"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, get_args

ApplicationStatus = Literal[
    "Applied",
    "InReview",
    "Assessment",
    "PhoneScreen",
    "Interview",
    "Onsite",
    "Offer",
    "Rejected",
    "Withdrawn",
    "Ghosted",
]

APPLICATION_STATUSES: tuple[str, ...] = get_args(ApplicationStatus)

UNKNOWN_LABEL = "Unknown"
GMAIL_PROVIDER = "gmail"


@dataclass(frozen=True, slots=True)
class OAuthCredential:
    """Provider credential pair with its access-token expiry."""

    access_token: str | None
    refresh_token: str | None
    expires_at: datetime | None

    @property
    def has_refresh_token(self) -> bool:
        """Return ``True`` when a non-blank refresh token is present."""
        return bool(self.refresh_token and self.refresh_token.strip())


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Account:
    """One connected mailbox owned by a user."""

    id: str
    user_id: str
    provider: str
    email_address: str | None
    access_token: str | None
    refresh_token: str | None
    token_expires_at: datetime | None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def credential(self) -> OAuthCredential:
        """Return the stored credential pair as a value object."""
        return OAuthCredential(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.token_expires_at,
        )


@dataclass(frozen=True, slots=True)
class MessageRef:
    """Provider message id and thread id produced by listing."""

    id: str
    thread_id: str | None


@dataclass(frozen=True, slots=True)
class MessagePage:
    """One page of message references returned by the provider."""

    refs: tuple[MessageRef, ...]
    next_page_token: str | None


@dataclass(slots=True)
class IngestedMessage:
    """A provider message already processed for an account."""

    account_id: str
    provider_message_id: str
    thread_id: str | None
    subject: str | None
    received_at: datetime | None
    snippet: str | None
    headers: dict[str, str]
    parsed: bool


@dataclass(frozen=True, slots=True)
class ClassificationTrace:
    """Names of the rules that produced each field of a parsed event."""

    source_rule: str
    source_domain: str | None
    status_keyword: str | None
    event_type_rule: str
    date_origin: str
    company_strategy: str | None
    role_pattern: str | None


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class ParsedEvent:
    """Structured reading of one job-related email."""

    company: str | None
    role: str | None
    source: str
    status: ApplicationStatus
    event_type: str
    event_date: datetime
    confidence: float
    trace: ClassificationTrace | None = None


@dataclass(frozen=True, slots=True)
class DedupeKey:
    """Deterministic identity of a job application."""

    raw: str
    hash: str


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class ApplicationUpsert:
    """Values written when a message resolves to a dedupe key."""

    user_id: str
    account_id: str | None
    company: str | None
    role: str | None
    source: str
    status: ApplicationStatus
    event_date: datetime
    confidence: float
    dedupe_key: DedupeKey


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class JobApplication:
    """Durable aggregate a user tracks."""

    id: int
    user_id: str
    account_id: str | None
    company: str
    role: str
    source: str | None
    status: ApplicationStatus
    applied_at: datetime | None
    last_update_at: datetime | None
    confidence: float | None
    dedupe_key_raw: str
    dedupe_key_hash: str


@dataclass(slots=True)
class ApplicationEvent:
    """Append-only log entry attached to a job application."""

    id: int | None
    job_application_id: int
    event_type: str
    occurred_at: datetime
    payload: dict[str, Any]


@dataclass(slots=True)
class IngestionReport:
    """Aggregate counters for one ingestion run."""

    accounts_processed: int = 0
    accounts_failed: int = 0
    messages_fetched: int = 0
    messages_skipped: int = 0
    messages_parsed: int = 0
    messages_failed: int = 0
    jobs_created: int = 0
    jobs_updated: int = 0
    events_created: int = 0

    def to_payload(self) -> dict[str, int]:
        """Return the counters keyed the way the JSON API exposes them."""
        return {
            "accountsProcessed": self.accounts_processed,
            "accountsFailed": self.accounts_failed,
            "messagesFetched": self.messages_fetched,
            "messagesSkipped": self.messages_skipped,
            "messagesParsed": self.messages_parsed,
            "messagesFailed": self.messages_failed,
            "jobsCreated": self.jobs_created,
            "jobsUpdated": self.jobs_updated,
            "eventsCreated": self.events_created,
        }


__all__ = [
    "APPLICATION_STATUSES",
    "Account",
    "ApplicationEvent",
    "ApplicationStatus",
    "ApplicationUpsert",
    "ClassificationTrace",
    "DedupeKey",
    "GMAIL_PROVIDER",
    "IngestedMessage",
    "IngestionReport",
    "JobApplication",
    "MessagePage",
    "MessageRef",
    "OAuthCredential",
    "ParsedEvent",
    "UNKNOWN_LABEL",
]
