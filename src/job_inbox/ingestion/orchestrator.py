"""Per-account ingestion run: list, filter, fetch, classify and persist."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict
from datetime import datetime
from typing import Any, Protocol

from ..core.datetime_utils import from_epoch_millis, serialize_datetime, utcnow
from ..core.interfaces import (
    CredentialError,
    JobRepository,
    MessageClassifier,
    StorageError,
)
from ..core.models import (
    GMAIL_PROVIDER,
    Account,
    ApplicationEvent,
    ApplicationUpsert,
    IngestedMessage,
    IngestionReport,
    MessageRef,
    OAuthCredential,
)
from .dedupe import make_dedupe_key
from .extractor import extract_content
from .source import MessageSource
from .tokens import TokenLifecycle

LOGGER = logging.getLogger(__name__)

LAST_POLL_KEY = "lastPollAt"
LAST_ERROR_KEY = "lastError"


class AccountNotFound(LookupError):
    """Raised when an account does not exist or belongs to another user."""


class SourceFactory(Protocol):
    """Builds the per-run message source for one account."""

    def __call__(
        self, account: Account, credential: OAuthCredential, deadline: float | None
    ) -> MessageSource:
        """Return a fresh :class:`MessageSource` using ``credential``."""
        raise NotImplementedError


class IngestionOrchestrator:
    """Run ingestion for every connected account of a user, one at a time."""

    # pylint: disable=too-many-instance-attributes
    def __init__(
        self,
        repository: JobRepository,
        tokens: TokenLifecycle,
        source_factory: SourceFactory,
        classifier: MessageClassifier,
        *,
        provider: str = GMAIL_PROVIDER,
        run_timeout_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        # pylint: disable=too-many-arguments
        self._repository = repository
        self._tokens = tokens
        self._source_factory = source_factory
        self._classifier = classifier
        self._provider = provider
        self._run_timeout_seconds = run_timeout_seconds
        self._clock = clock
        self._monotonic = monotonic

    def run_for_user(self, user_id: str) -> IngestionReport:
        """Ingest every account ``user_id`` has connected for the provider."""
        accounts = self._repository.list_accounts(user_id, provider=self._provider)
        LOGGER.info("Starting ingestion for user %s (%s accounts)", user_id, len(accounts))
        report = IngestionReport()
        deadline = self._deadline()
        for account in accounts:
            self._ingest_account(account, report, deadline)
        LOGGER.info("Ingestion finished for user %s: %s", user_id, report.to_payload())
        return report

    def run_for_account(
        self, account_id: str, *, user_id: str | None = None
    ) -> IngestionReport:
        """Ingest a single account, optionally checking its owner."""
        account = self._repository.get_account(account_id)
        if account is None or (user_id is not None and account.user_id != user_id):
            raise AccountNotFound(account_id)
        report = IngestionReport()
        self._ingest_account(account, report, self._deadline())
        return report

    # Account level -----------------------------------------------------------
    def _ingest_account(
        self, account: Account, report: IngestionReport, deadline: float | None
    ) -> None:
        report.accounts_processed += 1
        stored = account.credential
        try:
            credential = self._tokens.ensure_fresh(stored)
        except CredentialError as exc:
            LOGGER.warning("Skipping account %s: %s", account.id, exc)
            report.accounts_failed += 1
            self._finish_account(account, error=str(exc))
            return
        stored = self._persist_credential(account.id, stored, credential)

        source = self._source_factory(account, credential, deadline)
        try:
            listing = source.list_candidates()
            stored = self._persist_credential(account.id, stored, source.credential)
            report.messages_fetched += len(listing.refs)
            error = None
            if listing.error is not None:
                report.accounts_failed += 1
                error = str(listing.error) or type(listing.error).__name__

            if not listing.refs:
                self._finish_account(account, error=error)
                return

            seen = self._repository.existing_message_ids(
                account.id, [ref.id for ref in listing.refs]
            )
            unseen = [ref for ref in listing.refs if ref.id not in seen]
            report.messages_skipped += len(listing.refs) - len(unseen)
            LOGGER.info(
                "Account %s: %s references listed, %s new",
                account.id,
                len(listing.refs),
                len(unseen),
            )

            for ref in unseen:
                try:
                    self._ingest_message(account, source, ref, report)
                except StorageError:
                    raise
                except CredentialError as exc:
                    LOGGER.warning(
                        "Stopping account %s at message %s: %s",
                        account.id,
                        ref.id,
                        exc,
                    )
                    if error is None:
                        report.accounts_failed += 1
                    error = str(exc)
                    break
                except Exception as exc:  # pylint: disable=broad-except
                    report.messages_failed += 1
                    LOGGER.warning(
                        "Skipping message %s for account %s: %s",
                        ref.id,
                        account.id,
                        exc,
                        exc_info=True,
                    )
                stored = self._persist_credential(account.id, stored, source.credential)

            self._finish_account(account, error=error)
        finally:
            source.close()

    def _finish_account(self, account: Account, *, error: str | None) -> None:
        self._repository.update_account_metadata(
            account.id,
            {
                LAST_POLL_KEY: serialize_datetime(self._clock()),
                LAST_ERROR_KEY: error,
            },
        )

    def _persist_credential(
        self, account_id: str, stored: OAuthCredential, current: OAuthCredential
    ) -> OAuthCredential:
        if current != stored:
            self._repository.update_account_credentials(account_id, current)
        return current

    # Message level -----------------------------------------------------------
    def _ingest_message(
        self,
        account: Account,
        source: MessageSource,
        ref: MessageRef,
        report: IngestionReport,
    ) -> None:
        envelope = source.fetch(ref)
        content = extract_content(envelope)
        event = self._classifier.classify(
            content.subject, content.headers, content.snippet, content.body_text
        )
        report.messages_parsed += 1

        key = make_dedupe_key(event.company, event.role, account.id)
        job, created = self._repository.upsert_job_application(
            ApplicationUpsert(
                user_id=account.user_id,
                account_id=account.id,
                company=event.company,
                role=event.role,
                source=event.source,
                status=event.status,
                event_date=event.event_date,
                confidence=event.confidence,
                dedupe_key=key,
            )
        )
        if created:
            report.jobs_created += 1
        else:
            report.jobs_updated += 1

        thread_id = ref.thread_id or envelope.get("threadId")
        payload: dict[str, Any] = {
            "provider_message_id": ref.id,
            "thread_id": thread_id,
            "subject": content.subject,
        }
        if event.trace is not None:
            payload["classification"] = asdict(event.trace)
        self._repository.append_event(
            ApplicationEvent(
                id=None,
                job_application_id=job.id,
                event_type=event.event_type,
                occurred_at=event.event_date,
                payload=payload,
            )
        )
        report.events_created += 1

        self._repository.upsert_ingested_message(
            IngestedMessage(
                account_id=account.id,
                provider_message_id=ref.id,
                thread_id=thread_id,
                subject=content.subject,
                received_at=from_epoch_millis(envelope.get("internalDate"))
                or event.event_date,
                snippet=content.snippet,
                headers=content.headers.as_dict(),
                parsed=True,
            )
        )
        LOGGER.debug(
            "Message %s -> job %s (%s, %s)",
            ref.id,
            job.id,
            event.status,
            "created" if created else "updated",
        )

    def _deadline(self) -> float | None:
        if self._run_timeout_seconds is None:
            return None
        return self._monotonic() + self._run_timeout_seconds


__all__ = [
    "AccountNotFound",
    "IngestionOrchestrator",
    "LAST_ERROR_KEY",
    "LAST_POLL_KEY",
    "SourceFactory",
]
