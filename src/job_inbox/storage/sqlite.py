"""SQLite-backed job repository implementation."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Any, cast

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utcnow
from ..core.interfaces import JobRepository, StorageError
from ..core.models import (
    GMAIL_PROVIDER,
    UNKNOWN_LABEL,
    Account,
    ApplicationEvent,
    ApplicationStatus,
    ApplicationUpsert,
    IngestedMessage,
    JobApplication,
    OAuthCredential,
)

LOGGER = logging.getLogger(__name__)

MAX_JOB_LIMIT = 200


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Translate connectivity failures into :class:`StorageError`."""
    try:
        yield
    except (sqlite3.OperationalError, sqlite3.ProgrammingError) as exc:
        raise StorageError(f"Failed to {action}: {exc}") from exc


class SqliteJobRepository(JobRepository):
    """Persist accounts, messages and job applications using SQLite."""

    def __init__(self, settings: StorageSettings) -> None:
        """Initialise the repository and apply the schema."""
        self._settings = settings
        db_path = Path(settings.db_path)
        with _storage_errors("open database"):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._enable_foreign_keys()
            self._apply_migrations()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteJobRepository:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Accounts ----------------------------------------------------------------
    def create_account(
        self,
        user_id: str,
        *,
        provider: str = GMAIL_PROVIDER,
        email_address: str | None = None,
        credential: OAuthCredential | None = None,
        metadata: dict[str, Any] | None = None,
        account_id: str | None = None,
    ) -> Account:
        """Store a newly connected mailbox and return it."""
        credential = credential or OAuthCredential(None, None, None)
        account = Account(
            id=account_id or uuid.uuid4().hex,
            user_id=user_id,
            provider=provider,
            email_address=email_address,
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_expires_at=credential.expires_at,
            metadata=dict(metadata or {}),
        )
        LOGGER.debug("Creating %s account %s for user %s", provider, account.id, user_id)
        with _storage_errors("create account"), self._connection:
            self._connection.execute(
                """
                INSERT INTO accounts (
                    id,
                    user_id,
                    provider,
                    email_address,
                    access_token,
                    refresh_token,
                    token_expires_at,
                    metadata,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account.id,
                    account.user_id,
                    account.provider,
                    account.email_address,
                    account.access_token,
                    account.refresh_token,
                    serialize_datetime(account.token_expires_at),
                    json.dumps(account.metadata),
                    serialize_datetime(utcnow()),
                ),
            )
        return account

    def get_account(self, account_id: str) -> Account | None:
        """Return a connected account by id."""
        with _storage_errors("load account"):
            row = self._connection.execute(
                "SELECT * FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        return _row_to_account(row) if row else None

    def list_accounts(
        self, user_id: str, *, provider: str | None = None
    ) -> list[Account]:
        """Return accounts owned by ``user_id`` in connection order."""
        sql = "SELECT * FROM accounts WHERE user_id = ?"
        params: list[Any] = [user_id]
        if provider is not None:
            sql += " AND provider = ?"
            params.append(provider)
        sql += " ORDER BY created_at, id"
        with _storage_errors("list accounts"):
            rows = self._connection.execute(sql, params).fetchall()
        return [_row_to_account(row) for row in rows]

    def delete_account(self, account_id: str) -> bool:
        """Disconnect a mailbox.

        Ingested messages go with the account; job applications survive with
        their ``account_id`` cleared.
        """
        with _storage_errors("delete account"), self._connection:
            cursor = self._connection.execute(
                "DELETE FROM accounts WHERE id = ?", (account_id,)
            )
        deleted = cursor.rowcount > 0
        if deleted:
            LOGGER.info("Deleted account %s", account_id)
        return deleted

    def update_account_credentials(
        self, account_id: str, credential: OAuthCredential
    ) -> None:
        """Persist a refreshed credential pair."""
        LOGGER.debug("Persisting refreshed credential for account %s", account_id)
        with _storage_errors("update credentials"), self._connection:
            self._connection.execute(
                """
                UPDATE accounts
                SET access_token = ?,
                    refresh_token = COALESCE(?, refresh_token),
                    token_expires_at = ?
                WHERE id = ?
                """,
                (
                    credential.access_token,
                    credential.refresh_token,
                    serialize_datetime(credential.expires_at),
                    account_id,
                ),
            )

    def update_account_metadata(
        self, account_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge ``updates`` into the stored metadata.

        Keys whose value is ``None`` are removed.
        """
        with _storage_errors("update account metadata"), self._connection:
            row = self._connection.execute(
                "SELECT metadata FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
            if row is None:
                raise KeyError(account_id)
            metadata = _load_json(row["metadata"])
            for key, value in updates.items():
                if value is None:
                    metadata.pop(key, None)
                else:
                    metadata[key] = value
            self._connection.execute(
                "UPDATE accounts SET metadata = ? WHERE id = ?",
                (json.dumps(metadata), account_id),
            )
        return metadata

    # Ingested messages -------------------------------------------------------
    def existing_message_ids(
        self, account_id: str, provider_message_ids: Iterable[str]
    ) -> set[str]:
        """Return the subset of ids already ingested for the account."""
        ids = list(dict.fromkeys(provider_message_ids))
        if not ids:
            return set()
        placeholders = ",".join("?" for _ in ids)
        with _storage_errors("check ingested messages"):
            rows = self._connection.execute(
                f"""
                SELECT provider_message_id FROM ingested_messages
                WHERE account_id = ? AND provider_message_id IN ({placeholders})
                """,
                (account_id, *ids),
            ).fetchall()
        return {row["provider_message_id"] for row in rows}

    def upsert_ingested_message(self, message: IngestedMessage) -> None:
        """Insert or update the record for one provider message."""
        with _storage_errors("record ingested message"), self._connection:
            self._connection.execute(
                """
                INSERT INTO ingested_messages (
                    account_id,
                    provider_message_id,
                    thread_id,
                    subject,
                    received_at,
                    snippet,
                    headers,
                    parsed
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_id, provider_message_id) DO UPDATE SET
                    thread_id=excluded.thread_id,
                    subject=excluded.subject,
                    received_at=excluded.received_at,
                    snippet=excluded.snippet,
                    headers=excluded.headers,
                    parsed=excluded.parsed
                """,
                (
                    message.account_id,
                    message.provider_message_id,
                    message.thread_id,
                    message.subject,
                    serialize_datetime(message.received_at),
                    message.snippet,
                    json.dumps(message.headers),
                    int(message.parsed),
                ),
            )

    def count_ingested_messages(self, account_id: str) -> int:
        """Return how many messages are recorded for ``account_id``."""
        with _storage_errors("count ingested messages"):
            row = self._connection.execute(
                "SELECT COUNT(*) FROM ingested_messages WHERE account_id = ?",
                (account_id,),
            ).fetchone()
        return int(row[0])

    # Job applications --------------------------------------------------------
    def upsert_job_application(
        self, upsert: ApplicationUpsert
    ) -> tuple[JobApplication, bool]:
        """Create or update the job keyed by its dedupe hash.

        Status is overwritten on every update regardless of event date.
        """
        key = upsert.dedupe_key
        event_date = serialize_datetime(upsert.event_date)
        applied_at = event_date if upsert.status == "Applied" else None
        with _storage_errors("upsert job application"), self._connection:
            existing = self._connection.execute(
                "SELECT id FROM job_applications WHERE dedupe_key_hash = ?",
                (key.hash,),
            ).fetchone()
            self._connection.execute(
                """
                INSERT INTO job_applications (
                    user_id,
                    account_id,
                    company,
                    role,
                    source,
                    status,
                    applied_at,
                    last_update_at,
                    confidence,
                    dedupe_key_raw,
                    dedupe_key_hash
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(dedupe_key_hash) DO UPDATE SET
                    company=COALESCE(?, company),
                    role=COALESCE(?, role),
                    source=excluded.source,
                    status=excluded.status,
                    last_update_at=excluded.last_update_at,
                    confidence=excluded.confidence
                """,
                (
                    upsert.user_id,
                    upsert.account_id,
                    upsert.company or UNKNOWN_LABEL,
                    upsert.role or UNKNOWN_LABEL,
                    upsert.source,
                    upsert.status,
                    applied_at,
                    event_date,
                    upsert.confidence,
                    key.raw,
                    key.hash,
                    upsert.company,
                    upsert.role,
                ),
            )
            row = self._connection.execute(
                "SELECT * FROM job_applications WHERE dedupe_key_hash = ?",
                (key.hash,),
            ).fetchone()
        return _row_to_job(row), existing is None

    def get_job(self, job_id: int) -> JobApplication | None:
        """Return a job application by id."""
        with _storage_errors("load job"):
            row = self._connection.execute(
                "SELECT * FROM job_applications WHERE id = ?", (job_id,)
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self,
        user_id: str,
        *,
        status: str | None = None,
        query: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[JobApplication]:
        """Return a user's jobs, most recently updated first."""
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if status:
            clauses.append("status = ?")
            params.append(status)
        if query:
            pattern = f"%{query.lower()}%"
            clauses.append("(LOWER(company) LIKE ? OR LOWER(role) LIKE ?)")
            params.extend((pattern, pattern))
        if since is not None:
            clauses.append("last_update_at >= ?")
            params.append(serialize_datetime(since))
        params.append(max(1, min(limit, MAX_JOB_LIMIT)))
        sql = (
            "SELECT * FROM job_applications WHERE "
            + " AND ".join(clauses)
            + " ORDER BY last_update_at DESC, id DESC LIMIT ?"
        )
        with _storage_errors("list jobs"):
            rows = self._connection.execute(sql, params).fetchall()
        return [_row_to_job(row) for row in rows]

    def update_job(
        self,
        job_id: int,
        *,
        status: str | None = None,
        company: str | None = None,
        role: str | None = None,
    ) -> JobApplication | None:
        """Apply a manual correction and return the updated job."""
        assignments: list[str] = []
        params: list[Any] = []
        for column, value in (("status", status), ("company", company), ("role", role)):
            if value is not None:
                assignments.append(f"{column} = ?")
                params.append(value)
        if assignments:
            with _storage_errors("update job"), self._connection:
                self._connection.execute(
                    f"UPDATE job_applications SET {', '.join(assignments)} WHERE id = ?",
                    (*params, job_id),
                )
        return self.get_job(job_id)

    # Events ------------------------------------------------------------------
    def append_event(self, event: ApplicationEvent) -> ApplicationEvent:
        """Append an immutable event and return it with its identifier."""
        with _storage_errors("append event"), self._connection:
            cursor = self._connection.execute(
                """
                INSERT INTO application_events (
                    job_application_id,
                    event_type,
                    occurred_at,
                    payload
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    event.job_application_id,
                    event.event_type,
                    serialize_datetime(event.occurred_at),
                    json.dumps(event.payload),
                ),
            )
        return ApplicationEvent(
            id=cursor.lastrowid,
            job_application_id=event.job_application_id,
            event_type=event.event_type,
            occurred_at=event.occurred_at,
            payload=dict(event.payload),
        )

    def list_events(
        self, job_application_id: int, *, limit: int | None = None
    ) -> list[ApplicationEvent]:
        """Return events for a job, newest first."""
        sql = """
            SELECT * FROM application_events
            WHERE job_application_id = ?
            ORDER BY occurred_at DESC, id DESC
        """
        params: list[Any] = [job_application_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with _storage_errors("list events"):
            rows = self._connection.execute(sql, params).fetchall()
        return [
            ApplicationEvent(
                id=row["id"],
                job_application_id=row["job_application_id"],
                event_type=row["event_type"],
                occurred_at=cast(datetime, parse_datetime(row["occurred_at"])),
                payload=_load_json(row["payload"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()

    # Internal helpers --------------------------------------------------------
    def _enable_foreign_keys(self) -> None:
        with self._connection:
            self._connection.execute("PRAGMA foreign_keys = ON")

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            with self._connection:
                self._connection.executescript(
                    migration.read_text(encoding="utf-8")
                )


def _load_json(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    loaded = json.loads(value)
    return loaded if isinstance(loaded, dict) else {}


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        user_id=row["user_id"],
        provider=row["provider"],
        email_address=row["email_address"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        token_expires_at=parse_datetime(row["token_expires_at"]),
        metadata=_load_json(row["metadata"]),
    )


def _row_to_job(row: sqlite3.Row) -> JobApplication:
    return JobApplication(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        company=row["company"],
        role=row["role"],
        source=row["source"],
        status=cast(ApplicationStatus, row["status"]),
        applied_at=parse_datetime(row["applied_at"]),
        last_update_at=parse_datetime(row["last_update_at"]),
        confidence=row["confidence"],
        dedupe_key_raw=row["dedupe_key_raw"],
        dedupe_key_hash=row["dedupe_key_hash"],
    )


__all__ = ["MAX_JOB_LIMIT", "SqliteJobRepository"]
