"""Tests for the SQLite-backed job repository."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from job_inbox.core.config import StorageSettings
from job_inbox.core.models import (
    ApplicationEvent,
    ApplicationStatus,
    ApplicationUpsert,
    IngestedMessage,
    OAuthCredential,
)
from job_inbox.ingestion.dedupe import make_dedupe_key
from job_inbox.storage import SqliteJobRepository
from job_inbox.storage.sqlite import MAX_JOB_LIMIT

BASE_TIME = datetime(2024, 10, 1, 9, 0, tzinfo=UTC)


@pytest.fixture()
def repository(tmp_path: Path):
    repo = SqliteJobRepository(StorageSettings(db_path=tmp_path / "jobs.db"))
    yield repo
    repo.close()


def _upsert(
    account_id: str | None,
    company: str | None,
    role: str | None,
    status: ApplicationStatus = "Applied",
    *,
    user_id: str = "user-1",
    when: datetime = BASE_TIME,
    key_account: str = "acc-1",
) -> ApplicationUpsert:
    return ApplicationUpsert(
        user_id=user_id,
        account_id=account_id,
        company=company,
        role=role,
        source="Greenhouse",
        status=status,
        event_date=when,
        confidence=0.8,
        dedupe_key=make_dedupe_key(company, role, key_account),
    )


def _message(account_id: str, message_id: str) -> IngestedMessage:
    return IngestedMessage(
        account_id=account_id,
        provider_message_id=message_id,
        thread_id="thread",
        subject="Subject",
        received_at=BASE_TIME,
        snippet="snippet",
        headers={"From": "jobs@example.com"},
        parsed=True,
    )


def test_account_roundtrip_and_listing_order(repository: SqliteJobRepository) -> None:
    expires = BASE_TIME + timedelta(hours=1)
    first = repository.create_account(
        "user-1",
        email_address="me@example.com",
        credential=OAuthCredential("access", "refresh", expires),
        account_id="acc-1",
    )
    repository.create_account("user-1", account_id="acc-2")
    repository.create_account("user-2", account_id="acc-3")

    loaded = repository.get_account(first.id)

    assert loaded is not None
    assert loaded.email_address == "me@example.com"
    assert loaded.credential == OAuthCredential("access", "refresh", expires)
    assert [account.id for account in repository.list_accounts("user-1")] == [
        "acc-1",
        "acc-2",
    ]
    assert repository.list_accounts("user-1", provider="outlook") == []
    assert repository.get_account("missing") is None


def test_refreshed_credential_keeps_stored_refresh_token(
    repository: SqliteJobRepository,
) -> None:
    repository.create_account(
        "user-1",
        credential=OAuthCredential("old", "refresh-1", BASE_TIME),
        account_id="acc-1",
    )
    new_expiry = BASE_TIME + timedelta(hours=1)

    repository.update_account_credentials(
        "acc-1", OAuthCredential("new", None, new_expiry)
    )

    account = repository.get_account("acc-1")
    assert account is not None
    assert account.access_token == "new"
    assert account.refresh_token == "refresh-1"
    assert account.token_expires_at == new_expiry


def test_metadata_merge_and_removal(repository: SqliteJobRepository) -> None:
    repository.create_account("user-1", account_id="acc-1", metadata={"keep": 1})

    repository.update_account_metadata("acc-1", {"lastError": "boom", "lastPollAt": "x"})
    merged = repository.update_account_metadata("acc-1", {"lastError": None})

    assert merged == {"keep": 1, "lastPollAt": "x"}
    account = repository.get_account("acc-1")
    assert account is not None and account.metadata == merged
    with pytest.raises(KeyError):
        repository.update_account_metadata("missing", {"a": 1})


def test_ingested_messages_are_unique_per_account(
    repository: SqliteJobRepository,
) -> None:
    repository.create_account("user-1", account_id="acc-1")
    repository.create_account("user-1", account_id="acc-2")

    repository.upsert_ingested_message(_message("acc-1", "m1"))
    repository.upsert_ingested_message(_message("acc-1", "m1"))
    repository.upsert_ingested_message(_message("acc-2", "m1"))

    assert repository.count_ingested_messages("acc-1") == 1
    assert repository.existing_message_ids("acc-1", ["m1", "m2"]) == {"m1"}
    assert repository.existing_message_ids("acc-1", []) == set()


def test_upsert_creates_once_and_updates_by_dedupe_key(
    repository: SqliteJobRepository,
) -> None:
    repository.create_account("user-1", account_id="acc-1")

    job, created = repository.upsert_job_application(
        _upsert("acc-1", "Acme Corp", "Backend Engineer")
    )
    later = BASE_TIME + timedelta(days=3)
    updated, created_again = repository.upsert_job_application(
        _upsert("acc-1", "ACME  corp", "backend engineer", "Rejected", when=later)
    )

    assert created is True
    assert created_again is False
    assert updated.id == job.id
    assert updated.status == "Rejected"
    assert updated.company == "ACME  corp"
    assert updated.applied_at == BASE_TIME
    assert updated.last_update_at == later
    assert len(repository.list_jobs("user-1")) == 1


def test_missing_fields_do_not_erase_known_values(
    repository: SqliteJobRepository,
) -> None:
    repository.create_account("user-1", account_id="acc-1")
    first = _upsert("acc-1", "Acme", "Engineer")
    repository.upsert_job_application(first)

    # Same key, but this message carried no company or role.
    blank = ApplicationUpsert(
        user_id="user-1",
        account_id="acc-1",
        company=None,
        role=None,
        source="Greenhouse",
        status="InReview",
        event_date=BASE_TIME,
        confidence=0.3,
        dedupe_key=first.dedupe_key,
    )
    job, _ = repository.upsert_job_application(blank)

    assert job.company == "Acme"
    assert job.role == "Engineer"
    assert job.status == "InReview"


def test_unknown_placeholders_and_applied_at_only_for_applied(
    repository: SqliteJobRepository,
) -> None:
    repository.create_account("user-1", account_id="acc-1")

    job, _ = repository.upsert_job_application(
        _upsert("acc-1", None, None, "InReview")
    )

    assert job.company == "Unknown"
    assert job.role == "Unknown"
    assert job.applied_at is None
    assert job.dedupe_key_raw == "||acc-1"


def test_disconnect_removes_messages_and_detaches_jobs(
    tmp_path: Path,
) -> None:
    db_path = tmp_path / "jobs.db"
    with SqliteJobRepository(StorageSettings(db_path=db_path)) as repository:
        repository.create_account("user-1", account_id="acc-1")
        repository.upsert_ingested_message(_message("acc-1", "m1"))
        job, _ = repository.upsert_job_application(_upsert("acc-1", "Acme", "Dev"))

        assert repository.delete_account("acc-1") is True
        assert repository.delete_account("acc-1") is False

        detached = repository.get_job(job.id)
        assert detached is not None
        assert detached.account_id is None
        assert repository.count_ingested_messages("acc-1") == 0

    with sqlite3.connect(db_path) as conn:
        count = conn.execute("SELECT COUNT(*) FROM ingested_messages").fetchone()[0]
    assert count == 0


def test_events_are_listed_newest_first_and_cascade(
    tmp_path: Path,
) -> None:
    db_path = tmp_path / "jobs.db"
    with SqliteJobRepository(StorageSettings(db_path=db_path)) as repository:
        repository.create_account("user-1", account_id="acc-1")
        job, _ = repository.upsert_job_application(_upsert("acc-1", "Acme", "Dev"))
        for offset, event_type in enumerate(("application_submitted", "rejection")):
            stored = repository.append_event(
                ApplicationEvent(
                    id=None,
                    job_application_id=job.id,
                    event_type=event_type,
                    occurred_at=BASE_TIME + timedelta(days=offset),
                    payload={"provider_message_id": f"m{offset}"},
                )
            )
            assert stored.id is not None

        events = repository.list_events(job.id)
        assert [event.event_type for event in events] == [
            "rejection",
            "application_submitted",
        ]
        assert events[0].payload == {"provider_message_id": "m1"}
        assert len(repository.list_events(job.id, limit=1)) == 1

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("DELETE FROM job_applications WHERE id = ?", (job.id,))
        remaining = conn.execute("SELECT COUNT(*) FROM application_events").fetchone()
    assert remaining[0] == 0


def test_list_jobs_filters_and_orders(repository: SqliteJobRepository) -> None:
    repository.create_account("user-1", account_id="acc-1")
    repository.upsert_job_application(
        _upsert("acc-1", "Acme", "Backend Engineer", "Applied", when=BASE_TIME)
    )
    repository.upsert_job_application(
        _upsert(
            "acc-1",
            "Globex",
            "Data Scientist",
            "Rejected",
            when=BASE_TIME + timedelta(days=2),
        )
    )
    repository.upsert_job_application(
        _upsert("acc-1", "Hooli", "Engineer", "Offer", user_id="user-2", key_account="x")
    )

    jobs = repository.list_jobs("user-1")
    assert [job.company for job in jobs] == ["Globex", "Acme"]
    assert [job.company for job in repository.list_jobs("user-1", status="Applied")] == [
        "Acme"
    ]
    assert [job.company for job in repository.list_jobs("user-1", query="SCIENT")] == [
        "Globex"
    ]
    since = BASE_TIME + timedelta(days=1)
    assert [job.company for job in repository.list_jobs("user-1", since=since)] == [
        "Globex"
    ]
    assert len(repository.list_jobs("user-1", limit=0)) == 1


def test_list_jobs_limit_is_clamped(repository: SqliteJobRepository) -> None:
    repository.create_account("user-1", account_id="acc-1")
    for index in range(MAX_JOB_LIMIT + 5):
        repository.upsert_job_application(_upsert("acc-1", f"Company {index}", "Dev"))

    assert len(repository.list_jobs("user-1", limit=10_000)) == MAX_JOB_LIMIT


def test_update_job_applies_manual_corrections(repository: SqliteJobRepository) -> None:
    repository.create_account("user-1", account_id="acc-1")
    job, _ = repository.upsert_job_application(_upsert("acc-1", "Acme", "Dev"))

    updated = repository.update_job(job.id, status="Interview", role="Senior Dev")

    assert updated is not None
    assert updated.status == "Interview"
    assert updated.role == "Senior Dev"
    assert updated.company == "Acme"
    assert repository.update_job(9999, status="Offer") is None
