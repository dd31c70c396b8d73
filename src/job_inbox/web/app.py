"""FastAPI application exposing ingestion and tracked job applications."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, status as http_status
from pydantic import BaseModel, Field, model_validator

from job_inbox.core import AppSettings, load_app_settings
from job_inbox.core.datetime_utils import parse_datetime, serialize_datetime, utcnow
from job_inbox.core.interfaces import StorageError
from job_inbox.core.models import (
    APPLICATION_STATUSES,
    Account,
    ApplicationEvent,
    ApplicationStatus,
    IngestionReport,
    JobApplication,
)
from job_inbox.ingestion import AccountNotFound, ingestion_session
from job_inbox.storage import SqliteJobRepository
from job_inbox.storage.connection_pool import ConnectionPool

DEFAULT_JOB_LIMIT = 100
EVENT_LIMIT = 50
RESYNC_REQUESTED_KEY = "resyncRequestedAt"

LOGGER = logging.getLogger(__name__)


class JobPatch(BaseModel):
    """Manual correction of a tracked job."""

    status: ApplicationStatus | None = None
    company: str | None = Field(default=None, min_length=1)
    role: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _require_one_field(self) -> JobPatch:
        if self.status is None and self.company is None and self.role is None:
            raise ValueError("At least one field to update is required")
        return self


def get_user_id(
    x_user_id: str | None = Header(default=None),  # noqa: B008
) -> str:
    """Return the acting user supplied by the session layer."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=http_status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    return x_user_id.strip()


def create_app(
    settings: AppSettings | None = None,
    *,
    http_client: httpx.Client | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = settings or load_app_settings()
    app = FastAPI(title="Job Inbox")

    connection_pool = ConnectionPool(app_settings.storage, pool_size=5)

    def get_repository() -> Iterator[SqliteJobRepository]:
        with connection_pool.acquire(timeout=10.0) as repository:
            yield repository

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close connection pool on app shutdown."""
        connection_pool.close()
        LOGGER.info("Connection pool closed")

    @app.post("/api/ingest")
    async def trigger_ingest(
        user_id: str = Depends(get_user_id),  # noqa: B008
    ) -> dict[str, Any]:
        """Run ingestion for every connected account of the user."""
        report = await _ingest_in_thread(app_settings, user_id, None, http_client)
        return {"ok": True, **report.to_payload()}

    @app.get("/api/accounts")
    async def list_accounts(
        user_id: str = Depends(get_user_id),  # noqa: B008
        repository: SqliteJobRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any]:
        """List the user's connected mailboxes without their tokens."""
        accounts = repository.list_accounts(user_id)
        return {"accounts": [_serialize_account(account) for account in accounts]}

    @app.post("/api/accounts/{account_id}/resync")
    async def resync_account(
        account_id: str,
        user_id: str = Depends(get_user_id),  # noqa: B008
        repository: SqliteJobRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any]:
        """Record a resync request and ingest that account immediately."""
        _owned_account(repository, account_id, user_id)
        repository.update_account_metadata(
            account_id, {RESYNC_REQUESTED_KEY: serialize_datetime(utcnow())}
        )
        report = await _ingest_in_thread(app_settings, user_id, account_id, http_client)
        return {"ok": True, "accountId": account_id, **report.to_payload()}

    @app.post("/api/accounts/{account_id}/disconnect")
    async def disconnect_account(
        account_id: str,
        user_id: str = Depends(get_user_id),  # noqa: B008
        repository: SqliteJobRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any]:
        """Delete the account and the messages ingested from it."""
        _owned_account(repository, account_id, user_id)
        repository.delete_account(account_id)
        return {"ok": True, "accountId": account_id}

    @app.get("/api/jobs")
    async def list_jobs(
        status: str | None = None,
        q: str | None = None,
        since: str | None = None,
        limit: int = DEFAULT_JOB_LIMIT,
        user_id: str = Depends(get_user_id),  # noqa: B008
        repository: SqliteJobRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any]:
        """List tracked jobs, most recently updated first."""
        if status and status not in APPLICATION_STATUSES:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST, detail="Invalid status"
            )
        since_value = _parse_since(since)
        jobs = repository.list_jobs(
            user_id,
            status=status or None,
            query=q or None,
            since=since_value,
            limit=limit,
        )
        return {"jobs": [_serialize_job(job) for job in jobs]}

    @app.get("/api/jobs/{job_id}")
    async def job_detail(
        job_id: int,
        user_id: str = Depends(get_user_id),  # noqa: B008
        repository: SqliteJobRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any]:
        """Return one job with its most recent events."""
        job = _owned_job(repository, job_id, user_id)
        account = repository.get_account(job.account_id) if job.account_id else None
        events = repository.list_events(job.id, limit=EVENT_LIMIT)
        payload = _serialize_job(job)
        payload["account"] = _serialize_account(account) if account else None
        payload["events"] = [_serialize_event(event) for event in events]
        return {"job": payload}

    @app.patch("/api/jobs/{job_id}")
    async def patch_job(
        job_id: int,
        patch: JobPatch,
        user_id: str = Depends(get_user_id),  # noqa: B008
        repository: SqliteJobRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any]:
        """Apply a manual status, company or role correction."""
        _owned_job(repository, job_id, user_id)
        updated = repository.update_job(
            job_id, status=patch.status, company=patch.company, role=patch.role
        )
        if updated is None:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND, detail="Not found"
            )
        return {"job": _serialize_job(updated)}

    return app


async def _ingest_in_thread(
    settings: AppSettings,
    user_id: str,
    account_id: str | None,
    http_client: httpx.Client | None,
) -> IngestionReport:
    try:
        return await asyncio.to_thread(
            _run_ingestion, settings, user_id, account_id, http_client
        )
    except AccountNotFound as exc:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND, detail="Not found"
        ) from exc
    except StorageError as exc:
        LOGGER.error("Ingestion failed for user %s: %s", user_id, exc, exc_info=True)
        raise HTTPException(
            status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage unavailable",
        ) from exc


def _run_ingestion(
    settings: AppSettings,
    user_id: str,
    account_id: str | None,
    http_client: httpx.Client | None,
) -> IngestionReport:
    with (
        SqliteJobRepository(settings.storage) as repository,
        ingestion_session(settings, repository, http_client=http_client) as orchestrator,
    ):
        if account_id is not None:
            return orchestrator.run_for_account(account_id, user_id=user_id)
        return orchestrator.run_for_user(user_id)


def _owned_account(
    repository: SqliteJobRepository, account_id: str, user_id: str
) -> Account:
    account = repository.get_account(account_id)
    if account is None or account.user_id != user_id:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND, detail="Not found"
        )
    return account


def _owned_job(
    repository: SqliteJobRepository, job_id: int, user_id: str
) -> JobApplication:
    job = repository.get_job(job_id)
    if job is None or job.user_id != user_id:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND, detail="Not found"
        )
    return job


def _parse_since(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parse_datetime(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail="Invalid since parameter",
        ) from exc


def _serialize_job(job: JobApplication) -> dict[str, Any]:
    return {
        "id": job.id,
        "accountId": job.account_id,
        "company": job.company,
        "role": job.role,
        "source": job.source,
        "status": job.status,
        "appliedAt": serialize_datetime(job.applied_at),
        "lastUpdateAt": serialize_datetime(job.last_update_at),
        "confidence": job.confidence,
    }


def _serialize_event(event: ApplicationEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "eventType": event.event_type,
        "occurredAt": serialize_datetime(event.occurred_at),
        "payload": event.payload,
    }


def _serialize_account(account: Account) -> dict[str, Any]:
    return {
        "id": account.id,
        "provider": account.provider,
        "emailAddress": account.email_address,
        "metadata": account.metadata,
    }


__all__ = ["JobPatch", "create_app", "get_user_id"]
