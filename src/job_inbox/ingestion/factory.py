"""Wire the ingestion pipeline from application settings."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

import httpx

from ..classification import RuleBasedClassifier, ats_domains
from ..core.config import AppSettings
from ..core.interfaces import JobRepository
from ..core.models import Account, OAuthCredential
from ..transport.gmail_client import GmailClient
from ..transport.oauth import GoogleOAuthClient
from .orchestrator import IngestionOrchestrator, SourceFactory
from .query import build_search_query
from .source import BackoffPolicy, MessageSource
from .tokens import TokenLifecycle


def gmail_source_factory(
    settings: AppSettings,
    tokens: TokenLifecycle,
    *,
    http_client: httpx.Client | None = None,
) -> SourceFactory:
    """Return a factory building one Gmail-backed source per account run."""
    query = build_search_query(
        settings.gmail.search_window_days,
        settings.gmail.search_keywords,
        ats_domains(),
    )
    backoff = BackoffPolicy(
        base_seconds=settings.sync.backoff_base_seconds,
        cap_seconds=settings.sync.backoff_cap_seconds,
    )

    def build(
        account: Account, credential: OAuthCredential, deadline: float | None
    ) -> MessageSource:
        client = GmailClient(
            settings.gmail, credential.access_token, http_client=http_client
        )
        return MessageSource(
            client,
            tokens,
            credential,
            query=query,
            max_messages=settings.sync.max_messages_per_run,
            page_size=settings.sync.page_size,
            backoff=backoff,
            sleep=time.sleep,
            monotonic=time.monotonic,
            deadline=deadline,
        )

    return build


@contextmanager
def ingestion_session(
    settings: AppSettings,
    repository: JobRepository,
    *,
    http_client: httpx.Client | None = None,
) -> Iterator[IngestionOrchestrator]:
    """Yield an orchestrator and close its token client afterwards."""
    with GoogleOAuthClient(settings.gmail, http_client=http_client) as oauth:
        tokens = TokenLifecycle(oauth)
        yield IngestionOrchestrator(
            repository,
            tokens,
            gmail_source_factory(settings, tokens, http_client=http_client),
            RuleBasedClassifier(),
            run_timeout_seconds=settings.sync.run_timeout_seconds,
        )


__all__ = ["gmail_source_factory", "ingestion_session"]
