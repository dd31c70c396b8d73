"""Ingestion pipeline components."""

from .dedupe import make_dedupe_key, normalize_component
from .extractor import ExtractedContent, HeaderMap, extract_content
from .factory import gmail_source_factory, ingestion_session
from .orchestrator import AccountNotFound, IngestionOrchestrator
from .query import build_search_query
from .source import BackoffPolicy, ListingResult, MessageSource, RetryBudgetExhausted
from .tokens import TokenLifecycle

__all__ = [
    "AccountNotFound",
    "BackoffPolicy",
    "ExtractedContent",
    "HeaderMap",
    "IngestionOrchestrator",
    "ListingResult",
    "MessageSource",
    "RetryBudgetExhausted",
    "TokenLifecycle",
    "build_search_query",
    "extract_content",
    "gmail_source_factory",
    "ingestion_session",
    "make_dedupe_key",
    "normalize_component",
]
