"""Search predicate used to list candidate job emails."""

from __future__ import annotations

from collections.abc import Sequence


def build_search_query(
    window_days: int, keywords: Sequence[str], domains: Sequence[str]
) -> str:
    """Return a Gmail search string combining recency, keywords and senders.

    >>> build_search_query(30, ["offer", "interview"], ["lever.co"])
    'newer_than:30d (offer OR interview) AND (from:lever.co)'
    """
    if window_days <= 0:
        raise ValueError("window_days must be positive")
    clauses = [f"newer_than:{window_days}d"]
    filters: list[str] = []
    if keywords:
        filters.append(f"({' OR '.join(keywords)})")
    if domains:
        filters.append(f"({' OR '.join(f'from:{domain}' for domain in domains)})")
    if filters:
        clauses.append(" AND ".join(filters))
    return " ".join(clauses)


__all__ = ["build_search_query"]
