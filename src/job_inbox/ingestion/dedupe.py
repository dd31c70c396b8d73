"""Deterministic identity for job applications."""

from __future__ import annotations

import hashlib
import re
import unicodedata

from job_inbox.core.models import DedupeKey

_WHITESPACE = re.compile(r"\s+")
_SEPARATOR = "|"


def normalize_component(value: str | None) -> str:
    """Normalise a company or role for key derivation."""
    if not value:
        return ""
    folded = unicodedata.normalize("NFKC", value).casefold()
    # The separator must not appear inside a component or keys could collide.
    folded = folded.replace(_SEPARATOR, " ")
    return _WHITESPACE.sub(" ", folded).strip()


def make_dedupe_key(company: str | None, role: str | None, account_id: str) -> DedupeKey:
    """Return the raw key and its SHA-256 hex digest."""
    raw = _SEPARATOR.join(
        (normalize_component(company), normalize_component(role), account_id)
    )
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return DedupeKey(raw=raw, hash=digest)


__all__ = ["make_dedupe_key", "normalize_component"]
