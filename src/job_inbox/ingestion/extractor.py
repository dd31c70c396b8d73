"""Utilities for turning provider message envelopes into plain content."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any


class HeaderMap(Mapping[str, str]):
    """Read-only header mapping with case-insensitive lookup.

    The first occurrence of a repeated header wins for lookups, matching how
    mail clients treat ``Date`` or ``From``; :meth:`as_dict` keeps the
    original header names for persistence.
    """

    def __init__(self, pairs: Iterable[tuple[str, str]] = ()) -> None:
        self._values: dict[str, str] = {}
        self._names: dict[str, str] = {}
        for name, value in pairs:
            key = name.lower()
            if key in self._values:
                continue
            self._values[key] = value
            self._names[key] = name

    def __getitem__(self, name: str) -> str:
        return self._values[name.lower()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"HeaderMap({self.as_dict()!r})"

    def as_dict(self) -> dict[str, str]:
        """Return headers keyed by their original names."""
        return {self._names[key]: value for key, value in self._values.items()}


@dataclass(frozen=True, slots=True)
class ExtractedContent:
    """Plain-text view of a provider message."""

    subject: str | None
    headers: HeaderMap
    snippet: str | None
    body_text: str | None


def extract_content(envelope: Mapping[str, Any]) -> ExtractedContent:
    """Convert a Gmail ``format=full`` envelope into :class:`ExtractedContent`."""
    payload = envelope.get("payload")
    if not isinstance(payload, Mapping):
        payload = {}
    raw_headers = payload.get("headers")
    if not isinstance(raw_headers, list):
        raw_headers = []
    headers = HeaderMap(_header_pairs(raw_headers))
    snippet = envelope.get("snippet")
    if not isinstance(snippet, str) or not snippet:
        snippet = None
    return ExtractedContent(
        subject=headers.get("Subject"),
        headers=headers,
        snippet=snippet,
        body_text=_first_plain_text(payload),
    )


def _header_pairs(raw_headers: Iterable[Any]) -> Iterator[tuple[str, str]]:
    for entry in raw_headers:
        if not isinstance(entry, Mapping):
            continue
        name = entry.get("name")
        value = entry.get("value")
        if isinstance(name, str) and name and isinstance(value, str):
            yield name, value


def _first_plain_text(part: Mapping[str, Any]) -> str | None:
    """Depth-first search for the first decodable ``text/plain`` leaf."""
    if not isinstance(part, Mapping):
        return None
    if part.get("mimeType") == "text/plain":
        body = part.get("body")
        data = body.get("data") if isinstance(body, Mapping) else None
        if isinstance(data, str) and data:
            decoded = decode_base64url(data)
            if decoded is not None:
                return decoded
    children = part.get("parts")
    if not isinstance(children, list):
        return None
    for child in children:
        text = _first_plain_text(child)
        if text is not None:
            return text
    return None


def decode_base64url(data: str) -> str | None:
    """Decode Gmail's unpadded base64url body data; ``None`` if malformed."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None


__all__ = ["ExtractedContent", "HeaderMap", "decode_base64url", "extract_content"]
