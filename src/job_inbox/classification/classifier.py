"""Deterministic rule-based classification of job-related emails."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from email.utils import parseaddr, parsedate_to_datetime
from typing import cast

from job_inbox.core.datetime_utils import ensure_utc, utcnow
from job_inbox.core.interfaces import MessageClassifier
from job_inbox.core.models import ApplicationStatus, ClassificationTrace, ParsedEvent

from .rules import (
    CATALOGUED_SOURCES,
    DEFAULT_EVENT_FOR_STATUS,
    DEFAULT_STATUS,
    EVENT_TYPE_RULES,
    GENERIC_SENDER_NAMES,
    GENERIC_SENDER_PATTERN,
    GENERIC_SOURCE,
    SOURCE_RULES,
    STATUS_RULES,
    EventTypeRule,
    SourceRule,
    StatusRule,
)

LOGGER = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.30
SOURCE_BONUS = 0.25
STATUS_BONUS = 0.25
ROLE_BONUS = 0.10
COMPANY_BONUS = 0.10

MAX_ROLE_LENGTH = 80

_DOMAIN_TOKEN = re.compile(r"([a-z0-9.-]+\.[a-z]{2,})")
_WHITESPACE = re.compile(r"\s+")
_GENERIC_SENDER = re.compile(GENERIC_SENDER_PATTERN, re.IGNORECASE)
_RECEIVED_DATE = re.compile(
    r"(?:[A-Z][a-z]{2},?\s+)?\d{1,2}\s+[A-Z][a-z]{2}\s+\d{4}\s+"
    r"\d{2}:\d{2}(?::\d{2})?\s+[+-]\d{4}"
)
_VIA_SUFFIX = re.compile(r"\s+via\s+.*$", re.IGNORECASE)
_LEGAL_SUFFIX = re.compile(r"[,\s]+(?:inc|llc|ltd|gmbh)\.?$", re.IGNORECASE)
_TEAM_SUFFIX = re.compile(
    r"\s+(?:careers|recruiting|recruitment|talent acquisition|talent|"
    r"hiring team|jobs|team|hr)$",
    re.IGNORECASE,
)
_SUBJECT_PREFIX = re.compile(r"^(?:\s*(?:re|fwd?|fw)\s*:\s*)+", re.IGNORECASE)
_CAPITALISED_WORD = re.compile(r"[A-Z][A-Za-z0-9&'\-]*")
_COMPANY_PHRASE = re.compile(
    r"\b(?:at|from|to)\s+"
    r"(?P<company>[A-Z][A-Za-z0-9&'\-]*(?:\s+[A-Z][A-Za-z0-9&'\-]*){0,3})"
)
_ROLE_TRAILER = re.compile(r"\s+(?:at|with)\s+.*$|\s+[-–—]\s+.*$", re.IGNORECASE)
_ROLE_NOUN_SUFFIX = re.compile(r"\s+(?:role|position|job)$", re.IGNORECASE)

# Words that start many subjects but never name an employer.
_SUBJECT_STOPWORDS = frozenset(
    {
        "application",
        "interview",
        "invitation",
        "offer",
        "re",
        "thank",
        "thanks",
        "update",
        "your",
        "we",
        "you",
        "important",
        "action",
        "next",
    }
)

_ROLE_FRAGMENT = r"(?P<role>[^\n.,;!?()|]+)"


@dataclass(frozen=True)
class _RolePattern:
    name: str
    pattern: re.Pattern[str]


ROLE_PATTERNS: tuple[_RolePattern, ...] = (
    _RolePattern(
        "for_the_role",
        re.compile(
            r"\b(?:for|the)\s+(?:role|position|job)\s+(?:of\s+)?" + _ROLE_FRAGMENT,
            re.IGNORECASE,
        ),
    ),
    _RolePattern(
        "role_label",
        re.compile(
            r"\b(?:role|position|job)\s*[:\-–—]\s*" + _ROLE_FRAGMENT,
            re.IGNORECASE,
        ),
    ),
    _RolePattern(
        "titled_role",
        re.compile(
            r"\b(?P<role>[A-Z][\w/&+\-]*(?:\s+[A-Z][\w/&+\-]*){0,5})"
            r"\s+(?:[Rr]ole|[Pp]osition)\b"
        ),
    ),
    _RolePattern(
        "application_for",
        re.compile(
            r"\bapplication\s+for\s+(?:the\s+)?(?P<role>[^\n.,;!?()|]+?)"
            r"(?=\s+(?:at|with)\b|[\n.,;!?()|]|$)",
            re.IGNORECASE,
        ),
    ),
    _RolePattern(
        "for_at",
        re.compile(
            r"\bfor\s+(?:the\s+)?(?P<role>[^\n.,;!?()|]+?)\s+at\s+",
            re.IGNORECASE,
        ),
    ),
)


@dataclass(frozen=True, slots=True)
class _SourceMatch:
    label: str
    rule: str
    domain: str | None


class RuleBasedClassifier(MessageClassifier):
    """Classify job emails by walking ordered rule tables.

    Every table is first-match-wins. The rules that fired are recorded in the
    returned event's :class:`ClassificationTrace` so a surprising result can
    be explained without re-running anything.
    """

    def __init__(
        self,
        *,
        source_rules: Sequence[SourceRule] = SOURCE_RULES,
        status_rules: Sequence[StatusRule] = STATUS_RULES,
        event_type_rules: Sequence[EventTypeRule] = EVENT_TYPE_RULES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._source_rules = tuple(source_rules)
        self._status_rules = tuple(status_rules)
        self._event_type_rules = tuple(event_type_rules)
        self._clock = clock

    def classify(
        self,
        subject: str | None,
        headers: Mapping[str, str],
        snippet: str | None,
        body_text: str | None,
    ) -> ParsedEvent:
        """Return a :class:`ParsedEvent` for the supplied content."""
        text = _normalise_text(subject, snippet, body_text)

        source = self._detect_source(headers)
        status, keyword = self._detect_status(text)
        event_type, event_rule = self._detect_event_type(text, status)
        event_date, date_origin = self._detect_event_date(headers)
        company, company_strategy = extract_company(subject, headers, snippet, body_text)
        role, role_pattern = extract_role(subject, snippet, body_text)

        confidence = score_confidence(
            catalogued_source=source.label in CATALOGUED_SOURCES,
            status_matched=keyword is not None,
            has_role=role is not None,
            has_company=company is not None,
        )
        trace = ClassificationTrace(
            source_rule=source.rule,
            source_domain=source.domain,
            status_keyword=keyword,
            event_type_rule=event_rule,
            date_origin=date_origin,
            company_strategy=company_strategy,
            role_pattern=role_pattern,
        )
        LOGGER.debug(
            "Classified message subject=%r source=%s status=%s keyword=%r",
            subject,
            source.label,
            status,
            keyword,
        )
        return ParsedEvent(
            company=company,
            role=role,
            source=source.label,
            status=status,
            event_type=event_type,
            event_date=event_date,
            confidence=confidence,
            trace=trace,
        )

    # Detection steps ---------------------------------------------------

    def _detect_source(self, headers: Mapping[str, str]) -> _SourceMatch:
        candidates = list(_domain_tokens(headers.values()))
        for rule in self._source_rules:
            domain = rule.match(candidates)
            if domain is not None:
                return _SourceMatch(label=rule.label, rule=rule.label, domain=domain)

        for name in ("From", "Return-Path", "Sender"):
            domain = _address_domain(headers.get(name))
            if domain:
                return _SourceMatch(label=domain, rule=f"{name} domain", domain=domain)
        return _SourceMatch(label=GENERIC_SOURCE, rule=GENERIC_SOURCE, domain=None)

    def _detect_status(self, text: str) -> tuple[ApplicationStatus, str | None]:
        for rule in self._status_rules:
            keyword = rule.match(text)
            if keyword is not None:
                return rule.status, keyword
        return DEFAULT_STATUS, None

    def _detect_event_type(
        self, text: str, status: ApplicationStatus
    ) -> tuple[str, str]:
        for rule in self._event_type_rules:
            if rule.predicate(text):
                return rule.event_type, rule.name
        return DEFAULT_EVENT_FOR_STATUS[status], f"default:{status}"

    def _detect_event_date(self, headers: Mapping[str, str]) -> tuple[datetime, str]:
        parsed = _parse_rfc2822(headers.get("Date"))
        if parsed is not None:
            return parsed, "Date"

        received = headers.get("Received")
        if received:
            match = _RECEIVED_DATE.search(received)
            if match:
                parsed = _parse_rfc2822(match.group(0))
                if parsed is not None:
                    return parsed, "Received"
        return self._clock(), "now"


_DEFAULT_CLASSIFIER = RuleBasedClassifier()


def classify(
    subject: str | None,
    headers: Mapping[str, str],
    snippet: str | None,
    body_text: str | None,
) -> ParsedEvent:
    """Classify with the default rule tables."""
    return _DEFAULT_CLASSIFIER.classify(subject, headers, snippet, body_text)


def score_confidence(
    *,
    catalogued_source: bool,
    status_matched: bool,
    has_role: bool,
    has_company: bool,
) -> float:
    """Return the advisory confidence score in ``[0.30, 1.00]``."""
    score = BASE_CONFIDENCE
    if catalogued_source:
        score += SOURCE_BONUS
    if status_matched:
        score += STATUS_BONUS
    if has_role:
        score += ROLE_BONUS
    if has_company:
        score += COMPANY_BONUS
    return round(min(score, 1.0), 2)


# Field extraction ------------------------------------------------------


def extract_company(
    subject: str | None,
    headers: Mapping[str, str],
    snippet: str | None,
    body_text: str | None,
) -> tuple[str | None, str | None]:
    """Return the employer name and the strategy that found it."""
    display_name, _ = parseaddr(headers.get("From") or "")
    company = _clean_company(display_name)
    if company:
        return company, "from_display_name"

    text = "\n".join(part for part in (subject, snippet, body_text) if part)
    for match in _COMPANY_PHRASE.finditer(text):
        company = _clean_company(match.group("company"))
        if company:
            return company, "at_from_to_phrase"

    if subject:
        words: list[str] = []
        for token in _SUBJECT_PREFIX.sub("", subject).split():
            if not _CAPITALISED_WORD.fullmatch(token):
                break
            words.append(token)
        while words and words[0].lower() in _SUBJECT_STOPWORDS:
            words.pop(0)
        company = _clean_company(" ".join(words[:4]))
        if company:
            return company, "subject_prefix"
    return None, None


def extract_role(
    subject: str | None,
    snippet: str | None,
    body_text: str | None,
) -> tuple[str | None, str | None]:
    """Return the job title and the pattern that found it.

    The subject is searched on its own first so that a title in the subject
    beats a looser match further down the body.
    """
    full_text = "\n".join(part for part in (subject, snippet, body_text) if part)
    haystacks = [text for text in (subject, full_text) if text]
    for haystack in haystacks:
        for role_pattern in ROLE_PATTERNS:
            for match in role_pattern.pattern.finditer(haystack):
                role = _clean_role(match.group("role"))
                if role:
                    return role, role_pattern.name
    return None, None


def _clean_company(value: str | None) -> str | None:
    if not value:
        return None
    name = value.strip().strip("\"'").strip()
    name = _VIA_SUFFIX.sub("", name)
    if _GENERIC_SENDER.search(name) or name.lower() in GENERIC_SENDER_NAMES:
        return None
    name = _TEAM_SUFFIX.sub("", name)
    name = _LEGAL_SUFFIX.sub("", name)
    name = _WHITESPACE.sub(" ", name).strip(" ,-")
    if not name or name.lower() in GENERIC_SENDER_NAMES:
        return None
    if name.lower() in _SUBJECT_STOPWORDS:
        return None
    return name


def _clean_role(value: str | None) -> str | None:
    if not value:
        return None
    role = _WHITESPACE.sub(" ", value).strip()
    role = _ROLE_TRAILER.sub("", role)
    role = _ROLE_NOUN_SUFFIX.sub("", role)
    if role.lower().startswith("the "):
        role = role[4:]
    role = role.strip(" -–—:\"'")
    if not role:
        return None
    return role[:MAX_ROLE_LENGTH].rstrip()


def _normalise_text(*parts: str | None) -> str:
    joined = " ".join(part for part in parts if part)
    joined = joined.replace("’", "'")
    return _WHITESPACE.sub(" ", joined).strip().lower()


def _domain_tokens(values: Iterable[str]) -> Iterable[str]:
    for value in values:
        yield from _DOMAIN_TOKEN.findall(value.lower())


def _address_domain(value: str | None) -> str | None:
    if not value:
        return None
    _, address = parseaddr(value)
    if "@" not in address:
        return None
    domain = address.rsplit("@", 1)[1].strip().strip(">").lower()
    return domain or None


def _parse_rfc2822(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    return cast(datetime, ensure_utc(parsed))


__all__ = [
    "RuleBasedClassifier",
    "classify",
    "extract_company",
    "extract_role",
    "score_confidence",
]
