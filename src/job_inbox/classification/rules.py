"""Ordered rule tables driving the job-email classifier.

Each table is evaluated top to bottom and the first matching rule wins, so
the order of entries is part of the behaviour.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from job_inbox.core.models import ApplicationStatus

TextPredicate = Callable[[str], bool]


@dataclass(frozen=True)
class SourceRule:
    """Applicant tracking system identified by its outbound domains."""

    label: str
    domains: tuple[str, ...]

    def match(self, candidates: Iterable[str]) -> str | None:
        """Return the first candidate domain belonging to this source."""
        for candidate in candidates:
            for domain in self.domains:
                if candidate == domain or candidate.endswith("." + domain):
                    return candidate
        return None


@dataclass(frozen=True)
class StatusRule:
    """Lifecycle status recognised by any of its keyword phrases."""

    status: ApplicationStatus
    keywords: tuple[str, ...] = ()

    def match(self, haystack: str) -> str | None:
        """Return the first keyword contained in ``haystack``."""
        for keyword in self.keywords:
            if keyword in haystack:
                return keyword
        return None


@dataclass(frozen=True)
class EventTypeRule:
    """Event type chosen when ``predicate`` holds for the message text."""

    name: str
    event_type: str
    predicate: TextPredicate


SOURCE_RULES: tuple[SourceRule, ...] = (
    SourceRule("Greenhouse", ("greenhouse.io", "notifications.greenhouse.io")),
    SourceRule("Lever", ("lever.co", "jobs.lever.co")),
    SourceRule("Workday", ("workday.com", "myworkdayjobs.com")),
    SourceRule("Taleo", ("taleo.net", "oraclecloud.com")),
    SourceRule("Ashby", ("ashbyhq.com",)),
    SourceRule("SmartRecruiters", ("smartrecruiters.com",)),
    SourceRule("iCIMS", ("icims.com",)),
    SourceRule("Jobvite", ("jobvite.com",)),
    SourceRule("Workable", ("workable.com", "workablemail.com")),
    SourceRule("BreezyHR", ("breezy.hr",)),
    SourceRule("BambooHR", ("bamboohr.com",)),
    SourceRule("SuccessFactors", ("successfactors.com",)),
)

CATALOGUED_SOURCES: frozenset[str] = frozenset(rule.label for rule in SOURCE_RULES)

GENERIC_SOURCE = "email"

STATUS_RULES: tuple[StatusRule, ...] = (
    StatusRule(
        "Applied",
        (
            "applied",
            "application received",
            "we received your application",
            "thanks for applying",
            "thank you for applying",
            "submission received",
            "received your application",
        ),
    ),
    StatusRule(
        "InReview",
        (
            "under review",
            "reviewing your application",
            "considering your application",
            "shortlisted",
        ),
    ),
    StatusRule(
        "Assessment",
        (
            "assessment",
            "take-home",
            "take home",
            "coding challenge",
            "challenge",
            "online test",
            "coding test",
        ),
    ),
    StatusRule("PhoneScreen", ("phone screen", "screening call", "recruiter call")),
    StatusRule(
        "Interview",
        ("interview scheduled", "technical interview", "panel interview", "interview"),
    ),
    StatusRule("Onsite", ("onsite", "on-site", "on site")),
    StatusRule("Offer", ("offer letter", "offer")),
    StatusRule(
        "Rejected",
        (
            "unfortunately",
            "not moving forward",
            "not selected",
            "rejection",
            "declined",
            "we're moving forward with other candidates",
            "we are moving forward with other candidates",
        ),
    ),
    StatusRule(
        "Withdrawn",
        (
            "withdrawn",
            "withdraw your application",
            "application withdrawn",
            "cancelled application",
        ),
    ),
    # Ghosting is a lack of email; no single message can signal it.
    StatusRule("Ghosted"),
)

DEFAULT_STATUS: ApplicationStatus = "InReview"

EVENT_TYPE_RULES: tuple[EventTypeRule, ...] = (
    EventTypeRule(
        "interview+scheduled",
        "interview_scheduled",
        lambda text: "interview" in text and "scheduled" in text,
    ),
    EventTypeRule("assessment", "assessment_assigned", lambda text: "assessment" in text),
    EventTypeRule("offer", "offer_received", lambda text: "offer" in text),
    EventTypeRule(
        "phone screen", "phone_screen_scheduled", lambda text: "phone screen" in text
    ),
)

DEFAULT_EVENT_FOR_STATUS: Mapping[str, str] = {
    "Applied": "application_submitted",
    "InReview": "status_update",
    "Assessment": "assessment_assigned",
    "PhoneScreen": "phone_screen_scheduled",
    "Interview": "interview_scheduled",
    "Onsite": "interview_scheduled",
    "Offer": "offer_received",
    "Rejected": "rejection",
    "Withdrawn": "withdrawal",
    "Ghosted": "status_update",
}

# Display names that identify a mailer rather than an employer.
GENERIC_SENDER_PATTERN = (
    r"no-?reply|do[\s-]*not[\s-]*reply|notifications?|mailer-daemon|postmaster"
)

GENERIC_SENDER_NAMES: frozenset[str] = frozenset(
    {
        "careers",
        "jobs",
        "recruiting",
        "recruitment",
        "talent",
        "talent acquisition",
        "hiring team",
        "hr",
        "team",
    }
    | {label.lower() for label in CATALOGUED_SOURCES}
)


def ats_domains() -> tuple[str, ...]:
    """Return every catalogued domain in table order."""
    return tuple(domain for rule in SOURCE_RULES for domain in rule.domains)


__all__ = [
    "CATALOGUED_SOURCES",
    "DEFAULT_EVENT_FOR_STATUS",
    "DEFAULT_STATUS",
    "EVENT_TYPE_RULES",
    "EventTypeRule",
    "GENERIC_SENDER_NAMES",
    "GENERIC_SENDER_PATTERN",
    "GENERIC_SOURCE",
    "SOURCE_RULES",
    "STATUS_RULES",
    "SourceRule",
    "StatusRule",
    "ats_domains",
]
