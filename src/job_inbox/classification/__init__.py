"""Rule-based classification of job-application emails."""

from .classifier import RuleBasedClassifier, classify, score_confidence
from .rules import SOURCE_RULES, STATUS_RULES, ats_domains

__all__ = [
    "RuleBasedClassifier",
    "SOURCE_RULES",
    "STATUS_RULES",
    "ats_domains",
    "classify",
    "score_confidence",
]
