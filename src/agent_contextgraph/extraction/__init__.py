"""Transcript extraction: classifiers, scoring and relationship detection."""

from .classifiers import (
    Candidate,
    classify,
    classify_code,
    classify_decisions,
    classify_requirements,
    classify_errors,
    classify_discussions,
)
from .scorer import ImportanceScorer, base_score
from .relationships import RelationshipDetector
from .extractor import ContextExtractor

__all__ = [
    "Candidate",
    "classify",
    "classify_code",
    "classify_decisions",
    "classify_requirements",
    "classify_errors",
    "classify_discussions",
    "ImportanceScorer",
    "base_score",
    "RelationshipDetector",
    "ContextExtractor",
]
