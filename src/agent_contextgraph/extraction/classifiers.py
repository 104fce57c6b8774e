"""
Pattern classifiers.

Each classifier is a pure function of the transcript text that returns
typed candidates. They share no state, can run in any order, and skip
anything they cannot match rather than raising.
"""

import re
from dataclasses import dataclass, field
from typing import List, Dict, Any, Tuple, Pattern, Callable

from ..types import ContextType
from . import patterns

_DECISIONS = patterns.compile_table(patterns.DECISION_PATTERNS)
_REQUIREMENTS = patterns.compile_table(patterns.REQUIREMENT_PATTERNS)
_ERRORS = patterns.compile_table(patterns.ERROR_PATTERNS)
_DISCUSSION_EXCLUSIONS = patterns.compile_list(patterns.DISCUSSION_EXCLUSIONS, re.IGNORECASE)
_FENCE = re.compile(r"^[ \t]*(```|~~~)[ \t]*([^\s`]*)")
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n+")


@dataclass
class Candidate:
    """A typed span found in a transcript, before scoring."""
    context_type: ContextType
    content: str
    position: int = -1
    metadata: Dict[str, Any] = field(default_factory=dict)


def classify_code(text: str) -> List[Candidate]:
    """
    Emit one candidate per non-empty fenced code block.

    Fences open with ``` or ~~~ and close with the same marker. An
    unterminated fence runs to the end of the text.
    """
    candidates = []
    lines = text.splitlines(keepends=True)
    offset = 0
    fence = None
    language = ""
    body: List[str] = []
    start = 0

    for line in lines:
        match = _FENCE.match(line)
        if fence is None:
            if match:
                fence = match.group(1)
                language = match.group(2).lower()
                body = []
                start = offset
        elif match and match.group(1) == fence and not match.group(2):
            candidates.extend(_code_candidate(body, language, start))
            fence = None
        else:
            body.append(line)
        offset += len(line)

    if fence is not None:
        candidates.extend(_code_candidate(body, language, start))

    return candidates


def _code_candidate(body: List[str], language: str, position: int) -> List[Candidate]:
    code = "".join(body).strip("\n")
    if not code.strip():
        return []
    return [Candidate(
        context_type=ContextType.CODE,
        content=code,
        position=position,
        metadata={
            "language": language or "plaintext",
            "line_count": len(code.splitlines()),
        },
    )]


def _match_spans(
    text: str,
    table: List[Tuple[str, Pattern]],
    context_type: ContextType,
    bounds: Tuple[int, int],
    metadata_for: Callable[[str, "re.Match"], Dict[str, Any]],
) -> List[Candidate]:
    """Run a phrase table, keeping in-bounds spans and dropping duplicates."""
    low, high = bounds
    seen = set()
    candidates = []
    for label, pattern in table:
        for match in pattern.finditer(text):
            span = match.group(0).strip()
            if not (low <= len(span) <= high) or span in seen:
                continue
            seen.add(span)
            candidates.append(Candidate(
                context_type=context_type,
                content=span,
                position=match.start(),
                metadata=metadata_for(label, match),
            ))
    return candidates


def classify_decisions(text: str) -> List[Candidate]:
    """Sentences announcing a choice, plan or recommendation."""
    return _match_spans(
        text, _DECISIONS, ContextType.DECISION, patterns.DECISION_BOUNDS,
        lambda label, m: {"pattern": label},
    )


def classify_requirements(text: str) -> List[Candidate]:
    """Obligations, labelled constraints and verification phrasing."""
    return _match_spans(
        text, _REQUIREMENTS, ContextType.REQUIREMENT, patterns.REQUIREMENT_BOUNDS,
        lambda label, m: {"pattern": label, "modal": m.group(1).lower()},
    )


def classify_errors(text: str) -> List[Candidate]:
    """Labelled errors, bug reports and stack traces."""
    return _match_spans(
        text, _ERRORS, ContextType.ERROR, patterns.ERROR_BOUNDS,
        lambda label, m: {"pattern": label, "error_type": m.group(1).lower()},
    )


def classify_discussions(text: str) -> List[Candidate]:
    """Plain paragraphs that carry none of the other signals."""
    low, high = patterns.DISCUSSION_BOUNDS
    candidates = []
    offset = 0
    for paragraph in _PARAGRAPH_BREAK.split(text):
        position = text.find(paragraph, offset)
        if position >= 0:
            offset = position + len(paragraph)
        trimmed = paragraph.strip()
        if not (low <= len(trimmed) <= high):
            continue
        if any(p.search(trimmed) for p in _DISCUSSION_EXCLUSIONS):
            continue
        word_count = len(trimmed.split())
        if word_count < patterns.DISCUSSION_MIN_WORDS:
            continue
        candidates.append(Candidate(
            context_type=ContextType.DISCUSSION,
            content=trimmed,
            position=position,
            metadata={"word_count": word_count},
        ))
    return candidates


CLASSIFIERS = [
    classify_code,
    classify_decisions,
    classify_requirements,
    classify_errors,
    classify_discussions,
]


def classify(text: str) -> List[Candidate]:
    """Run every classifier over the text."""
    candidates = []
    for classifier in CLASSIFIERS:
        candidates.extend(classifier(text))
    return candidates
