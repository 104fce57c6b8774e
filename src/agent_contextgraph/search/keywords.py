"""Query keyword extraction and highlight selection."""

import re
from typing import List, Optional

STOPWORDS = frozenset({
    "the", "is", "at", "which", "on", "and", "a", "an", "as", "are",
    "was", "were", "in", "to", "for", "of", "with", "by",
})

_NON_WORD = re.compile(r"[^\w\s]")
_SENTENCE_BREAK = re.compile(r"[.!?]+")


def extract_keywords(query: str, min_length: int = 3, stopwords=STOPWORDS) -> List[str]:
    """
    Lowercase query words with punctuation, short words and stopwords removed.

    Order of first appearance is kept; duplicates are dropped.
    """
    words = _NON_WORD.sub(" ", query.lower()).split()
    keywords = []
    for word in words:
        if len(word) >= min_length and word not in stopwords and word not in keywords:
            keywords.append(word)
    return keywords


def keyword_score(content: str, keywords: List[str]) -> float:
    """Fraction of keywords present in the content (case-insensitive)."""
    if not keywords:
        return 0.0
    lowered = content.lower()
    return sum(1 for k in keywords if k in lowered) / len(keywords)


def highlights(
    content: str,
    query: Optional[str] = None,
    keywords: Optional[List[str]] = None,
    max_highlights: int = 3,
) -> List[str]:
    """Up to `max_highlights` sentences containing a query keyword, in order."""
    if keywords is None:
        keywords = extract_keywords(query or "")
    if not keywords:
        return []

    found = []
    for sentence in _SENTENCE_BREAK.split(content):
        sentence = sentence.strip()
        if not sentence:
            continue
        lowered = sentence.lower()
        if any(k in lowered for k in keywords):
            found.append(sentence)
            if len(found) >= max_highlights:
                break
    return found
