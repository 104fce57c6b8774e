"""Importance scoring for extracted context items."""

import re
from typing import Dict, List, Tuple, Optional

from ..types import ContextItem, ContextType
from . import patterns


def base_score(context_type: ContextType) -> float:
    """Starting score for a freshly extracted item of this type."""
    return patterns.BASE_SCORES.get(ContextType(context_type).value, 0.5)


class ImportanceScorer:
    """
    Adjusts an item's importance from its type, size and risk keywords.

    Deterministic and stateless. The returned score is clamped to [0, 1]
    and never lower than the score the item came in with.

    Usage:
        scorer = ImportanceScorer()
        item.importance_score = scorer.score(item)
    """

    def __init__(
        self,
        type_bonuses: Optional[Dict[str, float]] = None,
        size_bonuses: Optional[List[Tuple[int, float]]] = None,
        keywords: Optional[Dict[str, float]] = None,
    ):
        self.type_bonuses = dict(type_bonuses if type_bonuses is not None else patterns.TYPE_BONUSES)
        self.size_bonuses = list(size_bonuses if size_bonuses is not None else patterns.SIZE_BONUSES)
        self.keywords = dict(keywords if keywords is not None else patterns.RISK_KEYWORDS)
        self._keyword_patterns = [
            (re.compile(re.escape(word), re.IGNORECASE), bonus)
            for word, bonus in self.keywords.items()
        ]

    def breakdown(self, item: ContextItem) -> Dict[str, float]:
        """Individual bonus components, for debugging and tests."""
        size = sum(bonus for threshold, bonus in self.size_bonuses if item.token_count > threshold)
        keyword = sum(bonus for pattern, bonus in self._keyword_patterns if pattern.search(item.content))
        return {
            "base": item.importance_score,
            "type": self.type_bonuses.get(item.context_type.value, 0.0),
            "size": size,
            "keywords": keyword,
        }

    def score(self, item: ContextItem) -> float:
        """Return the adjusted score for an item."""
        parts = self.breakdown(item)
        total = sum(parts.values())
        return max(item.importance_score, min(1.0, max(0.0, total)))

    def apply(self, item: ContextItem) -> ContextItem:
        """Score an item in place and return it."""
        item.importance_score = self.score(item)
        return item
