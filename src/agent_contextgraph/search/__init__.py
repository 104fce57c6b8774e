"""Hybrid search for agent-contextgraph."""

from .engine import HybridSearch
from .keywords import STOPWORDS, extract_keywords, keyword_score, highlights

__all__ = ["HybridSearch", "STOPWORDS", "extract_keywords", "keyword_score", "highlights"]
