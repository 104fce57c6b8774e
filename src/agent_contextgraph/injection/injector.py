"""Token-budgeted context selection."""

import math
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..errors import InvalidInputError
from ..search.engine import HybridSearch
from ..tokens import TokenCounter
from ..types import InjectionEntry, InjectionSelection, SearchResult, utcnow
from .formatter import condensed_text, reference_line, render_markdown

# Formats tried for each preferred format, most detailed first.
FORMAT_LADDERS = {
    "full": ["full", "summary", "reference"],
    "summary": ["summary", "reference"],
    "reference": ["reference"],
}

DEFAULT_TYPE_MULTIPLIERS = {
    "error": 1.2,
    "requirement": 1.1,
    "decision": 1.0,
    "code": 0.9,
    "discussion": 0.7,
}


class ContextInjector:
    """
    Picks which stored contexts to inject for a query within a token budget.

    Candidates are ranked by a composite priority:

        relevance * Wr + recency * Wc + importance * Wi * type_multiplier

    with recency = exp(-age_days / decay_days). Critical candidates
    (priority >= critical_threshold) are placed first. Each candidate is
    tried in its format ladder (full -> summary -> reference) against the
    remaining budget, and regular candidates stop once
    `regular_budget_ratio` of the budget is used. The running total never
    exceeds `max_tokens`.

    Usage:
        injector = ContextInjector(search, TokenCounter())
        selection = injector.prepare("auth token refresh", max_tokens=2000)
        print(injector.format(selection))
    """

    def __init__(
        self,
        search: HybridSearch,
        token_counter: Optional[TokenCounter] = None,
        relevance_weight: float = 0.5,
        recency_weight: float = 0.2,
        importance_weight: float = 0.3,
        recency_decay_days: float = 30.0,
        type_multipliers: Optional[Dict[str, float]] = None,
        critical_threshold: float = 0.8,
        regular_budget_ratio: float = 0.9,
        candidate_limit: int = 30,
    ):
        self.search = search
        self.tokens = token_counter or TokenCounter()
        self.relevance_weight = relevance_weight
        self.recency_weight = recency_weight
        self.importance_weight = importance_weight
        self.recency_decay_days = recency_decay_days
        self.type_multipliers = dict(type_multipliers or DEFAULT_TYPE_MULTIPLIERS)
        self.critical_threshold = critical_threshold
        self.regular_budget_ratio = regular_budget_ratio
        self.candidate_limit = candidate_limit

    # -- scoring -------------------------------------------------------------

    def recency(self, timestamp: datetime, now: datetime) -> float:
        age_days = max((now - timestamp).total_seconds() / 86400.0, 0.0)
        return math.exp(-age_days / self.recency_decay_days)

    def priority(self, result: SearchResult, now: datetime) -> float:
        item = result.context
        multiplier = self.type_multipliers.get(item.context_type.value, 1.0)
        return (
            result.score * self.relevance_weight
            + self.recency(item.timestamp, now) * self.recency_weight
            + item.importance_score * self.importance_weight * multiplier
        )

    def rank(self, results: List[SearchResult], now: Optional[datetime] = None) -> List[Tuple[SearchResult, float]]:
        """Candidates with priorities, best first. Ties keep search order."""
        now = now or utcnow()
        scored = [(r, self.priority(r, now)) for r in results]
        return sorted(scored, key=lambda pair: -pair[1])

    # -- rendering per format --------------------------------------------------

    def render(self, result: SearchResult, fmt: str) -> Optional[str]:
        """Body text for a format, or None when that format does not apply."""
        item = result.context
        if fmt == "full":
            return item.content
        if fmt == "summary":
            # short items have no shorter form; the ladder skips this rung for them
            return condensed_text(item)
        if fmt == "reference":
            return reference_line(item, result.chat_title)
        raise InvalidInputError(f"Unknown format: {fmt}")

    def rungs(self, result: SearchResult, ladder: List[str]) -> List[Tuple[str, str, int]]:
        """
        (format, text, tokens) for each usable rung of a ladder.

        A lower rung that costs no fewer tokens than the rung above it is
        dropped, so a short item never degrades to an identical "summary".
        """
        rungs = []
        for fmt in ladder:
            text = self.render(result, fmt)
            if text is None:
                continue
            cost = self.tokens.count(text)
            if rungs and cost >= rungs[-1][2]:
                continue
            rungs.append((fmt, text, cost))
        return rungs

    def _fit(self, result: SearchResult, priority: float, ladder: List[str], remaining: int) -> Optional[InjectionEntry]:
        for fmt, text, cost in self.rungs(result, ladder):
            if cost <= remaining:
                return InjectionEntry(
                    context=result.context,
                    score=priority,
                    format=fmt,
                    tokens=cost,
                    text=text,
                    chat_title=result.chat_title,
                )
        return None

    # -- selection -------------------------------------------------------------

    def prepare(
        self,
        query: str,
        max_tokens: int,
        format: str = "full",
        project_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> InjectionSelection:
        """
        Select contexts for a query within `max_tokens`.

        Raises:
            InvalidInputError: blank query, non-positive budget or unknown format
        """
        if format not in FORMAT_LADDERS:
            raise InvalidInputError(f"Unknown format: {format}")
        if max_tokens is None or max_tokens < 1:
            raise InvalidInputError(f"max_tokens must be positive, got {max_tokens}")

        candidates = self.search.search(query, limit=self.candidate_limit, project_id=project_id, use_semantic=True)
        return self.select(query, candidates, max_tokens, format, now)

    def select(
        self,
        query: str,
        candidates: List[SearchResult],
        max_tokens: int,
        format: str = "full",
        now: Optional[datetime] = None,
    ) -> InjectionSelection:
        """Budgeted selection over an already retrieved candidate list."""
        selection = InjectionSelection(query=query, max_tokens=max_tokens)
        if not candidates:
            selection.strategy = "no_results"
            return selection

        ladder = FORMAT_LADDERS[format]
        ranked = self.rank(candidates, now)
        critical = [pair for pair in ranked if pair[1] >= self.critical_threshold]
        regular = [pair for pair in ranked if pair[1] < self.critical_threshold]

        used = 0
        budget_hit = False
        for tier, group in (("critical", critical), ("regular", regular)):
            for result, priority in group:
                if tier == "regular" and used >= max_tokens * self.regular_budget_ratio:
                    budget_hit = True
                    break
                entry = self._fit(result, priority, ladder, max_tokens - used)
                if entry is None:
                    budget_hit = True
                    continue
                selection.entries.append(entry)
                used += entry.tokens

        selection.total_tokens = used
        if selection.entries:
            selection.strategy = "token_limit_reached" if budget_hit else "standard"
            return selection

        # Nothing fit: force the top candidate's summary if it fits alone
        top, priority = ranked[0]
        text = condensed_text(top.context)
        cost = self.tokens.count(text)
        if cost <= max_tokens:
            selection.entries.append(InjectionEntry(
                context=top.context,
                score=priority,
                format="summary",
                tokens=cost,
                text=text,
                chat_title=top.chat_title,
            ))
            selection.total_tokens = cost
            selection.strategy = "forced_summary"
        else:
            selection.strategy = "token_limit_reached"
        return selection

    def format(self, selection: InjectionSelection) -> str:
        """Render a selection as markdown."""
        return render_markdown(selection)
