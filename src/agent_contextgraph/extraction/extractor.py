"""Extraction orchestrator: transcript in, scored items and edges out."""

import time
from datetime import datetime, timedelta
from typing import List, Optional

from ..errors import InvalidInputError
from ..tokens import TokenCounter
from ..types import ContextItem, ExtractionResult, utcnow
from .classifiers import Candidate, CLASSIFIERS
from .relationships import RelationshipDetector
from .scorer import ImportanceScorer, base_score


class ContextExtractor:
    """
    Turns a raw transcript into context items and relationships.

    Runs every classifier, scores the candidates, summarizes oversized
    items and hands the final set to the relationship detector. Items are
    stamped in transcript order (one microsecond apart) so time-ordered
    heuristics follow the conversation.

    Usage:
        extractor = ContextExtractor()
        result = extractor.extract(transcript, chat_id="c1", project_id="p1")
    """

    def __init__(
        self,
        token_counter: Optional[TokenCounter] = None,
        scorer: Optional[ImportanceScorer] = None,
        detector: Optional[RelationshipDetector] = None,
        classifiers: Optional[list] = None,
        max_context_tokens: int = 4000,
        summary_lines: int = 10,
    ):
        self.tokens = token_counter or TokenCounter()
        self.scorer = scorer or ImportanceScorer()
        self.detector = detector or RelationshipDetector()
        self.classifiers = list(classifiers) if classifiers is not None else list(CLASSIFIERS)
        self.max_context_tokens = max_context_tokens
        self.summary_lines = summary_lines

    def extract(
        self,
        text: str,
        chat_id: str,
        project_id: str,
        now: Optional[datetime] = None,
    ) -> ExtractionResult:
        """
        Extract context items and relationships from a transcript.

        Args:
            text: Raw transcript text
            chat_id: Owning chat identifier
            project_id: Owning project identifier
            now: Base timestamp for the new items (default: current UTC time)

        Returns:
            ExtractionResult with items, relationships, total tokens and timing

        Raises:
            InvalidInputError: text is not a non-blank string, or ids are blank
        """
        if not isinstance(text, str):
            raise InvalidInputError(f"Transcript must be text, got {type(text).__name__}")
        if not text.strip():
            raise InvalidInputError("Transcript is empty")
        if not chat_id or not str(chat_id).strip():
            raise InvalidInputError("chat_id is required")
        if not project_id or not str(project_id).strip():
            raise InvalidInputError("project_id is required")

        started = time.perf_counter()
        base_time = now or utcnow()

        candidates = self._classify(text)
        candidates.sort(key=lambda c: c.position if c.position >= 0 else len(text))

        items = []
        for index, candidate in enumerate(candidates):
            item = self._build_item(candidate, chat_id, project_id, base_time + timedelta(microseconds=index))
            self.scorer.apply(item)
            if item.token_count > self.max_context_tokens:
                self.summarize(item)
            items.append(item)

        relationships = self.detector.detect(items, chat_id=chat_id, transcript=text)

        return ExtractionResult(
            items=items,
            relationships=relationships,
            total_tokens=sum(i.token_count for i in items),
            elapsed_ms=(time.perf_counter() - started) * 1000,
        )

    def _classify(self, text: str) -> List[Candidate]:
        candidates = []
        for classifier in self.classifiers:
            try:
                candidates.extend(classifier(text))
            except Exception as e:
                # A broken classifier contributes nothing
                print(f"Warning: classifier {getattr(classifier, '__name__', classifier)} failed: {e}")
        return candidates

    def _build_item(self, candidate: Candidate, chat_id: str, project_id: str, timestamp: datetime) -> ContextItem:
        metadata = dict(candidate.metadata)
        if candidate.position >= 0:
            metadata["position"] = candidate.position
        return ContextItem(
            chat_id=chat_id,
            project_id=project_id,
            content=candidate.content,
            context_type=candidate.context_type,
            token_count=self.tokens.count(candidate.content),
            importance_score=base_score(candidate.context_type),
            timestamp=timestamp,
            metadata=metadata,
        )

    def summarize(self, item: ContextItem) -> ContextItem:
        """
        Populate `item.summary` with a line-truncated form.

        Keeps the first `summary_lines` lines plus a marker. If that is not
        strictly shorter than the content in tokens, falls back to cutting
        characters until it is.
        """
        lines = item.content.splitlines()
        remaining = len(lines) - self.summary_lines
        marker = f"\n... (+{max(remaining, 0)} more lines, {item.token_count} total tokens)"
        summary = "\n".join(lines[:self.summary_lines]) + marker

        if self.tokens.count(summary) >= item.token_count:
            # too few lines to shrink by line count (e.g. one huge line)
            budget = max(item.token_count // 4, 1)
            head = item.content[:budget * 4]
            summary = head + marker
            while head and self.tokens.count(summary) >= item.token_count:
                head = head[:len(head) // 2]
                summary = head + marker

        if self.tokens.count(summary) < item.token_count:
            item.summary = summary
            item.is_summarized = True
        return item

    @staticmethod
    def cap(result: ExtractionResult, max_items: int) -> ExtractionResult:
        """
        Keep the `max_items` most important items.

        Ties keep transcript order. Edges touching dropped items are
        removed, except membership edges of kept items.
        """
        if max_items is None or len(result.items) <= max_items:
            return result

        ranked = sorted(enumerate(result.items), key=lambda pair: (-pair[1].importance_score, pair[0]))
        kept_index = sorted(index for index, _ in ranked[:max(max_items, 0)])
        items = [result.items[i] for i in kept_index]
        kept_ids = {i.id for i in items}

        relationships = [
            r for r in result.relationships
            if r.from_id in kept_ids and (r.to_id in kept_ids or r.type.value == "BELONGS_TO")
        ]
        return ExtractionResult(
            items=items,
            relationships=relationships,
            total_tokens=sum(i.token_count for i in items),
            elapsed_ms=result.elapsed_ms,
        )
