"""Core data types for the context graph."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional


class ContextType(str, Enum):
    """Kind of knowledge unit pulled out of a transcript."""
    CODE = "code"
    DECISION = "decision"
    REQUIREMENT = "requirement"
    DISCUSSION = "discussion"
    ERROR = "error"


class RelationshipType(str, Enum):
    """Directed edge kinds between graph nodes."""
    REFERENCES = "REFERENCES"
    EVOLVES_TO = "EVOLVES_TO"
    DEPENDS_ON = "DEPENDS_ON"
    RELATED_TO = "RELATED_TO"
    IMPLEMENTS = "IMPLEMENTS"
    BELONGS_TO = "BELONGS_TO"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_context_id() -> str:
    return f"ctx_{uuid.uuid4().hex}"


@dataclass
class ContextItem:
    """
    A single knowledge unit extracted from a conversation.

    Known metadata keys: language, line_count (code); pattern (decision);
    modal (requirement); error_type (error); word_count (discussion);
    position (character offset in the source transcript).
    """
    chat_id: str
    project_id: str
    content: str
    context_type: ContextType
    token_count: int
    importance_score: float = 0.5
    summary: Optional[str] = None
    is_summarized: bool = False
    timestamp: datetime = field(default_factory=utcnow)
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_context_id)

    def __post_init__(self):
        if not isinstance(self.context_type, ContextType):
            self.context_type = ContextType(self.context_type)
        self.importance_score = min(1.0, max(0.0, float(self.importance_score)))

    @property
    def display_text(self) -> str:
        """Text used for embedding and condensed rendering."""
        return self.summary or self.content

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "chat_id": self.chat_id,
            "project_id": self.project_id,
            "content": self.content,
            "summary": self.summary,
            "type": self.context_type.value,
            "importance_score": self.importance_score,
            "timestamp": self.timestamp.isoformat(),
            "token_count": self.token_count,
            "is_summarized": self.is_summarized,
            "metadata": dict(self.metadata),
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data


@dataclass
class Relationship:
    """
    Directed typed edge between two nodes.

    Known property keys: similarity (RELATED_TO), time_delta in ms
    (EVOLVES_TO), dependency_type (DEPENDS_ON), reference_type (REFERENCES),
    shared_keywords (IMPLEMENTS).
    """
    from_id: str
    to_id: str
    type: RelationshipType
    properties: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.type, RelationshipType):
            self.type = RelationshipType(self.type)

    @property
    def key(self) -> tuple:
        return (self.from_id, self.to_id, self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_id,
            "to": self.to_id,
            "type": self.type.value,
            "properties": dict(self.properties),
        }


@dataclass
class Chat:
    """A conversation session that owns context items."""
    id: str
    project_id: str
    title: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    token_count: int = 0
    context_count: int = 0
    is_imported: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "token_count": self.token_count,
            "context_count": self.context_count,
            "is_imported": self.is_imported,
        }


@dataclass
class SearchResult:
    """Ranked search hit."""
    context: ContextItem
    score: float
    chat_title: Optional[str] = None
    highlights: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        text = self.context.content
        snippet = text[:200] + "..." if len(text) > 200 else text
        return (
            f"[{self.context.context_type.value}] (score: {self.score:.3f}) {self.context.id}\n"
            f"  > {snippet}"
        )


@dataclass
class InjectionEntry:
    """One selected item in an injection block."""
    context: ContextItem
    score: float
    format: str  # "full", "summary" or "reference"
    tokens: int
    text: str
    chat_title: Optional[str] = None


@dataclass
class InjectionSelection:
    """Result of budgeted context selection."""
    query: str
    max_tokens: int
    entries: List[InjectionEntry] = field(default_factory=list)
    total_tokens: int = 0
    strategy: str = "standard"  # standard, token_limit_reached, forced_summary, no_results

    @property
    def utilization(self) -> float:
        return self.total_tokens / self.max_tokens if self.max_tokens else 0.0

    def by_format(self, fmt: str) -> List[InjectionEntry]:
        return [e for e in self.entries if e.format == fmt]


@dataclass
class ExtractionResult:
    """Output of a single extraction pass."""
    items: List[ContextItem] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    total_tokens: int = 0
    elapsed_ms: float = 0.0

    def count_by_type(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.items:
            counts[item.context_type.value] = counts.get(item.context_type.value, 0) + 1
        return counts


@dataclass
class ExtractionSummary:
    """What the facade reports back after extracting and persisting."""
    chat_id: str
    project_id: str
    contexts_extracted: int
    relationships_created: int
    total_tokens: int
    elapsed_ms: float
    by_type: Dict[str, int] = field(default_factory=dict)
    context_ids: List[str] = field(default_factory=list)


@dataclass
class EvolutionChain:
    """Items linked by EVOLVES_TO edges, oldest first."""
    items: List[ContextItem] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)

    @property
    def total_evolutions(self) -> int:
        return len(self.relationships)


@dataclass
class InjectionResponse:
    """Formatted injection block plus the selection behind it."""
    text: str
    selection: InjectionSelection

    @property
    def tokens_used(self) -> int:
        return self.selection.total_tokens

    @property
    def strategy(self) -> str:
        return self.selection.strategy
