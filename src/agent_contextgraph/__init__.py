"""
agent-contextgraph: Cross-session context memory for AI agents

Turns chat transcripts into a typed, linked and searchable graph:
- Extraction: code, decisions, requirements, errors and discussion
- Relationships: evolution, dependency, reference, implementation, similarity
- Retrieval: semantic search with keyword fallback, graph traversals
- Injection: token-budgeted context blocks for the next session

Usage:
    from agent_contextgraph import ContextGraph

    graph = ContextGraph("./contextgraph.yaml")
    graph.extract_context(transcript, chat_id="chat-1", project_id="my-app")
    response = graph.inject_context("how are sessions stored?", max_tokens=1500)
    print(response.text)
"""

from .config import Config
from .errors import (
    ContextGraphError,
    InvalidInputError,
    EmbeddingUnavailable,
    PersistenceUnavailable,
    NotFound,
)
from .graph import ContextGraph
from .types import (
    Chat,
    ContextItem,
    ContextType,
    EvolutionChain,
    ExtractionResult,
    ExtractionSummary,
    InjectionEntry,
    InjectionResponse,
    InjectionSelection,
    Relationship,
    RelationshipType,
    SearchResult,
)

__version__ = "0.1.0"
__all__ = [
    "ContextGraph",
    "Config",
    "Chat",
    "ContextItem",
    "ContextType",
    "EvolutionChain",
    "ExtractionResult",
    "ExtractionSummary",
    "InjectionEntry",
    "InjectionResponse",
    "InjectionSelection",
    "Relationship",
    "RelationshipType",
    "SearchResult",
    "ContextGraphError",
    "InvalidInputError",
    "EmbeddingUnavailable",
    "PersistenceUnavailable",
    "NotFound",
]
