"""
Core ContextGraph class for agent-contextgraph.

Ties extraction, embeddings, storage, search and injection together behind
the tool-style operations an agent calls.
"""

import json
import uuid
from pathlib import Path
from typing import Optional, Union, List, Iterable, Dict, Any

from .cache import EmbeddingCache
from .config import Config
from .embedders import EmbeddingProvider, create_embedder
from .embedders.base import Embedder
from .errors import InvalidInputError, EmbeddingUnavailable
from .extraction import ContextExtractor
from .injection import ContextInjector, FORMAT_LADDERS
from .logger import ActivityLogger
from .search import HybridSearch
from .storage import ContextStore, SQLiteContextStore
from .tokens import TokenCounter
from .types import (
    Chat, ContextType, EvolutionChain, ExtractionSummary, InjectionResponse,
    Relationship, RelationshipType, SearchResult, utcnow,
)
from .visualize import GraphVisualization, FORMATS as GRAPH_FORMATS, render as render_graph

MAX_EVOLUTION_DEPTH = 10
MAX_GRAPH_DEPTH = 3
MAX_CHAT_PAGE = 50
EXPORT_ROLES = ("user", "assistant")


def _parse_types(types: Optional[Iterable]) -> Optional[List[ContextType]]:
    if not types:
        return None
    parsed = []
    for t in types:
        try:
            parsed.append(ContextType(t))
        except ValueError:
            raise InvalidInputError(f"Unknown context type: {t}")
    return parsed


def _parse_relationship_type(rel_type) -> RelationshipType:
    try:
        return RelationshipType(rel_type.upper() if isinstance(rel_type, str) else rel_type)
    except ValueError:
        raise InvalidInputError(f"Unknown relationship type: {rel_type}")


def _require_positive(name: str, value: int, maximum: Optional[int] = None) -> None:
    if not isinstance(value, int) or value < 1:
        raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")
    if maximum is not None and value > maximum:
        raise InvalidInputError(f"{name} must be at most {maximum}, got {value}")


def export_to_transcript(export: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Turn an exported chat into a transcript.

    Accepts JSON text or a parsed dict shaped like
    {"id"?, "title"?, "messages": [{"role", "content"}, ...]}. Only user and
    assistant messages are kept, each under a "## ROLE" header.

    Returns:
        Dict with "id", "title", "transcript" and "messages" (count kept)
    """
    if isinstance(export, str):
        try:
            data = json.loads(export)
        except json.JSONDecodeError as e:
            raise InvalidInputError(f"Export is not valid JSON: {e}")
    else:
        data = export

    if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
        raise InvalidInputError("Export must be an object with a 'messages' list")

    parts = []
    for message in data["messages"]:
        if not isinstance(message, dict):
            continue
        role = str(message.get("role", "")).lower()
        content = message.get("content")
        if role not in EXPORT_ROLES or not isinstance(content, str) or not content.strip():
            continue
        parts.append(f"## {role.upper()}\n{content.strip()}")

    if not parts:
        raise InvalidInputError("Export has no user or assistant messages")

    return {
        "id": data.get("id"),
        "title": data.get("title"),
        "transcript": "\n\n".join(parts),
        "messages": len(parts),
    }


class ContextGraph:
    """
    Cross-session context memory for AI agents.

    Extracts typed context from transcripts, links it into a graph and
    serves it back through hybrid search and token-budgeted injection.

    Usage:
        graph = ContextGraph("./contextgraph.yaml")
        graph.extract_context(transcript, chat_id="c1", project_id="p1")
        print(graph.inject_context("how do we store sessions?").text)
        graph.close()

        # Everything injectable, e.g. for tests
        graph = ContextGraph(Config(db_path=":memory:"), store=InMemoryContextStore(),
                             embedder=HashEmbedder())
    """

    def __init__(
        self,
        config: Union[str, Config, None] = None,
        store: Optional[ContextStore] = None,
        embedder: Optional[Embedder] = None,
        token_counter: Optional[TokenCounter] = None,
        logger: Optional[ActivityLogger] = None,
    ):
        """
        Initialize the context graph.

        Args:
            config: Config object, path to a YAML/JSON config, or None for defaults
            store: Graph store (default: SQLiteContextStore at config.db_path)
            embedder: Embedding model (default: from config.embedding)
            token_counter: Token counter (default: tiktoken per config.tokenizer)
            logger: Activity logger (default: JSONL logs under config.log_path)
        """
        if isinstance(config, str):
            config_path = Path(config)
            self.config = Config.load(config) if config_path.exists() else Config.default(str(config_path.parent))
        elif config is None:
            self.config = Config()
        else:
            self.config = config

        cfg = self.config
        self.tokens = token_counter or TokenCounter(cfg.tokenizer)

        self.embedder = embedder or create_embedder(
            cfg.embedding.embedder_type,
            model=cfg.embedding.model,
            dimensions=cfg.embedding.dimensions,
            ollama_url=cfg.embedding.ollama_url,
        )
        fallback = None
        if cfg.embedding.fallback:
            fallback = create_embedder(
                cfg.embedding.fallback,
                dimensions=self.embedder.dimensions,
                ollama_url=cfg.embedding.ollama_url,
            )

        cache = None
        if cfg.cache.enabled:
            cache_path = ":memory:" if cfg.db_path == ":memory:" else cfg.resolved_cache_path
            cache = EmbeddingCache(cache_path, ttl_seconds=cfg.cache.ttl_days * 24 * 3600)

        self.provider = EmbeddingProvider(
            self.embedder,
            cache=cache,
            max_input_chars=cfg.embedding.max_input_chars,
            batch_size=cfg.embedding.batch_size,
            fallback=fallback,
        )

        self._owns_store = store is None
        self.store = store or SQLiteContextStore(
            cfg.db_path,
            dimensions=self.embedder.dimensions,
            vector_index=cfg.search.vector_index,
        )

        self.extractor = ContextExtractor(
            token_counter=self.tokens,
            max_context_tokens=cfg.extraction.max_context_tokens,
            summary_lines=cfg.extraction.summary_lines,
        )
        self.search = HybridSearch(
            self.store,
            self.provider,
            similarity_threshold=cfg.search.similarity_threshold,
            keyword_fallback_on_empty=cfg.search.keyword_fallback_on_empty,
        )
        self.injector = ContextInjector(
            self.search,
            token_counter=self.tokens,
            relevance_weight=cfg.injection.relevance_weight,
            recency_weight=cfg.injection.recency_weight,
            importance_weight=cfg.injection.importance_weight,
            recency_decay_days=cfg.injection.recency_decay_days,
            type_multipliers=cfg.injection.type_multipliers,
            critical_threshold=cfg.injection.critical_threshold,
            regular_budget_ratio=cfg.injection.regular_budget_ratio,
            candidate_limit=cfg.search.candidate_limit,
        )

        if logger is not None:
            self.logger = logger
        elif cfg.log_enabled and cfg.db_path != ":memory:":
            self.logger = ActivityLogger(cfg.resolved_log_path)
        else:
            self.logger = None

    # -- extraction ------------------------------------------------------------

    def extract_context(
        self,
        text: str,
        chat_id: str,
        project_id: str,
        max_items: Optional[int] = None,
        chat_title: Optional[str] = None,
        imported: bool = False,
    ) -> ExtractionSummary:
        """
        Extract context from a transcript and persist it.

        Creates the chat on first sight, stores the highest-importance
        `max_items` items with their embeddings, links them and refreshes
        the chat's counters.

        Raises:
            InvalidInputError: empty transcript, blank ids or bad max_items
            PersistenceUnavailable: the store failed
        """
        max_items = self.config.extraction.max_items if max_items is None else max_items
        _require_positive("max_items", max_items)

        result = self.extractor.extract(text, chat_id, project_id)
        result = self.extractor.cap(result, max_items)

        if result.items:
            try:
                vectors = self.provider.embed_items(result.items)
                for item in result.items:
                    item.embedding = vectors.get(item.id)
            except EmbeddingUnavailable as e:
                print(f"Warning: storing contexts without embeddings: {e}")

        now = utcnow()
        chat = self.store.get_chat(chat_id)
        if chat is None:
            chat = Chat(
                id=chat_id,
                project_id=project_id,
                title=chat_title or f"Chat {now.date().isoformat()}",
                created_at=now,
                updated_at=now,
                is_imported=imported,
            )
        else:
            chat.updated_at = now
            if chat_title:
                chat.title = chat_title
        self.store.upsert_chat(chat)

        for item in result.items:
            self.store.upsert_item(item)
        for relationship in result.relationships:
            self.store.upsert_relationship(relationship)
        self.store.refresh_chat_stats(chat_id)

        summary = ExtractionSummary(
            chat_id=chat_id,
            project_id=project_id,
            contexts_extracted=len(result.items),
            relationships_created=len(result.relationships),
            total_tokens=result.total_tokens,
            elapsed_ms=result.elapsed_ms,
            by_type=result.count_by_type(),
            context_ids=[i.id for i in result.items],
        )
        if self.logger:
            self.logger.log_extraction(summary, imported=imported)
        return summary

    def import_export(
        self,
        export: Union[str, Dict[str, Any]],
        project_id: str,
        max_items: Optional[int] = None,
    ) -> ExtractionSummary:
        """Extract context from an exported chat (JSON with a messages list)."""
        parsed = export_to_transcript(export)
        chat_id = parsed["id"] or f"import_{uuid.uuid4().hex[:12]}"
        return self.extract_context(
            parsed["transcript"],
            chat_id=str(chat_id),
            project_id=project_id,
            max_items=max_items,
            chat_title=parsed["title"] or "Imported Chat",
            imported=True,
        )

    # -- retrieval -------------------------------------------------------------

    def search_context(
        self,
        query: str,
        types: Optional[Iterable] = None,
        limit: Optional[int] = None,
        project_id: Optional[str] = None,
        use_semantic: bool = True,
    ) -> List[SearchResult]:
        """Hybrid search; degrades from semantic to keyword matching."""
        limit = self.config.search.default_limit if limit is None else limit
        _require_positive("limit", limit)
        results = self.search.search(
            query,
            types=_parse_types(types),
            limit=limit,
            project_id=project_id,
            use_semantic=use_semantic,
        )
        if self.logger:
            self.logger.log_search(query, self.search.last_strategy, len(results), limit)
        return results

    def find_related(self, item_id: str, limit: Optional[int] = None) -> List[SearchResult]:
        """Graph neighbours of an item, or embedding neighbours if it has none."""
        limit = self.config.search.default_limit if limit is None else limit
        _require_positive("limit", limit)
        return self.search.find_related(item_id, limit=limit)

    def get_evolution_chain(self, item_id: str, depth: int = 5) -> EvolutionChain:
        """How an item evolved across the conversation, oldest first."""
        _require_positive("depth", depth, MAX_EVOLUTION_DEPTH)
        return self.search.get_evolution_chain(item_id, depth=depth)

    def inject_context(
        self,
        query: str,
        max_tokens: Optional[int] = None,
        format: str = "full",
        project_id: Optional[str] = None,
    ) -> InjectionResponse:
        """Select and render context for a query within a token budget."""
        max_tokens = self.config.injection.max_tokens if max_tokens is None else max_tokens
        _require_positive("max_tokens", max_tokens)
        if format not in FORMAT_LADDERS:
            raise InvalidInputError(f"Unknown format: {format}")

        selection = self.injector.prepare(query, max_tokens, format=format, project_id=project_id)
        if self.logger:
            self.logger.log_injection(selection)
        return InjectionResponse(text=self.injector.format(selection), selection=selection)

    # -- management ------------------------------------------------------------

    def manage_relationship(
        self,
        from_id: str,
        to_id: str,
        rel_type,
        action: str = "create",
        properties: Optional[Dict[str, Any]] = None,
    ) -> Optional[Relationship]:
        """
        Create, update or delete an edge by hand.

        Raises:
            InvalidInputError: unknown action or type, self loop, or a
                RELATED_TO edge without a similarity in [0, 1]
            NotFound: missing endpoint (create) or missing edge (update, delete)
        """
        rel_type = _parse_relationship_type(rel_type)
        properties = dict(properties or {})

        if action == "create":
            if from_id == to_id:
                raise InvalidInputError("Cannot link a node to itself")
            if rel_type == RelationshipType.RELATED_TO:
                similarity = properties.get("similarity")
                if not isinstance(similarity, (int, float)) or not 0.0 <= similarity <= 1.0:
                    raise InvalidInputError("RELATED_TO needs a 'similarity' property in [0, 1]")
            properties.setdefault("manual", True)
            relationship = Relationship(from_id=from_id, to_id=to_id, type=rel_type, properties=properties)
            self.store.upsert_relationship(relationship)
        elif action == "update":
            relationship = self.store.update_relationship(from_id, to_id, rel_type, properties)
        elif action == "delete":
            self.store.delete_relationship(from_id, to_id, rel_type)
            relationship = None
        else:
            raise InvalidInputError(f"Unknown action: {action}")

        if self.logger:
            self.logger.log_relationship(action, from_id, to_id, rel_type.value)
        return relationship

    def list_chats(self, project_id: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Chat]:
        """Chats, most recently updated first."""
        _require_positive("limit", limit, MAX_CHAT_PAGE)
        if not isinstance(offset, int) or offset < 0:
            raise InvalidInputError(f"offset must be non-negative, got {offset!r}")
        return self.store.list_chats(project_id=project_id, limit=limit, offset=offset)

    def visualize_graph(
        self,
        project_id: Optional[str] = None,
        chat_id: Optional[str] = None,
        depth: int = 2,
        format: str = "mermaid",
        max_nodes: int = 200,
    ) -> GraphVisualization:
        """
        Render part of the graph.

        Starts from a chat's items (or a project's, or everything) and
        follows non-membership edges for `depth - 1` more hops.
        """
        _require_positive("depth", depth, MAX_GRAPH_DEPTH)
        if format not in GRAPH_FORMATS:
            raise InvalidInputError(f"Unknown graph format: {format}")

        seeds = self.store.iter_items(project_id=project_id, chat_id=chat_id)[:max_nodes]
        items = {i.id: i for i in seeds}
        frontier = list(items)
        for _ in range(depth - 1):
            next_frontier = []
            for node_id in frontier:
                for edge in self.store.get_relationships(node_id):
                    if edge.type == RelationshipType.BELONGS_TO:
                        continue
                    other = edge.to_id if edge.from_id == node_id else edge.from_id
                    if other in items or len(items) >= max_nodes:
                        continue
                    neighbour = self.store.get_item(other)
                    if neighbour is not None:
                        items[other] = neighbour
                        next_frontier.append(other)
            frontier = next_frontier

        chats = []
        for cid in sorted({i.chat_id for i in items.values()}):
            chat = self.store.get_chat(cid)
            if chat is not None:
                chats.append(chat)

        node_ids = list(items) + [c.id for c in chats]
        edges = self.store.all_relationships(node_ids=node_ids)
        return render_graph(list(items.values()), chats, edges, fmt=format)

    def stats(self) -> dict:
        """Return graph, embedding and activity statistics."""
        stats = {
            "db_path": self.config.db_path,
            "embedder": self.provider.model_name,
            "vector_search": self.store.vector_search_available,
            "tokenizer": "tiktoken" if self.tokens.is_exact else "estimate",
            "embedding_cache": self.provider.get_stats(),
        }
        stats.update(self.store.count())
        if self.logger:
            stats["searches_24h"] = self.logger.get_search_stats()
            stats["extractions_24h"] = self.logger.get_extraction_stats()
        return stats

    def close(self):
        """Close the store (if owned) and embedding resources."""
        self.provider.close()
        if self._owns_store:
            self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
