"""
Hybrid search over the context graph.

Strategies are tried in order until one is available: semantic (vector
KNN) first, keyword matching second. A strategy signals "unavailable" by
returning None, which moves the search to the next one.
"""

from typing import List, Optional, Iterable, Dict, Callable, Tuple, Set

from ..embedders.provider import EmbeddingProvider
from ..errors import InvalidInputError, EmbeddingUnavailable
from ..storage.base import ContextStore
from ..types import (
    ContextItem, ContextType, EvolutionChain, Relationship, RelationshipType, SearchResult,
)
from .keywords import extract_keywords, keyword_score, highlights

# Scores for graph neighbours, by edge type. RELATED_TO uses its similarity.
NEIGHBOUR_SCORES = {
    RelationshipType.EVOLVES_TO: 0.9,
    RelationshipType.REFERENCES: 0.8,
}
DEFAULT_NEIGHBOUR_SCORE = 0.7

NEIGHBOUR_TYPES = [
    RelationshipType.EVOLVES_TO,
    RelationshipType.REFERENCES,
    RelationshipType.RELATED_TO,
    RelationshipType.DEPENDS_ON,
    RelationshipType.IMPLEMENTS,
]


class HybridSearch:
    """
    Semantic search with keyword fallback, plus graph traversals.

    Usage:
        search = HybridSearch(store, provider)
        results = search.search("authentication bug", limit=5)
        related = search.find_related(results[0].context.id)
    """

    def __init__(
        self,
        store: ContextStore,
        provider: Optional[EmbeddingProvider] = None,
        similarity_threshold: float = 0.7,
        keyword_fallback_on_empty: bool = True,
        fetch_multiplier: int = 2,
    ):
        self.store = store
        self.provider = provider
        self.similarity_threshold = similarity_threshold
        self.keyword_fallback_on_empty = keyword_fallback_on_empty
        self.fetch_multiplier = max(1, fetch_multiplier)
        self.strategies: List[Tuple[str, Callable]] = [
            ("semantic", self._semantic_search),
            ("keyword", self._keyword_search),
        ]
        self.last_strategy: Optional[str] = None

    def search(
        self,
        query: str,
        types: Optional[Iterable] = None,
        limit: int = 10,
        project_id: Optional[str] = None,
        use_semantic: bool = True,
    ) -> List[SearchResult]:
        """
        Rank stored items against a query.

        Args:
            query: Free-text query
            types: Restrict to these context types
            limit: Maximum results
            project_id: Restrict to one project
            use_semantic: Try vector search first (default: True)

        Returns:
            SearchResults, best first

        Raises:
            InvalidInputError: blank query or non-positive limit
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidInputError("Query is empty")
        if limit < 1:
            raise InvalidInputError(f"limit must be positive, got {limit}")

        wanted = {ContextType(t) for t in types} if types else None
        keywords = extract_keywords(query)
        self.last_strategy = None

        for name, strategy in self.strategies:
            if name == "semantic" and not use_semantic:
                continue
            results = strategy(query, keywords, wanted, limit, project_id)
            if results is None:
                continue
            if not results and name == "semantic" and self.keyword_fallback_on_empty:
                continue
            self.last_strategy = name
            return results

        return []

    # -- strategies ----------------------------------------------------------

    def _semantic_search(
        self,
        query: str,
        keywords: List[str],
        types: Optional[Set[ContextType]],
        limit: int,
        project_id: Optional[str],
    ) -> Optional[List[SearchResult]]:
        if self.provider is None or not self.store.vector_search_available:
            return None
        try:
            vector = self.provider.embed(query)
            hits = self.store.vector_search(vector, limit=limit * self.fetch_multiplier)
        except EmbeddingUnavailable as e:
            print(f"Warning: semantic search unavailable, using keyword search: {e}")
            return None
        except Exception as e:
            print(f"Warning: semantic search failed, using keyword search: {e}")
            return None

        titles: Dict[str, Optional[str]] = {}
        results = []
        for item, similarity in hits:
            if similarity < self.similarity_threshold:
                continue
            if types is not None and item.context_type not in types:
                continue
            if project_id is not None and item.project_id != project_id:
                continue
            results.append(self._result(item, similarity, keywords, titles))
            if len(results) >= limit:
                break
        return results

    def _keyword_search(
        self,
        query: str,
        keywords: List[str],
        types: Optional[Set[ContextType]],
        limit: int,
        project_id: Optional[str],
    ) -> List[SearchResult]:
        if not keywords:
            return []
        candidates = self.store.keyword_candidates(keywords, project_id=project_id, types=types)
        scored = [(item, keyword_score(item.content, keywords)) for item in candidates]
        scored = [(item, score) for item, score in scored if score > 0]
        scored.sort(key=lambda pair: (-pair[1], -pair[0].importance_score, -pair[0].timestamp.timestamp(), pair[0].id))

        titles: Dict[str, Optional[str]] = {}
        return [self._result(item, score, keywords, titles) for item, score in scored[:limit]]

    def _chat_title(self, chat_id: str, titles: Dict[str, Optional[str]]) -> Optional[str]:
        if chat_id not in titles:
            chat = self.store.get_chat(chat_id)
            titles[chat_id] = chat.title if chat else None
        return titles[chat_id]

    def _result(self, item: ContextItem, score: float, keywords: List[str], titles) -> SearchResult:
        return SearchResult(
            context=item,
            score=min(1.0, max(0.0, score)),
            chat_title=self._chat_title(item.chat_id, titles),
            highlights=highlights(item.content, keywords=keywords),
        )

    # -- graph queries -------------------------------------------------------

    def find_related(self, item_id: str, limit: int = 5) -> List[SearchResult]:
        """
        Items linked to `item_id`, ranked by edge type.

        Falls back to embedding nearest neighbours when the item has no
        graph neighbours. Unknown ids give an empty list.
        """
        item = self.store.get_item(item_id)
        if item is None:
            return []

        best: Dict[str, float] = {}
        for edge in self.store.get_relationships(item_id, types=NEIGHBOUR_TYPES):
            other = edge.to_id if edge.from_id == item_id else edge.from_id
            if other == item_id:
                continue
            if edge.type == RelationshipType.RELATED_TO:
                score = float(edge.properties.get("similarity", DEFAULT_NEIGHBOUR_SCORE))
            else:
                score = NEIGHBOUR_SCORES.get(edge.type, DEFAULT_NEIGHBOUR_SCORE)
            best[other] = max(score, best.get(other, 0.0))

        titles: Dict[str, Optional[str]] = {}
        if best:
            neighbours = [(n, best[n.id]) for n in self.store.get_items(best)]
            neighbours.sort(key=lambda pair: (-pair[1], -pair[0].importance_score, pair[0].id))
            return [
                SearchResult(context=n, score=min(1.0, max(0.0, s)), chat_title=self._chat_title(n.chat_id, titles))
                for n, s in neighbours[:limit]
            ]

        vector = item.embedding
        if vector is None:
            if self.provider is None:
                return []
            try:
                vector = self.provider.embed(item.display_text)
            except EmbeddingUnavailable as e:
                print(f"Warning: cannot embed {item_id} for related search: {e}")
                return []

        hits = self.store.similar_by_embedding(
            vector, limit=limit, threshold=self.similarity_threshold, exclude_id=item_id,
        )
        return [
            SearchResult(context=n, score=min(1.0, max(0.0, s)), chat_title=self._chat_title(n.chat_id, titles))
            for n, s in hits
        ]

    def get_evolution_chain(self, item_id: str, depth: int = 5) -> EvolutionChain:
        """
        Items connected to `item_id` through EVOLVES_TO edges (either
        direction) within `depth` hops, oldest first.
        """
        item = self.store.get_item(item_id)
        if item is None:
            return EvolutionChain()

        visited = {item_id}
        frontier = [item_id]
        edges: Dict[tuple, Relationship] = {}
        for _ in range(max(depth, 0)):
            next_frontier = []
            for node_id in frontier:
                for edge in self.store.get_relationships(node_id, types=[RelationshipType.EVOLVES_TO]):
                    edges.setdefault(edge.key, edge)
                    other = edge.to_id if edge.from_id == node_id else edge.from_id
                    if other not in visited:
                        visited.add(other)
                        next_frontier.append(other)
            if not next_frontier:
                break
            frontier = next_frontier

        if not edges:
            return EvolutionChain(items=[item])

        items = self.store.get_items(sorted(visited))
        items.sort(key=lambda i: (i.timestamp, i.id))
        ids = {i.id for i in items}
        chain_edges = [e for e in edges.values() if e.from_id in ids and e.to_id in ids]
        return EvolutionChain(items=items, relationships=chain_edges)

    @staticmethod
    def highlights(content: str, query: str) -> List[str]:
        """Up to 3 sentences of `content` that contain a query keyword."""
        return highlights(content, query=query)
