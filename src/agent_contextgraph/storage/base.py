"""Persistence contract for the context graph."""

from abc import ABC, abstractmethod
from typing import List, Optional, Iterable, Tuple, Dict, Any

from ..embedders.base import cosine_similarity
from ..errors import NotFound
from ..types import Chat, ContextItem, ContextType, Relationship, RelationshipType


class ContextStore(ABC):
    """
    Graph-shaped storage for chats, context items and typed edges.

    Writes are upserts keyed by id (items, chats) or by
    (from_id, to_id, type) (edges), so retrying them is safe.

    Implementations:
    - SQLiteContextStore: SQLite tables + sqlite-vec KNN index
    - InMemoryContextStore: dicts, brute-force vector search (tests, scratch)

    Storage failures surface as PersistenceUnavailable.
    """

    # -- chats -------------------------------------------------------------

    @abstractmethod
    def upsert_chat(self, chat: Chat) -> None:
        """Create or replace a chat node."""
        pass

    @abstractmethod
    def get_chat(self, chat_id: str) -> Optional[Chat]:
        pass

    @abstractmethod
    def list_chats(self, project_id: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Chat]:
        """Chats, most recently updated first."""
        pass

    # -- items -------------------------------------------------------------

    @abstractmethod
    def upsert_item(self, item: ContextItem) -> None:
        """Create or replace a context item (including its embedding)."""
        pass

    @abstractmethod
    def get_item(self, item_id: str) -> Optional[ContextItem]:
        pass

    @abstractmethod
    def iter_items(
        self,
        project_id: Optional[str] = None,
        types: Optional[Iterable[ContextType]] = None,
        chat_id: Optional[str] = None,
    ) -> List[ContextItem]:
        """All items matching the filters."""
        pass

    def get_items(self, item_ids: Iterable[str]) -> List[ContextItem]:
        items = []
        for item_id in item_ids:
            item = self.get_item(item_id)
            if item is not None:
                items.append(item)
        return items

    def keyword_candidates(
        self,
        keywords: List[str],
        project_id: Optional[str] = None,
        types: Optional[Iterable[ContextType]] = None,
    ) -> List[ContextItem]:
        """Items whose content contains any keyword, case-insensitively."""
        lowered = [k.lower() for k in keywords]
        return [
            item for item in self.iter_items(project_id=project_id, types=types)
            if any(k in item.content.lower() for k in lowered)
        ]

    def refresh_chat_stats(self, chat_id: str) -> Optional[Chat]:
        """Recompute a chat's item count and token total from its items."""
        chat = self.get_chat(chat_id)
        if chat is None:
            return None
        items = self.iter_items(chat_id=chat_id)
        chat.context_count = len(items)
        chat.token_count = sum(i.token_count for i in items)
        self.upsert_chat(chat)
        return chat

    # -- edges -------------------------------------------------------------

    @abstractmethod
    def upsert_relationship(self, relationship: Relationship) -> None:
        """
        Create or replace an edge.

        Raises:
            NotFound: either endpoint is neither an item nor a chat
        """
        pass

    @abstractmethod
    def get_relationship(self, from_id: str, to_id: str, rel_type: RelationshipType) -> Optional[Relationship]:
        pass

    @abstractmethod
    def delete_relationship(self, from_id: str, to_id: str, rel_type: RelationshipType) -> None:
        """
        Raises:
            NotFound: no such edge
        """
        pass

    @abstractmethod
    def get_relationships(
        self,
        node_id: str,
        types: Optional[Iterable[RelationshipType]] = None,
        direction: str = "both",
    ) -> List[Relationship]:
        """Edges touching a node. direction: "out", "in" or "both"."""
        pass

    @abstractmethod
    def all_relationships(self, node_ids: Optional[Iterable[str]] = None) -> List[Relationship]:
        """Every edge, or only edges with both endpoints in `node_ids`."""
        pass

    def update_relationship(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        properties: Dict[str, Any],
    ) -> Relationship:
        """
        Merge properties into an existing edge.

        Raises:
            NotFound: no such edge
        """
        existing = self.get_relationship(from_id, to_id, rel_type)
        if existing is None:
            raise NotFound(f"Relationship {from_id} -[{RelationshipType(rel_type).value}]-> {to_id} not found")
        existing.properties.update(properties or {})
        self.upsert_relationship(existing)
        return existing

    # -- vectors -----------------------------------------------------------

    @property
    def vector_search_available(self) -> bool:
        """Whether `vector_search` is backed by an index."""
        return False

    def vector_search(self, vector: List[float], limit: int = 10) -> List[Tuple[ContextItem, float]]:
        """
        Nearest items by cosine similarity, best first.

        Only meaningful when `vector_search_available`.
        """
        raise NotImplementedError(f"{type(self).__name__} has no vector index")

    def similar_by_embedding(
        self,
        vector: List[float],
        limit: int = 10,
        threshold: float = 0.0,
        exclude_id: Optional[str] = None,
    ) -> List[Tuple[ContextItem, float]]:
        """Brute-force cosine scan over stored embeddings."""
        scored = []
        for item in self.iter_items():
            if item.embedding is None or item.id == exclude_id:
                continue
            if len(item.embedding) != len(vector):
                continue
            score = cosine_similarity(vector, item.embedding)
            if score >= threshold:
                scored.append((item, score))
        scored.sort(key=lambda pair: -pair[1])
        return scored[:limit]

    # -- misc --------------------------------------------------------------

    @abstractmethod
    def count(self) -> Dict[str, int]:
        """Counts of chats, items and edges."""
        pass

    def close(self) -> None:
        """Cleanup resources. Override if needed."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
