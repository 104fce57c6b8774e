"""Dict-backed context store."""

import copy
from typing import List, Optional, Iterable, Tuple, Dict

from ..embedders.base import cosine_similarity
from ..errors import NotFound
from ..types import Chat, ContextItem, ContextType, Relationship, RelationshipType
from .base import ContextStore


class InMemoryContextStore(ContextStore):
    """
    Keeps the whole graph in process memory.

    Stores copies, so callers mutating returned objects do not change
    stored state. Vector search is a brute-force cosine scan.
    """

    def __init__(self, vector_index: bool = True):
        self._chats: Dict[str, Chat] = {}
        self._items: Dict[str, ContextItem] = {}
        self._edges: Dict[tuple, Relationship] = {}
        self._vector_index = vector_index

    def upsert_chat(self, chat: Chat) -> None:
        self._chats[chat.id] = copy.deepcopy(chat)

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        chat = self._chats.get(chat_id)
        return copy.deepcopy(chat) if chat else None

    def list_chats(self, project_id: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Chat]:
        chats = [c for c in self._chats.values() if project_id is None or c.project_id == project_id]
        chats.sort(key=lambda c: c.updated_at, reverse=True)
        return [copy.deepcopy(c) for c in chats[offset:offset + limit]]

    def upsert_item(self, item: ContextItem) -> None:
        self._items[item.id] = copy.deepcopy(item)

    def get_item(self, item_id: str) -> Optional[ContextItem]:
        item = self._items.get(item_id)
        return copy.deepcopy(item) if item else None

    def iter_items(
        self,
        project_id: Optional[str] = None,
        types: Optional[Iterable[ContextType]] = None,
        chat_id: Optional[str] = None,
    ) -> List[ContextItem]:
        wanted = {ContextType(t) for t in types} if types else None
        return [
            copy.deepcopy(item) for item in self._items.values()
            if (project_id is None or item.project_id == project_id)
            and (chat_id is None or item.chat_id == chat_id)
            and (wanted is None or item.context_type in wanted)
        ]

    def _exists(self, node_id: str) -> bool:
        return node_id in self._items or node_id in self._chats

    def upsert_relationship(self, relationship: Relationship) -> None:
        for node_id in (relationship.from_id, relationship.to_id):
            if not self._exists(node_id):
                raise NotFound(f"Node not found: {node_id}")
        self._edges[relationship.key] = copy.deepcopy(relationship)

    def get_relationship(self, from_id: str, to_id: str, rel_type: RelationshipType) -> Optional[Relationship]:
        edge = self._edges.get((from_id, to_id, RelationshipType(rel_type)))
        return copy.deepcopy(edge) if edge else None

    def delete_relationship(self, from_id: str, to_id: str, rel_type: RelationshipType) -> None:
        key = (from_id, to_id, RelationshipType(rel_type))
        if key not in self._edges:
            raise NotFound(f"Relationship {from_id} -[{key[2].value}]-> {to_id} not found")
        del self._edges[key]

    def get_relationships(
        self,
        node_id: str,
        types: Optional[Iterable[RelationshipType]] = None,
        direction: str = "both",
    ) -> List[Relationship]:
        wanted = {RelationshipType(t) for t in types} if types else None
        edges = []
        for edge in self._edges.values():
            if wanted is not None and edge.type not in wanted:
                continue
            outgoing = edge.from_id == node_id and direction in ("out", "both")
            incoming = edge.to_id == node_id and direction in ("in", "both")
            if outgoing or incoming:
                edges.append(copy.deepcopy(edge))
        return edges

    def all_relationships(self, node_ids: Optional[Iterable[str]] = None) -> List[Relationship]:
        ids = set(node_ids) if node_ids is not None else None
        return [
            copy.deepcopy(e) for e in self._edges.values()
            if ids is None or (e.from_id in ids and e.to_id in ids)
        ]

    @property
    def vector_search_available(self) -> bool:
        return self._vector_index

    def vector_search(self, vector: List[float], limit: int = 10) -> List[Tuple[ContextItem, float]]:
        if not self._vector_index:
            raise NotImplementedError("Vector index disabled")
        embedded = [item for item in self._items.values() if item.embedding is not None]
        # items of another width are skipped, as the sqlite-vec index does
        matching = [item for item in embedded if len(item.embedding) == len(vector)]
        if embedded and not matching:
            raise ValueError(f"Query vector has {len(vector)} dims, no stored embedding matches")
        scored = [(item, cosine_similarity(vector, item.embedding)) for item in matching]
        scored.sort(key=lambda pair: -pair[1])
        return [(copy.deepcopy(item), score) for item, score in scored[:limit]]

    def count(self) -> Dict[str, int]:
        return {
            "chats": len(self._chats),
            "contexts": len(self._items),
            "relationships": len(self._edges),
        }
