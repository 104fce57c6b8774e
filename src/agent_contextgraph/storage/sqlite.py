"""SQLite graph store with a sqlite-vec KNN index."""

import json
import sqlite3
import struct
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Iterable, Tuple, Dict

from ..embedders.base import l2_normalize
from ..errors import NotFound, PersistenceUnavailable
from ..types import Chat, ContextItem, ContextType, Relationship, RelationshipType
from .base import ContextStore


def _serialize_vector(vector: List[float]) -> bytes:
    """Serialize vector to bytes for sqlite-vec."""
    return struct.pack(f"{len(vector)}f", *vector)


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


class SQLiteContextStore(ContextStore):
    """
    Stores chats, context items and edges in SQLite.

    Vectors go into a sqlite-vec `vec0` table keyed by rowid, with a map
    table back to item ids. Vectors are unit-normalized before insert so
    the L2 distance converts to cosine similarity (cos = 1 - d^2 / 2).
    When the extension cannot be loaded, or `vector_index=False`, the store
    still works and `vector_search_available` is False.

    Usage:
        store = SQLiteContextStore("./contextgraph.db", dimensions=384)
        store.upsert_item(item)
        store.vector_search(query_vector, limit=10)
    """

    def __init__(self, db_path: str, dimensions: int = 384, vector_index: bool = True):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database (":memory:" for a scratch DB)
            dimensions: Embedding width for the vector index
            vector_index: Try to load sqlite-vec (default: True)
        """
        self.db_path = str(db_path)
        self.dimensions = dimensions
        self._vec_enabled = False
        self._conn: Optional[sqlite3.Connection] = None

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceUnavailable(f"Cannot open {self.db_path}: {e}") from e
        # SQLite's own lower() and LIKE only fold ASCII
        self._conn.create_function("unicode_lower", 1, _unicode_lower, deterministic=True)

        self._setup_tables()
        if vector_index:
            self._vec_enabled = self._load_extension()
            if self._vec_enabled:
                self._setup_vector_tables()

    @contextmanager
    def _guard(self):
        """Translate sqlite3 failures into PersistenceUnavailable."""
        if self._conn is None:
            raise PersistenceUnavailable("Store is closed")
        try:
            yield self._conn.cursor()
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise PersistenceUnavailable(f"SQLite error: {e}") from e

    def _load_extension(self) -> bool:
        """Load sqlite-vec extension."""
        try:
            import sqlite_vec
            self._conn.enable_load_extension(True)
            sqlite_vec.load(self._conn)
            self._conn.enable_load_extension(False)
            return True
        except Exception as e:
            print(f"Warning: sqlite-vec unavailable, vector search disabled: {e}")
            return False

    def _setup_tables(self):
        with self._guard() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS chats (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    title TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    token_count INTEGER DEFAULT 0,
                    context_count INTEGER DEFAULT 0,
                    is_imported INTEGER DEFAULT 0
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS contexts (
                    id TEXT PRIMARY KEY,
                    chat_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    summary TEXT,
                    context_type TEXT NOT NULL,
                    importance_score REAL,
                    timestamp TEXT,
                    token_count INTEGER,
                    is_summarized INTEGER DEFAULT 0,
                    embedding TEXT,
                    metadata TEXT
                )
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_contexts_project ON contexts(project_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_contexts_chat ON contexts(chat_id)")
            cur.execute("""
                CREATE TABLE IF NOT EXISTS edges (
                    from_id TEXT NOT NULL,
                    to_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    properties TEXT,
                    PRIMARY KEY (from_id, to_id, type)
                )
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_edges_to ON edges(to_id)")

    def _setup_vector_tables(self):
        with self._guard() as cur:
            cur.execute(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS context_vectors
                USING vec0(embedding float[{self.dimensions}])
            """)
            # Mapping table (rowid in vec table -> context id)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS context_vec_map (
                    vec_rowid INTEGER PRIMARY KEY,
                    context_id TEXT UNIQUE
                )
            """)

    # -- chats -------------------------------------------------------------

    @staticmethod
    def _row_to_chat(row) -> Chat:
        return Chat(
            id=row[0],
            project_id=row[1],
            title=row[2],
            created_at=_parse_time(row[3]),
            updated_at=_parse_time(row[4]),
            token_count=row[5] or 0,
            context_count=row[6] or 0,
            is_imported=bool(row[7]),
        )

    def upsert_chat(self, chat: Chat) -> None:
        with self._guard() as cur:
            cur.execute("""
                INSERT OR REPLACE INTO chats
                (id, project_id, title, created_at, updated_at, token_count, context_count, is_imported)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                chat.id, chat.project_id, chat.title,
                chat.created_at.isoformat(), chat.updated_at.isoformat(),
                chat.token_count, chat.context_count, int(chat.is_imported),
            ))

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        with self._guard() as cur:
            cur.execute("SELECT * FROM chats WHERE id = ?", (chat_id,))
            row = cur.fetchone()
        return self._row_to_chat(row) if row else None

    def list_chats(self, project_id: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Chat]:
        sql = "SELECT * FROM chats"
        params: list = []
        if project_id is not None:
            sql += " WHERE project_id = ?"
            params.append(project_id)
        sql += " ORDER BY updated_at DESC, id LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._guard() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [self._row_to_chat(r) for r in rows]

    # -- items -------------------------------------------------------------

    _ITEM_COLUMNS = (
        "id, chat_id, project_id, content, summary, context_type, importance_score, "
        "timestamp, token_count, is_summarized, embedding, metadata"
    )

    @staticmethod
    def _row_to_item(row) -> ContextItem:
        return ContextItem(
            id=row[0],
            chat_id=row[1],
            project_id=row[2],
            content=row[3],
            summary=row[4],
            context_type=ContextType(row[5]),
            importance_score=row[6],
            timestamp=_parse_time(row[7]),
            token_count=row[8],
            is_summarized=bool(row[9]),
            embedding=json.loads(row[10]) if row[10] else None,
            metadata=json.loads(row[11]) if row[11] else {},
        )

    def upsert_item(self, item: ContextItem) -> None:
        with self._guard() as cur:
            cur.execute(f"""
                INSERT OR REPLACE INTO contexts ({self._ITEM_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                item.id, item.chat_id, item.project_id, item.content, item.summary,
                item.context_type.value, item.importance_score, item.timestamp.isoformat(),
                item.token_count, int(item.is_summarized),
                json.dumps(item.embedding) if item.embedding is not None else None,
                json.dumps(item.metadata),
            ))
            if self._vec_enabled:
                self._index_vector(cur, item)

    def _index_vector(self, cur, item: ContextItem) -> None:
        cur.execute("SELECT vec_rowid FROM context_vec_map WHERE context_id = ?", (item.id,))
        row = cur.fetchone()
        if row:
            cur.execute("DELETE FROM context_vectors WHERE rowid = ?", (row[0],))
            cur.execute("DELETE FROM context_vec_map WHERE context_id = ?", (item.id,))

        if item.embedding is None:
            return
        if len(item.embedding) != self.dimensions:
            print(f"Warning: {item.id} has {len(item.embedding)}-dim embedding, index expects {self.dimensions}; not indexed")
            return

        cur.execute(
            "INSERT INTO context_vectors (embedding) VALUES (?)",
            (_serialize_vector(l2_normalize(item.embedding)),),
        )
        cur.execute(
            "INSERT INTO context_vec_map (vec_rowid, context_id) VALUES (?, ?)",
            (cur.lastrowid, item.id),
        )

    def get_item(self, item_id: str) -> Optional[ContextItem]:
        with self._guard() as cur:
            cur.execute(f"SELECT {self._ITEM_COLUMNS} FROM contexts WHERE id = ?", (item_id,))
            row = cur.fetchone()
        return self._row_to_item(row) if row else None

    def iter_items(
        self,
        project_id: Optional[str] = None,
        types: Optional[Iterable[ContextType]] = None,
        chat_id: Optional[str] = None,
    ) -> List[ContextItem]:
        clauses = []
        params: list = []
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(project_id)
        if chat_id is not None:
            clauses.append("chat_id = ?")
            params.append(chat_id)
        if types:
            values = [ContextType(t).value for t in types]
            clauses.append(f"context_type IN ({','.join('?' * len(values))})")
            params.extend(values)

        sql = f"SELECT {self._ITEM_COLUMNS} FROM contexts"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp, id"
        with self._guard() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [self._row_to_item(r) for r in rows]

    def keyword_candidates(
        self,
        keywords: List[str],
        project_id: Optional[str] = None,
        types: Optional[Iterable[ContextType]] = None,
    ) -> List[ContextItem]:
        if not keywords:
            return []
        clauses = ["(" + " OR ".join("instr(unicode_lower(content), ?) > 0" for _ in keywords) + ")"]
        params: list = [k.lower() for k in keywords]
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(project_id)
        if types:
            values = [ContextType(t).value for t in types]
            clauses.append(f"context_type IN ({','.join('?' * len(values))})")
            params.extend(values)
        sql = f"SELECT {self._ITEM_COLUMNS} FROM contexts WHERE " + " AND ".join(clauses)
        with self._guard() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [self._row_to_item(r) for r in rows]

    # -- edges -------------------------------------------------------------

    def _node_exists(self, cur, node_id: str) -> bool:
        cur.execute(
            "SELECT 1 FROM contexts WHERE id = ? UNION SELECT 1 FROM chats WHERE id = ?",
            (node_id, node_id),
        )
        return cur.fetchone() is not None

    @staticmethod
    def _row_to_edge(row) -> Relationship:
        return Relationship(
            from_id=row[0],
            to_id=row[1],
            type=RelationshipType(row[2]),
            properties=json.loads(row[3]) if row[3] else {},
        )

    def upsert_relationship(self, relationship: Relationship) -> None:
        with self._guard() as cur:
            for node_id in (relationship.from_id, relationship.to_id):
                if not self._node_exists(cur, node_id):
                    raise NotFound(f"Node not found: {node_id}")
            cur.execute("""
                INSERT OR REPLACE INTO edges (from_id, to_id, type, properties)
                VALUES (?, ?, ?, ?)
            """, (
                relationship.from_id, relationship.to_id,
                relationship.type.value, json.dumps(relationship.properties),
            ))

    def get_relationship(self, from_id: str, to_id: str, rel_type: RelationshipType) -> Optional[Relationship]:
        with self._guard() as cur:
            cur.execute(
                "SELECT from_id, to_id, type, properties FROM edges WHERE from_id = ? AND to_id = ? AND type = ?",
                (from_id, to_id, RelationshipType(rel_type).value),
            )
            row = cur.fetchone()
        return self._row_to_edge(row) if row else None

    def delete_relationship(self, from_id: str, to_id: str, rel_type: RelationshipType) -> None:
        rel_type = RelationshipType(rel_type)
        with self._guard() as cur:
            cur.execute(
                "DELETE FROM edges WHERE from_id = ? AND to_id = ? AND type = ?",
                (from_id, to_id, rel_type.value),
            )
            deleted = cur.rowcount
        if not deleted:
            raise NotFound(f"Relationship {from_id} -[{rel_type.value}]-> {to_id} not found")

    def get_relationships(
        self,
        node_id: str,
        types: Optional[Iterable[RelationshipType]] = None,
        direction: str = "both",
    ) -> List[Relationship]:
        sides = []
        params: list = []
        if direction in ("out", "both"):
            sides.append("from_id = ?")
            params.append(node_id)
        if direction in ("in", "both"):
            sides.append("to_id = ?")
            params.append(node_id)
        if not sides:
            raise ValueError(f"Unknown direction: {direction}")

        sql = "SELECT from_id, to_id, type, properties FROM edges WHERE (" + " OR ".join(sides) + ")"
        if types:
            values = [RelationshipType(t).value for t in types]
            sql += f" AND type IN ({','.join('?' * len(values))})"
            params.extend(values)
        sql += " ORDER BY rowid"
        with self._guard() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [self._row_to_edge(r) for r in rows]

    def all_relationships(self, node_ids: Optional[Iterable[str]] = None) -> List[Relationship]:
        with self._guard() as cur:
            cur.execute("SELECT from_id, to_id, type, properties FROM edges ORDER BY rowid")
            rows = cur.fetchall()
        edges = [self._row_to_edge(r) for r in rows]
        if node_ids is None:
            return edges
        ids = set(node_ids)
        return [e for e in edges if e.from_id in ids and e.to_id in ids]

    # -- vectors -----------------------------------------------------------

    @property
    def vector_search_available(self) -> bool:
        return self._vec_enabled

    def vector_search(self, vector: List[float], limit: int = 10) -> List[Tuple[ContextItem, float]]:
        """KNN search via sqlite-vec. Scores are cosine similarities."""
        if not self._vec_enabled:
            raise NotImplementedError("sqlite-vec index unavailable")
        if len(vector) != self.dimensions:
            raise ValueError(f"Query vector has {len(vector)} dims, index expects {self.dimensions}")

        # vec0 requires k=? constraint, not LIMIT
        with self._guard() as cur:
            cur.execute(f"""
                SELECT {', '.join('c.' + col.strip() for col in self._ITEM_COLUMNS.split(','))},
                       v.distance
                FROM context_vectors v
                JOIN context_vec_map m ON v.rowid = m.vec_rowid
                JOIN contexts c ON m.context_id = c.id
                WHERE v.embedding MATCH ?
                  AND k = ?
                ORDER BY v.distance
            """, (_serialize_vector(l2_normalize(vector)), limit))
            rows = cur.fetchall()

        results = []
        for row in rows:
            distance = row[-1]
            similarity = 1.0 - (distance * distance) / 2.0
            results.append((self._row_to_item(row[:-1]), similarity))
        return results

    # -- misc --------------------------------------------------------------

    def count(self) -> Dict[str, int]:
        with self._guard() as cur:
            counts = {}
            for name, table in (("chats", "chats"), ("contexts", "contexts"), ("relationships", "edges")):
                cur.execute(f"SELECT COUNT(*) FROM {table}")
                counts[name] = cur.fetchone()[0]
        return counts

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
