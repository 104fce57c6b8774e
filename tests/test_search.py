"""Tests for hybrid search and graph traversals."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent_contextgraph.embedders import Embedder, EmbeddingProvider, HashEmbedder
from agent_contextgraph.errors import InvalidInputError
from agent_contextgraph.search import HybridSearch
from agent_contextgraph.search.keywords import extract_keywords, keyword_score, highlights
from agent_contextgraph.storage import InMemoryContextStore
from agent_contextgraph.types import Chat, ContextItem, ContextType, Relationship, RelationshipType

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FailingEmbedder(Embedder):
    model_name = "failing"

    @property
    def dimensions(self) -> int:
        return 384

    def embed(self, text: str) -> List[float]:
        raise RuntimeError("model offline")


def make_item(item_id, content, context_type=ContextType.DISCUSSION, importance=0.5, offset=0,
              project_id="proj"):
    return ContextItem(
        id=item_id,
        chat_id="chat-1",
        project_id=project_id,
        content=content,
        context_type=context_type,
        token_count=len(content) // 4,
        importance_score=importance,
        timestamp=T0 + timedelta(minutes=offset),
    )


def build_store(items, embedder=None):
    store = InMemoryContextStore()
    store.upsert_chat(Chat(id="chat-1", project_id="proj", title="Auth work"))
    for item in items:
        if embedder is not None:
            item.embedding = embedder.embed(item.content)
        store.upsert_item(item)
    return store


CORPUS = [
    make_item("err", "AuthError: token expired during authentication.", ContextType.ERROR, importance=0.9),
    make_item("talk", "The marketing site moves to a static host next quarter.", offset=1),
    make_item("code", "def refresh(token):\n    return issue(token)", ContextType.CODE, importance=0.7, offset=2),
]


class TestKeywords:

    def test_extract_keywords(self):
        assert extract_keywords("The authentication bug, and the AUTH bug!") == ["authentication", "bug", "auth"]

    def test_keyword_score(self):
        assert keyword_score("auth bug here", ["auth", "bug", "token", "db"]) == 0.5
        assert keyword_score("anything", []) == 0.0

    def test_highlights(self):
        content = "Tokens expire hourly. The UI is blue. Refresh tokens last a week! Logs rotate."
        assert highlights(content, query="token refresh") == ["Tokens expire hourly", "Refresh tokens last a week"]
        assert highlights(content, query="a an") == []

    def test_highlights_capped(self):
        content = "auth one. auth two. auth three. auth four."
        assert len(highlights(content, keywords=["auth"])) == 3


class TestHybridSearch:

    def test_semantic_failure_falls_back_to_keyword(self, capsys):
        store = build_store([make_item(i.id, i.content, i.context_type, i.importance_score) for i in CORPUS])
        search = HybridSearch(store, EmbeddingProvider(FailingEmbedder()))
        results = search.search("authentication bug")
        assert search.last_strategy == "keyword"
        assert [r.context.id for r in results] == ["err"]
        assert results[0].score > 0
        assert results[0].chat_title == "Auth work"
        assert "Warning" in capsys.readouterr().out

    def test_no_index_uses_keyword(self):
        store = InMemoryContextStore(vector_index=False)
        store.upsert_item(make_item("err", "AuthError: token expired during authentication."))
        search = HybridSearch(store, EmbeddingProvider(HashEmbedder()))
        assert [r.context.id for r in search.search("token")] == ["err"]
        assert search.last_strategy == "keyword"

    def test_semantic_hit(self):
        embedder = HashEmbedder()
        store = build_store([make_item(i.id, i.content, i.context_type) for i in CORPUS], embedder)
        search = HybridSearch(store, EmbeddingProvider(embedder))
        results = search.search("The marketing site moves to a static host next quarter.")
        assert search.last_strategy == "semantic"
        assert results[0].context.id == "talk"
        assert results[0].score == pytest.approx(1.0, abs=1e-6)

    def test_empty_semantic_falls_back(self):
        embedder = HashEmbedder()
        store = build_store([make_item(i.id, i.content, i.context_type) for i in CORPUS], embedder)
        search = HybridSearch(store, EmbeddingProvider(embedder), similarity_threshold=0.999)
        results = search.search("static host")
        assert search.last_strategy == "keyword"
        assert [r.context.id for r in results] == ["talk"]

    def test_empty_semantic_without_fallback(self):
        embedder = HashEmbedder()
        store = build_store([make_item(i.id, i.content, i.context_type) for i in CORPUS], embedder)
        search = HybridSearch(store, EmbeddingProvider(embedder), similarity_threshold=0.999,
                              keyword_fallback_on_empty=False)
        assert search.search("static host") == []
        assert search.last_strategy == "semantic"

    def test_matching_outranks_non_matching(self):
        store = build_store([
            make_item("one", "token rotation happens nightly", offset=0),
            make_item("both", "token refresh keeps sessions alive", offset=1),
            make_item("none", "unrelated notes about lunch", offset=2),
        ])
        search = HybridSearch(store)
        results = search.search("token refresh")
        assert [r.context.id for r in results] == ["both", "one"]
        assert results[0].score == 1.0
        assert results[1].score == 0.5

    def test_ties_broken_by_importance(self):
        store = build_store([
            make_item("low", "token notes", importance=0.3),
            make_item("high", "token notes", importance=0.9),
        ])
        results = HybridSearch(store).search("token")
        assert [r.context.id for r in results] == ["high", "low"]

    def test_type_and_project_filters(self):
        store = build_store([
            make_item("err", "token expired", ContextType.ERROR),
            make_item("code", "token = issue()", ContextType.CODE),
            make_item("elsewhere", "token elsewhere", ContextType.ERROR, project_id="other"),
        ])
        search = HybridSearch(store)
        assert [r.context.id for r in search.search("token", types=[ContextType.CODE])] == ["code"]
        assert {r.context.id for r in search.search("token", project_id="proj")} == {"err", "code"}

    def test_limit(self):
        store = build_store([make_item(f"i{n}", f"token {n}", offset=n) for n in range(5)])
        assert len(HybridSearch(store).search("token", limit=2)) == 2

    @pytest.mark.parametrize("query,limit", [("", 5), ("   ", 5), ("token", 0)])
    def test_invalid(self, query, limit):
        with pytest.raises(InvalidInputError):
            HybridSearch(InMemoryContextStore()).search(query, limit=limit)

    def test_stopword_only_query(self):
        store = build_store([make_item("a", "the and of")])
        assert HybridSearch(store).search("the and of") == []


class TestGraphQueries:

    @pytest.fixture
    def graph_store(self):
        store = build_store([
            make_item("a", "first draft", offset=0),
            make_item("b", "second draft", offset=1),
            make_item("c", "third draft", offset=2),
            make_item("d", "a reference", offset=3),
            make_item("e", "similar one", offset=4),
            make_item("lonely", "nothing links here", offset=5),
        ])
        store.upsert_relationship(Relationship("a", "b", RelationshipType.EVOLVES_TO, {"time_delta": 60000}))
        store.upsert_relationship(Relationship("b", "c", RelationshipType.EVOLVES_TO, {"time_delta": 60000}))
        store.upsert_relationship(Relationship("d", "b", RelationshipType.REFERENCES))
        store.upsert_relationship(Relationship("b", "e", RelationshipType.RELATED_TO, {"similarity": 0.75}))
        store.upsert_relationship(Relationship("b", "chat-1", RelationshipType.BELONGS_TO))
        return store

    def test_find_related_ranked_by_edge(self, graph_store):
        results = HybridSearch(graph_store).find_related("b", limit=10)
        assert [(r.context.id, r.score) for r in results] == [
            ("a", 0.9), ("c", 0.9), ("d", 0.8), ("e", 0.75),
        ]

    def test_find_related_limit(self, graph_store):
        assert len(HybridSearch(graph_store).find_related("b", limit=2)) == 2

    def test_find_related_unknown(self, graph_store):
        assert HybridSearch(graph_store).find_related("ghost") == []

    def test_find_related_embedding_fallback(self):
        embedder = HashEmbedder()
        store = build_store([
            make_item("q", "redis session cache", offset=0),
            make_item("near", "redis session cache layer", offset=1),
            make_item("far", "quarterly marketing budget", offset=2),
        ], embedder)
        search = HybridSearch(store, EmbeddingProvider(embedder), similarity_threshold=0.5)
        results = search.find_related("q")
        assert results[0].context.id == "near"
        assert "q" not in [r.context.id for r in results]

    def test_evolution_chain(self, graph_store):
        chain = HybridSearch(graph_store).get_evolution_chain("b")
        assert [i.id for i in chain.items] == ["a", "b", "c"]
        assert chain.total_evolutions == 2

    def test_evolution_chain_depth(self, graph_store):
        chain = HybridSearch(graph_store).get_evolution_chain("a", depth=1)
        assert [i.id for i in chain.items] == ["a", "b"]
        assert chain.total_evolutions == 1

    def test_evolution_chain_singleton(self, graph_store):
        chain = HybridSearch(graph_store).get_evolution_chain("lonely")
        assert [i.id for i in chain.items] == ["lonely"]
        assert chain.total_evolutions == 0

    def test_evolution_chain_unknown(self, graph_store):
        assert HybridSearch(graph_store).get_evolution_chain("ghost").items == []
