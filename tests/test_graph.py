"""Tests for the ContextGraph facade and configuration."""

import json
import tempfile
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent_contextgraph import ContextGraph, Config
from agent_contextgraph.config import SearchConfig, InjectionConfig
from agent_contextgraph.embedders import HashEmbedder
from agent_contextgraph.errors import InvalidInputError, NotFound
from agent_contextgraph.graph import export_to_transcript
from agent_contextgraph.storage import InMemoryContextStore
from agent_contextgraph.types import ContextType, RelationshipType


TRANSCRIPT = """## USER
Which database fits?

## ASSISTANT
```python
def connect():
    conn = db.open()
    return conn
```

We decided to use PostgreSQL for storage.
"""


@pytest.fixture
def graph():
    config = Config(db_path=":memory:", tokenizer="estimate")
    g = ContextGraph(config, store=InMemoryContextStore(), embedder=HashEmbedder())
    yield g
    g.close()


def ids_by_type(graph, context_type):
    return [i.id for i in graph.store.iter_items(types=[context_type])]


class TestConfig:

    def test_default_config(self):
        config = Config.default(".")
        assert config.db_path.endswith("contextgraph.db")
        assert isinstance(config.search, SearchConfig)
        assert config.resolved_log_path.endswith("logs")

    def test_from_dict(self):
        config = Config.from_dict({
            "db_path": "./test.db",
            "search": {"similarity_threshold": 0.5, "unknown_key": 1},
            "injection": {"max_tokens": 800},
        })
        assert config.db_path == "./test.db"
        assert config.search.similarity_threshold == 0.5
        assert config.injection.max_tokens == 800
        assert isinstance(config.injection, InjectionConfig)

    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            for name in ("config.yaml", "config.json"):
                path = f"{tmpdir}/{name}"
                config = Config(db_path="./x.db", tokenizer="estimate")
                config.embedding.dimensions = 64
                config.save(path)
                loaded = Config.load(path)
                assert loaded.db_path == "./x.db"
                assert loaded.tokenizer == "estimate"
                assert loaded.embedding.dimensions == 64

    def test_load_missing(self):
        with pytest.raises(FileNotFoundError):
            Config.load("/nonexistent/contextgraph.yaml")


class TestExtractContext:

    def test_extract_persists(self, graph):
        summary = graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        assert summary.contexts_extracted == 2
        assert summary.by_type == {"code": 1, "decision": 1}
        assert graph.store.count()["contexts"] == 2

        chat = graph.store.get_chat("chat-1")
        assert chat.context_count == 2
        assert chat.token_count == summary.total_tokens
        assert chat.title.startswith("Chat ")
        assert not chat.is_imported

        for item_id in summary.context_ids:
            item = graph.store.get_item(item_id)
            assert item.embedding is not None
            assert graph.store.get_relationship(item_id, "chat-1", RelationshipType.BELONGS_TO)

    def test_second_extract_updates_chat(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        graph.extract_context("We decided to use Redis for caching sessions.", chat_id="chat-1",
                              project_id="proj", chat_title="Storage decisions")
        chat = graph.store.get_chat("chat-1")
        assert chat.title == "Storage decisions"
        assert chat.context_count == 3

    def test_max_items(self, graph):
        summary = graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj", max_items=1)
        assert summary.by_type == {"decision": 1}

    @pytest.mark.parametrize("max_items", [0, -1])
    def test_bad_max_items(self, graph, max_items):
        with pytest.raises(InvalidInputError):
            graph.extract_context(TRANSCRIPT, chat_id="c", project_id="p", max_items=max_items)

    def test_empty_transcript(self, graph):
        with pytest.raises(InvalidInputError):
            graph.extract_context("  ", chat_id="c", project_id="p")


class TestImport:

    EXPORT = {
        "id": "exported-1",
        "title": "Design review",
        "messages": [
            {"role": "system", "content": "You are helpful."},
            {"role": "user", "content": "Where do sessions live?"},
            {"role": "assistant", "content": "We decided to use Redis for session storage."},
        ],
    }

    def test_export_to_transcript(self):
        parsed = export_to_transcript(json.dumps(self.EXPORT))
        assert parsed["id"] == "exported-1"
        assert parsed["messages"] == 2
        assert parsed["transcript"].startswith("## USER\nWhere do sessions live?")
        assert "You are helpful" not in parsed["transcript"]

    @pytest.mark.parametrize("export", ["not json", {"messages": "nope"}, {"messages": []}])
    def test_bad_exports(self, export):
        with pytest.raises(InvalidInputError):
            export_to_transcript(export)

    def test_import_creates_chat(self, graph):
        summary = graph.import_export(self.EXPORT, project_id="proj")
        assert summary.chat_id == "exported-1"
        assert summary.by_type == {"decision": 1}
        chat = graph.store.get_chat("exported-1")
        assert chat.title == "Design review"
        assert chat.is_imported

    def test_import_without_id(self, graph):
        export = {"messages": self.EXPORT["messages"]}
        summary = graph.import_export(export, project_id="proj")
        assert summary.chat_id.startswith("import_")
        assert graph.store.get_chat(summary.chat_id).title == "Imported Chat"


class TestRetrieval:

    def test_search_by_type(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        results = graph.search_context("PostgreSQL storage", types=["decision"])
        assert [r.context.context_type for r in results] == [ContextType.DECISION]

    def test_keyword_only_search(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        results = graph.search_context("PostgreSQL", use_semantic=False)
        assert graph.search.last_strategy == "keyword"
        assert results[0].context.context_type == ContextType.DECISION

    def test_unknown_type(self, graph):
        with pytest.raises(InvalidInputError):
            graph.search_context("anything", types=["bogus"])

    def test_default_limit_from_config(self):
        config = Config(db_path=":memory:", tokenizer="estimate")
        config.search.default_limit = 1
        with ContextGraph(config, store=InMemoryContextStore(), embedder=HashEmbedder()) as g:
            g.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
            assert len(g.search_context("storage connect", use_semantic=False)) == 1
            assert len(g.search_context("storage connect", use_semantic=False, limit=2)) == 2

    def test_evolution_depth_bounds(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        item_id = ids_by_type(graph, ContextType.CODE)[0]
        assert [i.id for i in graph.get_evolution_chain(item_id, depth=10).items] == [item_id]
        with pytest.raises(InvalidInputError):
            graph.get_evolution_chain(item_id, depth=11)

    def test_find_related(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        code_id = ids_by_type(graph, ContextType.CODE)[0]
        decision_id = ids_by_type(graph, ContextType.DECISION)[0]
        graph.manage_relationship(code_id, decision_id, "IMPLEMENTS")
        assert decision_id in [r.context.id for r in graph.find_related(code_id)]

    def test_inject(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        response = graph.inject_context("PostgreSQL storage", max_tokens=200)
        assert response.text.startswith('## Relevant Context for: "PostgreSQL storage"')
        assert 0 < response.tokens_used <= 200
        assert response.strategy in ("standard", "token_limit_reached")

    def test_inject_invalid(self, graph):
        with pytest.raises(InvalidInputError):
            graph.inject_context("q", format="verbose")
        with pytest.raises(InvalidInputError):
            graph.inject_context("q", max_tokens=0)

    def test_inject_empty_graph(self, graph):
        response = graph.inject_context("anything at all")
        assert response.strategy == "no_results"
        assert response.tokens_used == 0


class TestManageRelationship:

    @pytest.fixture
    def ids(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        return ids_by_type(graph, ContextType.CODE)[0], ids_by_type(graph, ContextType.DECISION)[0]

    def test_create_update_delete(self, graph, ids):
        code_id, decision_id = ids
        created = graph.manage_relationship(code_id, decision_id, "depends_on", properties={"note": "x"})
        assert created.type == RelationshipType.DEPENDS_ON
        assert created.properties == {"note": "x", "manual": True}

        updated = graph.manage_relationship(code_id, decision_id, "DEPENDS_ON", action="update",
                                            properties={"note": "y"})
        assert updated.properties["note"] == "y"
        assert updated.properties["manual"] is True

        assert graph.manage_relationship(code_id, decision_id, "DEPENDS_ON", action="delete") is None
        with pytest.raises(NotFound):
            graph.manage_relationship(code_id, decision_id, "DEPENDS_ON", action="delete")

    def test_related_needs_similarity(self, graph, ids):
        code_id, decision_id = ids
        with pytest.raises(InvalidInputError):
            graph.manage_relationship(code_id, decision_id, "RELATED_TO")
        with pytest.raises(InvalidInputError):
            graph.manage_relationship(code_id, decision_id, "RELATED_TO", properties={"similarity": 1.5})
        rel = graph.manage_relationship(code_id, decision_id, "RELATED_TO", properties={"similarity": 0.8})
        assert rel.properties["similarity"] == 0.8

    def test_rejections(self, graph, ids):
        code_id, decision_id = ids
        with pytest.raises(InvalidInputError):
            graph.manage_relationship(code_id, code_id, "REFERENCES")
        with pytest.raises(InvalidInputError):
            graph.manage_relationship(code_id, decision_id, "LIKES")
        with pytest.raises(InvalidInputError):
            graph.manage_relationship(code_id, decision_id, "REFERENCES", action="merge")
        with pytest.raises(NotFound):
            graph.manage_relationship(code_id, "ghost", "REFERENCES")
        with pytest.raises(NotFound):
            graph.manage_relationship(code_id, decision_id, "EVOLVES_TO", action="update")


class TestManagement:

    def test_list_chats(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        graph.extract_context(TRANSCRIPT, chat_id="chat-2", project_id="other")
        assert {c.id for c in graph.list_chats()} == {"chat-1", "chat-2"}
        assert [c.id for c in graph.list_chats(project_id="other")] == ["chat-2"]

    @pytest.mark.parametrize("limit,offset", [(0, 0), (51, 0), (10, -1)])
    def test_list_chats_bounds(self, graph, limit, offset):
        with pytest.raises(InvalidInputError):
            graph.list_chats(limit=limit, offset=offset)

    def test_visualize_mermaid(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        viz = graph.visualize_graph(project_id="proj")
        assert viz.content.startswith("graph TD")
        assert viz.nodes == 3
        assert "BELONGS_TO" in viz.content

    def test_visualize_json_and_dot(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        data = json.loads(graph.visualize_graph(chat_id="chat-1", format="json").content)
        assert {n["kind"] for n in data["nodes"]} == {"chat", "code", "decision"}
        assert graph.visualize_graph(format="graphviz").content.startswith("digraph ContextGraph {")

    def test_visualize_bounds(self, graph):
        with pytest.raises(InvalidInputError):
            graph.visualize_graph(depth=4)
        with pytest.raises(InvalidInputError):
            graph.visualize_graph(format="svg")

    def test_stats(self, graph):
        graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
        stats = graph.stats()
        assert stats["contexts"] == 2
        assert stats["chats"] == 1
        assert stats["tokenizer"] == "estimate"
        assert stats["embedder"] == "hash-384"


def test_sqlite_graph_with_logs():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = Config(db_path=f"{tmpdir}/cg.db", tokenizer="estimate")
        config.search.vector_index = False
        with ContextGraph(config) as graph:
            graph.extract_context(TRANSCRIPT, chat_id="chat-1", project_id="proj")
            results = graph.search_context("PostgreSQL")
            assert results[0].context.context_type == ContextType.DECISION
            assert graph.search.last_strategy == "keyword"
            assert graph.stats()["extractions_24h"]["contexts_extracted"] == 2

        assert (Path(tmpdir) / "logs" / "extraction.jsonl").exists()
        assert (Path(tmpdir) / "logs" / "search.jsonl").exists()

        with ContextGraph(config) as reopened:
            assert reopened.store.count()["contexts"] == 2
