"""Tests for token-budgeted context injection."""

import math
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent_contextgraph.errors import InvalidInputError
from agent_contextgraph.injection import ContextInjector, FORMAT_LADDERS
from agent_contextgraph.injection.formatter import condensed_text, reference_line, render_markdown
from agent_contextgraph.search import HybridSearch
from agent_contextgraph.storage import InMemoryContextStore
from agent_contextgraph.tokens import TokenCounter
from agent_contextgraph.types import Chat, ContextItem, ContextType, SearchResult

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
OLD = NOW - timedelta(days=365)


def make_item(item_id, content, context_type=ContextType.DISCUSSION, importance=0.5,
              timestamp=NOW, summary=None):
    return ContextItem(
        id=item_id,
        chat_id="chat-1",
        project_id="proj",
        content=content,
        context_type=context_type,
        token_count=math.ceil(len(content) / 4),
        importance_score=importance,
        timestamp=timestamp,
        summary=summary,
    )


def result(item, score=0.5, title="Planning"):
    return SearchResult(context=item, score=score, chat_title=title)


@pytest.fixture
def injector():
    return ContextInjector(HybridSearch(InMemoryContextStore()), token_counter=TokenCounter("estimate"))


class TestPriority:

    def test_priority_formula(self, injector):
        item = make_item("d", "x", ContextType.DECISION, importance=0.8)
        assert injector.priority(result(item, score=0.6), NOW) == pytest.approx(0.3 + 0.2 + 0.24)

    def test_recency_decay(self, injector):
        assert injector.recency(NOW, NOW) == pytest.approx(1.0)
        assert injector.recency(NOW - timedelta(days=30), NOW) == pytest.approx(math.exp(-1))
        assert injector.recency(NOW + timedelta(days=1), NOW) == pytest.approx(1.0)

    def test_type_multiplier(self, injector):
        error = make_item("e", "x", ContextType.ERROR, importance=0.5)
        talk = make_item("t", "x", ContextType.DISCUSSION, importance=0.5)
        assert injector.priority(result(error), NOW) > injector.priority(result(talk), NOW)

    def test_rank_is_stable(self, injector):
        a = make_item("a", "same")
        b = make_item("b", "same")
        ranked = injector.rank([result(a), result(b)], NOW)
        assert [r.context.id for r, _ in ranked] == ["a", "b"]


class TestSelection:

    def test_summary_when_full_does_not_fit(self, injector):
        item = make_item("big", "word " * 120, summary="s" * 160)
        assert item.token_count == 150
        selection = injector.select("q", [result(item)], max_tokens=100, now=NOW)
        assert [e.format for e in selection.entries] == ["summary"]
        assert selection.total_tokens == 40
        assert selection.strategy == "standard"

    def test_reference_when_summary_does_not_fit(self, injector):
        item = make_item("big", "word " * 120, summary="s" * 400)
        selection = injector.select("q", [result(item)], max_tokens=60, now=NOW)
        assert [e.format for e in selection.entries] == ["reference"]
        assert selection.entries[0].text.startswith('[discussion] "Planning" (big):')
        assert selection.total_tokens <= 60

    def test_preferred_format_limits_ladder(self, injector):
        item = make_item("small", "Going with nightly batch exports.")
        selection = injector.select("q", [result(item)], max_tokens=1000, format="summary", now=NOW)
        assert selection.entries[0].format == "summary"
        selection = injector.select("q", [result(item)], max_tokens=1000, format="reference", now=NOW)
        assert selection.entries[0].format == "reference"

    def test_no_results(self, injector):
        selection = injector.select("q", [], max_tokens=100)
        assert selection.strategy == "no_results"
        assert selection.entries == []
        assert "No relevant context found" in injector.format(selection)

    def test_forced_summary(self, injector):
        item = make_item("big", "word " * 120, summary="short text")
        selection = injector.select("q", [result(item)], max_tokens=10, format="reference", now=NOW)
        assert selection.strategy == "forced_summary"
        assert selection.entries[0].format == "summary"
        assert selection.entries[0].text == "short text"
        assert selection.total_tokens <= 10

    def test_token_limit_reached(self, injector):
        a = make_item("a", "a" * 120)
        b = make_item("b", "b" * 120)
        selection = injector.select("q", [result(a, 0.6), result(b, 0.5)], max_tokens=40, now=NOW)
        assert [e.context.id for e in selection.entries] == ["a"]
        assert selection.strategy == "token_limit_reached"

    def test_regular_items_stop_near_budget(self, injector):
        big = make_item("big", "a" * 380, timestamp=OLD)
        tiny = make_item("tiny", "tiny note", timestamp=OLD)
        selection = injector.select("q", [result(big, 0.3), result(tiny, 0.2)], max_tokens=100, now=NOW)
        assert [e.context.id for e in selection.entries] == ["big"]
        assert selection.total_tokens == 95
        assert selection.strategy == "token_limit_reached"

    def test_critical_items_ignore_soft_stop(self, injector):
        big = make_item("big", "a" * 380, ContextType.ERROR, importance=1.0)
        tiny = make_item("tiny", "tiny note", ContextType.ERROR, importance=1.0)
        selection = injector.select("q", [result(big, 1.0), result(tiny, 0.9)], max_tokens=100, now=NOW)
        assert [e.context.id for e in selection.entries] == ["big", "tiny"]
        assert selection.total_tokens <= 100

    @pytest.mark.parametrize("budget", [1, 5, 20, 50, 100, 250, 1000])
    def test_budget_never_exceeded(self, injector, budget):
        candidates = [
            result(make_item(f"i{n}", "word " * (10 * n + 1), importance=0.1 * n, timestamp=NOW - timedelta(days=n)),
                   score=1.0 - 0.1 * n)
            for n in range(8)
        ]
        selection = injector.select("q", candidates, max_tokens=budget, now=NOW)
        assert selection.total_tokens <= budget
        assert selection.total_tokens == sum(e.tokens for e in selection.entries)
        for entry in selection.entries:
            assert entry.tokens == injector.tokens.count(entry.text)

    def test_deterministic(self, injector):
        candidates = [result(make_item(f"i{n}", "word " * (20 * n + 1)), score=0.5) for n in range(5)]
        first = injector.select("q", candidates, max_tokens=120, now=NOW)
        second = injector.select("q", candidates, max_tokens=120, now=NOW)
        assert [(e.context.id, e.format) for e in first.entries] == [(e.context.id, e.format) for e in second.entries]


class TestPrepare:

    def test_prepare_uses_search(self):
        store = InMemoryContextStore()
        store.upsert_chat(Chat(id="chat-1", project_id="proj", title="Storage"))
        store.upsert_item(make_item("db", "We use PostgreSQL for storage.", ContextType.DECISION, importance=0.8))
        store.upsert_item(make_item("ui", "Buttons are blue."))
        injector = ContextInjector(HybridSearch(store), token_counter=TokenCounter("estimate"))
        selection = injector.prepare("postgresql storage", max_tokens=500, now=NOW)
        assert [e.context.id for e in selection.entries] == ["db"]
        assert selection.entries[0].chat_title == "Storage"
        assert selection.strategy == "standard"

    @pytest.mark.parametrize("max_tokens,fmt", [(0, "full"), (-5, "full"), (100, "bogus")])
    def test_invalid(self, injector, max_tokens, fmt):
        with pytest.raises(InvalidInputError):
            injector.prepare("query", max_tokens, format=fmt)


class TestFormatting:

    def test_ladders(self):
        assert FORMAT_LADDERS["full"] == ["full", "summary", "reference"]
        assert FORMAT_LADDERS["reference"] == ["reference"]

    def test_short_item_skips_rungs_that_save_nothing(self, injector):
        item = make_item("small", "Going with nightly batch exports.")
        rungs = injector.rungs(result(item), FORMAT_LADDERS["full"])
        assert [(fmt, tokens) for fmt, _, tokens in rungs] == [("full", 9)]

    def test_long_item_keeps_every_rung(self, injector):
        item = make_item("big", "word " * 120, summary="s" * 160)
        rungs = injector.rungs(result(item), FORMAT_LADDERS["full"])
        assert [fmt for fmt, _, _ in rungs] == ["full", "summary", "reference"]
        assert [tokens for _, _, tokens in rungs][:2] == [150, 40]

    def test_preferred_summary_kept_for_short_item(self, injector):
        item = make_item("small", "Going with nightly batch exports.")
        rungs = injector.rungs(result(item), FORMAT_LADDERS["summary"])
        assert rungs[0][0] == "summary"

    def test_condensed_code_keeps_head_and_tail(self):
        code = "\n".join(f"line {n}" for n in range(30))
        text = condensed_text(make_item("c", code, ContextType.CODE))
        assert text.startswith("line 0\n")
        assert "(15 lines omitted)" in text
        assert text.endswith("line 29")

    def test_condensed_prose_truncates_words(self):
        text = condensed_text(make_item("p", "word " * 100))
        assert text.endswith("...")
        assert len(text.split()) == 80

    def test_condensed_prefers_stored_summary(self):
        assert condensed_text(make_item("p", "long text", summary="short")) == "short"

    def test_reference_line(self):
        line = reference_line(make_item("r", "first line\nsecond line", ContextType.DECISION), "Chat A")
        assert line == '[decision] "Chat A" (r): first line...'

    def test_markdown_sections(self, injector):
        full = make_item("f", "Going with nightly batch exports.", ContextType.DECISION)
        summary = make_item("s", "word " * 120, summary="s" * 160)
        selection = injector.select("exports", [result(full, 0.9), result(summary, 0.8)], max_tokens=100, now=NOW)
        text = render_markdown(selection)
        assert text.startswith('## Relevant Context for: "exports"')
        assert '### Context from "Planning"' in text
        assert "### Summarized Contexts" in text
        assert "### Referenced Contexts" not in text
