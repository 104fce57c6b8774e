"""Tests for embedders, the embedding provider and its cache."""

import math
import tempfile
from pathlib import Path
from typing import List

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent_contextgraph.cache import EmbeddingCache, pack_vector, unpack_vector
from agent_contextgraph.embedders import (
    Embedder,
    EmbeddingProvider,
    HashEmbedder,
    cosine_similarity,
    create_embedder,
)
from agent_contextgraph.errors import EmbeddingUnavailable


class FailingEmbedder(Embedder):
    """Embedder whose model is always down."""

    model_name = "failing"

    @property
    def dimensions(self) -> int:
        return 384

    def embed(self, text: str) -> List[float]:
        raise RuntimeError("model offline")


class CountingEmbedder(HashEmbedder):
    """Hash embedder that records batch sizes."""

    def __init__(self):
        super().__init__(dimensions=16)
        self.batches = []

    def embed_batch(self, texts):
        self.batches.append(len(texts))
        return super().embed_batch(texts)


class TestHashEmbedder:

    def test_deterministic(self):
        assert HashEmbedder().embed("session storage") == HashEmbedder().embed("session storage")

    def test_unit_length(self):
        vector = HashEmbedder(dimensions=64).embed("hello world")
        assert len(vector) == 64
        assert math.sqrt(sum(x * x for x in vector)) == pytest.approx(1.0)

    def test_similar_text_scores_higher(self):
        e = HashEmbedder()
        base = e.embed("store sessions in redis")
        close = e.embed("sessions are stored in redis")
        far = e.embed("quarterly marketing budget review")
        assert cosine_similarity(base, close) > cosine_similarity(base, far)

    def test_empty_text(self):
        assert HashEmbedder(dimensions=8).embed("") == [0.0] * 8


class TestEmbeddingProvider:

    @pytest.fixture
    def cache(self):
        c = EmbeddingCache(":memory:")
        yield c
        c.close()

    def test_cache_hit(self, cache):
        provider = EmbeddingProvider(HashEmbedder(), cache=cache)
        first = provider.embed("hello")
        second = provider.embed("hello")
        assert second == pytest.approx(first, abs=1e-6)
        stats = provider.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    def test_cache_key_depends_on_model(self):
        small = EmbeddingProvider(HashEmbedder(dimensions=8))
        large = EmbeddingProvider(HashEmbedder(dimensions=16))
        assert small.cache_key("x") != large.cache_key("x")
        assert small.cache_key("x").startswith("emb:hash-8:")

    def test_truncate_keeps_head_and_tail(self):
        provider = EmbeddingProvider(HashEmbedder(), max_input_chars=20)
        text = "a" * 50 + "b" * 50
        truncated = provider.truncate(text)
        assert len(truncated) == 20
        assert truncated.startswith("a")
        assert truncated.endswith("b")
        assert EmbeddingProvider.TRUNCATION_MARKER in truncated
        assert provider.truncate("short") == "short"

    def test_batches_chunked(self):
        embedder = CountingEmbedder()
        provider = EmbeddingProvider(embedder, batch_size=2)
        vectors = provider.embed_batch([f"text {i}" for i in range(5)])
        assert len(vectors) == 5
        assert embedder.batches == [2, 2, 1]

    def test_batch_preserves_order(self, cache):
        provider = EmbeddingProvider(HashEmbedder(), cache=cache)
        provider.embed("beta")
        vectors = provider.embed_batch(["alpha", "beta", "gamma"])
        e = HashEmbedder()
        for text, vector in zip(["alpha", "beta", "gamma"], vectors):
            assert vector == pytest.approx(e.embed(text), abs=1e-6)

    def test_failure_without_fallback(self):
        provider = EmbeddingProvider(FailingEmbedder())
        with pytest.raises(EmbeddingUnavailable):
            provider.embed("hello")

    def test_fallback_not_cached(self, cache, capsys):
        provider = EmbeddingProvider(FailingEmbedder(), cache=cache, fallback=HashEmbedder())
        vector = provider.embed("hello")
        assert len(vector) == 384
        assert provider.get_stats()["fallbacks"] == 1
        assert cache.stats()["count"] == 0
        assert "Warning" in capsys.readouterr().out

    def test_embed_items_uses_summary(self):
        from agent_contextgraph.types import ContextItem, ContextType

        item = ContextItem(
            chat_id="c", project_id="p", content="long original text",
            context_type=ContextType.CODE, token_count=5, summary="short",
        )
        provider = EmbeddingProvider(HashEmbedder())
        vectors = provider.embed_items([item])
        assert vectors[item.id] == pytest.approx(HashEmbedder().embed("short"))


class TestEmbeddingCache:

    def test_put_get(self):
        with EmbeddingCache(":memory:") as cache:
            cache.put("k", [0.5, 0.25])
            assert cache.get("k") == [0.5, 0.25]
            assert cache.get("missing") is None

    def test_expired_entries(self):
        with EmbeddingCache(":memory:") as cache:
            cache.put("old", [1.0], ttl_seconds=-1)
            cache.put("new", [1.0])
            assert cache.get("old") is None
            cache.put("old2", [1.0], ttl_seconds=-1)
            assert cache.purge_expired() == 1
            assert cache.stats()["count"] == 1

    def test_persists_to_disk(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = f"{tmpdir}/cache/emb.db"
            with EmbeddingCache(path) as cache:
                cache.put("k", [0.5])
            with EmbeddingCache(path) as cache:
                assert cache.get("k") == [0.5]

    def test_pack_round_trip(self):
        assert unpack_vector(pack_vector([0.5, -2.0])) == [0.5, -2.0]


def test_create_embedder():
    assert isinstance(create_embedder("hash", dimensions=32), HashEmbedder)
    assert create_embedder("hash", dimensions=32).dimensions == 32
    with pytest.raises(ValueError):
        create_embedder("bogus")
