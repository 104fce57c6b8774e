"""Cache-aware embedding provider."""

import hashlib
from typing import List, Dict, Optional, TYPE_CHECKING

from ..errors import EmbeddingUnavailable
from ..types import ContextItem
from .base import Embedder

if TYPE_CHECKING:
    from ..cache import EmbeddingCache


class EmbeddingProvider:
    """
    Wraps an Embedder with a content-addressed cache.

    Cache key = "emb:<model>:<sha256(text)>". Texts longer than
    `max_input_chars` keep their head and tail. Batches are sent to the
    model in chunks of `batch_size`.

    On model failure the optional `fallback` embedder is used; without one
    the call raises EmbeddingUnavailable. Cache failures only warn.

    Usage:
        provider = EmbeddingProvider(HashEmbedder(), cache=EmbeddingCache(path))
        vector = provider.embed("Hello world")
    """

    TRUNCATION_MARKER = "\n...\n"

    def __init__(
        self,
        embedder: Embedder,
        cache: Optional["EmbeddingCache"] = None,
        max_input_chars: int = 8000,
        batch_size: int = 10,
        fallback: Optional[Embedder] = None,
    ):
        self.embedder = embedder
        self.cache = cache
        self.max_input_chars = max_input_chars
        self.batch_size = max(1, batch_size)
        self.fallback = fallback
        self.hits = 0
        self.misses = 0
        self.fallbacks = 0

    @property
    def model_name(self) -> str:
        return getattr(self.embedder, "model_name", type(self.embedder).__name__)

    @property
    def dimensions(self) -> int:
        return self.embedder.dimensions

    def truncate(self, text: str) -> str:
        """Keep the head and tail of long text."""
        if len(text) <= self.max_input_chars:
            return text
        keep = max(self.max_input_chars - len(self.TRUNCATION_MARKER), 0)
        head = keep // 2
        tail = keep - head
        return text[:head] + self.TRUNCATION_MARKER + (text[-tail:] if tail else "")

    def cache_key(self, text: str, model_name: Optional[str] = None) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"emb:{model_name or self.model_name}:{digest}"

    def _cache_get(self, key: str) -> Optional[List[float]]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except Exception as e:
            print(f"Warning: embedding cache read failed: {e}")
            return None

    def _cache_put(self, key: str, vector: List[float]) -> None:
        if self.cache is None:
            return
        try:
            self.cache.put(key, vector)
        except Exception as e:
            print(f"Warning: embedding cache write failed: {e}")

    def _compute(self, texts: List[str]) -> List[List[float]]:
        """Run the model, or the fallback embedder when the model fails."""
        try:
            return self.embedder.embed_batch(texts)
        except Exception as e:
            if self.fallback is None:
                if isinstance(e, EmbeddingUnavailable):
                    raise
                raise EmbeddingUnavailable(f"Failed to generate embedding: {e}") from e
            print(f"Warning: embedding model failed ({e}), using {self.fallback.model_name}")
            self.fallbacks += len(texts)
            return self.fallback.embed_batch(texts)

    def embed(self, text: str) -> List[float]:
        """Embed one text, cache-aware."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed many texts, cache-aware.

        Returns vectors in input order.

        Raises:
            EmbeddingUnavailable: the model failed and no fallback is set
        """
        prepared = [self.truncate(t) for t in texts]
        results: List[Optional[List[float]]] = [None] * len(prepared)
        missing = []

        for i, text in enumerate(prepared):
            cached = self._cache_get(self.cache_key(text))
            if cached is not None:
                self.hits += 1
                results[i] = cached
            else:
                self.misses += 1
                missing.append(i)

        for start in range(0, len(missing), self.batch_size):
            chunk = missing[start:start + self.batch_size]
            fallbacks_before = self.fallbacks
            vectors = self._compute([prepared[i] for i in chunk])
            # Fallback vectors are not cached under the primary model's key
            cacheable = self.fallbacks == fallbacks_before
            for i, vector in zip(chunk, vectors):
                results[i] = list(vector)
                if cacheable:
                    self._cache_put(self.cache_key(prepared[i]), results[i])

        return results

    def embed_items(self, items: List[ContextItem]) -> Dict[str, List[float]]:
        """Embed items by summary (or content). Returns {item id: vector}."""
        vectors = self.embed_batch([item.display_text for item in items])
        return {item.id: vector for item, vector in zip(items, vectors)}

    def get_stats(self) -> dict:
        """Get cache statistics."""
        total = self.hits + self.misses
        return {
            "model": self.model_name,
            "hits": self.hits,
            "misses": self.misses,
            "fallbacks": self.fallbacks,
            "hit_rate": self.hits / total if total > 0 else 0.0,
        }

    def close(self) -> None:
        self.embedder.close()
        if self.fallback is not None:
            self.fallback.close()
        if self.cache is not None:
            self.cache.close()
