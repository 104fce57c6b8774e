"""Deterministic hashed-feature embedder, usable without any model."""

import hashlib
import re
from typing import List

from .base import Embedder, l2_normalize

_WORD = re.compile(r"\w+")


class HashEmbedder(Embedder):
    """
    Hashes character trigrams and whole words into a fixed-width vector.

    Words count double so shared vocabulary dominates shared spelling.
    Vectors are L2-normalized. Stable across processes (blake2b, not the
    salted built-in hash).

    Usage:
        embedder = HashEmbedder(dimensions=384)
        vector = embedder.embed("Hello world")
    """

    def __init__(self, dimensions: int = 384, word_weight: float = 2.0):
        self._dimensions = dimensions
        self.word_weight = word_weight
        self.model_name = f"hash-{dimensions}"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _bucket(self, feature: str) -> int:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest, "big") % self._dimensions

    def embed(self, text: str) -> List[float]:
        vector = [0.0] * self._dimensions
        normalized = " ".join(text.lower().split())

        for i in range(len(normalized) - 2):
            vector[self._bucket("c:" + normalized[i:i + 3])] += 1.0

        for word in _WORD.findall(normalized):
            vector[self._bucket("w:" + word)] += self.word_weight

        return l2_normalize(vector)
