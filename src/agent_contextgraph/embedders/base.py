"""Base class for embedding models."""

import math
from abc import ABC, abstractmethod
from typing import List


def l2_normalize(vector: List[float]) -> List[float]:
    """Scale a vector to unit length; zero vectors are returned unchanged."""
    norm = math.sqrt(sum(x * x for x in vector))
    if norm == 0:
        return list(vector)
    return [x / norm for x in vector]


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Compute cosine similarity between two vectors of equal length."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a) ** 0.5
    norm_b = sum(x * x for x in b) ** 0.5
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class Embedder(ABC):
    """
    Base class for embedding models.

    Implementations:
    - HashEmbedder: Deterministic hashed features, no model (default)
    - FastEmbedEmbedder: Local embeddings via FastEmbed
    - OllamaEmbedder: Local embeddings via Ollama

    Model failures should surface as EmbeddingUnavailable.
    """

    model_name: str = "unknown"

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Return vector dimensions."""
        pass

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            List of floats representing the embedding vector
        """
        pass

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed multiple texts. Override for efficiency.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors
        """
        return [self.embed(t) for t in texts]

    def close(self) -> None:
        """Cleanup resources. Override if needed."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
