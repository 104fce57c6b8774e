"""Embedding models and the cache-aware provider."""

from .base import Embedder, cosine_similarity, l2_normalize
from .hashing import HashEmbedder
from .provider import EmbeddingProvider

__all__ = [
    "Embedder",
    "HashEmbedder",
    "EmbeddingProvider",
    "cosine_similarity",
    "l2_normalize",
    "create_embedder",
]


def create_embedder(embedder_type: str, model=None, dimensions: int = 384, ollama_url: str = "http://localhost:11434") -> Embedder:
    """Create an embedder from config settings."""
    if embedder_type == "hash":
        return HashEmbedder(dimensions=dimensions)
    elif embedder_type == "fastembed":
        from .fastembed import FastEmbedEmbedder
        if model:
            return FastEmbedEmbedder(model=model)
        return FastEmbedEmbedder()
    elif embedder_type == "ollama":
        from .ollama import OllamaEmbedder
        if model:
            return OllamaEmbedder(model=model, base_url=ollama_url)
        return OllamaEmbedder(base_url=ollama_url)
    else:
        raise ValueError(f"Unknown embedder type: {embedder_type}")
