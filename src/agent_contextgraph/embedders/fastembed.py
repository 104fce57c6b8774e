"""FastEmbed embedder - local ONNX embeddings via Qdrant's FastEmbed."""

from typing import List

from ..errors import EmbeddingUnavailable
from .base import Embedder


class FastEmbedEmbedder(Embedder):
    """
    Local embeddings via FastEmbed (Qdrant).

    Uses ONNX runtime for CPU inference. The model is downloaded on first
    use; a failed download or inference raises EmbeddingUnavailable so
    callers can fall back to hashed embeddings or keyword search.

    Models:
    - BAAI/bge-small-en-v1.5: 384 dims
    - BAAI/bge-base-en-v1.5: 768 dims (default, matches the bge-base family)
    - sentence-transformers/all-MiniLM-L6-v2: 384 dims
    """

    MODEL_DIMS = {
        "BAAI/bge-small-en-v1.5": 384,
        "BAAI/bge-base-en-v1.5": 768,
        "sentence-transformers/all-MiniLM-L6-v2": 384,
        "nomic-ai/nomic-embed-text-v1.5": 768,
    }

    def __init__(self, model: str = "BAAI/bge-base-en-v1.5"):
        self.model_name = model
        self._dimensions = self.MODEL_DIMS.get(model, 768)
        self._model = None

    @property
    def model(self):
        """Lazy-load the ONNX model."""
        if self._model is None:
            from fastembed import TextEmbedding
            try:
                self._model = TextEmbedding(model_name=self.model_name)
            except Exception as e:
                raise EmbeddingUnavailable(f"Failed to load {self.model_name}: {e}") from e
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> List[float]:
        """Embed single text."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed multiple texts in one model call."""
        model = self.model
        try:
            return [e.tolist() for e in model.embed(texts)]
        except Exception as e:
            raise EmbeddingUnavailable(f"Failed to generate embedding: {e}") from e
