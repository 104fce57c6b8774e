"""Ollama embedder - local embeddings via an Ollama server."""

import json
import urllib.error
import urllib.request
from typing import List

from ..errors import EmbeddingUnavailable
from .base import Embedder


class OllamaEmbedder(Embedder):
    """
    Local embeddings via Ollama.

    Requires Ollama running locally (`ollama pull nomic-embed-text`).
    Connection and protocol failures raise EmbeddingUnavailable.
    """

    MODEL_DIMS = {
        "nomic-embed-text": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
        "bge-base": 768,
    }

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        timeout: float = 30.0,
    ):
        self.model_name = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._dimensions = self.MODEL_DIMS.get(model, 768)

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> List[float]:
        """Embed single text via the Ollama API."""
        req = urllib.request.Request(
            f"{self.base_url}/api/embeddings",
            data=json.dumps({"model": self.model_name, "prompt": text}).encode(),
            headers={"Content-Type": "application/json"},
        )
        try:
            resp = json.loads(urllib.request.urlopen(req, timeout=self.timeout).read())
            return resp["embedding"]
        except (urllib.error.URLError, OSError, ValueError, KeyError) as e:
            raise EmbeddingUnavailable(f"Failed to generate embedding: {e}") from e

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed multiple texts (sequential, Ollama doesn't batch)."""
        return [self.embed(t) for t in texts]
