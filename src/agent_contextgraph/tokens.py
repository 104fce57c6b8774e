"""Token counting for budgets and item sizes."""

import math
from typing import Optional


class TokenCounter:
    """
    Counts tokens with tiktoken, falling back to a character estimate.

    The encoding is loaded lazily on first use. Pass encoding="estimate"
    to skip tiktoken entirely (deterministic, no BPE download).
    """

    def __init__(self, encoding: str = "cl100k_base"):
        self._encoding = encoding
        self._tokenizer = None
        self._loaded = encoding == "estimate"

    @property
    def tokenizer(self):
        """Lazy-load tokenizer."""
        if not self._loaded:
            self._loaded = True
            try:
                import tiktoken
                self._tokenizer = tiktoken.get_encoding(self._encoding)
            except Exception as e:
                # BPE files are fetched on first use and may be unreachable
                print(f"Warning: tiktoken encoding '{self._encoding}' unavailable ({e}), estimating tokens")
                self._tokenizer = None
        return self._tokenizer

    @property
    def is_exact(self) -> bool:
        return self.tokenizer is not None

    @staticmethod
    def estimate(text: str) -> int:
        """Rough estimate: ~4 chars per token, rounded up."""
        return math.ceil(len(text) / 4)

    def count(self, text: Optional[str]) -> int:
        """Count tokens in text."""
        if not text:
            return 0
        if self.tokenizer is not None:
            return len(self.tokenizer.encode(text, disallowed_special=()))
        return self.estimate(text)

    def __call__(self, text: Optional[str]) -> int:
        return self.count(text)
