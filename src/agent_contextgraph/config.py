"""Configuration loader for agent-contextgraph."""

import json
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Optional, Dict

import yaml


def _known(cls, data: dict) -> dict:
    """Drop keys the dataclass does not declare."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class ExtractionConfig:
    """Configuration for transcript extraction."""
    max_context_tokens: int = 4000  # items above this get summarized
    summary_lines: int = 10
    max_items: int = 50


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding provider."""
    embedder_type: str = "hash"  # "hash", "fastembed" or "ollama"
    model: Optional[str] = None  # e.g. "BAAI/bge-base-en-v1.5"
    dimensions: int = 384        # used by the hash embedder
    max_input_chars: int = 8000
    batch_size: int = 10
    fallback: Optional[str] = None  # embedder type used when the primary fails
    ollama_url: str = "http://localhost:11434"


@dataclass
class CacheConfig:
    """Configuration for the embedding cache."""
    enabled: bool = True
    path: Optional[str] = None  # defaults to <db dir>/embeddings_cache.db
    ttl_days: int = 30


@dataclass
class SearchConfig:
    """Configuration for hybrid search."""
    similarity_threshold: float = 0.7
    default_limit: int = 5
    candidate_limit: int = 30
    vector_index: bool = True  # use sqlite-vec when available
    keyword_fallback_on_empty: bool = True


@dataclass
class InjectionConfig:
    """Configuration for budgeted context injection."""
    max_tokens: int = 2000
    relevance_weight: float = 0.5
    recency_weight: float = 0.2
    importance_weight: float = 0.3
    recency_decay_days: float = 30.0
    critical_threshold: float = 0.8
    regular_budget_ratio: float = 0.9
    type_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "error": 1.2,
        "requirement": 1.1,
        "decision": 1.0,
        "code": 0.9,
        "discussion": 0.7,
    })


@dataclass
class Config:
    """Main configuration for agent-contextgraph."""
    db_path: str = "./contextgraph.db"
    tokenizer: str = "cl100k_base"  # tiktoken encoding, or "estimate"
    log_path: Optional[str] = None
    log_enabled: bool = True
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    injection: InjectionConfig = field(default_factory=InjectionConfig)

    def __post_init__(self):
        """Convert dicts to proper config objects."""
        if isinstance(self.extraction, dict):
            self.extraction = ExtractionConfig(**_known(ExtractionConfig, self.extraction))
        if isinstance(self.embedding, dict):
            self.embedding = EmbeddingConfig(**_known(EmbeddingConfig, self.embedding))
        if isinstance(self.cache, dict):
            self.cache = CacheConfig(**_known(CacheConfig, self.cache))
        if isinstance(self.search, dict):
            self.search = SearchConfig(**_known(SearchConfig, self.search))
        if isinstance(self.injection, dict):
            self.injection = InjectionConfig(**_known(InjectionConfig, self.injection))

    @property
    def resolved_log_path(self) -> str:
        if self.log_path:
            return self.log_path
        return str(Path(self.db_path).parent / "logs")

    @property
    def resolved_cache_path(self) -> str:
        if self.cache.path:
            return self.cache.path
        return str(Path(self.db_path).parent / "embeddings_cache.db")

    @classmethod
    def load(cls, path: str) -> "Config":
        """Load configuration from YAML or JSON file."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        return cls(
            db_path=data.get("db_path", "./contextgraph.db"),
            tokenizer=data.get("tokenizer", "cl100k_base"),
            log_path=data.get("log_path"),
            log_enabled=data.get("log_enabled", True),
            extraction=data.get("extraction") or {},
            embedding=data.get("embedding") or {},
            cache=data.get("cache") or {},
            search=data.get("search") or {},
            injection=data.get("injection") or {},
        )

    @classmethod
    def default(cls, base_dir: str = ".") -> "Config":
        """Create default configuration for a directory."""
        base = Path(base_dir)
        return cls(db_path=str(base / ".contextgraph" / "contextgraph.db"))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    def save(self, path: str) -> None:
        """Save configuration to file."""
        path = Path(path)
        data = self.to_dict()

        if path.suffix in (".yaml", ".yml"):
            content = yaml.dump(data, default_flow_style=False, sort_keys=False)
        else:
            content = json.dumps(data, indent=2)

        path.write_text(content)
