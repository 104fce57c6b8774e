"""
Activity logging for the context graph.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional


class ActivityLogger:
    """
    Logs context graph activity to JSONL files.

    Files:
    - extraction.jsonl: Extraction runs and imports
    - search.jsonl: Searches and which strategy answered them
    - injection.jsonl: Injection selections and budget use
    - graph.jsonl: Manual relationship changes
    """

    def __init__(self, log_path: str = "./logs/"):
        """
        Initialize logger.

        Args:
            log_path: Path to log directory
        """
        self.log_path = Path(log_path)
        self.log_path.mkdir(parents=True, exist_ok=True)

    def _log(self, file: str, entry: dict):
        """Write a log entry to file."""
        log_file = self.log_path / file
        entry["timestamp"] = datetime.now().isoformat()
        with open(log_file, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def log_extraction(self, summary, imported: bool = False):
        """Log an extraction run."""
        self._log("extraction.jsonl", {
            "event": "import" if imported else "extraction",
            "chat_id": summary.chat_id,
            "project_id": summary.project_id,
            "contexts": summary.contexts_extracted,
            "relationships": summary.relationships_created,
            "total_tokens": summary.total_tokens,
            "elapsed_ms": round(summary.elapsed_ms, 2),
            "by_type": summary.by_type,
        })

    def log_search(self, query: str, strategy: Optional[str], results: int, limit: int):
        """Log a search and the strategy that answered it."""
        self._log("search.jsonl", {
            "event": "search",
            "query": query,
            "strategy": strategy or "none",
            "results": results,
            "limit": limit,
        })

    def log_injection(self, selection):
        """Log an injection selection."""
        self._log("injection.jsonl", {
            "event": "injection",
            "query": selection.query,
            "strategy": selection.strategy,
            "contexts": len(selection.entries),
            "total_tokens": selection.total_tokens,
            "max_tokens": selection.max_tokens,
            "formats": [e.format for e in selection.entries],
        })

    def log_relationship(self, action: str, from_id: str, to_id: str, rel_type: str):
        """Log a manual relationship change."""
        self._log("graph.jsonl", {
            "event": f"relationship_{action}",
            "from_id": from_id,
            "to_id": to_id,
            "type": rel_type,
        })

    def _read(self, file: str, hours: int):
        log_file = self.log_path / file
        if not log_file.exists():
            return []

        since = datetime.now().timestamp() - (hours * 3600)
        entries = []
        with open(log_file) as f:
            for line in f:
                entry = json.loads(line)
                ts = datetime.fromisoformat(entry["timestamp"]).timestamp()
                if ts > since:
                    entries.append(entry)
        return entries

    def get_search_stats(self, hours: int = 24) -> dict:
        """Get search statistics for the last N hours."""
        entries = self._read("search.jsonl", hours)
        if not entries:
            return {}

        by_strategy = {}
        for entry in entries:
            strategy = entry.get("strategy", "none")
            by_strategy[strategy] = by_strategy.get(strategy, 0) + 1

        return {
            "search_count": len(entries),
            "searches_by_strategy": by_strategy,
        }

    def get_extraction_stats(self, hours: int = 24) -> dict:
        """Get extraction statistics for the last N hours."""
        entries = self._read("extraction.jsonl", hours)
        if not entries:
            return {}

        return {
            "extraction_count": len(entries),
            "contexts_extracted": sum(e.get("contexts", 0) for e in entries),
            "total_tokens": sum(e.get("total_tokens", 0) for e in entries),
        }
