"""Persisted metadata about indexed repositories."""

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class RepoMeta:
    """What is needed to re-index a repository without asking for its URL again."""

    repo_id: str
    repo_url: str
    branch: Optional[str] = None
    framework: Optional[str] = None
    updated_at: Optional[float] = None  # timestamp

    def to_dict(self) -> Dict:
        return {
            "repoId": self.repo_id,
            "repoUrl": self.repo_url,
            "branch": self.branch,
            "framework": self.framework,
            "updatedAt": self.updated_at,
        }


class RepoMetaStore:
    """JSON-file backed store of RepoMeta records keyed by repo id."""

    def __init__(self, index_path: Optional[Path] = None):
        """Initialize the store.

        Args:
            index_path: Directory holding ``repo_meta.json`` (None keeps records in memory only)
        """
        self.index_path = Path(index_path) if index_path else None
        self.state_file = self.index_path / "repo_meta.json" if self.index_path else None
        self.records: Dict[str, RepoMeta] = {}
        if self.index_path:
            self.index_path.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _load_state(self) -> None:
        """Load records from disk."""
        if self.state_file is None or not self.state_file.exists():
            logger.info("No repository metadata found, starting fresh")
            return
        try:
            with open(self.state_file, "r") as f:
                data = json.load(f)
            self.records = {repo_id: RepoMeta(**record) for repo_id, record in data.items()}
            logger.info(f"Loaded metadata for {len(self.records)} repositories")
        except Exception as e:
            logger.error(f"Error loading repository metadata: {e}")
            self.records = {}

    def _save_state(self) -> None:
        """Save records to disk."""
        if self.state_file is None:
            return
        try:
            data = {repo_id: asdict(record) for repo_id, record in self.records.items()}
            with open(self.state_file, "w") as f:
                json.dump(data, f, indent=2)
        except Exception as e:
            logger.error(f"Error saving repository metadata: {e}")

    def get(self, repo_id: str) -> Optional[RepoMeta]:
        return self.records.get(repo_id)

    def set(self, meta: RepoMeta) -> RepoMeta:
        if meta.updated_at is None:
            meta.updated_at = time.time()
        self.records[meta.repo_id] = meta
        self._save_state()
        return meta

    def list(self) -> List[RepoMeta]:
        return sorted(self.records.values(), key=lambda m: m.updated_at or 0, reverse=True)
