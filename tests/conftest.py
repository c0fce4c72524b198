"""Pytest configuration and fixtures for the indexing engine tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest

from src.indexer.graph_store import GraphStore
from src.indexer.job_manager import JobManager
from src.indexer.parsers.registry import ParserRegistry
from src.indexer.repo_meta import RepoMetaStore
from src.resilience.breakers import BreakerRegistry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def registry() -> ParserRegistry:
    return ParserRegistry()


@pytest.fixture
def breakers() -> BreakerRegistry:
    """A fresh breaker registry so tests never share breaker state."""
    return BreakerRegistry()


@pytest.fixture
def job_manager() -> JobManager:
    return JobManager()


@pytest.fixture
def graph_store(breakers: BreakerRegistry) -> GraphStore:
    """In-memory graph store without a graph database."""
    from src.resilience.breakers import MEMGRAPH

    return GraphStore(None, breaker=breakers.get(MEMGRAPH))


@pytest.fixture
def repo_meta(temp_dir: Path) -> RepoMetaStore:
    return RepoMetaStore(temp_dir / "index")


@pytest.fixture
def sample_sources() -> Dict[str, str]:
    """A small TypeScript project: a service calling a helper in another file."""
    return {
        "src/utils/format.ts": (
            "export function formatName(first: string, last: string): string {\n"
            "  return `${first} ${last}`;\n"
            "}\n"
            "\n"
            "export function shout(text: string): string {\n"
            "  return text.toUpperCase();\n"
            "}\n"
        ),
        "src/services/user.ts": (
            "import { formatName } from '../utils/format';\n"
            "\n"
            "export class UserService {\n"
            "  greet(first: string, last: string): string {\n"
            "    return 'Hello ' + formatName(first, last);\n"
            "  }\n"
            "}\n"
        ),
        "src/main.ts": (
            "import { UserService } from './services/user';\n"
            "\n"
            "export function main(): void {\n"
            "  const service = new UserService();\n"
            "  console.log(service.greet('Ada', 'Lovelace'));\n"
            "}\n"
        ),
    }


@pytest.fixture
def sample_repo(temp_dir: Path, sample_sources: Dict[str, str]) -> Path:
    """Write the sample project to disk."""
    root = temp_dir / "sample-repo"
    for rel, content in sample_sources.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def parsed_sample(registry: ParserRegistry, sample_sources: Dict[str, str]):
    """Parse results of the sample project, keyed by relative path."""
    return [registry.parse_file(code, path) for path, code in sorted(sample_sources.items())]
