"""Process-wide registry of per-repository knowledge graphs."""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from ..graph_db.neo4j_client import CodeGraphDB
from ..resilience.breakers import MEMGRAPH, get_breaker_registry
from ..resilience.circuit_breaker import CircuitBreaker, CircuitOpenError
from .graph_builder import KnowledgeGraph
from .models import ParsedFile

logger = logging.getLogger(__name__)


class GraphStore:
    """Holds one KnowledgeGraph per repository, optionally written through to a graph database.

    The in-memory graph is authoritative for the running process. Writes to
    the database are best-effort: a failure is logged and the in-memory
    update stands. Repositories missing from memory are reloaded from the
    database on first access.
    """

    def __init__(self, graph_db: Optional[CodeGraphDB] = None, breaker: Optional[CircuitBreaker] = None):
        self.graph_db = graph_db
        self.breaker = breaker or get_breaker_registry().get(MEMGRAPH)
        self._graphs: Dict[str, KnowledgeGraph] = {}
        self._lock = asyncio.Lock()
        self._repo_locks: Dict[str, asyncio.Lock] = {}

    async def _repo_lock(self, repo_id: str) -> asyncio.Lock:
        async with self._lock:
            lock = self._repo_locks.get(repo_id)
            if lock is None:
                lock = self._repo_locks[repo_id] = asyncio.Lock()
            return lock

    async def _db_call(self, fn, *args):
        """Run a blocking database call through the memgraph breaker.

        Returns:
            The call's result, or None when the database is disabled or failed
        """
        if self.graph_db is None:
            return None
        try:
            return await asyncio.to_thread(self.breaker.call_sync, fn, *args)
        except CircuitOpenError:
            logger.warning(f"Graph database unavailable (breaker open); skipping {fn.__name__}")
        except Exception as e:
            logger.error(f"Graph database {fn.__name__} failed: {e}")
        return None

    async def _load_locked(self, repo_id: str) -> Optional[KnowledgeGraph]:
        graph = self._graphs.get(repo_id)
        if graph is not None:
            return graph
        loaded = await self._db_call(self.graph_db.load_graph, repo_id) if self.graph_db else None
        if not loaded or not loaded[0]:
            return None
        graph = KnowledgeGraph(repo_id)
        graph.load(*loaded)
        self._graphs[repo_id] = graph
        logger.info(f"Reloaded graph for {repo_id} from graph database")
        return graph

    async def get(self, repo_id: str) -> Optional[KnowledgeGraph]:
        """Get a repository graph, reloading it from the database if needed."""
        lock = await self._repo_lock(repo_id)
        async with lock:
            return await self._load_locked(repo_id)

    async def list_repos(self) -> List[Dict[str, int]]:
        """Summaries of every known repository, sorted by repo id."""
        repo_ids = set(self._graphs)
        if self.graph_db is not None:
            repo_ids.update(await self._db_call(self.graph_db.list_repos) or [])

        repos = []
        for repo_id in sorted(repo_ids):
            graph = await self.get(repo_id)
            if graph is None:
                continue
            counts = graph.counts()
            repos.append(
                {
                    "repoId": repo_id,
                    "fileCount": counts["files"],
                    "functionCount": counts["functions"],
                    "classCount": counts["classes"],
                }
            )
        return repos

    async def replace_repo(self, repo_id: str, parsed_files: Iterable[ParsedFile]) -> KnowledgeGraph:
        """Build a fresh graph for the repository and replace the stored one.

        Args:
            repo_id: Repository identifier
            parsed_files: Every parsed file of the repository

        Returns:
            The new graph
        """
        graph = KnowledgeGraph(repo_id)
        await asyncio.to_thread(graph.build, list(parsed_files))

        lock = await self._repo_lock(repo_id)
        async with lock:
            self._graphs[repo_id] = graph
            if self.graph_db is not None:
                await self._db_call(
                    self.graph_db.replace_repo, repo_id, list(graph.nodes.values()), list(graph.links.values())
                )
        return graph

    async def merge_files(
        self, repo_id: str, parsed_files: Iterable[ParsedFile], changed_paths: Iterable[str]
    ) -> KnowledgeGraph:
        """Replace the nodes and links owned by the changed files.

        Args:
            repo_id: Repository identifier
            parsed_files: Parse results for the changed files that still exist
            changed_paths: Every changed path, including deleted files

        Returns:
            The updated graph
        """
        files = list(parsed_files)
        paths = sorted(set(changed_paths) | {f.file_path for f in files})

        lock = await self._repo_lock(repo_id)
        async with lock:
            graph = await self._load_locked(repo_id)
            if graph is None:
                graph = self._graphs[repo_id] = KnowledgeGraph(repo_id)
            await asyncio.to_thread(graph.apply_incremental, files, paths)
            if self.graph_db is not None:
                await self._db_call(
                    self.graph_db.merge_files,
                    repo_id,
                    paths,
                    graph.nodes_for_files(paths),
                    graph.links_for_files(paths),
                )
        return graph

    async def clear_repo(self, repo_id: str) -> None:
        """Forget a repository in memory and in the database."""
        lock = await self._repo_lock(repo_id)
        async with lock:
            self._graphs.pop(repo_id, None)
            if self.graph_db is not None:
                await self._db_call(self.graph_db.clear_repo, repo_id)

    async def health_check(self) -> bool:
        if self.graph_db is None:
            return False
        return bool(await self._db_call(self.graph_db.verify_connectivity))
