"""Repository indexing pipeline, run as a background job."""

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from ..indexer.embeddings import VoyageEmbeddings, embed_and_store
from ..indexer.framework_detector import detect_frameworks
from ..indexer.graph_store import GraphStore
from ..indexer.job_manager import (
    CancellationToken,
    Job,
    JobCancelledError,
    JobKind,
    JobManager,
    JobPhase,
)
from ..indexer.models import ParsedFile
from ..indexer.parsers.registry import ParserRegistry, get_parser_registry
from ..indexer.repo_identity import derive_repo_id_from_url
from ..indexer.repo_meta import RepoMeta, RepoMetaStore
from ..indexer.snippets import extract_snippets
from ..indexer.source_collector import collect_source_files, filter_changed_files, is_repo_relative
from ..resilience.breakers import QDRANT, BreakerRegistry, get_breaker_registry
from ..vcs.git import clone_repository, remove_clone
from ..vector_db.qdrant_client import CodeVectorDB

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 20  # files between parsing progress updates


@dataclass
class IndexRequest:
    """Parameters of one index job."""

    repo_url: str
    token: Optional[str] = None
    branch: str = "main"
    framework: Optional[str] = None
    incremental: bool = False
    changed_files: List[str] = field(default_factory=list)
    repo_id: Optional[str] = None  # derived from repo_url when unset


def local_checkout(repo_url: str) -> Optional[Path]:
    """The directory to index in place when repo_url names a local checkout."""
    parsed = urlparse(repo_url)
    if parsed.scheme == "file":
        path = Path(parsed.path)
    elif not parsed.scheme and os.path.isdir(repo_url):
        path = Path(repo_url)
    else:
        return None
    return path.resolve() if path.is_dir() else None


class IndexingTool:
    """Clones, parses, graphs and embeds repositories.

    Index phases and their percentages:
        cloning 5-15, detecting-framework 20-25, clearing old data 28,
        parsing 30-55, building-graph 60-75, generating-embeddings 78-95,
        complete 100
    """

    def __init__(
        self,
        job_manager: JobManager,
        graph_store: GraphStore,
        repo_meta: RepoMetaStore,
        clone_dir: Path,
        registry: Optional[ParserRegistry] = None,
        embeddings: Optional[VoyageEmbeddings] = None,
        vector_db: Optional[CodeVectorDB] = None,
        breakers: Optional[BreakerRegistry] = None,
        parse_workers: int = 4,
        embedding_concurrency: int = 3,
    ):
        """Initialize indexing tool.

        Args:
            job_manager: Job table for progress and cancellation
            graph_store: Per-repo knowledge graphs
            repo_meta: Repository metadata store
            clone_dir: Parent directory for clones
            registry: Parser registry (defaults to the shared one)
            embeddings: Embeddings client; None disables embeddings
            vector_db: Vector store; None disables embeddings
            breakers: Breaker registry (defaults to the shared one)
            parse_workers: Threads used for parsing
            embedding_concurrency: Concurrent embedding requests
        """
        self.job_manager = job_manager
        self.graph_store = graph_store
        self.repo_meta = repo_meta
        self.clone_dir = Path(clone_dir)
        self.registry = registry or get_parser_registry()
        self.embeddings = embeddings
        self.vector_db = vector_db
        self.breakers = breakers or get_breaker_registry()
        self.parse_workers = parse_workers
        self.embedding_concurrency = embedding_concurrency

    def start_indexing(self, request: IndexRequest) -> Job:
        """Create an index job and run it in the background.

        Returns:
            The queued job
        """
        repo_id = request.repo_id or derive_repo_id_from_url(request.repo_url).repo_id
        job = self.job_manager.create_job(
            JobKind.INDEX,
            repo_id=repo_id,
            repo_url=request.repo_url,
            branch=request.branch,
            framework=request.framework,
        )
        self.job_manager.start(job, self.run_index_job(job, request))
        logger.info(f"Started index job {job.job_id} for {repo_id} (incremental={request.incremental})")
        return job

    async def _step(self, job: Job, phase: JobPhase, percentage: int, **fields) -> None:
        job.cancel_token.raise_if_cancelled()
        await self.job_manager.update_status(job.job_id, phase=phase, percentage=percentage, **fields)

    async def run_index_job(self, job: Job, request: IndexRequest) -> None:
        """Job body: never raises; the outcome is recorded on the job."""
        clone: Optional[Path] = None
        try:
            await self._step(job, JobPhase.CLONING, 5)
            root = local_checkout(request.repo_url)
            if root is None:
                clone = await clone_repository(request.repo_url, request.branch, request.token, self.clone_dir)
                root = clone.resolve()
            else:
                logger.info(f"Indexing local checkout {root} in place")
            await self._step(job, JobPhase.CLONING, 15)
            await self._index(job, request, root)
        except JobCancelledError:
            logger.info(f"Index job {job.job_id} cancelled")
            await self.job_manager.mark_cancelled(job.job_id)
        except Exception as e:
            logger.error(f"Index job {job.job_id} failed: {e}", exc_info=True)
            await self.job_manager.mark_failed(job.job_id, str(e))
        finally:
            # Local checkouts are never removed
            if clone is not None:
                await asyncio.to_thread(remove_clone, clone)

    async def _index(self, job: Job, request: IndexRequest, root: Path) -> None:
        repo_id = job.repo_id

        # Detect framework
        await self._step(job, JobPhase.DETECTING_FRAMEWORK, 20)
        framework, exclude_patterns = await self._detect(root, request.framework)
        job.framework = framework
        await self._step(job, JobPhase.DETECTING_FRAMEWORK, 25)

        # Clear old data
        changed = sorted({p for p in request.changed_files if is_repo_relative(p)}) if request.incremental else []
        await self._step(job, JobPhase.PARSING, 28)
        if request.incremental:
            await self._delete_vectors_for_files(repo_id, changed)
        else:
            await self.graph_store.clear_repo(repo_id)
            await self._drop_vectors(repo_id)

        # Parse
        await self._step(job, JobPhase.PARSING, 30)
        if request.incremental:
            source_files = filter_changed_files(str(root), changed)
        else:
            source_files = await asyncio.to_thread(collect_source_files, str(root), exclude_patterns)
        parsed_files = await self._parse_files(job, root, source_files)

        # Build graph
        await self._step(job, JobPhase.BUILDING_GRAPH, 60)
        if request.incremental:
            graph = await self.graph_store.merge_files(repo_id, parsed_files, changed)
        else:
            graph = await self.graph_store.replace_repo(repo_id, parsed_files)
        await self._step(job, JobPhase.BUILDING_GRAPH, 75)

        # Embeddings
        await self._step(job, JobPhase.GENERATING_EMBEDDINGS, 78)
        snippets = extract_snippets(parsed_files)
        functions_indexed = await self._embed(repo_id, snippets, job.cancel_token)
        await self._step(job, JobPhase.GENERATING_EMBEDDINGS, 95, functions_indexed=functions_indexed)

        self.repo_meta.set(
            RepoMeta(repo_id=repo_id, repo_url=request.repo_url, branch=request.branch, framework=framework)
        )
        await self._step(
            job,
            JobPhase.COMPLETE,
            100,
            files_processed=len(parsed_files),
            functions_indexed=functions_indexed,
        )
        logger.info(
            f"Indexing complete for {repo_id}: {len(parsed_files)} files, "
            f"graph {graph.counts()}, {functions_indexed} snippets indexed"
        )

    async def _detect(self, root: Path, override: Optional[str]) -> Tuple[str, List[str]]:
        """Primary framework and the exclude patterns to apply."""
        detections = await asyncio.to_thread(detect_frameworks, str(root))
        override = (override or "").strip()
        matched = next((d for d in detections if d.framework == override), None) if override else None

        framework = override or (detections[0].framework if detections else "unknown")
        excludes: List[str] = []
        for detection in [matched] if matched else detections:
            excludes.extend(p for p in detection.exclude_patterns if p not in excludes)
        return framework, excludes

    def _parse_one(self, root: Path, path: str, token: CancellationToken) -> Optional[ParsedFile]:
        token.raise_if_cancelled()
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                code = f.read()
        except OSError as e:
            logger.warning(f"Failed to read {path}: {e}")
            return None
        relative = Path(path).relative_to(root).as_posix()
        return self.registry.parse_file(code, relative)

    async def _parse_files(self, job: Job, root: Path, source_files: List[str]) -> List[ParsedFile]:
        """Parse files on the worker pool, reporting progress every few files."""
        total = len(source_files)
        await self.job_manager.update_status(job.job_id, total_files=total, files_processed=0)
        logger.info(f"Parsing {total} files for {job.repo_id} with {self.parse_workers} workers")

        await self.registry.ensure_backends_loaded()
        loop = asyncio.get_running_loop()
        parsed: List[ParsedFile] = []
        pool = ThreadPoolExecutor(max_workers=self.parse_workers, thread_name_prefix="parse")
        try:
            for start in range(0, total, PROGRESS_EVERY):
                chunk = source_files[start:start + PROGRESS_EVERY]
                results = await asyncio.gather(
                    *(loop.run_in_executor(pool, self._parse_one, root, path, job.cancel_token) for path in chunk)
                )
                parsed.extend(r for r in results if r is not None)
                processed = start + len(chunk)
                await self._step(
                    job,
                    JobPhase.PARSING,
                    30 + round(processed / max(total, 1) * 25),
                    files_processed=processed,
                )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        logger.info(f"Parsed {len(parsed)}/{total} files for {job.repo_id}")
        return parsed

    def _vectors_enabled(self) -> bool:
        if self.vector_db is None or self.embeddings is None:
            return False
        mode = self.breakers.get_degradation_mode(voyage_api_key=self.embeddings.api_key)
        return not (mode.no_vectors or mode.no_embeddings)

    async def _drop_vectors(self, repo_id: str) -> None:
        if self.vector_db is None:
            return
        try:
            await asyncio.to_thread(self.breakers.get(QDRANT).call_sync, self.vector_db.drop_repo, repo_id)
        except Exception as e:
            logger.warning(f"Failed to delete old vectors for {repo_id}: {e}")

    async def _delete_vectors_for_files(self, repo_id: str, paths: List[str]) -> None:
        if self.vector_db is None or not paths:
            return
        try:
            await asyncio.to_thread(
                self.breakers.get(QDRANT).call_sync, self.vector_db.delete_by_files, repo_id, paths
            )
        except Exception as e:
            logger.warning(f"Failed to delete old vectors for {len(paths)} files in {repo_id}: {e}")

    async def _embed(self, repo_id: str, snippets, token: CancellationToken) -> int:
        """Embed and store snippets; returns how many snippets were indexed."""
        if not self._vectors_enabled():
            logger.warning(f"Embeddings unavailable; indexed {repo_id} without vectors")
            return len(snippets)
        return await embed_and_store(
            self.embeddings,
            self.vector_db,
            repo_id,
            snippets,
            concurrency=self.embedding_concurrency,
            cancel_token=token,
            qdrant_breaker=self.breakers.get(QDRANT),
        )
