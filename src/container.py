"""Wiring of every long-lived component from the environment configuration."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import get_env_config
from .graph_db.neo4j_client import CodeGraphDB
from .indexer.embeddings import VoyageEmbeddings
from .indexer.graph_store import GraphStore
from .indexer.job_manager import JobManager
from .indexer.parsers.registry import ParserRegistry, get_parser_registry
from .indexer.repo_meta import RepoMetaStore
from .resilience.breakers import BITBUCKET, MEMGRAPH, VOYAGE, BreakerRegistry, DegradationMode, get_breaker_registry
from .tools.index_tool import IndexingTool
from .tools.review_tool import ReviewTool
from .tools.search_tool import SearchTool
from .tools.symbol_tool import SymbolTool
from .vcs.bitbucket_client import BitbucketClient
from .vector_db.qdrant_client import CodeVectorDB

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Components shared by the HTTP API, the MCP server and the CLI."""

    config: Dict[str, Any]
    breakers: BreakerRegistry
    job_manager: JobManager
    graph_store: GraphStore
    repo_meta: RepoMetaStore
    registry: ParserRegistry
    embeddings: VoyageEmbeddings
    vector_db: Optional[CodeVectorDB]
    bitbucket: BitbucketClient
    index_tool: IndexingTool
    review_tool: ReviewTool
    search_tool: SearchTool
    symbol_tool: SymbolTool
    graph_db: Optional[CodeGraphDB] = None

    async def health(self) -> Dict[str, Any]:
        """Store health, breaker states and degradation mode."""
        vector_ok = False
        if self.vector_db is not None:
            try:
                vector_ok = self.vector_db.health_check()
            except Exception as e:
                logger.error(f"Vector database health check failed: {e}")

        return {
            "services": {
                "graphDb": await self.graph_store.health_check(),
                "vectorDb": vector_ok,
                "embeddings": self.embeddings.configured,
            },
            "circuitBreakers": self.breakers.get_states(),
            "degradation": self.degradation().to_dict(),
        }

    def degradation(self) -> DegradationMode:
        return self.breakers.get_degradation_mode(voyage_api_key=self.embeddings.api_key)

    async def close(self) -> None:
        await self.embeddings.close()
        await self.bitbucket.close()
        if self.graph_db is not None:
            self.graph_db.close()


def _connect_graph_db(config: Dict[str, Any]) -> Optional[CodeGraphDB]:
    if not config["enable_graph_db"]:
        logger.info("Graph database disabled (set ENABLE_GRAPH_DB=true to enable)")
        return None
    try:
        graph_db = CodeGraphDB(config["graph_db_uri"], config["graph_db_user"], config["graph_db_password"])
        graph_db.create_indexes()
        return graph_db
    except Exception as e:
        logger.warning(f"Graph database unavailable, keeping graphs in memory only: {e}")
        return None


def _connect_vector_db(config: Dict[str, Any]) -> Optional[CodeVectorDB]:
    if not config["enable_vector_db"]:
        logger.info("Vector database disabled (set ENABLE_VECTOR_DB=true to enable)")
        return None
    try:
        logger.info(f"Connecting to Qdrant at {config['qdrant_host']}:{config['qdrant_port']}")
        return CodeVectorDB(host=config["qdrant_host"], port=config["qdrant_port"])
    except Exception as e:
        logger.warning(f"Vector database unavailable, semantic search disabled: {e}")
        return None


def build_container(
    config: Optional[Dict[str, Any]] = None,
    breakers: Optional[BreakerRegistry] = None,
) -> Container:
    """Build every component from configuration.

    Stores that cannot be reached are left out; the rest of the system runs
    degraded without them.

    Args:
        config: Configuration dict (defaults to get_env_config())
        breakers: Breaker registry (defaults to the shared one)

    Returns:
        The wired container
    """
    config = config or get_env_config()
    breakers = breakers or get_breaker_registry()
    logger.info("Initializing components...")

    graph_db = _connect_graph_db(config)
    vector_db = _connect_vector_db(config)

    if not config["voyage_api_key"]:
        logger.warning("VOYAGE_API_KEY not set; indexing will run without embeddings")
    embeddings = VoyageEmbeddings(
        api_key=config["voyage_api_key"],
        api_url=config["voyage_api_url"],
        model=config["embedding_model"],
        cache_dir=config["cache_path"],
        breaker=breakers.get(VOYAGE),
    )

    job_manager = JobManager()
    graph_store = GraphStore(graph_db, breaker=breakers.get(MEMGRAPH))
    repo_meta = RepoMetaStore(Path(config["index_path"]))
    registry = get_parser_registry()
    bitbucket = BitbucketClient(config["bitbucket_api_url"], breaker=breakers.get(BITBUCKET))

    index_tool = IndexingTool(
        job_manager,
        graph_store,
        repo_meta,
        clone_dir=Path(config["clone_dir"]),
        registry=registry,
        embeddings=embeddings,
        vector_db=vector_db,
        breakers=breakers,
        parse_workers=config["parse_workers"],
        embedding_concurrency=config["embedding_concurrency"],
    )
    review_tool = ReviewTool(job_manager, graph_store, bitbucket, breakers=breakers)

    container = Container(
        config=config,
        breakers=breakers,
        job_manager=job_manager,
        graph_store=graph_store,
        repo_meta=repo_meta,
        registry=registry,
        embeddings=embeddings,
        vector_db=vector_db,
        bitbucket=bitbucket,
        index_tool=index_tool,
        review_tool=review_tool,
        search_tool=SearchTool(vector_db, embeddings, breakers=breakers),
        symbol_tool=SymbolTool(registry),
        graph_db=graph_db,
    )
    logger.info(
        f"Components ready (graph db: {graph_db is not None}, vector db: {vector_db is not None}, "
        f"embeddings: {embeddings.configured})"
    )
    return container


# Global container instance
_container: Optional[Container] = None


def get_container() -> Container:
    """Get the global container instance, building it on first use."""
    global _container
    if _container is None:
        _container = build_container()
    return _container
