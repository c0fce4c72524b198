"""FastMCP server exposing indexing, graph and search tools to coding agents."""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import get_env_config, setup_logging
from .container import Container, build_container
from .indexer.framework_detector import FRAMEWORK_IDS, normalize_framework
from .indexer.job_manager import JobKind
from .indexer.source_collector import is_repo_relative
from .tools.index_tool import IndexRequest

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("codebase-index")

# Global components (initialized on startup)
container: Optional[Container] = None


def initialize_components(config: Optional[dict] = None) -> Container:
    """Initialize all components on startup."""
    global container
    logger.info("Initializing Codebase Index MCP server...")
    try:
        container = build_container(config)
    except Exception as e:
        logger.error(f"Error during initialization: {e}")
        raise
    logger.info("All components initialized successfully!")
    return container


@mcp.tool()
async def index_repository(
    repo_url: str,
    token: Optional[str] = None,
    branch: str = "main",
    framework: Optional[str] = None,
    changed_files: Optional[str] = None,
) -> dict:
    """Index a repository into the knowledge graph and the vector store.

    Runs in the background; poll get_job_status with the returned job_id.

    Args:
        repo_url: Clone URL, or a local directory / file:// URL to index in place
        token: Access token for cloning private repositories
        branch: Branch to clone (default: main)
        framework: One of react, typescript, java, spring-boot, flutter, ftl (detected if omitted)
        changed_files: Comma-separated repository-relative paths; re-indexes only these files

    Returns:
        Dictionary with the job_id and repo_id
    """
    if not container:
        return {"success": False, "error": "Server not initialized"}

    if framework and not normalize_framework(framework):
        return {"success": False, "error": f"Unknown framework {framework}; expected one of {FRAMEWORK_IDS}"}

    changed = [p.strip() for p in changed_files.split(",") if p.strip()] if changed_files else []
    outside = [p for p in changed if not is_repo_relative(p)]
    if outside:
        return {"success": False, "error": f"changed_files must be repository-relative paths: {outside}"}
    try:
        job = container.index_tool.start_indexing(
            IndexRequest(
                repo_url=repo_url.strip(),
                token=token.strip() if token else None,
                branch=branch or "main",
                framework=normalize_framework(framework),
                incremental=bool(changed),
                changed_files=changed,
            )
        )
    except Exception as e:
        logger.error(f"Error starting indexing for {repo_url}: {e}")
        return {"success": False, "error": str(e)}

    return {
        "success": True,
        "job_id": job.job_id,
        "repo_id": job.repo_id,
        "incremental": bool(changed),
        "message": f"Indexing started. Check progress with get_job_status('{job.job_id}')",
    }


@mcp.tool()
def get_job_status(job_id: str) -> dict:
    """Get the status and progress of an indexing or review job.

    Args:
        job_id: Job identifier returned from index_repository

    Returns:
        Dictionary with job status and progress information
    """
    if not container:
        return {"success": False, "error": "Server not initialized"}

    job = container.job_manager.get_job(job_id)
    if not job:
        return {"success": False, "error": f"Job {job_id} not found"}

    return {
        "success": True,
        **container.job_manager.get_status_dict(job),
    }


@mcp.tool()
def list_indexing_jobs(limit: int = 20, offset: int = 0) -> dict:
    """List indexing jobs, newest first.

    Args:
        limit: Maximum number of jobs to return (default: 20)
        offset: Number of jobs to skip

    Returns:
        Dictionary with the page of jobs and the total count
    """
    if not container:
        return {"success": False, "error": "Server not initialized"}

    manager = container.job_manager
    jobs, total = manager.list_jobs(JobKind.INDEX, limit=max(1, min(limit, 100)), offset=max(0, offset))

    return {
        "success": True,
        "total_jobs": total,
        "jobs": [manager.get_status_dict(job) for job in jobs],
    }


@mcp.tool()
async def cancel_indexing_job(job_id: str) -> dict:
    """Cancel a queued or running job.

    Args:
        job_id: Job identifier to cancel

    Returns:
        Dictionary indicating success or failure
    """
    if not container:
        return {"success": False, "error": "Server not initialized"}

    message = await container.job_manager.cancel_job(job_id)
    if message is None:
        return {"success": False, "error": f"Job {job_id} not found"}

    return {"success": True, "message": message}


@mcp.tool()
def get_symbols(
    file_path: str,
    symbol_type: Optional[str] = None,
) -> dict:
    """Extract symbols (functions, classes, methods, imports, exports) from a source file.

    Args:
        file_path: Path to the source file
        symbol_type: Filter by symbol type (e.g., "function", "class", "method")

    Returns:
        Dictionary with extracted symbols including names, types, and line numbers
    """
    if not container:
        return {"success": False, "error": "Server not initialized"}

    return container.symbol_tool.get_symbols(file_path, symbol_type)


@mcp.tool()
async def search_code(
    repo_id: str,
    query: str,
    limit: int = 10,
    file_path: Optional[str] = None,
) -> dict:
    """Search an indexed repository with a natural language or code query.

    Args:
        repo_id: Repository identifier (e.g., "workspace/repo-slug" or "local/my-app")
        query: Search query (e.g., "token refresh", "parse config file")
        limit: Maximum number of results to return (default: 10)
        file_path: Only return snippets from this repository-relative file

    Returns:
        Dictionary with search results including code previews, file paths, and scores
    """
    if not container:
        return {"success": False, "error": "Server not initialized"}

    return await container.search_tool.search_code(repo_id, query, limit, file_path)


@mcp.tool()
async def get_repo_graph(repo_id: str, view: str = "overview") -> dict:
    """Get the knowledge graph of an indexed repository.

    Args:
        repo_id: Repository identifier
        view: "overview" (files and aggregated cross-file links) or "full" (every symbol)

    Returns:
        Dictionary with nodes and links
    """
    if not container:
        return {"success": False, "error": "Server not initialized"}
    if view not in ("overview", "full"):
        return {"success": False, "error": f"Unknown view: {view}"}

    try:
        graph = await container.graph_store.get(repo_id)
        if graph is None:
            return {"success": False, "error": f"No graph for repository {repo_id}"}
        data = graph.full() if view == "full" else graph.overview()
        return {"success": True, "repo_id": repo_id, "counts": graph.counts(), **data}
    except Exception as e:
        logger.error(f"Error reading graph for {repo_id}: {e}")
        return {"success": False, "error": str(e)}


@mcp.tool()
async def health_check() -> dict:
    """Check health status of all components.

    Returns:
        Dictionary with store health, circuit breaker states, and degradation mode
    """
    if not container:
        return {"success": False, "error": "Server not initialized"}

    try:
        return {"success": True, **await container.health()}
    except Exception as e:
        logger.error(f"Error during health check: {e}")
        return {"success": False, "error": str(e)}


if __name__ == "__main__":
    config = get_env_config()
    setup_logging(config["log_level"], config["log_file"])

    logger.info("Starting Codebase Index MCP Server...")
    initialize_components(config)
    logger.info("Server ready!")

    # Run the MCP server (blocks until shutdown)
    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise
