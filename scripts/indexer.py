#!/usr/bin/env python3
"""Standalone indexer script - indexes a repository and exits.

Usage:
    python scripts/indexer.py [REPO_URL_OR_PATH]

The repository defaults to $REPO_URL, then $WORKSPACE_PATH. Everything else
comes from the same environment variables as the servers, plus:
    GIT_TOKEN       access token for private clones
    BRANCH          branch to clone (default: main)
    FRAMEWORK       skip framework detection
    CHANGED_FILES   comma-separated paths for an incremental run
"""

import asyncio
import logging
import os
import sys

logger = logging.getLogger(__name__)


async def main() -> int:
    """Main indexer function."""
    # Import here to avoid issues if running from different context
    from src.config import get_env_config, setup_logging
    from src.container import build_container
    from src.indexer.job_manager import JobPhase
    from src.tools.index_tool import IndexRequest

    config = get_env_config()
    setup_logging(config["log_level"], config["log_file"])

    repo_url = sys.argv[1] if len(sys.argv) > 1 else os.getenv("REPO_URL") or os.getenv("WORKSPACE_PATH", "/workspace")
    changed = [p.strip() for p in os.getenv("CHANGED_FILES", "").split(",") if p.strip()]

    container = None
    try:
        container = build_container(config)
        request = IndexRequest(
            repo_url=repo_url,
            token=os.getenv("GIT_TOKEN"),
            branch=os.getenv("BRANCH", "main"),
            framework=os.getenv("FRAMEWORK") or None,
            incremental=bool(changed),
            changed_files=changed,
        )

        logger.info(f"Starting indexer for repository: {repo_url}")
        logger.info(f"Incremental: {request.incremental} ({len(changed)} changed files)")

        job = container.index_tool.start_indexing(request)
        await job.task

        status = container.job_manager.get_status_dict(job)
        logger.info("=" * 80)
        logger.info(f"Indexing {status['phase']}")
        logger.info(f"Repository: {status['repoId']}")
        logger.info(f"Framework: {status['framework']}")
        logger.info(f"Files processed: {status['filesProcessed']}/{status['totalFiles']}")
        logger.info(f"Snippets indexed: {status['functionsIndexed']}")
        graph = await container.graph_store.get(job.repo_id)
        if graph is not None:
            logger.info(f"Graph: {graph.counts()}")
        if status.get("error"):
            logger.error(f"Error: {status['error']}")
        logger.info("=" * 80)

        return 0 if job.phase == JobPhase.COMPLETE else 1

    except Exception as e:
        logger.error(f"Fatal error during indexing: {e}", exc_info=True)
        return 1
    finally:
        if container is not None:
            await container.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
