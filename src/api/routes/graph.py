"""
Knowledge Graph API Routes

Endpoints:
    GET /graph/repos       - Indexed repositories with node counts
    GET /graph/{repoId}    - Graph of one repository (view=overview|full)
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from ...container import Container
from ..dependencies import get_container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Graph"])


@router.get("/repos")
async def list_repos(container: Container = Depends(get_container)):
    """Every repository with a knowledge graph."""
    return {"repos": await container.graph_store.list_repos()}


@router.get("/{repo_id:path}")
async def get_graph(
    repo_id: str,
    view: Literal["overview", "full"] = Query("overview"),
    container: Container = Depends(get_container),
):
    """Nodes and links of a repository graph.

    The overview shows files only, with symbol-level links aggregated per
    file pair. The full view returns every node and every live link.
    """
    graph = await container.graph_store.get(repo_id)
    if graph is None:
        raise HTTPException(status_code=404, detail=f"No graph for repository {repo_id}")

    data = graph.full() if view == "full" else graph.overview()
    logger.info(f"Graph {view} for {repo_id}: {len(data['nodes'])} nodes, {len(data['links'])} links")
    return data
