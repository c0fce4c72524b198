"""
Indexing API Routes

Endpoints:
    POST   /indexing                - Full repository indexing
    POST   /indexing/incremental    - Re-index changed files only
    POST   /indexing/force          - Full re-index of a known repository
    DELETE /indexing/{id}           - Cancel an index job
    GET    /indexing/{id}/status    - Job snapshot
    GET    /indexing/jobs           - Paginated job list
    GET    /indexing/frameworks     - Supported frameworks
    GET    /indexing/meta[/{repo}]  - Stored repository metadata
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ...container import Container
from ...indexer.framework_detector import SUPPORTED_FRAMEWORKS, normalize_framework
from ...indexer.job_manager import JobKind
from ...indexer.source_collector import is_repo_relative
from ...tools.index_tool import IndexRequest
from ..dependencies import get_container
from ..schemas import (
    ForceIndexRequest,
    IncrementalIndexRequest,
    IndexRepoRequest,
    IndexResponse,
    JobListResponse,
    MessageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Indexing"])


def _require_token(token: str) -> str:
    trimmed = token.strip()
    if not trimmed:
        raise HTTPException(status_code=400, detail="Token must not be empty")
    return trimmed


# ============================================================
# Job submission
# ============================================================


@router.post("", response_model=IndexResponse, status_code=201)
async def index_repository(req: IndexRepoRequest, container: Container = Depends(get_container)):
    """Clone, parse, graph and embed a whole repository."""
    token = _require_token(req.token)
    job = container.index_tool.start_indexing(
        IndexRequest(
            repo_url=req.repo_url.strip(),
            token=token,
            branch=req.branch or "main",
            framework=req.framework,
        )
    )
    return IndexResponse(index_id=job.job_id)


@router.post("/incremental", response_model=IndexResponse, status_code=201)
async def index_incremental(req: IncrementalIndexRequest, container: Container = Depends(get_container)):
    """Re-index only the changed files; the rest of the graph is kept."""
    token = _require_token(req.token)
    changed = [path.strip() for path in req.changed_files if path.strip()]
    if not changed:
        raise HTTPException(status_code=400, detail="changedFiles must contain at least one file")
    outside = [path for path in changed if not is_repo_relative(path)]
    if outside:
        raise HTTPException(status_code=400, detail=f"changedFiles must be repository-relative paths: {outside}")

    job = container.index_tool.start_indexing(
        IndexRequest(
            repo_url=req.repo_url.strip(),
            token=token,
            branch=req.branch or "main",
            framework=req.framework,
            incremental=True,
            changed_files=changed,
        )
    )
    logger.info(f"Incremental indexing submitted for {len(changed)} files ({job.job_id})")
    return IndexResponse(index_id=job.job_id)


@router.post("/force", response_model=IndexResponse, status_code=201)
async def index_force(req: ForceIndexRequest, container: Container = Depends(get_container)):
    """Full re-index of a repository using its stored URL, branch and framework."""
    token = _require_token(req.token)
    meta = container.repo_meta.get(req.repo_id)
    if meta is None or not meta.repo_url:
        raise HTTPException(
            status_code=404,
            detail="Repository metadata not found. Index the repository first.",
        )

    job = container.index_tool.start_indexing(
        IndexRequest(
            repo_url=meta.repo_url,
            token=token,
            branch=req.branch or meta.branch or "main",
            framework=normalize_framework(req.framework) or normalize_framework(meta.framework),
            repo_id=req.repo_id,
        )
    )
    logger.info(f"Force re-index submitted for {req.repo_id} ({job.job_id})")
    return IndexResponse(index_id=job.job_id)


# ============================================================
# Listing and metadata
# ============================================================


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    container: Container = Depends(get_container),
):
    """Index jobs, newest first."""
    manager = container.job_manager
    page, total = manager.list_jobs(JobKind.INDEX, limit=limit, offset=offset)
    next_offset = offset + limit if offset + limit < total else None
    return JobListResponse(
        jobs=[manager.get_status_dict(job) for job in page],
        total=total,
        next_offset=next_offset,
    )


@router.get("/frameworks")
async def list_frameworks():
    return {"frameworks": SUPPORTED_FRAMEWORKS}


@router.get("/meta")
async def list_repo_meta(container: Container = Depends(get_container)):
    return {"items": [meta.to_dict() for meta in container.repo_meta.list()]}


@router.get("/meta/{repo_id:path}")
async def get_repo_meta(repo_id: str, container: Container = Depends(get_container)):
    meta = container.repo_meta.get(repo_id)
    if meta is None:
        raise HTTPException(status_code=404, detail="Repository metadata not found")
    return meta.to_dict()


# ============================================================
# Single job
# ============================================================


@router.get("/{job_id}/status")
async def get_index_status(job_id: str, container: Container = Depends(get_container)):
    job = container.job_manager.get_job(job_id)
    if job is None or job.kind != JobKind.INDEX:
        raise HTTPException(status_code=404, detail="Index job not found")
    return container.job_manager.get_status_dict(job)


@router.delete("/{job_id}", response_model=MessageResponse)
async def cancel_index(job_id: str, container: Container = Depends(get_container)):
    """Cancel a queued or running index job."""
    job = container.job_manager.get_job(job_id)
    if job is None or job.kind != JobKind.INDEX:
        raise HTTPException(status_code=404, detail="Index job not found")
    message = await container.job_manager.cancel_job(job_id)
    return MessageResponse(message=message)
