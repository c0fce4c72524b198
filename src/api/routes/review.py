"""
Review API Routes

Endpoints:
    POST   /review              - Start a pull-request review
    GET    /review/{id}/status  - Job snapshot
    DELETE /review/{id}         - Cancel a review
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ...container import Container
from ...indexer.job_manager import JobKind
from ..dependencies import get_container
from ..schemas import MessageResponse, ReviewRequest, ReviewResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Review"])


@router.post("", response_model=ReviewResponse, status_code=201)
async def start_review(req: ReviewRequest, container: Container = Depends(get_container)):
    token = req.token.strip()
    if not token:
        raise HTTPException(status_code=400, detail="Token must not be empty")

    try:
        job = container.review_tool.start_review(req.pr_url.strip(), token, post_comments=req.post_comments)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Bitbucket PR URL format")
    return ReviewResponse(review_id=job.job_id)


@router.get("/{job_id}/status")
async def get_review_status(job_id: str, container: Container = Depends(get_container)):
    job = container.job_manager.get_job(job_id)
    if job is None or job.kind != JobKind.REVIEW:
        raise HTTPException(status_code=404, detail="Review not found")
    return container.job_manager.get_status_dict(job)


@router.delete("/{job_id}", response_model=MessageResponse)
async def cancel_review(job_id: str, container: Container = Depends(get_container)):
    job = container.job_manager.get_job(job_id)
    if job is None or job.kind != JobKind.REVIEW:
        raise HTTPException(status_code=404, detail="Review not found")
    message = await container.job_manager.cancel_job(job_id)
    return MessageResponse(message=message)
