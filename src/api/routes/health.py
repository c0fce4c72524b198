"""
Health and Metrics API Routes

Endpoints:
    GET /health            - Liveness
    GET /health/services   - Store health, circuit breakers and degradation mode
    GET /metrics           - Circuit breakers, degradation mode and job counts
"""

import time

from fastapi import APIRouter, Depends

from ...container import Container
from ...indexer.job_manager import JobKind
from ..dependencies import get_container

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": time.time()}


@router.get("/health/services")
async def health_services(container: Container = Depends(get_container)):
    report = await container.health()
    services_ok = all(report["services"].values())
    breakers_ok = all(b["state"] != "OPEN" for b in report["circuitBreakers"].values())
    return {
        "status": "ok" if services_ok and breakers_ok else "degraded",
        **report,
        "timestamp": time.time(),
    }


@router.get("/metrics")
async def metrics(container: Container = Depends(get_container)):
    manager = container.job_manager
    return {
        "circuitBreakers": container.breakers.get_states(),
        "degradation": container.degradation().to_dict(),
        "jobs": {
            "index": manager.phase_counts(JobKind.INDEX),
            "review": manager.phase_counts(JobKind.REVIEW),
        },
    }
