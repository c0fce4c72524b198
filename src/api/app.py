"""FastAPI application: HTTP and WebSocket surface over the shared container."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import get_env_config, setup_logging
from ..container import Container, build_container
from .routes import graph, health, indexing, review, ws

logger = logging.getLogger(__name__)


def create_app(container: Optional[Container] = None) -> FastAPI:
    """Create the application.

    Args:
        container: Pre-built components (built from the environment on startup when None)

    Returns:
        The FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.container is None
        if owned:
            app.state.container = build_container()
        # Probe parser backends once before the first job needs them
        await app.state.container.registry.ensure_backends_loaded()
        logger.info("API ready")
        yield
        if owned:
            await app.state.container.close()

    app = FastAPI(
        title="Codebase Index",
        description="Repository indexing, knowledge graphs and pull-request review",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(indexing.router, prefix="/indexing")
    app.include_router(graph.router, prefix="/graph")
    app.include_router(review.router, prefix="/review")
    app.include_router(health.router)
    app.include_router(ws.router)
    return app


def main():
    config = get_env_config()
    setup_logging(config["log_level"], config["log_file"])
    logger.info("Starting Codebase Index API...")
    uvicorn.run(create_app(), host=config["api_host"], port=config["api_port"])


if __name__ == "__main__":
    main()
