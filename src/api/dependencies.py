"""FastAPI dependencies."""

from fastapi import Request, WebSocket

from ..container import Container


async def get_container(request: Request) -> Container:
    """Get Container from app state."""
    return request.app.state.container


async def get_ws_container(websocket: WebSocket) -> Container:
    return websocket.app.state.container
