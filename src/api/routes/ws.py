"""
WebSocket progress stream

    /ws?indexId=...   or   /ws?reviewId=...

Sends the job's current snapshot, then every event published for it, and
closes after the job reaches a terminal phase. Clients only listen.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ...container import Container
from ...indexer.job_manager import is_terminal_event
from ..dependencies import get_ws_container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Events"])


@router.websocket("/ws")
async def job_events(
    websocket: WebSocket,
    indexId: Optional[str] = None,
    reviewId: Optional[str] = None,
    container: Container = Depends(get_ws_container),
):
    await websocket.accept()

    job_id = reviewId or indexId
    if not job_id:
        await websocket.close(code=4000, reason="reviewId or indexId query param required")
        return

    manager = container.job_manager
    queue = await manager.subscribe(job_id)
    if queue is None:
        await websocket.close(code=4004, reason="Job not found")
        return

    logger.debug(f"WebSocket client connected for job {job_id}")
    try:
        while True:
            event = await queue.get()
            await websocket.send_json(event)
            if is_terminal_event(event):
                break
        await websocket.close()
    except WebSocketDisconnect:
        logger.debug(f"WebSocket client disconnected from job {job_id}")
    finally:
        manager.unsubscribe(job_id, queue)
