"""WebSocket endpoint for real-time job progress.

Relays the registry's in-process progress and status notifications to
connected clients. The stream ends once the job reaches a terminal state.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from reelworks.services.jobs import JobRegistry, JobStatus, get_job_registry

router = APIRouter()
logger = logging.getLogger(__name__)

_TERMINAL = {s.value for s in JobStatus if s.terminal}


@router.websocket("/ws/jobs/{job_id}")
async def ws_job(ws: WebSocket, job_id: str, registry: JobRegistry = Depends(get_job_registry)):
    """Stream progress snapshots for one job.

    1. Accepts the connection (closes with 4404 for unknown jobs)
    2. Sends the current snapshot, then every update
    3. Closes after the terminal snapshot
    """
    await ws.accept()
    try:
        queue = registry.subscribe(job_id)
    except KeyError:
        await ws.close(code=4404)
        return

    logger.info("WS connected: job=%s", job_id)
    try:
        while True:
            message = await queue.get()
            if message is None:
                break
            await ws.send_json(message)
            if message["status"] in _TERMINAL:
                break
        await ws.close()
    except WebSocketDisconnect:
        logger.info("WS disconnected: job=%s", job_id)
    except Exception as exc:
        logger.warning("WS error for job=%s: %s", job_id, exc)
    finally:
        registry.unsubscribe(job_id, queue)
