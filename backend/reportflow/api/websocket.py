"""
WebSocket handler for real-time pipeline progress.

Streams pipeline events for one subject.
"""

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from reportflow.models.pipeline import PipelineStatus
from reportflow.models.schemas import PipelineEventType
from reportflow.services.job_manager import JobManager, get_job_manager

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

HEARTBEAT_SECONDS = 30.0
CLOSING_STATUSES = (PipelineStatus.COMPLETED, PipelineStatus.FAILED)
CLOSING_EVENTS = (PipelineEventType.PIPELINE_COMPLETED.value, PipelineEventType.PIPELINE_FAILED.value)


@router.websocket("/ws/{subject_id}")
async def pipeline_progress_websocket(
    websocket: WebSocket,
    subject_id: str,
    job_manager: JobManager = Depends(get_job_manager),
) -> None:
    """
    WebSocket endpoint for real-time pipeline progress.

    Messages are JSON objects with type, status, stage_id, progress,
    estimated_time_remaining_ms, message, timestamp and the full pipeline.
    The first message is the current state (type "snapshot").

    Connection closes when the pipeline completes or fails.

    Example client (Python):
        async with websockets.connect(f"ws://localhost:8000/ws/{subject_id}") as ws:
            async for message in ws:
                data = json.loads(message)
                print(f"{data['type']}: {data['progress']}%")
    """
    session = job_manager.get(subject_id)
    pipeline = session.orchestrator.pipeline if session else None
    if pipeline is None:
        await websocket.close(code=4004, reason=f"Pipeline not found: {subject_id}")
        return

    await websocket.accept()
    logger.info(f"WebSocket connected for {subject_id}")

    await websocket.send_json({
        "type": "snapshot",
        "status": pipeline.status.value,
        "stage_id": pipeline.current_stage.id,
        "current_stage_index": pipeline.current_stage_index,
        "progress": round(pipeline.overall_progress, 1),
        "estimated_time_remaining_ms": pipeline.estimated_time_remaining_ms,
        "message": "Connected",
        "timestamp": datetime.now().isoformat(),
        "pipeline": pipeline.model_dump(mode="json"),
    })

    if pipeline.status in CLOSING_STATUSES:
        await websocket.close()
        return

    queue = job_manager.subscribe(subject_id)

    try:
        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                await websocket.send_json(message)

                if message.get("type") in CLOSING_EVENTS:
                    break

            except asyncio.TimeoutError:
                try:
                    await websocket.send_json({"type": "heartbeat"})
                except Exception:
                    break

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for {subject_id}")
    except Exception as e:
        logger.error(f"WebSocket error for {subject_id}: {e}")
    finally:
        job_manager.unsubscribe(subject_id, queue)
        logger.info(f"WebSocket closed for {subject_id}")
