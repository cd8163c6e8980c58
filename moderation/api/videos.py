from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from moderation.exceptions import RunInProgressError, VideoNotFoundError
from moderation.services.events import EventHub, SNAPSHOT, user_group, video_group
from moderation.services.pipeline import PipelineOrchestrator
import asyncio
import logging

logger = logging.getLogger(__name__)
router = APIRouter()
ws_router = APIRouter()


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    return request.app.state.orchestrator


def _run_response(handle) -> dict:
    return {
        "videoId": handle.video_id,
        "runId": handle.run_id,
        "message": "Processing started.",
    }


@router.post("/{video_id}/process", status_code=202)
async def process_video(video_id: str, request: Request):
    """Start the moderation pipeline for a pending video"""
    orchestrator = get_orchestrator(request)
    try:
        handle = orchestrator.start(video_id)
    except VideoNotFoundError:
        raise HTTPException(status_code=404, detail="Video not found")
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _run_response(handle)


@router.post("/{video_id}/reprocess", status_code=202)
async def reprocess_video(video_id: str, request: Request):
    """Reset processing and classification state, then rerun the pipeline"""
    orchestrator = get_orchestrator(request)
    try:
        handle = orchestrator.reprocess(video_id)
    except VideoNotFoundError:
        raise HTTPException(status_code=404, detail="Video not found")
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {**_run_response(handle), "message": "Reprocessing started."}


@router.get("/{video_id}/status")
async def get_status(video_id: str, request: Request):
    orchestrator = get_orchestrator(request)
    try:
        record = orchestrator.store.get(video_id)
    except VideoNotFoundError:
        raise HTTPException(status_code=404, detail="Video not found")

    payload = record.status_payload()
    active = orchestrator.active_run(video_id)
    payload["runId"] = active.run_id if active else None
    return payload


@ws_router.websocket("/ws/{user_id}")
async def events_socket(websocket: WebSocket, user_id: str):
    """
    Live processing events. The connection always receives its user's events;
    send {"action": "subscribe" | "unsubscribe", "videoId": ...} to follow a video.
    """
    hub: EventHub = websocket.app.state.hub
    orchestrator: PipelineOrchestrator = websocket.app.state.orchestrator
    await websocket.accept()

    queue = hub.subscribe(user_group(user_id))
    groups = {user_group(user_id)}

    async def forward():
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(forward())
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                logger.warning(f"Ignoring non-JSON message from user {user_id}")
                continue
            if not isinstance(message, dict):
                logger.warning(f"Ignoring malformed message from user {user_id}: {message!r}")
                continue
            action = message.get("action")
            video_id = message.get("videoId")
            if not video_id:
                continue

            if action == "subscribe":
                hub.subscribe(video_group(video_id), queue)
                groups.add(video_group(video_id))
                logger.info(f"User {user_id} subscribed to video {video_id}")
                # Late joiners only get the persisted state, never a replay
                try:
                    record = orchestrator.store.get(video_id)
                    await websocket.send_json({"event": SNAPSHOT, "data": record.status_payload()})
                except VideoNotFoundError:
                    await websocket.send_json({"event": SNAPSHOT, "data": {"videoId": video_id, "error": "Video not found"}})
            elif action == "unsubscribe":
                hub.unsubscribe(video_group(video_id), queue)
                groups.discard(video_group(video_id))
    except WebSocketDisconnect:
        logger.info(f"Socket disconnected for user {user_id}")
    finally:
        sender.cancel()
        for group in groups:
            hub.unsubscribe(group, queue)
        results = await asyncio.gather(sender, return_exceptions=True)
        if isinstance(results[0], Exception):
            logger.error(f"Event forwarding failed for user {user_id}: {results[0]}")
