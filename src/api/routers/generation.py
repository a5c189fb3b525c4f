"""Generation routes: run triggers, run history and the session WebSocket."""

import json
import logging

from api.dependencies import get_orchestrator, get_run_store, get_ws_manager
from api.schemas import (
    MixedGenerateRequest,
    RunAcceptedResponse,
    RunListResponse,
    RunResponse,
    StoryGenerateRequest,
)
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from story_video.errors import InvalidSessionId, PipelineError, RunAlreadyActive
from story_video.models import PipelineRun
from story_video.session_assets import validate_session_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Generation"])


async def launch_story(session_id: str) -> PipelineRun:
    """Schedule a story run and record it in the run store."""
    run = get_orchestrator().start_story(session_id)
    await get_run_store().create_run(run)
    return run


async def launch_mixed(
    session_id: str, background_volume: float | None, frame_rate: int | None
) -> PipelineRun:
    """Schedule a mixed-media run and record it in the run store."""
    run = get_orchestrator().start_mixed(
        session_id, background_volume=background_volume, frame_rate=frame_rate
    )
    await get_run_store().create_run(run)
    return run


def _accepted(run: PipelineRun) -> JSONResponse:
    return JSONResponse(
        status_code=202,
        content={"run_id": run.run_id, "session_id": run.session_id, "status": "queued"},
    )


def _http_error(error: PipelineError) -> HTTPException:
    if isinstance(error, RunAlreadyActive):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


@router.post(
    "/api/generate/story",
    response_model=RunAcceptedResponse,
    status_code=202,
    summary="Start story generation",
    description="Render the session's narration, subtitles and images into a video. Returns the run ID immediately.",
    responses={400: {"description": "Invalid session id"}, 409: {"description": "Session already has an active run"}},
)
async def generate_story(request: StoryGenerateRequest) -> JSONResponse:
    """Start a story run for an uploaded session."""
    try:
        run = await launch_story(request.session_id)
    except (InvalidSessionId, RunAlreadyActive) as e:
        raise _http_error(e)
    return _accepted(run)


@router.post(
    "/api/generate/mixed",
    response_model=RunAcceptedResponse,
    status_code=202,
    summary="Start mixed-media generation",
    description="Loop the session's visual under its narration mixed with a background track.",
    responses={400: {"description": "Invalid session id"}, 409: {"description": "Session already has an active run"}},
)
async def generate_mixed(request: MixedGenerateRequest) -> JSONResponse:
    """Start a mixed-media run for an uploaded session."""
    try:
        run = await launch_mixed(request.session_id, request.background_volume, request.frame_rate)
    except (InvalidSessionId, RunAlreadyActive) as e:
        raise _http_error(e)
    return _accepted(run)


@router.get(
    "/api/runs",
    response_model=RunListResponse,
    summary="List runs",
    description="List recorded runs, newest first, optionally filtered by session and status.",
)
async def list_runs(
    session_id: str | None = Query(None),
    status: str | None = Query(None, pattern="^(queued|running|completed|failed)$"),
    limit: int = Query(50, ge=1, le=500),
) -> dict:
    """List runs from the run store."""
    runs = await get_run_store().list_runs(session_id=session_id, status=status, limit=limit)
    return {"runs": runs}


@router.get(
    "/api/runs/{run_id}",
    response_model=RunResponse,
    summary="Get run status",
    responses={404: {"description": "Run not found"}},
)
async def get_run(run_id: str) -> dict:
    """Get one run's persisted state."""
    run = await get_run_store().get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


async def _handle_client_message(websocket: WebSocket, session_id: str, raw: str) -> None:
    """Dispatch one text frame received on a session socket."""
    if raw == "ping":
        await websocket.send_text("pong")
        return

    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_json({"type": "error", "message": "Invalid message"})
        return
    if not isinstance(message, dict):
        await websocket.send_json({"type": "error", "message": "Invalid message"})
        return

    kind = message.get("type")
    try:
        if kind == "start-generation":
            run = await launch_story(session_id)
        elif kind == "start-mixed-generation":
            volume = message.get("bgVolume")
            framerate = message.get("framerate")
            run = await launch_mixed(
                session_id,
                float(volume) if volume is not None else None,
                int(framerate) if framerate is not None else None,
            )
        else:
            await websocket.send_json({"type": "error", "message": f"Unknown message type: {kind}"})
            return
    except RunAlreadyActive as e:
        await websocket.send_json({"type": "error", "message": str(e)})
        return
    except (TypeError, ValueError):
        await websocket.send_json({"type": "error", "message": "Invalid mix settings"})
        return

    await websocket.send_json({"type": "accepted", "run_id": run.run_id})


@router.websocket("/ws/{session_id}")
async def websocket_session(websocket: WebSocket, session_id: str) -> None:
    """WebSocket endpoint for starting runs and receiving their events.

    Args:
        websocket: WebSocket connection
        session_id: Session whose runs are started and monitored
    """
    try:
        validate_session_id(session_id)
    except InvalidSessionId as e:
        await websocket.accept()
        await websocket.send_json({"type": "error", "message": str(e)})
        await websocket.close()
        return

    ws_manager = get_ws_manager()
    await ws_manager.connect(session_id, websocket)

    try:
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                break
            await _handle_client_message(websocket, session_id, data)
    except Exception as e:
        logger.error(f"WebSocket error for session {session_id}: {e}")
    finally:
        ws_manager.disconnect(session_id, websocket)
