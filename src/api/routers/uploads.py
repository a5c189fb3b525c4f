"""Session upload routes."""

import logging
from pathlib import Path

from api.dependencies import get_config
from api.schemas import UploadResponse
from fastapi import APIRouter, File, HTTPException, Query, UploadFile

from story_video.errors import InvalidSessionId
from story_video.session_assets import (
    AUDIO_ROLE,
    BG_AUDIO_ROLE,
    IMAGES_ROLE,
    SRT_ROLE,
    VISUAL_ROLE,
    role_dir,
    validate_session_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Uploads"])

MAX_IMAGES = 100


async def save_upload(file: UploadFile, target_dir: Path) -> str:
    """Store one uploaded file under its own (basename-only) filename."""
    filename = Path(file.filename or "").name
    if not filename or filename.startswith("."):
        raise HTTPException(status_code=400, detail=f"Invalid filename: {file.filename!r}")

    target_dir.mkdir(parents=True, exist_ok=True)
    file_path = target_dir / filename
    with file_path.open("wb") as f:
        content = await file.read()
        f.write(content)
    return filename


@router.post(
    "/upload",
    response_model=UploadResponse,
    summary="Upload session files",
    description=(
        "Store narration audio, subtitle file, images, background audio and a visual "
        "into the session's per-role directories. Every field is optional."
    ),
    responses={400: {"description": "Invalid session id, filename or file count"}},
)
async def upload_files(
    session_id: str = Query(..., alias="sessionId"),
    audio: list[UploadFile] | None = File(None),
    srt: list[UploadFile] | None = File(None),
    images: list[UploadFile] | None = File(None),
    bgAudio: list[UploadFile] | None = File(None),
    visual: list[UploadFile] | None = File(None),
) -> dict:
    """Save the multipart fields of an upload into the session directory."""
    try:
        validate_session_id(session_id)
    except InvalidSessionId as e:
        raise HTTPException(status_code=400, detail=str(e))

    uploads_dir = Path(get_config()["uploads_dir"])
    fields = {
        AUDIO_ROLE: (audio or [], 1),
        SRT_ROLE: (srt or [], 1),
        IMAGES_ROLE: (images or [], MAX_IMAGES),
        BG_AUDIO_ROLE: (bgAudio or [], 1),
        VISUAL_ROLE: (visual or [], 1),
    }

    for role, (files, max_count) in fields.items():
        if len(files) > max_count:
            raise HTTPException(
                status_code=400, detail=f"Too many files for {role} (max {max_count})"
            )

    saved: dict[str, list[str]] = {}
    for role, (files, _) in fields.items():
        if not files:
            continue
        target = role_dir(uploads_dir, session_id, role)
        saved[role] = [await save_upload(f, target) for f in files]
        logger.info(f"[Upload] Saved {len(saved[role])} {role} file(s) (Session: {session_id})")

    return {"success": True, "session_id": session_id, "files": saved}
