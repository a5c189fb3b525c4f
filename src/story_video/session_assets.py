"""Resolution of a session's upload directories into run inputs.

Uploads are stored under ``<uploads>/<session>/<role>/`` with one directory
per role. A role that holds a single file contributes its first file in
natural order; the ``images`` role contributes every image.
"""

import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from story_video.errors import InputMissing, InvalidSessionId
from story_video.models import MixedAssets, StoryAssets
from story_video.scene_deriver import list_images, natural_sorted

logger = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

AUDIO_ROLE = "audio"
SRT_ROLE = "srt"
IMAGES_ROLE = "images"
BG_AUDIO_ROLE = "bgAudio"
VISUAL_ROLE = "visual"

UPLOAD_ROLES = (AUDIO_ROLE, SRT_ROLE, IMAGES_ROLE, BG_AUDIO_ROLE, VISUAL_ROLE)


def validate_session_id(session_id: str) -> str:
    """Return ``session_id`` if it is a safe single path component."""
    if not isinstance(session_id, str) or not SESSION_ID_RE.match(session_id):
        raise InvalidSessionId(f"Invalid session id: {session_id!r}")
    return session_id


def session_dir(uploads_dir: Path, session_id: str) -> Path:
    return Path(uploads_dir) / validate_session_id(session_id)


def role_dir(uploads_dir: Path, session_id: str, role: str) -> Path:
    if role not in UPLOAD_ROLES:
        raise ValueError(f"Unknown upload role: {role}")
    return session_dir(uploads_dir, session_id) / role


def first_file(directory: Path) -> Optional[Path]:
    """First visible regular file of ``directory`` in natural order."""
    directory = Path(directory)
    if not directory.is_dir():
        return None
    names = [f.name for f in directory.iterdir() if f.is_file() and not f.name.startswith(".")]
    if not names:
        return None
    return directory / natural_sorted(names)[0]


def resolve_story_assets(uploads_dir: Path, session_id: str) -> StoryAssets:
    """Locate narration, subtitles and images of a story session.

    Raises:
        InvalidSessionId: The session id is unsafe
        InputMissing: A role directory is absent or empty
    """
    narration = first_file(role_dir(uploads_dir, session_id, AUDIO_ROLE))
    if narration is None:
        raise InputMissing("Narration audio missing")

    subtitles = first_file(role_dir(uploads_dir, session_id, SRT_ROLE))
    if subtitles is None:
        raise InputMissing("Subtitle file missing")

    image_dir = role_dir(uploads_dir, session_id, IMAGES_ROLE)
    if not list_images(image_dir):
        raise InputMissing("No images uploaded")

    return StoryAssets(narration=narration, subtitles=subtitles, image_dir=image_dir)


def resolve_mixed_assets(uploads_dir: Path, session_id: str) -> MixedAssets:
    """Locate the visual, narration and background track of a mixed session."""
    visual = first_file(role_dir(uploads_dir, session_id, VISUAL_ROLE))
    if visual is None:
        raise InputMissing("Visual (Image/Video) missing")

    narration = first_file(role_dir(uploads_dir, session_id, AUDIO_ROLE))
    if narration is None:
        raise InputMissing("Main audio missing")

    background = first_file(role_dir(uploads_dir, session_id, BG_AUDIO_ROLE))
    if background is None:
        raise InputMissing("Background audio missing")

    return MixedAssets(visual=visual, narration=narration, background=background)


def remove_session_uploads(uploads_dir: Path, session_id: str) -> bool:
    """Delete a session's upload directory; returns whether anything was removed."""
    target = session_dir(uploads_dir, session_id)
    if not target.exists():
        return False
    try:
        shutil.rmtree(target)
    except OSError as e:
        logger.warning(f"Failed to remove uploads for session {session_id}: {e}")
        return False
    logger.info(f"Removed uploads for session {session_id}")
    return True
