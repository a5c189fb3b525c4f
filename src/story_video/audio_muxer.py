"""Attaching the narration track to the assembled picture."""

import logging
from pathlib import Path
from typing import Optional

from story_video.engine import EncodingEngine, ProgressCallback
from story_video.errors import AssetNotFound

logger = logging.getLogger(__name__)


class AudioMuxer:
    """Muxes narration onto a video stream without re-encoding the picture.

    The output ends with the shorter of the two inputs.
    """

    def __init__(self, engine: EncodingEngine):
        self.engine = engine

    async def mux(
        self,
        video: Path,
        narration: Path,
        output: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Mux ``narration`` onto ``video`` into ``output``.

        Raises:
            AssetNotFound: Either input is missing
            ProbeFailure: Either input's duration cannot be probed
        """
        video, narration = Path(video), Path(narration)
        if not video.is_file():
            raise AssetNotFound(f"Video stream not found: {video.name}")
        if not narration.is_file():
            raise AssetNotFound(f"Audio file not found: {narration.name}")

        video_duration = await self.engine.probe_duration(video)
        audio_duration = await self.engine.probe_duration(narration)
        expected = min(video_duration, audio_duration)

        if abs(video_duration - audio_duration) > 0.5:
            shorter = "narration" if audio_duration < video_duration else "picture"
            logger.warning(
                f"Video is {video_duration:.3f}s and narration is {audio_duration:.3f}s; "
                f"output is trimmed to the {shorter} ({expected:.3f}s)"
            )
        else:
            logger.info(f"Video duration: {video_duration:.3f}s, adding audio...")

        return await self.engine.mux_audio(
            video, narration, Path(output), expected, on_progress=on_progress
        )
