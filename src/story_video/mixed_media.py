"""Mixed-media pipeline: one looped visual under a narration/background mix.

The job shape is simpler than a story: no scene plan, just one image or
video looped for as long as the foreground narration lasts, with an
attenuated background track looped and mixed underneath. Looped inputs
never end on their own, so the output length is pinned to the probed
narration duration.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from story_video.engine import EncodingEngine, ProgressCallback
from story_video.errors import InputMissing, PipelineError, ProbeFailure
from story_video.models import MixedAssets

logger = logging.getLogger(__name__)

DEFAULT_BACKGROUND_VOLUME = 0.3
DEFAULT_FRAME_RATE = 30
MAX_BACKGROUND_VOLUME = 4.0
MAX_FRAME_RATE = 120

IMAGE_INPUT_RE = re.compile(r"\.(jpg|jpeg|png|bmp|gif|webp)$", re.IGNORECASE)


def is_image_input(path: Path) -> bool:
    """Classify the visual input by its extension."""
    return bool(IMAGE_INPUT_RE.search(Path(path).name))


class MixedMediaPipeline:
    """Probe-then-mix job on top of the encoding engine."""

    def __init__(
        self,
        engine: EncodingEngine,
        default_volume: float = DEFAULT_BACKGROUND_VOLUME,
        default_frame_rate: int = DEFAULT_FRAME_RATE,
    ):
        self.engine = engine
        self.default_volume = default_volume
        self.default_frame_rate = default_frame_rate

    @classmethod
    def from_config(cls, engine: EncodingEngine, config: dict) -> "MixedMediaPipeline":
        return cls(
            engine,
            default_volume=float(config.get("default_bg_volume", DEFAULT_BACKGROUND_VOLUME)),
            default_frame_rate=int(config.get("default_mixed_fps", DEFAULT_FRAME_RATE)),
        )

    @staticmethod
    def validate_inputs(assets: MixedAssets) -> None:
        """Raise ``InputMissing`` for the first absent input."""
        if not Path(assets.visual).is_file():
            raise InputMissing("Visual (Image/Video) missing")
        if not Path(assets.narration).is_file():
            raise InputMissing("Main audio missing")
        if not Path(assets.background).is_file():
            raise InputMissing("Background audio missing")

    def resolve_settings(
        self, background_volume: Optional[float], frame_rate: Optional[int]
    ) -> tuple[float, int]:
        """Apply defaults and range checks to the caller's mix settings."""
        volume = self.default_volume if background_volume is None else float(background_volume)
        fps = self.default_frame_rate if frame_rate is None else int(frame_rate)
        if not 0.0 <= volume <= MAX_BACKGROUND_VOLUME:
            raise PipelineError(f"Background volume must be between 0 and {MAX_BACKGROUND_VOLUME}")
        if not 1 <= fps <= MAX_FRAME_RATE:
            raise PipelineError(f"Frame rate must be between 1 and {MAX_FRAME_RATE}")
        return volume, fps

    async def probe_target_duration(self, narration: Path) -> float:
        """Duration of the foreground narration; the output is pinned to it."""
        duration = await self.engine.probe_duration(Path(narration))
        if duration <= 0:
            raise ProbeFailure(f"Failed to probe main audio: invalid duration {duration}")
        logger.info(f"Main audio duration: {duration:.3f}s")
        return duration

    async def mix(
        self,
        assets: MixedAssets,
        output: Path,
        duration: float,
        background_volume: float,
        frame_rate: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Render the looped visual with the mixed audio into ``output``."""
        self.validate_inputs(assets)
        is_image = is_image_input(assets.visual)
        logger.info(
            f"Mixing {'image' if is_image else 'video'} {Path(assets.visual).name} "
            f"for {duration:.3f}s at {frame_rate}fps, background volume {background_volume}"
        )
        return await self.engine.mix_and_apply(
            Path(assets.visual),
            is_image,
            Path(assets.narration),
            Path(assets.background),
            background_volume,
            duration,
            frame_rate,
            Path(output),
            on_progress=on_progress,
        )
