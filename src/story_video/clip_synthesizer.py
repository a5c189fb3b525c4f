"""Ken Burns clip synthesis for single scenes.

Each scene becomes one silent clip of exactly the scene's duration with a
slow constant-rate dolly-in and, away from the edges of the story, short
fades that act as crossfades once the clips are joined back to back.

The zoompan generator derives its frame count from a float duration, so it
is asked for a fixed safety margin of extra frames and the output is then
hard-truncated with ``-t``. Under-shooting would expose frozen or black
frames at the end of the clip.
"""

import asyncio
import logging
import math
from pathlib import Path
from typing import Awaitable, Callable, Optional

from story_video.engine import EncodingEngine, ProgressCallback
from story_video.errors import AssetNotFound, InvalidScene
from story_video.models import FadeSpec, RenderProfile, Scene, ZoomRange

logger = logging.getLogger(__name__)

DEFAULT_ZOOM_RATE = 0.08  # zoom gained per second of scene
DEFAULT_CROSSFADE_DURATION = 0.3
DEFAULT_SAFETY_SECONDS = 2.0

ClipStartedCallback = Callable[[int, int], Awaitable[None]]


def zoom_range_for(duration: float, zoom_rate: float = DEFAULT_ZOOM_RATE) -> ZoomRange:
    """Zoom from 1.0x to ``1.0 + duration * zoom_rate``."""
    return ZoomRange(start=1.0, end=1.0 + duration * zoom_rate)


def fade_spec_for(position: int, total: int, fade_duration: float = DEFAULT_CROSSFADE_DURATION) -> FadeSpec:
    """No fade-in on the first clip and no fade-out on the last."""
    return FadeSpec(
        fade_in=position > 0,
        fade_out=position < total - 1,
        duration=fade_duration,
    )


def zoompan_frame_count(duration: float, fps: int, safety_seconds: float = DEFAULT_SAFETY_SECONDS) -> int:
    """Frames the zoom generator must emit, including the safety margin."""
    return math.ceil((duration + safety_seconds) * fps)


def build_ken_burns_filter(
    duration: float,
    zoom: ZoomRange,
    fade: FadeSpec,
    profile: RenderProfile,
    safety_seconds: float = DEFAULT_SAFETY_SECONDS,
) -> str:
    """Build the ``-vf`` chain: centred zoompan followed by edge fades.

    The zoom increment is spread over the frames of the real duration, so the
    end zoom is reached exactly at the cut point and held through the margin.
    """
    if duration <= 0:
        raise InvalidScene(f"Cannot build a clip of {duration:.3f}s")

    total_frames = zoompan_frame_count(duration, profile.fps, safety_seconds)
    increment = (zoom.end - zoom.start) / (duration * profile.fps)

    filters = [
        f"zoompan=z='min({zoom.start:.6f}+on*{increment:.8f},{zoom.end:.6f})':"
        f"d={total_frames}:"
        f"x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)':"
        f"s={profile.size}:fps={profile.fps}"
    ]

    fade_length = fade.clamped_duration(duration)
    if fade_length > 0:
        if fade.fade_in:
            filters.append(f"fade=t=in:st=0:d={fade_length:.3f}")
        if fade.fade_out:
            filters.append(f"fade=t=out:st={fade.fade_out_start(duration):.6f}:d={fade_length:.3f}")

    return ",".join(filters)


class ClipSynthesizer:
    """Renders scenes into fixed-duration clips through the encoding engine."""

    def __init__(
        self,
        engine: EncodingEngine,
        zoom_rate: float = DEFAULT_ZOOM_RATE,
        crossfade_duration: float = DEFAULT_CROSSFADE_DURATION,
        max_parallel: int = 1,
    ):
        self.engine = engine
        self.zoom_rate = zoom_rate
        self.crossfade_duration = crossfade_duration
        self.max_parallel = max(1, max_parallel)

    @classmethod
    def from_config(cls, engine: EncodingEngine, config: dict) -> "ClipSynthesizer":
        return cls(
            engine,
            zoom_rate=float(config.get("zoom_rate", DEFAULT_ZOOM_RATE)),
            crossfade_duration=float(config.get("crossfade_duration", DEFAULT_CROSSFADE_DURATION)),
            max_parallel=int(config.get("max_parallel_clips", 1)),
        )

    @staticmethod
    def clip_path(work_dir: Path, scene: Scene) -> Path:
        return Path(work_dir) / f"clip_{scene.index:03d}.mp4"

    async def synthesize(
        self,
        scene: Scene,
        position: int,
        total: int,
        work_dir: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Render one scene into ``work_dir``.

        Args:
            scene: Scene to render
            position: Ordinal position of the scene in the story
            total: Number of scenes in the story
            work_dir: Run working directory receiving the clip
            on_progress: Optional async callback with the clip's fraction done

        Returns:
            Path to the rendered clip.

        Raises:
            AssetNotFound: The scene's image does not exist
            InvalidScene: The scene has no positive duration
        """
        if scene.duration_ms <= 0:
            raise InvalidScene(f"Scene {scene.index} has non-positive duration")

        image = Path(scene.image_path)
        if not image.is_file():
            raise AssetNotFound(f"Image not found for scene {scene.index + 1}: {image.name}")

        duration = scene.duration_seconds
        zoom = zoom_range_for(duration, self.zoom_rate)
        fade = fade_spec_for(position, total, self.crossfade_duration)
        output = self.clip_path(work_dir, scene)

        logger.info(
            f"Rendering clip {position + 1}/{total}: {duration:.3f}s, "
            f"zoom {zoom.start:.2f}x -> {zoom.end:.2f}x, image={image.name}"
        )

        return await self.engine.render_image_segment(
            image, duration, zoom, fade, output, on_progress=on_progress
        )

    async def synthesize_all(
        self,
        scenes: list[Scene],
        work_dir: Path,
        on_clip_started: Optional[ClipStartedCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[Path]:
        """Render every scene, returning clips in scene order.

        With ``max_parallel`` of 1 scenes render strictly one after another.
        Otherwise a bounded pool renders them concurrently; results are still
        collected by index and the first failure cancels the remaining work.

        Args:
            scenes: Scene plan in playback order
            work_dir: Run working directory
            on_clip_started: Async callback with (position, total) as each clip starts
            on_progress: Async callback with the fraction of all clips done

        Returns:
            Clip paths in scene order.
        """
        total = len(scenes)
        if total == 0:
            raise InvalidScene("No scenes to synthesize")

        fractions = [0.0] * total

        async def report(position: int, fraction: float) -> None:
            fractions[position] = max(fractions[position], min(1.0, fraction))
            if on_progress:
                await on_progress(sum(fractions) / total)

        async def render(position: int, scene: Scene) -> Path:
            if on_clip_started:
                await on_clip_started(position, total)

            async def clip_progress(fraction: float) -> None:
                await report(position, fraction)

            clip = await self.synthesize(scene, position, total, work_dir, on_progress=clip_progress)
            await report(position, 1.0)
            return clip

        if self.max_parallel == 1:
            clips = []
            for position, scene in enumerate(scenes):
                clips.append(await render(position, scene))
            return clips

        logger.info(f"Rendering {total} clips with up to {self.max_parallel} in parallel")
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def bounded(position: int, scene: Scene) -> Path:
            async with semaphore:
                return await render(position, scene)

        tasks = [asyncio.create_task(bounded(i, scene)) for i, scene in enumerate(scenes)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
