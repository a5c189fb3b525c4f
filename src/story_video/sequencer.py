"""Joining of pre-rendered clips into one continuous stream.

Crossfades are already baked into each clip, so the join is a stream-level
concatenation through the concat demuxer, not a blend. Timestamps are
regenerated and normalised to zero so per-clip rounding cannot accumulate.
"""

import logging
from pathlib import Path
from typing import Optional

from story_video.engine import EncodingEngine, ProgressCallback
from story_video.errors import AssetNotFound, InvalidScene, ProbeFailure

logger = logging.getLogger(__name__)

MANIFEST_NAME = "concat.txt"
JOINED_NAME = "concatenated.mp4"


def manifest_line(clip: Path) -> str:
    """Concat-demuxer entry for one clip, absolute and quote-escaped."""
    escaped = str(Path(clip).resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


def write_manifest(clips: list[Path], manifest_path: Path) -> Path:
    """Write the ordered join list referencing absolute clip paths."""
    manifest_path = Path(manifest_path)
    manifest_path.write_text("\n".join(manifest_line(c) for c in clips) + "\n", encoding="utf-8")
    return manifest_path


class Sequencer:
    """Concatenates exact-duration clips in order."""

    def __init__(self, engine: EncodingEngine, fps: int = 30):
        self.engine = engine
        self.fps = fps

    async def concatenate(
        self,
        clips: list[Path],
        work_dir: Path,
        expected_duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Join ``clips`` into ``work_dir/concatenated.mp4``.

        Args:
            clips: Clip paths in playback order
            work_dir: Run working directory for the manifest and output
            expected_duration: Sum of the scene durations in seconds
            on_progress: Optional async callback with the fraction done

        Returns:
            Path to the joined stream.

        Raises:
            InvalidScene: No clips were given
            AssetNotFound: A clip is missing or empty
        """
        if not clips:
            raise InvalidScene("No clips to concatenate")

        for clip in clips:
            clip = Path(clip)
            if not clip.is_file():
                raise AssetNotFound(f"Rendered clip missing: {clip.name}")
            if clip.stat().st_size == 0:
                raise AssetNotFound(f"Rendered clip is empty: {clip.name}")

        work_dir = Path(work_dir)
        manifest = write_manifest(clips, work_dir / MANIFEST_NAME)
        output = work_dir / JOINED_NAME

        logger.info(
            f"Concatenating {len(clips)} clips, expected total duration: {expected_duration:.3f}s"
        )
        result = await self.engine.concatenate(
            manifest, output, expected_duration, on_progress=on_progress
        )
        await self._check_duration(result, expected_duration, len(clips))
        return result

    async def _check_duration(self, joined: Path, expected: float, clip_count: int) -> None:
        """Warn when the join drifted more than one frame per clip boundary."""
        try:
            actual = await self.engine.probe_duration(joined)
        except ProbeFailure as e:
            logger.warning(f"Could not verify concatenated duration: {e}")
            return

        tolerance = max(1, clip_count) / self.fps
        drift = abs(actual - expected)
        if drift > tolerance:
            logger.warning(
                f"Concatenated duration {actual:.3f}s differs from expected "
                f"{expected:.3f}s by {drift:.3f}s (tolerance {tolerance:.3f}s)"
            )
        else:
            logger.debug(f"Concatenated duration {actual:.3f}s (expected {expected:.3f}s)")
