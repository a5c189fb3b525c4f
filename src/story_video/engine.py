"""Capability surface of the media-encoding engine.

The orchestration code only talks to this interface, so it can run against
FFmpeg in production and against a fake in tests. Every call is awaited by
the run that issued it and either returns the output path or raises
``EngineFailure`` / ``ProbeFailure``.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Optional

from story_video.models import FadeSpec, ZoomRange

# Receives the fraction complete of the current engine call, in [0, 1]
ProgressCallback = Callable[[float], Awaitable[None]]


class EncodingEngine(ABC):
    """Async operations the pipeline needs from an encoder."""

    @abstractmethod
    async def probe_duration(self, path: Path) -> float:
        """Return the duration of a media file in seconds."""

    @abstractmethod
    async def render_image_segment(
        self,
        image: Path,
        duration: float,
        zoom: ZoomRange,
        fade: FadeSpec,
        output: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Render a still image into a Ken Burns clip of exactly ``duration`` seconds."""

    @abstractmethod
    async def concatenate(
        self,
        manifest: Path,
        output: Path,
        expected_duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Join the clips listed in a concat manifest into one stream."""

    @abstractmethod
    async def mux_audio(
        self,
        video: Path,
        audio: Path,
        output: Path,
        expected_duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Attach an audio track to a video stream, ending with the shorter input."""

    @abstractmethod
    async def mix_and_apply(
        self,
        visual: Path,
        is_image: bool,
        foreground: Path,
        background: Path,
        background_volume: float,
        duration: float,
        frame_rate: int,
        output: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Loop a visual under a foreground/background audio mix of fixed length."""
