"""Data models for the story video pipeline.

Timing is kept in integer milliseconds from the subtitle file all the way
down to the clip synthesizer, which is the only place that converts to
floating-point seconds for the encoder.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from story_video.errors import InvalidScene


class RunKind(str, Enum):
    """Which pipeline a run executes."""

    STORY = "story"
    MIXED = "mixed"


class RunStage(str, Enum):
    """Stages of a pipeline run.

    Story runs go initializing -> parsing -> deriving -> synthesizing ->
    concatenating -> muxing -> cleanup -> done. Mixed runs go
    initializing -> probing -> mixing -> done. Either may end in failed.
    """

    INITIALIZING = "initializing"
    PARSING = "parsing"
    DERIVING = "deriving"
    SYNTHESIZING = "synthesizing"
    CONCATENATING = "concatenating"
    MUXING = "muxing"
    PROBING = "probing"
    MIXING = "mixing"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStage.DONE, RunStage.FAILED)


@dataclass(frozen=True)
class TimedSegment:
    """One caption block of a subtitle file."""

    start_ms: int
    end_ms: int
    text: str

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


@dataclass(frozen=True)
class Scene:
    """A still image shown for the time span of one subtitle segment.

    Attributes:
        index: 0-based position in final playback order
        image_path: Source image for the Ken Burns clip
        start_ms: Absolute start offset within the narration
        end_ms: Absolute end offset within the narration
        text: Caption text of the originating segment
    """

    index: int
    image_path: Path
    start_ms: int
    end_ms: int
    text: str = ""

    def __post_init__(self) -> None:
        if self.end_ms - self.start_ms <= 0:
            raise InvalidScene(
                f"Scene {self.index} has non-positive duration "
                f"({self.start_ms}ms -> {self.end_ms}ms)"
            )

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000.0


@dataclass(frozen=True)
class ZoomRange:
    """Start and end zoom factors of a Ken Burns dolly-in."""

    start: float
    end: float


@dataclass(frozen=True)
class FadeSpec:
    """Edge fades baked into a single clip."""

    fade_in: bool
    fade_out: bool
    duration: float

    def clamped_duration(self, clip_duration: float) -> float:
        """Fade length never exceeds the clip itself."""
        return max(0.0, min(self.duration, clip_duration))

    def fade_out_start(self, clip_duration: float) -> float:
        return max(0.0, clip_duration - self.clamped_duration(clip_duration))


@dataclass(frozen=True)
class RenderProfile:
    """Fixed output profile for story clips."""

    width: int = 1080
    height: int = 1920
    fps: int = 30
    preset: str = "medium"
    crf: int = 23
    audio_bitrate: str = "192k"

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"

    @classmethod
    def from_config(cls, config: dict) -> "RenderProfile":
        return cls(
            width=int(config.get("render_width", 1080)),
            height=int(config.get("render_height", 1920)),
            fps=int(config.get("render_fps", 30)),
            preset=config.get("video_preset", "medium"),
            crf=int(config.get("video_crf", 23)),
            audio_bitrate=config.get("audio_bitrate", "192k"),
        )


@dataclass(frozen=True)
class StoryAssets:
    """Concrete inputs of a story run."""

    narration: Path
    subtitles: Path
    image_dir: Path


@dataclass(frozen=True)
class MixedAssets:
    """Concrete inputs of a mixed-media run."""

    visual: Path
    narration: Path
    background: Path


@dataclass
class PipelineRun:
    """State of one generation run.

    The run exclusively owns ``work_dir`` for its lifetime; the orchestrator
    removes it exactly once on the terminal transition.
    """

    run_id: str
    session_id: str
    kind: RunKind
    work_dir: Path
    stage: RunStage = RunStage.INITIALIZING
    produced_clips: list[Path] = field(default_factory=list)
    output_path: Optional[Path] = None
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    work_dir_removed: bool = False

    @property
    def is_finished(self) -> bool:
        return self.stage.is_terminal

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at if self.finished_at else time.time()
        return end - self.started_at


@dataclass(frozen=True)
class ProgressEvent:
    """Progress update for one run, percent in [0, 100]."""

    run_id: str
    session_id: str
    stage: RunStage
    message: str
    percent: float

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "progress",
            "run_id": self.run_id,
            "status": self.stage.value,
            "message": self.message,
            "percent": round(self.percent, 1),
        }


@dataclass(frozen=True)
class RunFinished:
    """Terminal success event carrying the artifact location."""

    run_id: str
    session_id: str
    url: str
    filename: str
    output_path: Path

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "finished",
            "run_id": self.run_id,
            "url": self.url,
            "filename": self.filename,
        }


@dataclass(frozen=True)
class RunFailed:
    """Terminal failure event with a human-readable message."""

    run_id: str
    session_id: str
    message: str
    error_type: str

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "error",
            "run_id": self.run_id,
            "message": self.message,
        }
