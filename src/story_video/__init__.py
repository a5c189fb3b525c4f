"""Story Video - narration, subtitles and images into a rendered video."""

from .errors import (
    AssetNotFound,
    EngineFailure,
    InputMissing,
    InvalidScene,
    InvalidSessionId,
    ParseEmpty,
    PipelineError,
    ProbeFailure,
    RunAlreadyActive,
)
from .models import (
    MixedAssets,
    PipelineRun,
    ProgressEvent,
    RenderProfile,
    RunFailed,
    RunFinished,
    RunKind,
    RunStage,
    Scene,
    StoryAssets,
    TimedSegment,
)
from .engine import EncodingEngine
from .ffmpeg_engine import FFmpegEngine
from .events import ProgressChannel
from .registry import RunRegistry
from .orchestrator import PipelineOrchestrator

__all__ = [
    "PipelineError",
    "InputMissing",
    "ParseEmpty",
    "AssetNotFound",
    "EngineFailure",
    "ProbeFailure",
    "InvalidScene",
    "InvalidSessionId",
    "RunAlreadyActive",
    "TimedSegment",
    "Scene",
    "RenderProfile",
    "StoryAssets",
    "MixedAssets",
    "PipelineRun",
    "RunKind",
    "RunStage",
    "ProgressEvent",
    "RunFinished",
    "RunFailed",
    "EncodingEngine",
    "FFmpegEngine",
    "ProgressChannel",
    "RunRegistry",
    "PipelineOrchestrator",
]
