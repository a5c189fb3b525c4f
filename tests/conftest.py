"""Shared pytest fixtures for storyreel tests."""

import sys
import tempfile
from pathlib import Path
from typing import Dict, Generator, Optional

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from story_video.engine import EncodingEngine, ProgressCallback  # noqa: E402
from story_video.errors import EngineFailure, ProbeFailure  # noqa: E402
from story_video.events import ProgressChannel  # noqa: E402
from story_video.models import FadeSpec, ZoomRange  # noqa: E402


class FakeEngine(EncodingEngine):
    """Engine double that writes placeholder outputs and records every call.

    Probed durations come from ``durations`` keyed by file name; unknown
    files report ``default_duration``. ``fail_on`` names an operation that
    raises ``EngineFailure`` instead of producing output.
    """

    def __init__(
        self,
        durations: Optional[Dict[str, float]] = None,
        default_duration: float = 3.0,
        fail_on: Optional[str] = None,
        ticks: tuple = (0.25, 0.5, 1.0),
    ):
        self.durations = durations or {}
        self.default_duration = default_duration
        self.fail_on = fail_on
        self.ticks = ticks
        self.calls: list[tuple] = []

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def _produce(self, operation: str, output: Path, on_progress: Optional[ProgressCallback]) -> Path:
        if self.fail_on == operation:
            raise EngineFailure(f"FFmpeg failed ({operation}): simulated failure")
        for fraction in self.ticks:
            if on_progress:
                await on_progress(fraction)
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"\x00" * 64)
        return output

    async def probe_duration(self, path: Path) -> float:
        self.calls.append(("probe_duration", Path(path)))
        if self.fail_on == "probe_duration":
            raise ProbeFailure(f"Failed to probe {Path(path).name}")
        return self.durations.get(Path(path).name, self.default_duration)

    async def render_image_segment(
        self,
        image: Path,
        duration: float,
        zoom: ZoomRange,
        fade: FadeSpec,
        output: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        self.calls.append(("render_image_segment", Path(image), duration, zoom, fade, Path(output)))
        return await self._produce("render_image_segment", output, on_progress)

    async def concatenate(self, manifest, output, expected_duration, on_progress=None) -> Path:
        self.calls.append(("concatenate", Path(manifest), Path(output), expected_duration))
        return await self._produce("concatenate", output, on_progress)

    async def mux_audio(self, video, audio, output, expected_duration, on_progress=None) -> Path:
        self.calls.append(("mux_audio", Path(video), Path(audio), Path(output), expected_duration))
        return await self._produce("mux_audio", output, on_progress)

    async def mix_and_apply(
        self,
        visual,
        is_image,
        foreground,
        background,
        background_volume,
        duration,
        frame_rate,
        output,
        on_progress=None,
    ) -> Path:
        self.calls.append(
            (
                "mix_and_apply",
                Path(visual),
                is_image,
                Path(foreground),
                Path(background),
                background_volume,
                duration,
                frame_rate,
                Path(output),
            )
        )
        return await self._produce("mix_and_apply", output, on_progress)


class EventRecorder:
    """Channel subscriber collecting every event it receives."""

    def __init__(self):
        self.events: list = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


SAMPLE_SRT = """1
00:00:00,000 --> 00:00:02,500
The lighthouse keeper woke before dawn.

2
00:00:02,500 --> 00:00:05,000
Fog rolled over the harbour.

3
00:00:05,000 --> 00:00:08,000
A ship's horn sounded,
far out at sea.
"""


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def channel() -> ProgressChannel:
    return ProgressChannel()


@pytest.fixture
def recorder(channel) -> EventRecorder:
    """Recorder subscribed to every session of ``channel``."""
    rec = EventRecorder()
    channel.subscribe_all(rec)
    return rec


@pytest.fixture
def sample_config(temp_dir) -> Dict:
    """Configuration rooted in the temporary directory."""
    return {
        "uploads_dir": str(temp_dir / "uploads"),
        "output_dir": str(temp_dir / "output"),
        "work_dir": str(temp_dir / ".work"),
        "run_db_path": str(temp_dir / "runs.db"),
        "render_width": 1080,
        "render_height": 1920,
        "render_fps": 30,
        "crossfade_duration": 0.3,
        "zoom_rate": 0.08,
        "zoom_safety_seconds": 2.0,
        "default_bg_volume": 0.3,
        "default_mixed_fps": 30,
        "max_parallel_clips": 1,
        "progress_interval_seconds": 0.0,
        "strict_image_count": False,
        "cleanup_session_uploads": True,
        "log_level": "INFO",
        "log_json": False,
    }


def make_story_session(uploads_dir: Path, session_id: str, image_count: int = 3, srt: str = SAMPLE_SRT) -> Path:
    """Lay out a story session's upload directories with placeholder media."""
    session = Path(uploads_dir) / session_id
    (session / "audio").mkdir(parents=True)
    (session / "audio" / "narration.mp3").write_bytes(b"\x00" * 128)
    (session / "srt").mkdir()
    (session / "srt" / "story.srt").write_text(srt, encoding="utf-8")
    (session / "images").mkdir()
    for i in range(1, image_count + 1):
        (session / "images" / f"{i}.png").write_bytes(b"\x89PNG" + b"\x00" * 32)
    return session


def make_mixed_session(uploads_dir: Path, session_id: str, visual_name: str = "cover.png") -> Path:
    """Lay out a mixed-media session's upload directories."""
    session = Path(uploads_dir) / session_id
    for role, name in (("visual", visual_name), ("audio", "voice.mp3"), ("bgAudio", "music.mp3")):
        (session / role).mkdir(parents=True)
        (session / role / name).write_bytes(b"\x00" * 128)
    return session
