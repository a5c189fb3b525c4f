"""FFmpeg-backed implementation of the encoding engine.

Every operation is one ffmpeg/ffprobe OS process started with asyncio, so
the event loop only schedules, pipes progress and waits. A semaphore shared
by all runs caps how many encoder processes exist at once, and each process
is killed if it outlives the stage timeout.

Progress comes from ``-progress pipe:1``: the ``out_time_us`` key is turned
into a fraction of the expected output duration.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from story_video.clip_synthesizer import DEFAULT_SAFETY_SECONDS, build_ken_burns_filter
from story_video.engine import EncodingEngine, ProgressCallback
from story_video.errors import EngineFailure, ProbeFailure
from story_video.models import FadeSpec, RenderProfile, ZoomRange

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 1800.0
DEFAULT_MAX_CONCURRENT = 4
PROBE_TIMEOUT_SECONDS = 30.0
STDERR_TAIL_CHARS = 1000


def parse_progress_line(line: str) -> Optional[float]:
    """Return the output position in seconds from one ``-progress`` line.

    Both ``out_time_us`` and the historically misnamed ``out_time_ms`` carry
    microseconds. Other keys and ``N/A`` values yield ``None``.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return int(value) / 1_000_000
    except ValueError:
        return None


class FFmpegEngine(EncodingEngine):
    """Runs pipeline operations as ffmpeg subprocesses."""

    def __init__(
        self,
        profile: Optional[RenderProfile] = None,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        safety_seconds: float = DEFAULT_SAFETY_SECONDS,
    ):
        self.profile = profile or RenderProfile()
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self.safety_seconds = safety_seconds
        self._slots = asyncio.Semaphore(max(1, max_concurrent))

    @classmethod
    def from_config(cls, config: dict) -> "FFmpegEngine":
        return cls(
            profile=RenderProfile.from_config(config),
            ffmpeg_path=config.get("ffmpeg_path", "ffmpeg"),
            ffprobe_path=config.get("ffprobe_path", "ffprobe"),
            timeout=float(config.get("stage_timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            max_concurrent=int(config.get("max_concurrent_encodes", DEFAULT_MAX_CONCURRENT)),
            safety_seconds=float(config.get("zoom_safety_seconds", DEFAULT_SAFETY_SECONDS)),
        )

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    async def probe_duration(self, path: Path) -> float:
        """Get the duration of a media file using ffprobe.

        Raises:
            ProbeFailure: ffprobe is missing, fails, times out or reports no duration
        """
        path = Path(path)
        if not path.is_file():
            raise ProbeFailure(f"Cannot probe {path.name}: file not found")

        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json",
            str(path),
        ]
        logger.debug(f"Command: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ProbeFailure(f"ffprobe executable not found: {self.ffprobe_path}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), PROBE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ProbeFailure(f"ffprobe timed out on {path.name}")

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip()[:500]
            raise ProbeFailure(f"Failed to probe {path.name}: {message}")

        try:
            data = json.loads(stdout.decode(errors="replace") or "{}")
            return float(data["format"]["duration"])
        except (ValueError, KeyError, TypeError):
            raise ProbeFailure(f"Failed to probe {path.name}: no duration reported")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def render_image_segment(
        self,
        image: Path,
        duration: float,
        zoom: ZoomRange,
        fade: FadeSpec,
        output: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Ken Burns clip: looped still, zoompan with margin, cut with ``-t``."""
        profile = self.profile
        vf = build_ken_burns_filter(duration, zoom, fade, profile, self.safety_seconds)

        args = [
            "-loop", "1",
            "-framerate", str(profile.fps),
            "-i", str(image),
            "-vf", vf,
            "-t", f"{duration:.6f}",
            "-an",
            "-c:v", "libx264",
            "-preset", profile.preset,
            "-crf", str(profile.crf),
            "-pix_fmt", "yuv420p",
            "-r", str(profile.fps),
            "-fps_mode", "cfr",
            "-g", str(profile.fps),
            str(output),
        ]
        await self._run_ffmpeg(args, f"ken_burns {Path(image).name}", duration, on_progress)
        return Path(output)

    async def concatenate(
        self,
        manifest: Path,
        output: Path,
        expected_duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Concat demuxer with stream copy, fresh PTS and zero-based timestamps."""
        args = [
            "-f", "concat",
            "-safe", "0",
            "-fflags", "+genpts",
            "-i", str(manifest),
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            str(output),
        ]
        await self._run_ffmpeg(args, "concatenate clips", expected_duration, on_progress)
        return Path(output)

    async def mux_audio(
        self,
        video: Path,
        audio: Path,
        output: Path,
        expected_duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Copy the video stream, encode the audio, stop at the shorter input."""
        args = [
            "-fflags", "+genpts",
            "-i", str(video),
            "-i", str(audio),
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
            "-c:a", "aac",
            "-b:a", self.profile.audio_bitrate,
            "-shortest",
            "-avoid_negative_ts", "make_zero",
            "-movflags", "+faststart",
            str(output),
        ]
        await self._run_ffmpeg(args, "add audio track", expected_duration, on_progress)
        return Path(output)

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
        """Loop the visual and background, mix audio, pin length with ``-t``."""
        if is_image:
            visual_input = ["-loop", "1", "-framerate", str(frame_rate), "-i", str(visual)]
        else:
            visual_input = ["-stream_loop", "-1", "-i", str(visual)]

        filter_complex = (
            f"[0:v]scale=trunc(iw/2)*2:trunc(ih/2)*2,fps={frame_rate},format=yuv420p[v];"
            f"[2:a]volume={background_volume}[bg];"
            f"[1:a][bg]amix=inputs=2:normalize=1[a]"
        )

        args = [
            *visual_input,
            "-i", str(foreground),
            "-stream_loop", "-1",
            "-i", str(background),
            "-filter_complex", filter_complex,
            "-map", "[v]",
            "-map", "[a]",
            "-c:v", "libx264",
            "-preset", self.profile.preset,
            "-crf", str(self.profile.crf),
            "-c:a", "aac",
            "-b:a", self.profile.audio_bitrate,
            "-t", f"{duration:.6f}",
            "-r", str(frame_rate),
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            str(output),
        ]
        await self._run_ffmpeg(args, f"mix {Path(visual).name}", duration, on_progress)
        return Path(output)

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def build_command(self, args: list[str]) -> list[str]:
        """Prefix operation arguments with the global flags every run uses."""
        return [
            self.ffmpeg_path, "-y",
            "-hide_banner",
            "-nostats",
            "-progress", "pipe:1",
            *args,
        ]

    async def _run_ffmpeg(
        self,
        args: list[str],
        description: str,
        expected_duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Run one FFmpeg process under the concurrency cap and timeout.

        Args:
            args: Operation arguments; the last one is the output path
            description: Human-readable description for logging and errors
            expected_duration: Output length in seconds, used to scale progress
            on_progress: Optional async callback with the fraction done

        Raises:
            EngineFailure: FFmpeg is missing, exits non-zero, times out, or
                does not produce the output file
        """
        cmd = self.build_command(args)
        output = Path(args[-1])

        async with self._slots:
            logger.info(f"FFmpeg: {description}")
            logger.debug(f"Command: {' '.join(cmd)}")

            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError:
                raise EngineFailure(f"FFmpeg executable not found: {self.ffmpeg_path}")

            try:
                stderr = await asyncio.wait_for(
                    self._pump(proc, expected_duration, on_progress), self.timeout
                )
            except asyncio.TimeoutError:
                raise EngineFailure(f"FFmpeg timed out after {self.timeout:.0f}s ({description})")
            finally:
                # the slot is only freed once the process is gone
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()

        if proc.returncode != 0:
            tail = stderr[-STDERR_TAIL_CHARS:].strip()
            logger.error(f"FFmpeg stderr: {tail}")
            raise EngineFailure(f"FFmpeg failed ({description}): {tail[-500:]}")

        if not output.is_file():
            raise EngineFailure(f"FFmpeg did not produce {output.name} ({description})")

    async def _pump(
        self,
        proc: asyncio.subprocess.Process,
        expected_duration: float,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        """Forward progress from stdout while draining stderr; return stderr."""
        stderr_task = asyncio.create_task(proc.stderr.read())
        last_fraction = 0.0

        try:
            async for raw in proc.stdout:
                position = parse_progress_line(raw.decode(errors="replace"))
                if position is None or expected_duration <= 0 or on_progress is None:
                    continue
                fraction = min(1.0, max(0.0, position / expected_duration))
                if fraction > last_fraction:
                    last_fraction = fraction
                    await on_progress(fraction)

            stderr = await stderr_task
            await proc.wait()
        finally:
            if not stderr_task.done():
                stderr_task.cancel()

        return stderr.decode(errors="replace")
