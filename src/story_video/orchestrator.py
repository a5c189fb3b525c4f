"""Pipeline orchestrator: runs story and mixed-media jobs end to end.

A run owns a private working directory for its whole life. Every stage
returns a concrete path or raises a ``PipelineError``; the orchestrator
catches at the top, removes the working directory exactly once and ends
the run with a single terminal event (``RunFinished`` or ``RunFailed``).

Story: parse subtitles -> derive scenes -> synthesize clips -> concatenate
-> mux narration -> move artifact to output.
Mixed: probe narration -> mix visual and audio -> move artifact to output.
"""

import asyncio
import logging
import shutil
import time
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Optional

from story_video.audio_muxer import AudioMuxer
from story_video.clip_synthesizer import ClipSynthesizer
from story_video.engine import EncodingEngine
from story_video.errors import InputMissing, ParseEmpty, PipelineError
from story_video.events import ProgressChannel
from story_video.mixed_media import MixedMediaPipeline
from story_video.models import (
    MixedAssets,
    PipelineRun,
    RenderProfile,
    RunFailed,
    RunFinished,
    RunKind,
    RunStage,
    StoryAssets,
)
from story_video.progress import (
    DEFAULT_INTERVAL_SECONDS,
    MIXED_SLICES,
    STORY_SLICES,
    ProgressTracker,
)
from story_video.registry import RunRegistry
from story_video.scene_deriver import derive_scenes, list_images
from story_video.sequencer import Sequencer
from story_video.session_assets import (
    remove_session_uploads,
    resolve_mixed_assets,
    resolve_story_assets,
    validate_session_id,
)
from story_video.subtitle_parser import parse_subtitle_file
from utils.logging import clear_run_context, set_run_context

logger = logging.getLogger(__name__)

STORY_OUTPUT_PREFIX = "video"
MIXED_OUTPUT_PREFIX = "mixed"
OUTPUT_URL_PREFIX = "/output"

# Strong references so scheduled runs are not garbage collected mid-flight
_background_tasks: set[asyncio.Task] = set()


def output_filename(
    prefix: str, session_id: str, run_id: str, timestamp_ms: Optional[int] = None
) -> str:
    """``<prefix>_<session>_<ms>_<run>.mp4``, unique per run of a session."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{prefix}_{session_id}_{timestamp_ms}_{run_id}.mp4"


class PipelineOrchestrator:
    """Sequences pipeline stages for story and mixed-media runs.

    The encoding engine and the progress channel are injected; the engine is
    the only collaborator that touches external processes.
    """

    def __init__(
        self,
        engine: EncodingEngine,
        channel: ProgressChannel,
        config: Optional[dict] = None,
        registry: Optional[RunRegistry] = None,
    ):
        """Initialize the orchestrator.

        Args:
            engine: Encoding engine used by every stage
            channel: Channel receiving progress and terminal events
            config: Configuration dict from ``utils.config.load_config``
            registry: Registry of active runs (a private one by default)
        """
        config = config or {}
        self.engine = engine
        self.channel = channel
        self.registry = registry or RunRegistry()

        self.uploads_dir = Path(config.get("uploads_dir", "uploads"))
        self.output_dir = Path(config.get("output_dir", "output"))
        self.work_root = Path(config.get("work_dir", ".work"))
        self.strict_image_count = bool(config.get("strict_image_count", False))
        self.cleanup_session_uploads = bool(config.get("cleanup_session_uploads", True))
        self.progress_interval = float(
            config.get("progress_interval_seconds", DEFAULT_INTERVAL_SECONDS)
        )

        self.synthesizer = ClipSynthesizer.from_config(engine, config)
        self.sequencer = Sequencer(engine, fps=RenderProfile.from_config(config).fps)
        self.muxer = AudioMuxer(engine)
        self.mixer = MixedMediaPipeline.from_config(engine, config)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def create_run(self, session_id: str, kind: RunKind) -> PipelineRun:
        """Create and register a run with its own working directory path.

        Raises:
            InvalidSessionId: The session id is unsafe
            RunAlreadyActive: The session already has a run in flight
        """
        validate_session_id(session_id)
        run_id = uuid.uuid4().hex[:12]
        stamp = int(time.time() * 1000)
        run = PipelineRun(
            run_id=run_id,
            session_id=session_id,
            kind=kind,
            work_dir=self.work_root / f"{session_id}_{stamp}_{run_id}",
        )
        self.registry.register(run)
        logger.info(f"Created {kind.value} run {run_id} for session {session_id}")
        return run

    def remove_work_dir(self, run: PipelineRun) -> bool:
        """Remove the run's working directory once; later calls are no-ops.

        Removal failures are logged and never raised.
        """
        if run.work_dir_removed:
            return False
        run.work_dir_removed = True

        if not run.work_dir.exists():
            return False
        try:
            shutil.rmtree(run.work_dir)
        except OSError as e:
            logger.warning(f"Failed to remove working directory {run.work_dir}: {e}")
            return False
        logger.debug(f"Removed working directory {run.work_dir}")
        return True

    def _schedule(self, coro: Awaitable[PipelineRun]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Story runs
    # ------------------------------------------------------------------

    def start_story(self, session_id: str, assets: Optional[StoryAssets] = None) -> PipelineRun:
        """Register a story run and execute it in the background."""
        run = self.create_run(session_id, RunKind.STORY)
        self._schedule(self._execute_story(run, assets))
        return run

    async def run_story(self, session_id: str, assets: Optional[StoryAssets] = None) -> PipelineRun:
        """Register a story run and wait for it to finish.

        Args:
            session_id: Session the run belongs to
            assets: Explicit inputs; resolved from the session uploads when None

        Returns:
            The finished run (stage ``done`` or ``failed``).
        """
        run = self.create_run(session_id, RunKind.STORY)
        return await self._execute_story(run, assets)

    async def _execute_story(self, run: PipelineRun, assets: Optional[StoryAssets]) -> PipelineRun:
        tracker = ProgressTracker(run, self.channel, STORY_SLICES, self.progress_interval)

        async def body() -> Path:
            resolved = assets or resolve_story_assets(self.uploads_dir, run.session_id)
            return await self._story_stages(run, tracker, resolved)

        return await self._execute(run, tracker, body, from_uploads=assets is None)

    async def _story_stages(
        self, run: PipelineRun, tracker: ProgressTracker, assets: StoryAssets
    ) -> Path:
        if not Path(assets.narration).is_file():
            raise InputMissing("Narration audio missing")
        if not Path(assets.subtitles).is_file():
            raise InputMissing("Subtitle file missing")

        await tracker.enter_stage(RunStage.PARSING, "Parsing subtitles...")
        segments = parse_subtitle_file(assets.subtitles)
        if not segments:
            raise ParseEmpty(f"No valid subtitle blocks found in {Path(assets.subtitles).name}")

        await tracker.enter_stage(RunStage.DERIVING, "Matching images to subtitles...")
        scenes = derive_scenes(segments, list_images(assets.image_dir), self.strict_image_count)
        total = len(scenes)

        await tracker.enter_stage(RunStage.SYNTHESIZING, f"Creating clip 1/{total}...")

        async def clip_started(position: int, count: int) -> None:
            if position > 0:
                await tracker.note(f"Creating clip {position + 1}/{count}...")

        clips = await self.synthesizer.synthesize_all(
            scenes, run.work_dir, on_clip_started=clip_started, on_progress=tracker.update
        )
        run.produced_clips = list(clips)

        expected = sum(scene.duration_seconds for scene in scenes)
        await tracker.enter_stage(RunStage.CONCATENATING, "Combining clips...")
        joined = await self.sequencer.concatenate(
            clips, run.work_dir, expected, on_progress=tracker.update
        )

        await tracker.enter_stage(RunStage.MUXING, "Adding audio...")
        rendered = run.work_dir / "final.mp4"
        return await self.muxer.mux(
            joined, assets.narration, rendered, on_progress=tracker.update
        )

    # ------------------------------------------------------------------
    # Mixed-media runs
    # ------------------------------------------------------------------

    def start_mixed(
        self,
        session_id: str,
        background_volume: Optional[float] = None,
        frame_rate: Optional[int] = None,
        assets: Optional[MixedAssets] = None,
    ) -> PipelineRun:
        """Register a mixed-media run and execute it in the background."""
        run = self.create_run(session_id, RunKind.MIXED)
        self._schedule(self._execute_mixed(run, assets, background_volume, frame_rate))
        return run

    async def run_mixed(
        self,
        session_id: str,
        background_volume: Optional[float] = None,
        frame_rate: Optional[int] = None,
        assets: Optional[MixedAssets] = None,
    ) -> PipelineRun:
        """Register a mixed-media run and wait for it to finish."""
        run = self.create_run(session_id, RunKind.MIXED)
        return await self._execute_mixed(run, assets, background_volume, frame_rate)

    async def _execute_mixed(
        self,
        run: PipelineRun,
        assets: Optional[MixedAssets],
        background_volume: Optional[float],
        frame_rate: Optional[int],
    ) -> PipelineRun:
        tracker = ProgressTracker(run, self.channel, MIXED_SLICES, self.progress_interval)

        async def body() -> Path:
            resolved = assets or resolve_mixed_assets(self.uploads_dir, run.session_id)
            volume, fps = self.mixer.resolve_settings(background_volume, frame_rate)
            self.mixer.validate_inputs(resolved)

            await tracker.enter_stage(RunStage.PROBING, "Probing main audio duration...")
            duration = await self.mixer.probe_target_duration(resolved.narration)

            await tracker.enter_stage(RunStage.MIXING, "Mixing audio and video...")
            rendered = run.work_dir / "mixed.mp4"
            return await self.mixer.mix(
                resolved, rendered, duration, volume, fps, on_progress=tracker.update
            )

        return await self._execute(run, tracker, body, from_uploads=assets is None)

    # ------------------------------------------------------------------
    # Shared execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        run: PipelineRun,
        tracker: ProgressTracker,
        body: Callable[[], Awaitable[Path]],
        from_uploads: bool,
    ) -> PipelineRun:
        """Run ``body`` inside the run's lifecycle and publish its terminal event."""
        set_run_context(run.session_id, run.run_id)
        try:
            try:
                await tracker.enter_stage(RunStage.INITIALIZING, "Initializing...")
                run.work_dir.mkdir(parents=True, exist_ok=True)
                rendered = await body()

                if run.kind is RunKind.STORY:
                    await tracker.enter_stage(RunStage.CLEANUP, "Cleaning up...")
                terminal = self._finish(run, rendered)
                self.remove_work_dir(run)
                if from_uploads and self.cleanup_session_uploads:
                    remove_session_uploads(self.uploads_dir, run.session_id)
                await tracker.enter_stage(RunStage.DONE, "Complete!")
            except PipelineError as e:
                terminal = self._fail(run, str(e), type(e).__name__)
            except Exception as e:
                logger.exception(f"Unexpected error in run {run.run_id}")
                terminal = self._fail(run, f"Unexpected error: {e}", type(e).__name__)
            finally:
                self.remove_work_dir(run)
                self.registry.release(run)

            await self.channel.publish(terminal)
            return run
        finally:
            clear_run_context()

    def _finish(self, run: PipelineRun, rendered: Path) -> RunFinished:
        """Move the rendered file into the output directory."""
        prefix = STORY_OUTPUT_PREFIX if run.kind is RunKind.STORY else MIXED_OUTPUT_PREFIX
        filename = output_filename(prefix, run.session_id, run.run_id)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        destination = self.output_dir / filename
        if destination.exists():
            raise PipelineError(f"Output file already exists: {filename}")
        shutil.move(str(rendered), str(destination))

        run.output_path = destination
        run.finished_at = time.time()
        logger.info(
            f"Run {run.run_id} finished in {run.elapsed_seconds:.1f}s: {destination}"
        )
        return RunFinished(
            run_id=run.run_id,
            session_id=run.session_id,
            url=f"{OUTPUT_URL_PREFIX}/{filename}",
            filename=filename,
            output_path=destination,
        )

    def _fail(self, run: PipelineRun, message: str, error_type: str) -> RunFailed:
        run.stage = RunStage.FAILED
        run.error = message
        run.finished_at = time.time()
        logger.error(f"Run {run.run_id} failed ({error_type}): {message}")
        return RunFailed(
            run_id=run.run_id,
            session_id=run.session_id,
            message=message,
            error_type=error_type,
        )
