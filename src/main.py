"""Command-line entry point for storyreel."""

import argparse
import asyncio
import logging
import shutil
import sys
import time
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from story_video.events import ProgressChannel, RunEvent
from story_video.ffmpeg_engine import FFmpegEngine
from story_video.models import (
    MixedAssets,
    PipelineRun,
    ProgressEvent,
    RunFailed,
    RunFinished,
    RunStage,
    StoryAssets,
)
from story_video.orchestrator import PipelineOrchestrator
from utils.config import load_config, setup_logging, validate_config

logger = logging.getLogger(__name__)


class ProgressBarCallback:
    """Progress bar subscriber for displaying real-time run progress."""

    def __init__(self):
        """Initialize progress bar state."""
        self.overall_bar: Optional[tqdm] = None
        self.finished: Optional[RunFinished] = None
        self.failed: Optional[RunFailed] = None

    async def __call__(self, event: RunEvent) -> None:
        """Update the bar from one run event.

        Args:
            event: Progress or terminal event from the channel
        """
        if self.overall_bar is None:
            self.overall_bar = tqdm(
                total=100,
                desc="Overall Progress",
                unit="%",
                position=0,
                leave=True,
                bar_format="{l_bar}{bar}| {n:.1f}/{total:.1f}% [{elapsed}<{remaining}]",
            )

        if isinstance(event, ProgressEvent):
            self.overall_bar.n = event.percent
            self.overall_bar.set_description(event.message or event.stage.value.title())
        elif isinstance(event, RunFinished):
            self.finished = event
            self.overall_bar.n = 100
            self.overall_bar.set_description("Complete ✓")
        elif isinstance(event, RunFailed):
            self.failed = event
            self.overall_bar.set_description("Failed ✗")
        self.overall_bar.refresh()

    def close(self):
        """Close the progress bar."""
        if self.overall_bar:
            self.overall_bar.close()


class StoryreelApp:
    """Runs one pipeline job for local files and reports the outcome."""

    def __init__(self, config: dict):
        self.config = config
        self.channel = ProgressChannel()
        self.orchestrator = PipelineOrchestrator(
            engine=FFmpegEngine.from_config(config),
            channel=self.channel,
            config=config,
        )

    @staticmethod
    def session_id() -> str:
        return f"cli_{int(time.time() * 1000)}"

    async def render_story(self, srt: Path, audio: Path, images: Path) -> PipelineRun:
        assets = StoryAssets(narration=audio, subtitles=srt, image_dir=images)
        return await self._run(
            self.orchestrator.run_story(self.session_id(), assets=assets)
        )

    async def render_mixed(
        self, visual: Path, audio: Path, background: Path, volume: Optional[float], fps: Optional[int]
    ) -> PipelineRun:
        assets = MixedAssets(visual=visual, narration=audio, background=background)
        return await self._run(
            self.orchestrator.run_mixed(
                self.session_id(), background_volume=volume, frame_rate=fps, assets=assets
            )
        )

    async def _run(self, job) -> PipelineRun:
        progress_callback = ProgressBarCallback()
        unsubscribe = self.channel.subscribe_all(progress_callback)
        try:
            return await job
        finally:
            unsubscribe()
            progress_callback.close()


def place_output(run: PipelineRun, destination: Optional[str]) -> Optional[Path]:
    """Move the finished artifact to ``destination`` when one was requested."""
    if run.output_path is None or not destination:
        return run.output_path
    target = Path(destination)
    if target.is_dir():
        target = target / run.output_path.name
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(run.output_path), str(target))
    return target


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storyreel",
        description="Render narrated story videos with FFmpeg",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  storyreel story --srt story.srt --audio narration.mp3 --images ./images
  storyreel mix --visual cover.png --audio voice.mp3 --background music.mp3 --volume 0.2
        """,
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    story = subparsers.add_parser("story", help="Ken Burns video from subtitles and images")
    story.add_argument("--srt", required=True, help="Subtitle file (SRT)")
    story.add_argument("--audio", required=True, help="Narration audio")
    story.add_argument("--images", required=True, help="Directory of images, used in natural order")
    story.add_argument("-o", "--output", help="Output file or directory")

    mix = subparsers.add_parser("mix", help="Loop one image/video under mixed narration and music")
    mix.add_argument("--visual", required=True, help="Image or video to loop")
    mix.add_argument("--audio", required=True, help="Foreground narration")
    mix.add_argument("--background", required=True, help="Background track, looped")
    mix.add_argument("--volume", type=float, default=None, help="Background volume (default 0.3)")
    mix.add_argument("--fps", type=int, default=None, help="Output frame rate (default 30)")
    mix.add_argument("-o", "--output", help="Output file or directory")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = load_config()
    setup_logging(args.log_level or config["log_level"])

    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return 1

    app = StoryreelApp(config)
    try:
        if args.command == "story":
            job = app.render_story(Path(args.srt), Path(args.audio), Path(args.images))
        else:
            job = app.render_mixed(
                Path(args.visual), Path(args.audio), Path(args.background), args.volume, args.fps
            )
        run = asyncio.run(job)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1

    if run.stage is not RunStage.DONE:
        logger.error(f"Rendering failed: {run.error}")
        return 1

    output = place_output(run, args.output)
    logger.info(f"Video written to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
