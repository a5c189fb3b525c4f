"""Progress aggregation for pipeline runs.

Each stage of a run owns a slice of the 0-100 scale. Intra-stage fractions
reported by the engine are mapped into the stage's slice, clamped so the
published percent never goes backwards, and throttled so a fast encoder does
not flood the transports.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from story_video.events import ProgressChannel
from story_video.models import PipelineRun, ProgressEvent, RunStage

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 0.5


@dataclass(frozen=True)
class StageSlice:
    """Portion of the overall percent scale owned by one stage."""

    start: float
    end: float

    def at(self, fraction: float) -> float:
        """Percent reached when the stage is ``fraction`` done."""
        fraction = min(1.0, max(0.0, fraction))
        return self.start + (self.end - self.start) * fraction


STORY_SLICES: dict[RunStage, StageSlice] = {
    RunStage.INITIALIZING: StageSlice(0, 0),
    RunStage.PARSING: StageSlice(0, 0),
    RunStage.DERIVING: StageSlice(0, 0),
    RunStage.SYNTHESIZING: StageSlice(0, 50),
    RunStage.CONCATENATING: StageSlice(50, 60),
    RunStage.MUXING: StageSlice(60, 100),
    RunStage.CLEANUP: StageSlice(100, 100),
    RunStage.DONE: StageSlice(100, 100),
}

MIXED_SLICES: dict[RunStage, StageSlice] = {
    RunStage.INITIALIZING: StageSlice(0, 0),
    RunStage.PROBING: StageSlice(0, 10),
    RunStage.MIXING: StageSlice(10, 95),
    RunStage.DONE: StageSlice(100, 100),
}


class ProgressTracker:
    """Tracks one run's stage and percent and publishes progress events.

    Example usage:
        tracker = ProgressTracker(run, channel, STORY_SLICES)
        await tracker.enter_stage(RunStage.SYNTHESIZING, "Creating clip 1/3...")
        await tracker.update(0.25)
        await tracker.enter_stage(RunStage.DONE, "Complete!")
    """

    def __init__(
        self,
        run: PipelineRun,
        channel: ProgressChannel,
        slices: dict[RunStage, StageSlice],
        interval: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the tracker.

        Args:
            run: Run whose stage is advanced by this tracker
            channel: Channel receiving the progress events
            slices: Percent slice per stage
            interval: Minimum seconds between intra-stage events
            clock: Monotonic time source
        """
        self.run = run
        self.channel = channel
        self.slices = slices
        self.interval = interval
        self.clock = clock

        self.message = ""
        self._percent = 0.0
        self._last_published: Optional[float] = None
        self._last_published_at = 0.0

    @property
    def percent(self) -> float:
        return self._percent

    def _advance(self, target: float) -> float:
        self._percent = max(self._percent, min(100.0, target))
        return self._percent

    async def enter_stage(self, stage: RunStage, message: str) -> None:
        """Transition the run to ``stage`` and always publish an event."""
        if stage not in self.slices:
            raise ValueError(f"No progress slice for stage {stage.value}")

        self.run.stage = stage
        self.message = message
        self._advance(self.slices[stage].start)
        logger.info(f"[{self.run.run_id}] {stage.value}: {message}")
        await self._publish()

    async def update(self, fraction: float, message: Optional[str] = None) -> None:
        """Report progress within the current stage.

        Published only if the interval has elapsed since the last event or a
        whole percent has been crossed; the message change alone forces one.
        """
        if message is not None and message != self.message:
            self.message = message
            force = True
        else:
            force = False

        stage_slice = self.slices.get(self.run.stage)
        if stage_slice is None:
            return
        percent = self._advance(stage_slice.at(fraction))

        if force:
            await self._publish()
            return
        if self._last_published is not None and percent == self._last_published:
            return

        crossed = self._last_published is None or int(percent) > int(self._last_published)
        elapsed = self.clock() - self._last_published_at
        if crossed or elapsed >= self.interval:
            await self._publish()

    async def note(self, message: str) -> None:
        """Publish a new message at the current percent."""
        self.message = message
        logger.info(f"[{self.run.run_id}] {self.run.stage.value}: {message}")
        await self._publish()

    async def _publish(self) -> None:
        self._last_published = self._percent
        self._last_published_at = self.clock()
        await self.channel.publish(
            ProgressEvent(
                run_id=self.run.run_id,
                session_id=self.run.session_id,
                stage=self.run.stage,
                message=self.message,
                percent=self._percent,
            )
        )
