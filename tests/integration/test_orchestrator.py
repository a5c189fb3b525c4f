"""Integration tests for complete pipeline runs.

Runs the orchestrator end to end against the recording engine double, so
stage sequencing, progress, cleanup and terminal events are exercised
without invoking FFmpeg.
"""

import asyncio
from pathlib import Path

import pytest

from story_video import orchestrator as orchestrator_module
from story_video.errors import RunAlreadyActive
from story_video.models import (
    MixedAssets,
    ProgressEvent,
    RunFailed,
    RunFinished,
    RunKind,
    RunStage,
    StoryAssets,
)
from story_video.orchestrator import PipelineOrchestrator, output_filename

from conftest import FakeEngine, make_mixed_session, make_story_session


@pytest.fixture
def uploads_dir(sample_config) -> Path:
    return Path(sample_config["uploads_dir"])


def build(engine, channel, config) -> PipelineOrchestrator:
    return PipelineOrchestrator(engine, channel, config)


def progress_events(recorder) -> list[ProgressEvent]:
    return recorder.of_type(ProgressEvent)


def terminal_events(recorder) -> list:
    return [e for e in recorder.events if isinstance(e, (RunFinished, RunFailed))]


class TestStoryRun:
    @pytest.mark.asyncio
    async def test_full_story_run(self, sample_config, uploads_dir, channel, recorder):
        make_story_session(uploads_dir, "s1")
        engine = FakeEngine(durations={"concatenated.mp4": 8.0, "narration.mp3": 8.0})
        orchestrator = build(engine, channel, sample_config)

        run = await orchestrator.run_story("s1")

        assert run.stage == RunStage.DONE
        assert engine.names().count("render_image_segment") == 3
        assert "concatenate" in engine.names()
        assert "mux_audio" in engine.names()

        messages = [e.message for e in progress_events(recorder)]
        expected_order = [
            "Initializing...",
            "Parsing subtitles...",
            "Matching images to subtitles...",
            "Creating clip 1/3...",
            "Creating clip 2/3...",
            "Creating clip 3/3...",
            "Combining clips...",
            "Adding audio...",
            "Cleaning up...",
            "Complete!",
        ]
        positions = [messages.index(m) for m in expected_order]
        assert positions == sorted(positions)

        percents = [e.percent for e in progress_events(recorder)]
        assert percents == sorted(percents)
        assert percents[-1] == 100

        terminals = terminal_events(recorder)
        assert len(terminals) == 1
        finished = terminals[0]
        assert isinstance(finished, RunFinished)
        assert recorder.events[-1] is finished
        assert finished.url == f"/output/{finished.filename}"
        assert finished.filename.startswith("video_s1_")
        assert finished.output_path.exists()
        assert finished.output_path.parent == Path(sample_config["output_dir"])

    @pytest.mark.asyncio
    async def test_clip_durations_follow_subtitles(self, sample_config, uploads_dir, channel):
        make_story_session(uploads_dir, "s1")
        engine = FakeEngine()

        await build(engine, channel, sample_config).run_story("s1")

        renders = [c for c in engine.calls if c[0] == "render_image_segment"]
        assert [c[2] for c in renders] == pytest.approx([2.5, 2.5, 3.0])
        assert [c[1].name for c in renders] == ["1.png", "2.png", "3.png"]
        concat = [c for c in engine.calls if c[0] == "concatenate"][0]
        assert concat[3] == pytest.approx(8.0)

    @pytest.mark.asyncio
    async def test_last_image_reused_when_images_run_short(self, sample_config, uploads_dir, channel, recorder):
        make_story_session(uploads_dir, "s1", image_count=2)
        engine = FakeEngine()

        run = await build(engine, channel, sample_config).run_story("s1")

        assert run.stage == RunStage.DONE
        renders = [c for c in engine.calls if c[0] == "render_image_segment"]
        assert [c[1].name for c in renders] == ["1.png", "2.png", "2.png"]

    @pytest.mark.asyncio
    async def test_strict_image_count_fails_run(self, sample_config, uploads_dir, channel, recorder):
        make_story_session(uploads_dir, "s1", image_count=2)
        sample_config["strict_image_count"] = True
        engine = FakeEngine()

        run = await build(engine, channel, sample_config).run_story("s1")

        assert run.stage == RunStage.FAILED
        assert engine.calls == []
        assert isinstance(terminal_events(recorder)[0], RunFailed)

    @pytest.mark.asyncio
    async def test_empty_subtitles_fail_before_encoding(self, sample_config, uploads_dir, channel, recorder):
        make_story_session(uploads_dir, "s1", srt="this is not a subtitle file\n")
        engine = FakeEngine()

        run = await build(engine, channel, sample_config).run_story("s1")

        assert run.stage == RunStage.FAILED
        assert engine.calls == []
        terminals = terminal_events(recorder)
        assert len(terminals) == 1
        assert isinstance(terminals[0], RunFailed)
        assert terminals[0].error_type == "ParseEmpty"
        assert not run.work_dir.exists()

    @pytest.mark.asyncio
    async def test_engine_failure_yields_single_failed_event(self, sample_config, uploads_dir, channel, recorder):
        session = make_story_session(uploads_dir, "s1")
        engine = FakeEngine(fail_on="concatenate")
        orchestrator = build(engine, channel, sample_config)

        run = await orchestrator.run_story("s1")

        terminals = terminal_events(recorder)
        assert len(terminals) == 1
        assert isinstance(terminals[0], RunFailed)
        assert "simulated failure" in terminals[0].message
        assert run.error == terminals[0].message
        assert "mux_audio" not in engine.names()
        assert not run.work_dir.exists()
        assert not orchestrator.registry.is_active("s1")
        # uploads survive a failed run so the client can retry
        assert session.exists()

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(self, sample_config, uploads_dir, channel, recorder):
        class BrokenEngine(FakeEngine):
            async def render_image_segment(self, *args, **kwargs):
                raise RuntimeError("disk on fire")

        make_story_session(uploads_dir, "s1")
        run = await build(BrokenEngine(), channel, sample_config).run_story("s1")

        assert run.stage == RunStage.FAILED
        failed = terminal_events(recorder)[0]
        assert failed.message == "Unexpected error: disk on fire"
        assert failed.error_type == "RuntimeError"

    @pytest.mark.asyncio
    async def test_missing_uploads(self, sample_config, channel, recorder):
        run = await build(FakeEngine(), channel, sample_config).run_story("nobody")

        assert run.stage == RunStage.FAILED
        assert terminal_events(recorder)[0].message == "Narration audio missing"

    @pytest.mark.asyncio
    async def test_explicit_assets_are_not_deleted(self, sample_config, temp_dir, channel):
        session = make_story_session(temp_dir / "cli", "local")
        assets = StoryAssets(
            narration=session / "audio" / "narration.mp3",
            subtitles=session / "srt" / "story.srt",
            image_dir=session / "images",
        )

        run = await build(FakeEngine(), channel, sample_config).run_story("local", assets)

        assert run.stage == RunStage.DONE
        assert session.exists()

    @pytest.mark.asyncio
    async def test_uploads_removed_after_success(self, sample_config, uploads_dir, channel):
        session = make_story_session(uploads_dir, "s1")
        await build(FakeEngine(), channel, sample_config).run_story("s1")
        assert not session.exists()

    @pytest.mark.asyncio
    async def test_work_dir_removed_after_success(self, sample_config, uploads_dir, channel):
        make_story_session(uploads_dir, "s1")
        orchestrator = build(FakeEngine(), channel, sample_config)

        run = await orchestrator.run_story("s1")

        assert run.work_dir_removed
        assert not run.work_dir.exists()
        assert run.work_dir.parent == Path(sample_config["work_dir"])
        assert run.work_dir.name.startswith("s1_")
        assert run.work_dir.name.endswith(run.run_id)
        assert orchestrator.remove_work_dir(run) is False


class TestMixedRun:
    @pytest.mark.asyncio
    async def test_full_mixed_run(self, sample_config, uploads_dir, channel, recorder):
        make_mixed_session(uploads_dir, "m1")
        engine = FakeEngine(durations={"voice.mp3": 10.0})

        run = await build(engine, channel, sample_config).run_mixed("m1")

        assert run.stage == RunStage.DONE
        mix = [c for c in engine.calls if c[0] == "mix_and_apply"][0]
        _, visual, is_image, fg, bg, volume, duration, fps, _ = mix
        assert visual.name == "cover.png"
        assert is_image is True
        assert (fg.name, bg.name) == ("voice.mp3", "music.mp3")
        assert (volume, duration, fps) == (0.3, 10.0, 30)

        stages = [e.stage for e in progress_events(recorder)]
        assert stages[0] == RunStage.INITIALIZING
        assert RunStage.PROBING in stages
        assert RunStage.MIXING in stages
        assert RunStage.CLEANUP not in stages
        assert stages[-1] == RunStage.DONE

        finished = terminal_events(recorder)[0]
        assert isinstance(finished, RunFinished)
        assert finished.filename.startswith("mixed_m1_")

    @pytest.mark.asyncio
    async def test_video_visual_and_custom_settings(self, sample_config, uploads_dir, channel):
        make_mixed_session(uploads_dir, "m1", visual_name="loop.mp4")
        engine = FakeEngine()

        await build(engine, channel, sample_config).run_mixed("m1", background_volume=0.8, frame_rate=24)

        mix = [c for c in engine.calls if c[0] == "mix_and_apply"][0]
        assert mix[2] is False
        assert (mix[5], mix[7]) == (0.8, 24)

    @pytest.mark.asyncio
    async def test_invalid_settings_fail_before_probe(self, sample_config, uploads_dir, channel, recorder):
        make_mixed_session(uploads_dir, "m1")
        engine = FakeEngine()

        run = await build(engine, channel, sample_config).run_mixed("m1", background_volume=9.0)

        assert run.stage == RunStage.FAILED
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_missing_background(self, sample_config, temp_dir, channel, recorder):
        assets = MixedAssets(temp_dir / "a.png", temp_dir / "b.mp3", temp_dir / "c.mp3")
        for path in (assets.visual, assets.narration):
            path.write_bytes(b"x")

        await build(FakeEngine(), channel, sample_config).run_mixed("m1", assets=assets)

        assert terminal_events(recorder)[0].message == "Background audio missing"


class TestRunLifecycle:
    @pytest.mark.asyncio
    async def test_second_run_for_active_session_rejected(self, sample_config, uploads_dir, channel):
        make_story_session(uploads_dir, "s1")
        orchestrator = build(FakeEngine(), channel, sample_config)

        run = orchestrator.start_story("s1")
        with pytest.raises(RunAlreadyActive):
            orchestrator.start_mixed("s1")

        await asyncio.gather(*list(orchestrator_module._background_tasks))
        assert run.stage == RunStage.DONE
        assert not orchestrator.registry.is_active("s1")

    @pytest.mark.asyncio
    async def test_sessions_run_concurrently(self, sample_config, uploads_dir, channel, recorder):
        make_story_session(uploads_dir, "s1")
        make_mixed_session(uploads_dir, "m1")
        orchestrator = build(FakeEngine(), channel, sample_config)

        story, mixed = await asyncio.gather(orchestrator.run_story("s1"), orchestrator.run_mixed("m1"))

        assert story.stage == RunStage.DONE
        assert mixed.stage == RunStage.DONE
        finished = recorder.of_type(RunFinished)
        assert {e.session_id for e in finished} == {"s1", "m1"}

    @pytest.mark.asyncio
    async def test_session_can_rerun_after_finish(self, sample_config, uploads_dir, channel):
        orchestrator = build(FakeEngine(), channel, sample_config)
        make_story_session(uploads_dir, "s1")
        first = await orchestrator.run_story("s1")
        make_story_session(uploads_dir, "s1")
        second = await orchestrator.run_story("s1")

        assert first.run_id != second.run_id
        assert second.stage == RunStage.DONE

    def test_create_run_registers(self, sample_config, channel):
        orchestrator = build(FakeEngine(), channel, sample_config)
        run = orchestrator.create_run("s1", RunKind.MIXED)
        assert orchestrator.registry.get("s1") is run
        assert len(run.run_id) == 12

    def test_output_filename(self):
        name = output_filename("video", "s1", "abc123", 1700000000000)
        assert name == "video_s1_1700000000000_abc123.mp4"

    @pytest.mark.asyncio
    async def test_repeated_runs_of_one_session_get_distinct_outputs(
        self, sample_config, uploads_dir, channel, recorder
    ):
        sample_config["cleanup_session_uploads"] = False
        make_mixed_session(uploads_dir, "m1")
        orchestrator = build(FakeEngine(ticks=()), channel, sample_config)

        for _ in range(30):
            run = await orchestrator.run_mixed("m1")
            assert run.stage == RunStage.DONE

        filenames = [e.filename for e in recorder.of_type(RunFinished)]
        assert len(set(filenames)) == 30
        output_dir = Path(sample_config["output_dir"])
        assert sorted(p.name for p in output_dir.iterdir()) == sorted(filenames)

    @pytest.mark.asyncio
    async def test_existing_output_is_never_overwritten(
        self, sample_config, uploads_dir, channel, recorder, monkeypatch
    ):
        monkeypatch.setattr(orchestrator_module, "output_filename", lambda *args: "mixed_m1_taken.mp4")
        output_dir = Path(sample_config["output_dir"])
        output_dir.mkdir(parents=True)
        (output_dir / "mixed_m1_taken.mp4").write_bytes(b"earlier")
        make_mixed_session(uploads_dir, "m1")

        run = await build(FakeEngine(), channel, sample_config).run_mixed("m1")

        assert run.stage == RunStage.FAILED
        assert terminal_events(recorder)[0].message == "Output file already exists: mixed_m1_taken.mp4"
        assert (output_dir / "mixed_m1_taken.mp4").read_bytes() == b"earlier"
