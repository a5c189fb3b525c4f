"""Tests for the command-line entry point."""

from unittest.mock import patch

import pytest

import main as cli
from story_video.models import PipelineRun, RunKind, RunStage
from story_video.orchestrator import PipelineOrchestrator

from conftest import FakeEngine, make_mixed_session, make_story_session


class TestParser:
    def test_story_arguments(self):
        args = cli.build_parser().parse_args(
            ["story", "--srt", "a.srt", "--audio", "a.mp3", "--images", "imgs", "-o", "out.mp4"]
        )
        assert args.command == "story"
        assert (args.srt, args.audio, args.images, args.output) == ("a.srt", "a.mp3", "imgs", "out.mp4")

    def test_mix_arguments(self):
        args = cli.build_parser().parse_args(
            ["mix", "--visual", "v.png", "--audio", "a.mp3", "--background", "b.mp3", "--volume", "0.2"]
        )
        assert args.volume == 0.2
        assert args.fps is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestPlaceOutput:
    def test_moves_into_directory(self, temp_dir):
        rendered = temp_dir / "video_cli_1.mp4"
        rendered.write_bytes(b"x")
        run = PipelineRun(run_id="r", session_id="cli_1", kind=RunKind.STORY, work_dir=temp_dir, output_path=rendered)
        target_dir = temp_dir / "exports"
        target_dir.mkdir()

        placed = cli.place_output(run, str(target_dir))

        assert placed == target_dir / "video_cli_1.mp4"
        assert placed.exists()
        assert not rendered.exists()

    def test_no_destination_keeps_output(self, temp_dir):
        run = PipelineRun(run_id="r", session_id="s", kind=RunKind.STORY, work_dir=temp_dir, output_path=temp_dir / "a.mp4")
        assert cli.place_output(run, None) == temp_dir / "a.mp4"


class TestStoryreelApp:
    @pytest.fixture
    def app(self, sample_config):
        app = cli.StoryreelApp(sample_config)
        app.orchestrator = PipelineOrchestrator(FakeEngine(), app.channel, sample_config)
        return app

    @pytest.mark.asyncio
    async def test_render_story(self, app, temp_dir):
        session = make_story_session(temp_dir / "local", "story")

        run = await app.render_story(
            session / "srt" / "story.srt", session / "audio" / "narration.mp3", session / "images"
        )

        assert run.stage == RunStage.DONE
        assert run.output_path.exists()
        assert session.exists()
        assert app.channel.subscriber_count("*") == 0

    @pytest.mark.asyncio
    async def test_render_mixed_failure(self, app, temp_dir):
        session = make_mixed_session(temp_dir / "local", "mix")

        run = await app.render_mixed(
            session / "visual" / "cover.png", session / "audio" / "voice.mp3",
            temp_dir / "missing.mp3", None, None,
        )

        assert run.stage == RunStage.FAILED
        assert run.error == "Background audio missing"

    def test_session_ids_are_safe(self):
        assert cli.StoryreelApp.session_id().startswith("cli_")


class TestMain:
    def test_configuration_errors_exit_nonzero(self, sample_config):
        with patch.object(cli, "load_config", return_value=sample_config), \
             patch.object(cli, "setup_logging"), \
             patch.object(cli, "validate_config", return_value=["FFMPEG_PATH not found on PATH: ffmpeg"]):
            code = cli.main(["story", "--srt", "a.srt", "--audio", "a.mp3", "--images", "imgs"])
        assert code == 1

    def test_failed_run_exits_nonzero(self, sample_config, temp_dir):
        with patch.object(cli, "load_config", return_value=sample_config), \
             patch.object(cli, "setup_logging"), \
             patch.object(cli, "validate_config", return_value=[]):
            code = cli.main([
                "story", "--srt", str(temp_dir / "none.srt"),
                "--audio", str(temp_dir / "none.mp3"), "--images", str(temp_dir),
            ])
        assert code == 1
