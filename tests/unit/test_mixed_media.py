"""Unit tests for the mixed-media pipeline."""

import pytest

from story_video.errors import InputMissing, PipelineError, ProbeFailure
from story_video.mixed_media import MixedMediaPipeline, is_image_input
from story_video.models import MixedAssets

from conftest import FakeEngine


@pytest.fixture
def assets(temp_dir) -> MixedAssets:
    visual = temp_dir / "cover.png"
    narration = temp_dir / "voice.mp3"
    background = temp_dir / "music.mp3"
    for path in (visual, narration, background):
        path.write_bytes(b"\x00" * 16)
    return MixedAssets(visual=visual, narration=narration, background=background)


class TestClassification:
    @pytest.mark.parametrize("name", ["a.jpg", "a.JPEG", "a.png", "a.bmp", "a.gif", "a.webp"])
    def test_images(self, name):
        assert is_image_input(name)

    @pytest.mark.parametrize("name", ["a.mp4", "a.mov", "png", "a.png.mp4"])
    def test_videos(self, name):
        assert not is_image_input(name)


class TestValidation:
    def test_missing_visual(self, assets, temp_dir):
        missing = MixedAssets(temp_dir / "none.png", assets.narration, assets.background)
        with pytest.raises(InputMissing, match="Visual"):
            MixedMediaPipeline.validate_inputs(missing)

    def test_missing_main_audio(self, assets, temp_dir):
        missing = MixedAssets(assets.visual, temp_dir / "none.mp3", assets.background)
        with pytest.raises(InputMissing, match="Main audio"):
            MixedMediaPipeline.validate_inputs(missing)

    def test_missing_background(self, assets, temp_dir):
        missing = MixedAssets(assets.visual, assets.narration, temp_dir / "none.mp3")
        with pytest.raises(InputMissing, match="Background"):
            MixedMediaPipeline.validate_inputs(missing)

    def test_settings_defaults(self):
        assert MixedMediaPipeline(FakeEngine()).resolve_settings(None, None) == (0.3, 30)

    @pytest.mark.parametrize("volume, fps", [(-0.1, 30), (4.5, 30), (0.3, 0), (0.3, 121)])
    def test_settings_out_of_range(self, volume, fps):
        with pytest.raises(PipelineError):
            MixedMediaPipeline(FakeEngine()).resolve_settings(volume, fps)


class TestMix:
    @pytest.mark.asyncio
    async def test_probe_target_duration(self, assets):
        engine = FakeEngine(durations={"voice.mp3": 10.0})
        assert await MixedMediaPipeline(engine).probe_target_duration(assets.narration) == 10.0

    @pytest.mark.asyncio
    async def test_probe_zero_duration(self, assets):
        engine = FakeEngine(durations={"voice.mp3": 0.0})
        with pytest.raises(ProbeFailure):
            await MixedMediaPipeline(engine).probe_target_duration(assets.narration)

    @pytest.mark.asyncio
    async def test_mix_passes_settings(self, assets, temp_dir):
        engine = FakeEngine()
        output = await MixedMediaPipeline(engine).mix(assets, temp_dir / "mixed.mp4", 10.0, 0.3, 24)

        assert output.exists()
        name, visual, is_image, fg, bg, volume, duration, fps, out = engine.calls[0]
        assert name == "mix_and_apply"
        assert is_image is True
        assert (fg, bg) == (assets.narration, assets.background)
        assert (volume, duration, fps) == (0.3, 10.0, 24)
