"""Pairing of subtitle segments with a naturally sorted image set."""

import logging
import re
from pathlib import Path

from story_video.errors import InputMissing, ParseEmpty
from story_video.models import Scene, TimedSegment

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".gif", ".webp"}

_DIGITS_RE = re.compile(r"(\d+)")


def natural_sort_key(name: str) -> list:
    """Sort key treating embedded digit runs as numbers.

    ``"frame10.png"`` sorts after ``"frame2.png"``. Text parts compare
    case-insensitively; number parts compare by value.
    """
    parts = _DIGITS_RE.split(name)
    return [(0, int(part), "") if part.isdecimal() else (1, 0, part.lower()) for part in parts]


def natural_sorted(names: list[str]) -> list[str]:
    """Return names in natural (numeric-aware) order."""
    return sorted(names, key=natural_sort_key)


def list_images(image_dir: Path) -> list[Path]:
    """List image files of a directory in natural filename order.

    Hidden files and files without an image extension are ignored.
    """
    image_dir = Path(image_dir)
    if not image_dir.is_dir():
        return []

    candidates = [
        f
        for f in image_dir.iterdir()
        if f.is_file() and not f.name.startswith(".") and f.suffix.lower() in IMAGE_EXTENSIONS
    ]
    by_name = {f.name: f for f in candidates}
    return [by_name[name] for name in natural_sorted(list(by_name))]


def derive_scenes(
    segments: list[TimedSegment],
    images: list[Path],
    strict_image_count: bool = False,
) -> list[Scene]:
    """Zip segments with images into an ordered scene plan.

    Args:
        segments: Parsed subtitle segments in playback order
        images: Images already in natural order
        strict_image_count: Reject a count mismatch instead of reusing the
            last image for overflow scenes

    Returns:
        One scene per segment, same order.

    Raises:
        ParseEmpty: No segments to render
        InputMissing: No images at all, or a mismatch in strict mode
    """
    if not segments:
        raise ParseEmpty("No renderable scenes: the subtitle file has no valid timed blocks")
    if not images:
        raise InputMissing("No images found for the story")

    if len(images) != len(segments):
        if strict_image_count:
            raise InputMissing(
                f"Image count ({len(images)}) does not match subtitle scene count ({len(segments)})"
            )
        if len(images) < len(segments):
            logger.warning(
                f"{len(segments)} scenes but only {len(images)} images; "
                f"reusing {images[-1].name} for the last {len(segments) - len(images)} scene(s)"
            )
        else:
            logger.info(f"Ignoring {len(images) - len(segments)} extra image(s)")

    scenes: list[Scene] = []
    for i, segment in enumerate(segments):
        image = images[i] if i < len(images) else images[-1]
        scenes.append(
            Scene(
                index=i,
                image_path=image,
                start_ms=segment.start_ms,
                end_ms=segment.end_ms,
                text=segment.text,
            )
        )
    return scenes
