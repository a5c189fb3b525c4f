"""SRT-style subtitle parsing into timed segments.

Parsing is deliberately lenient: a block whose second line is not a valid
``start --> end`` pair is skipped rather than treated as an error. An input
with no usable block yields an empty list; deciding that this is fatal is
the caller's job.
"""

import logging
import re
from pathlib import Path

from story_video.models import TimedSegment

logger = logging.getLogger(__name__)

_TIMESTAMP = r"(\d{1,2}):(\d{2}):(\d{2})[.,](\d{3})"
TIMING_LINE_RE = re.compile(rf"^\s*{_TIMESTAMP}\s*-->\s*{_TIMESTAMP}")
BLOCK_SEPARATOR_RE = re.compile(r"\n\s*\n")

MS_PER_HOUR = 3_600_000
MS_PER_MINUTE = 60_000
MS_PER_SECOND = 1_000


def timestamp_to_ms(hours: str, minutes: str, seconds: str, millis: str) -> int:
    """Convert timestamp fields to integer milliseconds."""
    return (
        int(hours) * MS_PER_HOUR
        + int(minutes) * MS_PER_MINUTE
        + int(seconds) * MS_PER_SECOND
        + int(millis)
    )


def parse_subtitles(raw: str) -> list[TimedSegment]:
    """Parse raw subtitle text into ordered timed segments.

    Args:
        raw: Subtitle file content. Blocks are separated by blank lines; the
            second line of each block carries ``HH:MM:SS,mmm --> HH:MM:SS,mmm``
            (``.`` is accepted as decimal separator), the rest is caption text.

    Returns:
        Segments in file order. Blocks without a valid timing line, or whose
        end is not after their start, are skipped.
    """
    text = raw.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n").strip()
    if not text:
        return []

    segments: list[TimedSegment] = []
    skipped = 0

    for block in BLOCK_SEPARATOR_RE.split(text):
        lines = block.strip("\n").split("\n")
        if len(lines) < 2:
            skipped += 1
            continue

        match = TIMING_LINE_RE.match(lines[1])
        if not match:
            skipped += 1
            continue

        groups = match.groups()
        start_ms = timestamp_to_ms(*groups[:4])
        end_ms = timestamp_to_ms(*groups[4:])
        if end_ms <= start_ms:
            skipped += 1
            continue

        caption = " ".join(line.strip() for line in lines[2:] if line.strip())
        segments.append(TimedSegment(start_ms=start_ms, end_ms=end_ms, text=caption))

    if skipped:
        logger.debug(f"Skipped {skipped} subtitle block(s) without a usable timing line")

    return segments


def parse_subtitle_file(path: Path) -> list[TimedSegment]:
    """Read and parse a subtitle file (UTF-8, undecodable bytes replaced)."""
    raw = Path(path).read_text(encoding="utf-8", errors="replace")
    segments = parse_subtitles(raw)
    logger.info(f"Parsed {len(segments)} subtitle segments from {Path(path).name}")
    return segments
