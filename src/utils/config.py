"""Configuration loading and validation for storyreel."""

import logging
import os
import shutil
from pathlib import Path

from dotenv import load_dotenv
from rich.logging import RichHandler

# Get the project root directory (parent of src)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

VALID_PRESETS = (
    "ultrafast", "superfast", "veryfast", "faster", "fast",
    "medium", "slow", "slower", "veryslow",
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def load_config() -> dict:
    """Load configuration from environment variables."""

    # Helper function to resolve paths relative to project root
    def resolve_path(path: str | None, default_relative: str) -> str:
        if not path:
            return str(PROJECT_ROOT / default_relative)
        if Path(path).is_absolute():
            return path
        return str(PROJECT_ROOT / path)

    config = {
        # Storage layout
        "uploads_dir": resolve_path(os.getenv("UPLOADS_DIR"), "uploads"),
        "output_dir": resolve_path(os.getenv("OUTPUT_DIR"), "output"),
        "work_dir": resolve_path(os.getenv("WORK_DIR"), ".work"),
        "run_db_path": resolve_path(os.getenv("RUN_DB_PATH"), ".storyreel/runs.db"),
        "run_retention_days": int(os.getenv("RUN_RETENTION_DAYS", "7")),
        # External encoder
        "ffmpeg_path": os.getenv("FFMPEG_PATH", "ffmpeg"),
        "ffprobe_path": os.getenv("FFPROBE_PATH", "ffprobe"),
        # Output profile
        "render_width": int(os.getenv("RENDER_WIDTH", "1080")),
        "render_height": int(os.getenv("RENDER_HEIGHT", "1920")),
        "render_fps": int(os.getenv("RENDER_FPS", "30")),
        "video_preset": os.getenv("VIDEO_PRESET", "medium"),
        "video_crf": int(os.getenv("VIDEO_CRF", "23")),
        "audio_bitrate": os.getenv("AUDIO_BITRATE", "192k"),
        # Ken Burns clips
        "crossfade_duration": float(os.getenv("CROSSFADE_DURATION", "0.3")),
        "zoom_rate": float(os.getenv("ZOOM_RATE", "0.08")),
        "zoom_safety_seconds": float(os.getenv("ZOOM_SAFETY_SECONDS", "2.0")),
        # Mixed-media defaults
        "default_bg_volume": float(os.getenv("DEFAULT_BG_VOLUME", "0.3")),
        "default_mixed_fps": int(os.getenv("DEFAULT_MIXED_FPS", "30")),
        # Concurrency and timeouts
        "max_concurrent_encodes": int(os.getenv("MAX_CONCURRENT_ENCODES", "4")),
        "max_parallel_clips": int(os.getenv("MAX_PARALLEL_CLIPS", "1")),
        "stage_timeout_seconds": float(os.getenv("STAGE_TIMEOUT_SECONDS", "1800")),
        "progress_interval_seconds": float(os.getenv("PROGRESS_INTERVAL_SECONDS", "0.5")),
        # Behaviour switches
        "strict_image_count": _env_bool("STRICT_IMAGE_COUNT", "false"),
        "cleanup_session_uploads": _env_bool("CLEANUP_SESSION_UPLOADS", "true"),
        # Logging and server
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_json": _env_bool("LOG_JSON", "false"),
        "port": int(os.getenv("PORT", "7860")),
    }

    return config


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    # Encoder binaries must be resolvable
    for key, name in (("ffmpeg_path", "FFMPEG_PATH"), ("ffprobe_path", "FFPROBE_PATH")):
        if not shutil.which(config.get(key) or ""):
            errors.append(f"{name} not found on PATH: {config.get(key)}")

    if config.get("render_width", 0) <= 0 or config.get("render_height", 0) <= 0:
        errors.append("RENDER_WIDTH and RENDER_HEIGHT must be positive")
    if config.get("render_width", 0) % 2 or config.get("render_height", 0) % 2:
        errors.append("RENDER_WIDTH and RENDER_HEIGHT must be even for yuv420p")
    if config.get("render_fps", 0) <= 0:
        errors.append("RENDER_FPS must be positive")
    if config.get("video_preset") not in VALID_PRESETS:
        errors.append(f"VIDEO_PRESET must be one of: {', '.join(VALID_PRESETS)}")
    if not 0 <= config.get("video_crf", -1) <= 51:
        errors.append("VIDEO_CRF must be between 0 and 51")

    if config.get("crossfade_duration", 0) < 0:
        errors.append("CROSSFADE_DURATION must not be negative")
    if config.get("zoom_rate", 0) < 0:
        errors.append("ZOOM_RATE must not be negative")
    if config.get("zoom_safety_seconds", 0) < 0:
        errors.append("ZOOM_SAFETY_SECONDS must not be negative")

    if config.get("max_concurrent_encodes", 0) < 1:
        errors.append("MAX_CONCURRENT_ENCODES must be at least 1")
    if config.get("max_parallel_clips", 0) < 1:
        errors.append("MAX_PARALLEL_CLIPS must be at least 1")
    if config.get("stage_timeout_seconds", 0) <= 0:
        errors.append("STAGE_TIMEOUT_SECONDS must be positive")

    # Validate local paths can be created
    for key in ("uploads_dir", "output_dir", "work_dir"):
        try:
            Path(config[key]).mkdir(parents=True, exist_ok=True)
        except Exception as e:
            errors.append(f"Cannot create {key.replace('_', ' ')}: {e}")

    return errors


def setup_logging(log_level: str = "INFO") -> None:
    """Set up logging configuration with Rich for beautiful terminal output."""
    # Clear any existing handlers
    logging.root.handlers.clear()

    rich_handler = RichHandler(
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,  # Disable markup to avoid conflicts
    )

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[rich_handler],
        format="%(message)s",
    )

    # Suppress noisy third-party loggers
    for logger_name in ("aiosqlite", "asyncio"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)
