"""Service singletons and dependency injection for the storyreel API."""

import logging

from api.run_store import RunStore
from api.websocket_manager import WebSocketManager
from story_video.events import ProgressChannel
from story_video.ffmpeg_engine import FFmpegEngine
from story_video.orchestrator import PipelineOrchestrator
from utils.config import load_config

logger = logging.getLogger(__name__)

# Service singletons
_config: dict | None = None
_channel: ProgressChannel | None = None
_orchestrator: PipelineOrchestrator | None = None
_run_store: RunStore | None = None
_ws_manager: WebSocketManager | None = None


def get_config() -> dict:
    """Get or load the configuration dict."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_channel() -> ProgressChannel:
    """Get or create the progress channel shared by all runs."""
    global _channel
    if _channel is None:
        _channel = ProgressChannel()
    return _channel


def get_ws_manager() -> WebSocketManager:
    """Get or create the WebSocket manager."""
    global _ws_manager
    if _ws_manager is None:
        _ws_manager = WebSocketManager()
    return _ws_manager


def get_orchestrator() -> PipelineOrchestrator:
    """Get or create the pipeline orchestrator backed by FFmpeg."""
    global _orchestrator
    if _orchestrator is None:
        config = get_config()
        _orchestrator = PipelineOrchestrator(
            engine=FFmpegEngine.from_config(config),
            channel=get_channel(),
            config=config,
        )
    return _orchestrator


def get_run_store() -> RunStore:
    """Get the connected run store.

    Raises:
        RuntimeError: If the store was not started by the app lifespan
    """
    if _run_store is None:
        raise RuntimeError("Run store not initialized")
    return _run_store


async def start_services() -> None:
    """Connect the run store and wire transports to the progress channel."""
    global _run_store
    config = get_config()

    _run_store = RunStore(config["run_db_path"])
    await _run_store.connect()
    await _run_store.mark_interrupted()
    await _run_store.cleanup_old_runs(days=config.get("run_retention_days", 7))

    channel = get_channel()
    channel.subscribe_all(_run_store.record_event)
    channel.subscribe_all(get_ws_manager().forward_event)
    get_orchestrator()
    logger.info("Services started")


async def stop_services() -> None:
    """Close the run store and drop the singletons."""
    global _config, _channel, _orchestrator, _run_store, _ws_manager
    if _run_store is not None:
        await _run_store.close()
    _config = _channel = _orchestrator = _run_store = _ws_manager = None
    logger.info("Services stopped")
