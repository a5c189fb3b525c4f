"""Registry of in-flight runs, one per session."""

import logging
from typing import Optional

from story_video.errors import RunAlreadyActive
from story_video.models import PipelineRun

logger = logging.getLogger(__name__)


class RunRegistry:
    """Owns the set of active runs keyed by session id.

    A run is inserted when it starts and removed on its terminal transition,
    so a session can start a new run as soon as the previous one ended.
    """

    def __init__(self):
        self._active: dict[str, PipelineRun] = {}

    def register(self, run: PipelineRun) -> None:
        """Insert ``run``; raise ``RunAlreadyActive`` if its session is busy."""
        existing = self._active.get(run.session_id)
        if existing is not None:
            raise RunAlreadyActive(
                f"Session {run.session_id} already has an active run ({existing.run_id})"
            )
        self._active[run.session_id] = run
        logger.debug(f"Registered run {run.run_id} for session {run.session_id}")

    def release(self, run: PipelineRun) -> None:
        """Remove ``run`` if it is still the session's active run."""
        if self._active.get(run.session_id) is run:
            del self._active[run.session_id]
            logger.debug(f"Released run {run.run_id} for session {run.session_id}")

    def get(self, session_id: str) -> Optional[PipelineRun]:
        return self._active.get(session_id)

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def active_runs(self) -> list[PipelineRun]:
        return list(self._active.values())

    def __len__(self) -> int:
        return len(self._active)
