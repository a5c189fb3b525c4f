"""SQLite-based persistent run history for the storyreel API.

Runs survive server restarts so clients can look up finished artifacts.
Uses aiosqlite for async database operations.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite

from story_video.events import RunEvent
from story_video.models import PipelineRun, ProgressEvent, RunFailed, RunFinished

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = ".storyreel/runs.db"

STATUS_QUEUED = "queued"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class RunStore:
    """Async SQLite run storage.

    Rows are created when a run is scheduled and kept current by
    subscribing ``record_event`` to the progress channel. WebSocket
    connections remain in-memory (they're ephemeral by nature).
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize run store with database path.

        Args:
            db_path: Path to SQLite database file. Parent directory
                     will be created if it doesn't exist.
        """
        self.db_path = Path(db_path)
        self.db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and create schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db = await aiosqlite.connect(str(self.db_path))
        self.db.row_factory = aiosqlite.Row

        # Enable WAL mode for better concurrent read performance
        await self.db.execute("PRAGMA journal_mode=WAL")

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'queued',
                stage TEXT NOT NULL DEFAULT 'initializing',
                percent REAL NOT NULL DEFAULT 0,
                message TEXT,
                url TEXT,
                filename TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_runs_session
            ON runs (session_id, created_at DESC)
        """)

        await self.db.commit()
        logger.info(f"Run store connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self.db:
            await self.db.close()
            self.db = None
            logger.info("Run store connection closed")

    def _require_db(self) -> aiosqlite.Connection:
        if self.db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.db

    async def create_run(self, run: PipelineRun) -> dict[str, Any]:
        """Insert a freshly scheduled run.

        Raises:
            RuntimeError: If database is not connected
        """
        db = self._require_db()
        now = datetime.now().isoformat()

        await db.execute(
            "INSERT INTO runs (id, session_id, kind, status, stage, percent, message, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                run.run_id,
                run.session_id,
                run.kind.value,
                STATUS_QUEUED,
                run.stage.value,
                0.0,
                "Run queued",
                now,
                now,
            ),
        )
        await db.commit()
        logger.info(f"Created {run.kind.value} run {run.run_id} for session {run.session_id}")

        return await self.get_run(run.run_id)

    async def get_run(self, run_id: str) -> dict[str, Any] | None:
        """Get a run by ID, or None if not found."""
        db = self._require_db()
        async with db.execute("SELECT * FROM runs WHERE id = ?", (run_id,)) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_dict(row)

    async def update_run(self, run_id: str, **fields: Any) -> bool:
        """Update columns of a run; returns False if the run does not exist."""
        db = self._require_db()
        allowed = {"status", "stage", "percent", "message", "url", "filename", "error"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")

        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [*fields.values(), datetime.now().isoformat(), run_id]
        cursor = await db.execute(
            f"UPDATE runs SET {assignments}, updated_at = ? WHERE id = ?", params
        )
        await db.commit()
        return cursor.rowcount > 0

    async def record_event(self, event: RunEvent) -> None:
        """Channel subscriber mirroring run events into the table."""
        if isinstance(event, ProgressEvent):
            await self.update_run(
                event.run_id,
                status=STATUS_RUNNING,
                stage=event.stage.value,
                percent=round(event.percent, 1),
                message=event.message,
            )
        elif isinstance(event, RunFinished):
            await self.update_run(
                event.run_id,
                status=STATUS_COMPLETED,
                stage="done",
                percent=100.0,
                url=event.url,
                filename=event.filename,
            )
        elif isinstance(event, RunFailed):
            await self.update_run(
                event.run_id,
                status=STATUS_FAILED,
                stage="failed",
                error=event.message,
            )

    async def list_runs(
        self,
        session_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """List runs with optional filters, newest first."""
        db = self._require_db()

        query = "SELECT * FROM runs WHERE 1=1"
        params: list[Any] = []

        if session_id:
            query += " AND session_id = ?"
            params.append(session_id)
        if status:
            query += " AND status = ?"
            params.append(status)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_dict(row) for row in rows]

    async def cleanup_old_runs(self, days: int = 7) -> int:
        """Delete finished runs older than ``days``; active runs are kept."""
        db = self._require_db()
        cutoff = (datetime.now() - timedelta(days=days)).isoformat()

        cursor = await db.execute(
            "DELETE FROM runs WHERE created_at < ? AND status IN ('completed', 'failed')",
            (cutoff,),
        )
        await db.commit()
        count = cursor.rowcount
        if count > 0:
            logger.info(f"Cleaned up {count} old runs (older than {days} days)")
        return count

    async def mark_interrupted(self) -> int:
        """Fail runs left queued or running by a previous server process."""
        db = self._require_db()
        cursor = await db.execute(
            "UPDATE runs SET status = 'failed', stage = 'failed', "
            "error = 'Interrupted by server restart', updated_at = ? "
            "WHERE status IN ('queued', 'running')",
            (datetime.now().isoformat(),),
        )
        await db.commit()
        if cursor.rowcount > 0:
            logger.warning(f"Marked {cursor.rowcount} interrupted runs as failed")
        return cursor.rowcount

    def _row_to_dict(self, row: aiosqlite.Row) -> dict[str, Any]:
        return {
            "run_id": row["id"],
            "session_id": row["session_id"],
            "kind": row["kind"],
            "status": row["status"],
            "stage": row["stage"],
            "percent": row["percent"],
            "message": row["message"],
            "url": row["url"],
            "filename": row["filename"],
            "error": row["error"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
