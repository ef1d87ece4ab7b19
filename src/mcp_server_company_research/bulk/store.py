"""SQLite-based store for bulk research sessions."""

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from .models import BulkSession, BulkStatus


class SessionStore:
    """Async SQLite store for bulk sessions.

    Each session is stored as one JSON document keyed by id, so saving a
    session (a checkpoint) never touches any other session.
    """

    def __init__(self, db_path: Path | None = None):
        """Initialize SessionStore.

        Args:
            db_path: Path to SQLite database. Defaults to the configured bulk database path.
        """
        if db_path is None:
            from ..config import settings

            db_path = settings.get_database_path()
        self.db_path = db_path
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create schema if not exists."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA journal_mode = WAL")
                await db.execute("PRAGMA busy_timeout = 5000")

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS bulk_sessions (
                        session_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        payload TEXT NOT NULL
                    )
                """)

                await db.execute("CREATE INDEX IF NOT EXISTS idx_bulk_status ON bulk_sessions(status)")
                await db.execute("CREATE INDEX IF NOT EXISTS idx_bulk_created_at ON bulk_sessions(created_at)")
                await db.commit()

            self._initialized = True

    async def save(self, session: BulkSession) -> None:
        """Insert or replace a session (checkpoint)."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO bulk_sessions (session_id, name, status, created_at, updated_at, payload)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    name = excluded.name,
                    status = excluded.status,
                    updated_at = excluded.updated_at,
                    payload = excluded.payload
            """,
                (
                    session.id,
                    session.name,
                    session.status.value,
                    session.created_at.isoformat(),
                    datetime.now(UTC).isoformat(),
                    session.model_dump_json(),
                ),
            )
            await db.commit()

    async def get(self, session_id: str) -> BulkSession | None:
        """Get a single session by ID."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT payload FROM bulk_sessions WHERE session_id = ?", (session_id,)) as cursor:
                row = await cursor.fetchone()
                if row:
                    return self._row_to_session(row)
        return None

    async def list_sessions(self, status: BulkStatus | None = None, limit: int = 100) -> list[BulkSession]:
        """List sessions, newest first, optionally filtered by status."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row

            query = "SELECT payload FROM bulk_sessions"
            params: list = []
            if status:
                query += " WHERE status = ?"
                params.append(status.value)
            query += " ORDER BY created_at DESC LIMIT ?"
            params.append(limit)

            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_session(row) for row in rows]

    async def delete(self, session_id: str) -> bool:
        """Delete a session. Returns True if a row was removed."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM bulk_sessions WHERE session_id = ?", (session_id,))
            await db.commit()
            return cursor.rowcount > 0

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> BulkSession:
        return BulkSession.model_validate_json(row["payload"])


# Singleton instance for server use
_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get the singleton SessionStore instance."""
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store
