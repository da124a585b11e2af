"""
Shared-store access layer for the DJ.

Goals:
- SQLite + aiosqlite, async/await friendly.
- The front end writes to the same file concurrently, so every statement runs
  with a short busy timeout and a failure only costs us one loop iteration.

Note:
- Models live in `rubedo.core.db.models`
- Query functions live in `rubedo.core.db.queries_queue`
- The schema belongs to the front end; this class never creates tables.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from rubedo.core.db import queries_queue
from rubedo.core.db.models import PlayRow, SongRow, timestamp

logger = logging.getLogger(__name__)

# Bounded lock wait (seconds) before a statement gives up on a busy database.
DEFAULT_BUSY_TIMEOUT = 0.2


class QueueStore:
    """
    Async access layer for the `queue` and `songs` tables.

    Usage:
        store = QueueStore("db/rubedo.db")
        await store.open()
        row = await store.claim_next_pending()
        ...
        await store.close()

    Every query method swallows `aiosqlite.Error` (lock timeouts included),
    logs it, and returns its "nothing this cycle" value instead.
    """

    def __init__(self, db_path: str | Path, *, busy_timeout: float = DEFAULT_BUSY_TIMEOUT) -> None:
        self._db_path = str(db_path)
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def db_path(self) -> str:
        return self._db_path

    async def open(self) -> None:
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
        )
        self._conn.row_factory = aiosqlite.Row
        logger.debug("Opened shared store %s", self._db_path)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("QueueStore is not open. Call await store.open() first.")
        return self._conn

    # ===========================================================================
    # Queue
    # ===========================================================================

    async def peek_pending(self) -> PlayRow | None:
        """Oldest pending row, without claiming it."""
        conn = self._require_conn()
        try:
            return await queries_queue.get_next_pending(conn)
        except aiosqlite.Error as e:
            logger.error("Error while looking for the next queued song: %s", e)
            return None

    async def claim_next_pending(self, played_at: str | None = None) -> PlayRow | None:
        """Claim the oldest pending row (played_at = now, queued_at = NULL)."""
        conn = self._require_conn()
        played_at = played_at or timestamp()
        try:
            return await queries_queue.claim_next_pending(conn, played_at)
        except aiosqlite.Error as e:
            logger.error("Error while finding and claiming the next queued song: %s", e)
            return None

    async def delete_play(self, play_id: int) -> bool:
        """
        Remove a queue row by id.

        Deleting a row that is already gone counts as success.
        """
        conn = self._require_conn()
        try:
            removed = await queries_queue.delete_play(conn, play_id)
        except aiosqlite.Error as e:
            logger.error("Error marking song as done. Play ID: %s (%s)", play_id, e)
            return False
        if removed == 0:
            logger.debug("Play %s was already removed from the queue", play_id)
        return True

    async def count_pending(self) -> int | None:
        conn = self._require_conn()
        try:
            return await queries_queue.count_pending(conn)
        except aiosqlite.Error as e:
            logger.error("Error counting queued songs: %s", e)
            return None

    # ===========================================================================
    # Catalog
    # ===========================================================================

    async def record_song_played(self, song_id: int, played_at: str | None = None) -> bool:
        """Bump the catalog counters for a song that just went on air."""
        conn = self._require_conn()
        played_at = played_at or timestamp()
        try:
            updated = await queries_queue.mark_song_played(conn, song_id, played_at)
        except aiosqlite.Error as e:
            logger.error("Error during marking a song as beginning. Song ID: %s (%s)", song_id, e)
            return False
        if not updated:
            logger.error(
                "Error during marking a song as beginning. Song ID: %s is not in the catalog",
                song_id,
            )
        return updated

    async def get_song(self, song_id: int) -> SongRow | None:
        conn = self._require_conn()
        try:
            return await queries_queue.get_song_by_id(conn, song_id)
        except aiosqlite.Error as e:
            logger.error("Error reading song %s: %s", song_id, e)
            return None
