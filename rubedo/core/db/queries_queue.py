"""
Queue and catalog DB queries used by the DJ.

Design:
- Functions are *pure DB helpers*: they take an open `aiosqlite.Connection`
  and return rows/materialized dataclasses.
- They let `aiosqlite.Error` propagate; `QueueStore` decides what a failure
  means for the broadcast loop.
- These functions assume `conn.row_factory = aiosqlite.Row` and a connection
  opened with `isolation_level=None` (explicit transactions only).

Important:
- Do NOT interpolate user input into SQL. The only f-string parts here are the
  two fixed table names from `models`.
"""

from __future__ import annotations

import aiosqlite

from rubedo.core.db.models import QUEUE_TABLE, SONGS_TABLE, PlayRow, SongRow

# Oldest pending row first; rows queued in the same instant keep insertion order.
_PENDING_WHERE = "queued_at IS NOT NULL AND played_at IS NULL"
_PENDING_ORDER = "ORDER BY queued_at ASC, id ASC"


def _row_to_play(row: aiosqlite.Row) -> PlayRow:
    song_id = row["song_id"]
    return PlayRow(
        id=int(row["id"]),
        filename=str(row["filename"]),
        title=str(row["title"]) if row["title"] is not None else "",
        song_id=int(song_id) if song_id is not None else None,
        queued_at=row["queued_at"],
        played_at=row["played_at"],
    )


def _row_to_song(row: aiosqlite.Row) -> SongRow:
    return SongRow(
        id=int(row["id"]),
        filename=str(row["filename"]),
        title=str(row["title"]) if row["title"] is not None else "",
        play_count=int(row["play_count"] or 0),
        last_played_at=row["last_played_at"],
    )


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


async def get_next_pending(conn: aiosqlite.Connection) -> PlayRow | None:
    cursor = await conn.execute(
        f"""
        SELECT id, filename, title, song_id, queued_at, played_at
        FROM {QUEUE_TABLE}
        WHERE {_PENDING_WHERE}
        {_PENDING_ORDER}
        LIMIT 1;
        """
    )
    row = await cursor.fetchone()
    return _row_to_play(row) if row else None


async def count_pending(conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute(f"SELECT COUNT(*) AS c FROM {QUEUE_TABLE} WHERE {_PENDING_WHERE};")
    row = await cursor.fetchone()
    return int(row["c"]) if row else 0


async def claim_next_pending(conn: aiosqlite.Connection, played_at: str) -> PlayRow | None:
    """
    Move the oldest pending row to in-progress and return it.

    Runs inside `BEGIN IMMEDIATE` so the select and the update see the same
    snapshot; the update is also guarded by the pending predicate, so a row the
    front end deleted or changed in between is never claimed.
    """
    await conn.execute("BEGIN IMMEDIATE;")
    try:
        row = await get_next_pending(conn)
        if row is None:
            await conn.execute("COMMIT;")
            return None

        cursor = await conn.execute(
            f"""
            UPDATE {QUEUE_TABLE}
            SET played_at = ?, queued_at = NULL
            WHERE id = ? AND {_PENDING_WHERE};
            """,
            (played_at, row.id),
        )
        claimed = cursor.rowcount == 1
        await conn.execute("COMMIT;")
    except BaseException:
        await conn.execute("ROLLBACK;")
        raise

    if not claimed:
        return None

    return PlayRow(
        id=row.id,
        filename=row.filename,
        title=row.title,
        song_id=row.song_id,
        queued_at=None,
        played_at=played_at,
    )


async def delete_play(conn: aiosqlite.Connection, play_id: int) -> int:
    """Delete a queue row by id. Returns the number of rows removed (0 or 1)."""
    cursor = await conn.execute(f"DELETE FROM {QUEUE_TABLE} WHERE id = ?;", (int(play_id),))
    return int(cursor.rowcount)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


async def get_song_by_id(conn: aiosqlite.Connection, song_id: int) -> SongRow | None:
    cursor = await conn.execute(
        f"""
        SELECT id, filename, title, play_count, last_played_at
        FROM {SONGS_TABLE}
        WHERE id = ?;
        """,
        (int(song_id),),
    )
    row = await cursor.fetchone()
    return _row_to_song(row) if row else None


async def mark_song_played(conn: aiosqlite.Connection, song_id: int, played_at: str) -> bool:
    """Bump play_count and last_played_at for one song. False if the song is gone."""
    cursor = await conn.execute(
        f"""
        UPDATE {SONGS_TABLE}
        SET play_count = COALESCE(play_count, 0) + 1, last_played_at = ?
        WHERE id = ?;
        """,
        (played_at, int(song_id)),
    )
    return cursor.rowcount == 1
