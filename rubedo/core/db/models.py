"""
DB models (DTOs) for the shared store.

This module is intentionally lightweight:
- No DB connection knowledge
- No SQL
- Pure dataclasses + helper functions

The `songs` and `queue` tables are owned by the web front end; the column names
below are the contract between the two processes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePath

SONGS_TABLE = "songs"
QUEUE_TABLE = "queue"


@dataclass(frozen=True, slots=True)
class SongRow:
    """Catalog record as stored in SQLite."""

    id: int
    filename: str
    title: str
    play_count: int = 0
    last_played_at: str | None = None


@dataclass(frozen=True, slots=True)
class PlayRow:
    """
    Queue record as stored in SQLite.

    Notes:
    - `queued_at` set and `played_at` NULL means pending.
    - `played_at` set means the DJ has claimed it and it is on air.
    - Rows are deleted once playback concludes; they never go back to pending.
    """

    id: int
    filename: str
    title: str
    song_id: int | None = None
    queued_at: str | None = None
    played_at: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.queued_at is not None and self.played_at is None


@dataclass(frozen=True, slots=True)
class QueueEntry:
    """
    A track the DJ is about to play.

    Entries either come from a claimed queue row (`play_id` set) or are random
    picks from the library (`play_id` is None). Random picks exist only in
    memory for the duration of one playback and are never written back.
    """

    filename: str
    title: str
    play_id: int | None = None
    song_id: int | None = None

    @property
    def is_fallback(self) -> bool:
        return self.play_id is None

    @classmethod
    def from_play(cls, row: PlayRow) -> QueueEntry:
        return cls(
            filename=row.filename,
            title=row.title,
            play_id=row.id,
            song_id=row.song_id,
        )

    @classmethod
    def fallback(cls, filename: str | PurePath, title: str) -> QueueEntry:
        """Create a transient entry for a file picked straight off the disk."""
        return cls(filename=PurePath(filename).as_posix(), title=title)

    def describe(self) -> str:
        """Short label for log lines."""
        if self.play_id is None:
            return f"random pick {self.filename!r}"
        return f"play {self.play_id} {self.filename!r}"


def timestamp(moment: datetime | None = None) -> str:
    """
    Format a timestamp the way rows are stored.

    Fixed-width ISO-8601 text, so that ordering by the column as text matches
    chronological order.
    """
    moment = moment or datetime.now()
    return moment.isoformat(sep=" ", timespec="microseconds")
