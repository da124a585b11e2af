"""
Track selection for the DJ.

The selector decides what goes on air next:
- a pending row from the shared queue (user requests), or
- a random file from the library when nobody has asked for anything.

Design decisions:
- The selector is the only owner of the play mode (user / auto). The playback
  engine reads it to decide whether a fresh request may cut the current track.
- Random picks never touch the database; they are plain `QueueEntry` values
  without a `play_id`.
"""

from __future__ import annotations

import logging
import random
import re
from enum import Enum
from pathlib import Path, PurePath

from rubedo.core.db.models import QueueEntry, timestamp
from rubedo.core.queue_store import QueueStore
from rubedo.streaming.policy import is_supported_file

logger = logging.getLogger(__name__)

# "03 - Intro" -> "Intro": drop a leading run of non-letters followed by whitespace.
_TITLE_PREFIX_RE = re.compile(r"^[^A-Za-z]+\s+(\w)")


class SelectorMode(Enum):
    """Where the current track came from."""

    USER = "user"  # Claimed from the queue
    AUTO = "auto"  # Random pick from the library


def quick_title(path: str | PurePath) -> str:
    """
    Derive a display title from a file name we have no catalog entry for.

    Strips the extension and any leading track number / punctuation.
    """
    stem = PurePath(path).stem
    return _TITLE_PREFIX_RE.sub(r"\1", stem, count=1)


def list_library(root: Path) -> list[Path]:
    """All supported audio files under `root`, relative to it, in a stable order."""
    if not root.is_dir():
        return []
    files = [
        p.relative_to(root)
        for p in root.rglob("*")
        if is_supported_file(p) and p.is_file()
    ]
    files.sort()
    return files


class TrackSelector:
    """
    Picks the next track and does the queue bookkeeping around it.

    Attributes:
        mode: USER after a successful claim, AUTO after a random pick.
    """

    def __init__(
        self,
        store: QueueStore,
        library_root: Path,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._library_root = library_root
        self._rng = rng or random.Random()
        self._mode = SelectorMode.USER

    @property
    def mode(self) -> SelectorMode:
        return self._mode

    @property
    def library_root(self) -> Path:
        return self._library_root

    async def peek_pending(self) -> QueueEntry | None:
        """The next queued request, if any. Read-only."""
        row = await self._store.peek_pending()
        return QueueEntry.from_play(row) if row else None

    async def claim_next(self) -> QueueEntry | None:
        """
        Take the oldest queued request and mark it as on air.

        If the request refers to a catalog song, its play counter is bumped as
        well. A failed counter update is logged by the store; the claim stands.
        """
        now = timestamp()
        row = await self._store.claim_next_pending(now)
        if row is None:
            return None

        self._mode = SelectorMode.USER
        if row.song_id is not None:
            await self._store.record_song_played(row.song_id, now)

        logger.debug("Claimed play %d (%s)", row.id, row.filename)
        return QueueEntry.from_play(row)

    async def complete(self, entry: QueueEntry) -> bool:
        """Remove a finished request from the queue. Random picks are ignored."""
        if entry.play_id is None:
            return True
        return await self._store.delete_play(entry.play_id)

    def random_fallback(self) -> QueueEntry | None:
        """
        Pick a random file off the library, independent of any front end.

        Switches the selector to auto mode even if the library is empty.
        """
        self._mode = SelectorMode.AUTO

        songs = list_library(self._library_root)
        if not songs:
            logger.warning("No .mp3/.ogg files found under %s", self._library_root)
            return None

        path = self._rng.choice(songs)
        return QueueEntry.fallback(path, quick_title(path))
