"""
Playback engine for Rubedo.

Plays a single `QueueEntry` through the Icecast connection: resolves the file,
puts the mount into the right format, announces the song and streams the file
in fixed-size chunks.

QUEUE JUMP:
===========
While a random pick is on air (selector in auto mode) and
`interrupt_empty_queue` is enabled, the engine checks the queue after every
chunk. As soon as somebody requests a song, the filler track is abandoned:
the rest of the file is never sent and playback does not resume from this
offset later. The station loop then claims the new request.

OUTAGES:
========
`send()` only returns once a chunk is on a live connection, so while Icecast
is down playback stalls on the current chunk. COMPLETED therefore means every
chunk of the file went out.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path, PurePath
from typing import TYPE_CHECKING

from rubedo.core.selector import SelectorMode
from rubedo.streaming.pacing import probe_bitrate
from rubedo.streaming.policy import format_for_filename

if TYPE_CHECKING:
    from rubedo.core.db.models import QueueEntry
    from rubedo.core.selector import TrackSelector
    from rubedo.streaming.icecast import IcecastConnection

logger = logging.getLogger(__name__)

CHUNK_SIZE = 16384  # 16 KiB per send

IDLE_INTERVAL_SECONDS = 500.0


class PlaybackOutcome(Enum):
    """How a call to `PlaybackEngine.play()` ended."""

    COMPLETED = "completed"  # Whole file sent
    SKIPPED = "skipped"  # File missing, nothing sent
    INTERRUPTED = "interrupted"  # Filler cut short by a new request
    IDLE = "idle"  # Nothing to play anywhere; slept
    FAILED = "failed"  # File exists but could not be read

    @property
    def concludes_play(self) -> bool:
        """Whether the queue row behind this playback should be removed."""
        return self in _CONCLUDING


_CONCLUDING = frozenset(
    {PlaybackOutcome.COMPLETED, PlaybackOutcome.SKIPPED, PlaybackOutcome.INTERRUPTED}
)


class PlaybackEngine:
    """
    Streams one track at a time.

    Attributes:
        library_root: Directory that entry filenames are relative to.
        interrupt_on_queue: Allow queue jumps during auto-mode playback.
    """

    def __init__(
        self,
        connection: IcecastConnection,
        selector: TrackSelector,
        library_root: Path,
        *,
        interrupt_on_queue: bool = False,
        chunk_size: int = CHUNK_SIZE,
        idle_interval: float = IDLE_INTERVAL_SECONDS,
    ) -> None:
        self.connection = connection
        self.selector = selector
        self.library_root = library_root
        self.interrupt_on_queue = interrupt_on_queue
        self.chunk_size = chunk_size
        self.idle_interval = idle_interval

    def resolve(self, entry: QueueEntry) -> Path:
        return self.library_root / entry.filename

    async def play(self, entry: QueueEntry | None) -> PlaybackOutcome:
        """
        Play `entry` to the end (or until interrupted).

        A None entry means there is nothing at all to play (empty queue and
        empty library); we then wait a long while without touching the stream.
        """
        if entry is None:
            logger.info("Nothing to play, sleeping %.0fs", self.idle_interval)
            await asyncio.sleep(self.idle_interval)
            return PlaybackOutcome.IDLE

        song_path = self.resolve(entry)
        if not song_path.is_file():
            logger.error(
                "File didn't exist, moving on to the next song. %s, full path was %s",
                entry.describe(),
                song_path,
            )
            return PlaybackOutcome.SKIPPED

        await self.connection.ensure_format(format_for_filename(entry.filename))

        # Decided once per track: the mode only changes between tracks.
        seek_interrupt = self.interrupt_on_queue and self.selector.mode is SelectorMode.AUTO

        try:
            with song_path.open("rb") as f:
                if self.connection.format.supports_metadata:
                    await self.connection.set_metadata(entry.title, PurePath(entry.filename).name)

                self.connection.begin_track(probe_bitrate(song_path))
                logger.info("Playing %s!", entry.title)

                while data := f.read(self.chunk_size):
                    await self.connection.send(data)
                    if seek_interrupt and await self.selector.peek_pending() is not None:
                        logger.info("Request queued, cutting %s short", entry.describe())
                        return PlaybackOutcome.INTERRUPTED
        except OSError as e:
            logger.error("Could not read %s (%s): %s", entry.describe(), song_path, e)
            return PlaybackOutcome.FAILED

        return PlaybackOutcome.COMPLETED
