"""
Real-time pacing for the source stream.

Icecast relays whatever the source sends as fast as it arrives, so a source
client must not push a whole file in one go. After each chunk we sleep until
wall-clock time catches up with the audio already sent, based on the track's
bitrate.

The bitrate is read with mutagen. Files mutagen cannot parse are sent
unpaced rather than refused.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from mutagen import File as mutagen_file
from mutagen import MutagenError

logger = logging.getLogger(__name__)


def probe_bitrate(path: Path) -> int | None:
    """Average bitrate of an audio file in bits per second, or None if unknown."""
    try:
        audio = mutagen_file(path)
    except (MutagenError, OSError) as e:
        logger.debug("Could not read audio info for %s: %s", path, e)
        return None

    if audio is None or getattr(audio, "info", None) is None:
        return None

    bitrate = getattr(audio.info, "bitrate", None)
    if isinstance(bitrate, int) and bitrate > 0:
        return bitrate
    return None


class StreamPacer:
    """
    Keeps a byte stream at (roughly) its playback rate.

    Usage:
        pacer.begin(bitrate=128_000)
        for chunk in chunks:
            send(chunk)
            await pacer.sync(len(chunk))
    """

    def __init__(self) -> None:
        self._bitrate: int | None = None
        self._started_at = 0.0
        self._sent_bytes = 0

    @property
    def bitrate(self) -> int | None:
        return self._bitrate

    @property
    def sent_bytes(self) -> int:
        return self._sent_bytes

    def begin(self, bitrate: int | None) -> None:
        """Reset for a new track. A None bitrate disables pacing."""
        self._bitrate = bitrate
        self._started_at = asyncio.get_running_loop().time()
        self._sent_bytes = 0

    def delay_for(self, nbytes: int) -> float:
        """Account for `nbytes` more bytes and return how long to wait."""
        self._sent_bytes += nbytes
        if not self._bitrate:
            return 0.0
        due = self._started_at + (self._sent_bytes * 8) / self._bitrate
        return max(0.0, due - asyncio.get_running_loop().time())

    async def sync(self, nbytes: int) -> None:
        delay = self.delay_for(nbytes)
        if delay > 0:
            await asyncio.sleep(delay)
