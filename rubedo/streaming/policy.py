"""
Shared streaming policy for Rubedo.

Single source of truth for which files we can broadcast and which stream format
they need. Used by:
- the library scan for random picks (what counts as a song)
- the playback engine (which format the Icecast mount must be in)

Icecast cannot change the content type of a live source, so a format change
between tracks means reconnecting the source (see `IcecastConnection`).
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePath
from typing import AbstractSet


class StreamFormat(Enum):
    """Audio formats the source connection can carry."""

    MP3 = "mp3"
    OGG = "ogg"

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self]

    @property
    def supports_metadata(self) -> bool:
        """Per-track metadata updates only exist for MP3 mounts."""
        return self is StreamFormat.MP3


CONTENT_TYPES: dict[StreamFormat, str] = {
    StreamFormat.MP3: "audio/mpeg",
    StreamFormat.OGG: "application/ogg",
}

SUPPORTED_EXTENSIONS: AbstractSet[str] = frozenset({".mp3", ".ogg"})

DEFAULT_FORMAT = StreamFormat.MP3


def normalize_extension(filename: str | PurePath | None) -> str:
    """Lowercase extension including the dot, or "" if there is none."""
    if not filename:
        return ""
    return PurePath(filename).suffix.lower()


def format_for_filename(filename: str | PurePath | None) -> StreamFormat:
    """
    Stream format for a file.

    `.ogg` needs an Ogg mount; everything else (including unknown or missing
    extensions) is sent as MP3.
    """
    if normalize_extension(filename) == ".ogg":
        return StreamFormat.OGG
    return DEFAULT_FORMAT


def is_supported_file(filename: str | PurePath | None) -> bool:
    return normalize_extension(filename) in SUPPORTED_EXTENSIONS
