"""
Internal DB subpackage for Rubedo.

Splits the shared-store access into row models and pure query helpers, while
`QueueStore` stays the single public interface the rest of the codebase uses.

Re-exports here are primarily for convenience inside the `core` package.
"""

from __future__ import annotations

from .models import PlayRow, QueueEntry, SongRow

__all__ = [
    "PlayRow",
    "QueueEntry",
    "SongRow",
]
