"""
Player package for Rubedo.

Contains the playback engine that streams one track at a time to the
Icecast connection.
"""

from rubedo.player.engine import PlaybackEngine, PlaybackOutcome

__all__ = ["PlaybackEngine", "PlaybackOutcome"]
