"""
Streaming module for Rubedo.

This module provides the source side of the broadcast: the connection to the
Icecast server and the policy deciding which stream format a file needs.

Components:
    IcecastConnection: Source connection state machine (connect, format switch,
        reconnect-on-failure, metadata).
    StreamPacer: Keeps the outgoing byte stream at playback speed.
"""

from rubedo.streaming.icecast import (
    ConnectionState,
    FatalConnectError,
    IcecastConnectError,
    IcecastConnection,
    IcecastError,
)
from rubedo.streaming.pacing import StreamPacer, probe_bitrate
from rubedo.streaming.policy import StreamFormat, format_for_filename

__all__ = [
    "ConnectionState",
    "FatalConnectError",
    "IcecastConnectError",
    "IcecastConnection",
    "IcecastError",
    "StreamFormat",
    "StreamPacer",
    "format_for_filename",
    "probe_bitrate",
]
