"""
Icecast source connection for Rubedo.

This module implements the source side of the Icecast protocol: one long-lived
TCP connection to the server's mount point over which the raw audio bytes are
pushed, plus the admin metadata call used to announce the current song.

Protocol:
    The source opens the mount with an HTTP PUT request (Icecast 2.4+):

        PUT /mount HTTP/1.1
        Authorization: Basic <user:pass>
        Content-Type: audio/mpeg
        Ice-Name: <stream name>
        Expect: 100-continue

    The server answers "100 Continue" (or "200 OK" for older servers) and
    from then on every byte written is audio. There is no framing and no
    further response; the body simply never ends.

    Song titles (MP3 mounts only) are set out of band:

        GET /admin/metadata?mode=updinfo&mount=/mount&song=<title>

States:
    DISCONNECTED -> connect() -> CONNECTED{format}
    A format change means disconnect + reconnect with the new Content-Type,
    since Icecast cannot retype a live mount.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from enum import Enum
from typing import TYPE_CHECKING

import httpx

from rubedo import __version__
from rubedo.streaming.pacing import StreamPacer
from rubedo.streaming.policy import DEFAULT_FORMAT, StreamFormat

if TYPE_CHECKING:
    from rubedo.config import IcecastConfig

logger = logging.getLogger(__name__)

# How long we wait for the server to answer the source handshake.
HANDSHAKE_TIMEOUT_SECONDS = 10.0

# Timeout for admin metadata requests.
METADATA_TIMEOUT_SECONDS = 5.0

# Status codes that mean "go ahead and send audio".
_ACCEPTED_STATUS = frozenset({100, 200})


class IcecastError(Exception):
    """Base exception for Icecast source errors."""

    pass


class IcecastConnectError(IcecastError):
    """The server could not be reached or refused the source."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class FatalConnectError(IcecastError):
    """The initial connection failed; there is nothing to broadcast to."""

    pass


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class IcecastConnection:
    """
    Source connection to an Icecast mount.

    Transport failures while streaming never escape this class: `send()` logs
    them and keeps reconnecting until the chunk is out. Only `open()` (the
    very first connect) is allowed to fail hard.

    Attributes:
        format: Format of the mount (and of the next connect).
        reconnects: Number of reconnects triggered by send failures.
    """

    def __init__(
        self,
        settings: IcecastConfig,
        *,
        stream_name: str,
        http_client: httpx.AsyncClient | None = None,
        pacer: StreamPacer | None = None,
    ) -> None:
        self._settings = settings
        self._stream_name = stream_name
        self._http = http_client
        self._owns_http = http_client is None
        self._pacer = pacer or StreamPacer()

        self._format = DEFAULT_FORMAT
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

        self.reconnects = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        if self._writer is None:
            return ConnectionState.DISCONNECTED
        return ConnectionState.CONNECTED

    @property
    def is_connected(self) -> bool:
        return self._writer is not None

    @property
    def format(self) -> StreamFormat:
        return self._format

    @property
    def mount(self) -> str:
        mount = self._settings.mount
        return mount if mount.startswith("/") else f"/{mount}"

    @property
    def address(self) -> str:
        return f"{self._settings.server}:{self._settings.port}{self.mount}"

    # -------------------------------------------------------------------------
    # Connect / disconnect
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """
        First connect at start-up, in the default format.

        Raises:
            FatalConnectError: The server is unreachable or refused us.
        """
        self._format = DEFAULT_FORMAT
        try:
            await self.connect()
        except IcecastConnectError as e:
            logger.critical("Couldn't connect to Icecast server at %s: %s", self.address, e)
            raise FatalConnectError(str(e)) from e

    async def connect(self) -> None:
        """
        Open the mount in the current format.

        Raises:
            IcecastConnectError: On any network failure or non-accepting reply.
        """
        if self._writer is not None:
            return

        host, port = self._settings.server, self._settings.port
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=HANDSHAKE_TIMEOUT_SECONDS,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise IcecastConnectError(f"cannot reach {host}:{port} ({e!r})") from e

        try:
            writer.write(self._build_source_request())
            await writer.drain()
            status, reason = await asyncio.wait_for(
                self._read_response_head(reader),
                timeout=HANDSHAKE_TIMEOUT_SECONDS,
            )
        except (
            OSError,
            asyncio.TimeoutError,
            asyncio.IncompleteReadError,
            asyncio.LimitOverrunError,
            ValueError,
        ) as e:
            await self._close_writer(writer)
            raise IcecastConnectError(f"source handshake with {self.address} failed ({e!r})") from e

        if status not in _ACCEPTED_STATUS:
            await self._close_writer(writer)
            raise IcecastConnectError(
                f"{self.address} refused source: {status} {reason}".rstrip(),
                status=status,
            )

        self._reader, self._writer = reader, writer
        logger.info("Connected to Icecast at %s (%s)", self.address, self._format.value)

    async def disconnect(self) -> None:
        """Close the mount. Safe to call when already disconnected."""
        writer = self._writer
        self._reader, self._writer = None, None
        if writer is not None:
            await self._close_writer(writer)
            logger.debug("Disconnected from %s", self.address)

    async def close(self) -> None:
        """Disconnect and release the metadata HTTP client."""
        await self.disconnect()
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def ensure_format(self, required: StreamFormat) -> None:
        """
        Make sure the mount carries `required` before the next track starts.

        A mismatch on a live connection means reconnecting with the new
        Content-Type. A failed reconnect is left for `send()` to retry.
        """
        if required is self._format:
            return

        if self._writer is None:
            self._format = required
            return

        logger.info(
            "Switching stream formats (%s -> %s), re-connecting.",
            self._format.value,
            required.value,
        )
        await self.disconnect()
        self._format = required
        await self._try_connect("format switch")

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    def begin_track(self, bitrate: int | None) -> None:
        """Reset pacing for a new track (None = unknown bitrate, no pacing)."""
        self._pacer.begin(bitrate)

    async def send(self, chunk: bytes) -> None:
        """
        Push one chunk of audio, then wait for real time to catch up.

        Returns only once the chunk has been handed to a live connection. On a
        transport error the connection is rebuilt immediately (no backoff, no
        retry limit) and the chunk goes out again on the new connection. This
        never raises for network problems, however often they happen.
        """
        while True:
            writer = self._writer
            if writer is None:
                await self._reconnect("send")
                continue

            try:
                writer.write(chunk)
                await writer.drain()
            except OSError as e:
                logger.error(
                    "Error sending to Icecast server at %s (%r). Don't worry, reconnecting.",
                    self.address,
                    e,
                )
                self.reconnects += 1
                await self.disconnect()
                continue

            break

        await self._pacer.sync(len(chunk))

    async def set_metadata(self, song: str, filename: str) -> bool:
        """
        Announce the current song on the mount.

        Only MP3 mounts carry per-track metadata; for Ogg this is a no-op.
        Returns True if the server accepted the update.
        """
        if not self._format.supports_metadata:
            return False

        url = f"http://{self._settings.server}:{self._settings.port}/admin/metadata"
        params = {
            "mode": "updinfo",
            "mount": self.mount,
            "song": song,
            "filename": filename,
            "charset": "UTF-8",
        }
        try:
            response = await self._http_client().get(
                url,
                params=params,
                auth=(self._settings.username, self._settings.password),
                headers={"User-Agent": self._user_agent},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Metadata update for %r on %s failed: %s", song, self.address, e)
            return False

        logger.debug("Metadata on %s set to %r", self.mount, song)
        return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @property
    def _user_agent(self) -> str:
        return f"rubedo/{__version__}"

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=METADATA_TIMEOUT_SECONDS)
            self._owns_http = True
        return self._http

    async def _try_connect(self, operation: str) -> bool:
        try:
            await self.connect()
        except IcecastConnectError as e:
            logger.error("Reconnect to Icecast during %s failed: %s", operation, e)
            return False
        return True

    async def _reconnect(self, operation: str) -> None:
        """Connect again, straight away and as often as it takes."""
        failures = 0
        while True:
            try:
                await self.connect()
            except IcecastConnectError as e:
                failures += 1
                if failures == 1:
                    logger.error(
                        "Reconnect to Icecast during %s failed: %s. Retrying until it is back.",
                        operation,
                        e,
                    )
                else:
                    logger.debug("Reconnect attempt %d to %s failed: %s", failures, self.address, e)
                # Yield so shutdown and other tasks still get to run
                await asyncio.sleep(0)
                continue

            if failures:
                logger.info(
                    "Back on %s after %d failed reconnect attempt(s)", self.address, failures
                )
            return

    def _build_source_request(self) -> bytes:
        credentials = f"{self._settings.username}:{self._settings.password}".encode()
        auth = base64.b64encode(credentials).decode("ascii")
        lines = [
            f"PUT {self.mount} HTTP/1.1",
            f"Host: {self._settings.server}:{self._settings.port}",
            f"Authorization: Basic {auth}",
            f"User-Agent: {self._user_agent}",
            f"Content-Type: {self._format.content_type}",
            f"Ice-Name: {self._stream_name}",
            "Ice-Public: 0",
            "Expect: 100-continue",
        ]
        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")

    @staticmethod
    async def _read_response_head(reader: asyncio.StreamReader) -> tuple[int, str]:
        """Read the status line and headers; return (status, reason)."""
        status_line = (await reader.readuntil(b"\r\n")).decode("latin-1").strip()
        parts = status_line.split(" ", 2)
        if len(parts) < 2 or not parts[0].startswith("HTTP/"):
            raise ValueError(f"not an HTTP response: {status_line!r}")
        status = int(parts[1])
        reason = parts[2] if len(parts) > 2 else ""

        while True:
            line = await reader.readuntil(b"\r\n")
            if line == b"\r\n":
                break

        return status, reason

    @staticmethod
    async def _close_writer(writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing source socket: %r", e)
