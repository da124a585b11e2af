"""
Shared fixtures for the Rubedo tests.

The DJ never creates the shared schema itself (the web front end owns it), so
the tests build it here and use a separate connection to play the part of the
front end writing to the queue.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import aiosqlite
import pytest

from rubedo.core.queue_store import QueueStore
from rubedo.streaming.pacing import StreamPacer
from rubedo.streaming.policy import DEFAULT_FORMAT, StreamFormat

SCHEMA = (
    """
    CREATE TABLE songs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        filename TEXT,
        title TEXT,
        play_count INTEGER DEFAULT 0,
        last_played_at DATETIME
    )
    """,
    """
    CREATE TABLE queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        filename TEXT,
        title TEXT,
        song_id INTEGER,
        queued_at DATETIME,
        played_at DATETIME
    )
    """,
)


class FrontEnd:
    """Stand-in for the web front end: inserts songs and queue rows."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self._tick = 0

    def _next_timestamp(self) -> str:
        self._tick += 1
        return f"2024-01-01 12:00:{self._tick:02d}.000000"

    async def add_song(self, filename: str, title: str, play_count: int = 0) -> int:
        cursor = await self.conn.execute(
            "INSERT INTO songs (filename, title, play_count) VALUES (?, ?, ?)",
            (filename, title, play_count),
        )
        await self.conn.commit()
        return int(cursor.lastrowid)

    async def queue(
        self,
        filename: str,
        title: str,
        *,
        song_id: int | None = None,
        queued_at: str | None = None,
    ) -> int:
        cursor = await self.conn.execute(
            "INSERT INTO queue (filename, title, song_id, queued_at) VALUES (?, ?, ?, ?)",
            (filename, title, song_id, queued_at or self._next_timestamp()),
        )
        await self.conn.commit()
        return int(cursor.lastrowid)

    async def remove(self, play_id: int) -> None:
        await self.conn.execute("DELETE FROM queue WHERE id = ?", (play_id,))
        await self.conn.commit()

    async def play(self, play_id: int) -> dict[str, Any] | None:
        cursor = await self.conn.execute("SELECT * FROM queue WHERE id = ?", (play_id,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def song(self, song_id: int) -> dict[str, Any] | None:
        cursor = await self.conn.execute("SELECT * FROM songs WHERE id = ?", (song_id,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def queue_size(self) -> int:
        cursor = await self.conn.execute("SELECT COUNT(*) FROM queue")
        row = await cursor.fetchone()
        return int(row[0])


class FakeConnection:
    """
    In-memory stand-in for `IcecastConnection`.

    Records every call in `events` so tests can check ordering, e.g. that a
    format switch reconnects before the first chunk of the new track.
    """

    def __init__(self) -> None:
        self.format: StreamFormat = DEFAULT_FORMAT
        self.connected = False
        self.events: list[str] = []
        self.sent: list[bytes] = []
        self.metadata: list[tuple[str, str]] = []
        self.bitrates: list[int | None] = []
        self.on_send: Callable[[int], Any] | None = None
        self.open_error: Exception | None = None
        self.closed = False

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.format = DEFAULT_FORMAT
        self.connected = True
        self.events.append(f"connect:{self.format.value}")

    async def ensure_format(self, required: StreamFormat) -> None:
        if required is self.format:
            return
        if self.connected:
            self.events.append("disconnect")
            self.format = required
            self.events.append(f"connect:{required.value}")
        else:
            self.format = required

    async def set_metadata(self, song: str, filename: str) -> bool:
        self.events.append("metadata")
        self.metadata.append((song, filename))
        return True

    def begin_track(self, bitrate: int | None) -> None:
        self.bitrates.append(bitrate)

    async def send(self, chunk: bytes) -> None:
        self.events.append("send")
        self.sent.append(chunk)
        if self.on_send is not None:
            result = self.on_send(len(self.sent))
            if asyncio.iscoroutine(result):
                await result
        # Let other tasks (e.g. a shutdown request) run between chunks
        await asyncio.sleep(0)

    async def close(self) -> None:
        self.connected = False
        self.closed = True

    @property
    def sent_bytes(self) -> bytes:
        return b"".join(self.sent)


@dataclass
class SourceSession:
    """One accepted source connection as seen by the fake server."""

    head: str
    body: bytearray = field(default_factory=bytearray)
    done: asyncio.Event = field(default_factory=asyncio.Event)

    def header(self, name: str) -> str | None:
        for line in self.head.split("\r\n")[1:]:
            key, _, value = line.partition(":")
            if key.strip().lower() == name.lower():
                return value.strip()
        return None

    @property
    def request_line(self) -> str:
        return self.head.split("\r\n", 1)[0]


class FakeIcecast:
    """
    A tiny Icecast stand-in that answers the source handshake and records
    everything it receives.

    Args:
        reply: Status line sent back to every source handshake.
        port: Port to listen on (0 picks a free one).
        refuse_first: Turn away this many handshakes with 403 before
            accepting; they are counted in `refused`, not kept in `sessions`.
        drop_after: Hang up on a source once it has sent this many bytes.
            Happens once; later sources are left alone.
    """

    def __init__(
        self,
        reply: bytes = b"HTTP/1.1 100 Continue",
        *,
        port: int = 0,
        refuse_first: int = 0,
        drop_after: int | None = None,
    ) -> None:
        self.reply = reply
        self.port = port
        self.refuse_first = refuse_first
        self.drop_after = drop_after
        self.refused = 0
        self.dropped = False
        self.sessions: list[SourceSession] = []
        self._writers: list[asyncio.StreamWriter] = []
        self._server: asyncio.Server | None = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", self.port)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    @property
    def accepting(self) -> bool:
        return b" 100 " in self.reply or b" 200 " in self.reply

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        try:
            head = await reader.readuntil(b"\r\n\r\n")
        except (asyncio.IncompleteReadError, ConnectionError):
            writer.close()
            return

        if self.refused < self.refuse_first:
            self.refused += 1
            writer.write(b"HTTP/1.0 403 Forbidden\r\n\r\n")
            await writer.drain()
            writer.close()
            return

        session = SourceSession(head=head.decode())
        self.sessions.append(session)
        limit = None if self.dropped else self.drop_after

        try:
            writer.write(self.reply + b"\r\n\r\n")
            await writer.drain()
            if not self.accepting:
                return
            while data := await reader.read(65536):
                session.body.extend(data)
                if limit is not None and len(session.body) >= limit:
                    self.dropped = True
                    break
        except ConnectionError:
            pass
        finally:
            writer.close()
            session.done.set()

    async def wait_for_body(self, session: int, size: int, timeout: float = 2.0) -> bytes:
        async def _wait() -> bytes:
            while len(self.sessions) <= session or len(self.sessions[session].body) < size:
                await asyncio.sleep(0.01)
            return bytes(self.sessions[session].body)

        return await asyncio.wait_for(_wait(), timeout=timeout)

    async def received(self, session: int, timeout: float = 2.0) -> bytes:
        """Everything a session got, once its source has hung up."""
        await asyncio.wait_for(self.sessions[session].done.wait(), timeout=timeout)
        return bytes(self.sessions[session].body)


async def unused_port() -> int:
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    return port


@pytest.fixture
async def db_path(tmp_path: Path) -> Path:
    """A shared database file with the front end's schema."""
    path = tmp_path / "rubedo.db"
    async with aiosqlite.connect(path) as conn:
        for statement in SCHEMA:
            await conn.execute(statement)
        await conn.commit()
    return path


@pytest.fixture
async def front_end(db_path: Path) -> FrontEnd:
    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    yield FrontEnd(conn)
    await conn.close()


@pytest.fixture
async def store(db_path: Path) -> QueueStore:
    store = QueueStore(db_path)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """An empty music folder."""
    root = tmp_path / "music"
    root.mkdir()
    return root


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


def write_track(root: Path, relative: str, size: int = 40000) -> Path:
    """Create a fake audio file of `size` bytes under `root`."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(bytes(i % 251 for i in range(size)))
    return path


class YieldingPacer(StreamPacer):
    """No real-time pacing, but gives the loop a turn after every chunk."""

    async def sync(self, nbytes: int) -> None:
        self.delay_for(nbytes)
        await asyncio.sleep(0)
