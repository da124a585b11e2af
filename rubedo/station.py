"""
Rubedo Station - Main Broadcast Loop

This module contains the RubedoStation class that wires the shared store,
track selection, the Icecast connection and the playback engine together and
runs the never-ending play loop.

The loop:
    1. Claim the oldest queued request. If there is one, play it and remove it
       from the queue once playback has concluded.
    2. Otherwise play a random song from the music folder. Random picks are
       never written to the database.

NOTE ON INTERRUPTED TRACKS:
A queued track is removed once its playback concludes, even when it was cut
short. Nothing is ever resumed from where it stopped.
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal

from rubedo.config import DjConfig
from rubedo.core.queue_store import QueueStore
from rubedo.core.selector import TrackSelector
from rubedo.player.engine import PlaybackEngine, PlaybackOutcome
from rubedo.streaming.icecast import IcecastConnection

logger = logging.getLogger(__name__)


class RubedoStation:
    """
    The DJ process: one loop, one stream, for the lifetime of the program.

    Components are built from `config` unless passed in explicitly (tests pass
    their own store/connection).
    """

    def __init__(
        self,
        config: DjConfig,
        *,
        store: QueueStore | None = None,
        connection: IcecastConnection | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.library_root = config.library_root

        self.store = store or QueueStore(config.database)
        self.connection = connection or IcecastConnection(
            config.icecast,
            stream_name=config.radio_name,
        )
        self.selector = TrackSelector(self.store, self.library_root, rng=rng)
        self.engine = PlaybackEngine(
            self.connection,
            self.selector,
            self.library_root,
            interrupt_on_queue=config.interrupt_empty_queue,
            chunk_size=config.chunk_size,
            idle_interval=config.idle_interval,
        )

        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Open the shared store and connect to Icecast.

        Raises:
            FatalConnectError: Icecast is unreachable. There is no point in
                running without a broadcast destination, so no retry.
        """
        logger.info("DJ started, music folder is %s", self.library_root)
        if self.library_root != self.config.music_folder:
            logger.warning(
                "Music folder %s does not exist, falling back to %s",
                self.config.music_folder,
                self.library_root,
            )

        await self.store.open()
        try:
            await self.connection.open()
        except BaseException:
            await self.store.close()
            raise

        pending = await self.store.count_pending()
        if pending:
            logger.info("%d song(s) waiting in the queue", pending)

        self._running = True
        self._shutdown_event.clear()

    async def stop(self) -> None:
        """Disconnect from Icecast and close the store."""
        if not self._running:
            return

        logger.info("Stopping DJ...")
        self._running = False

        await self.connection.close()
        await self.store.close()

        self._shutdown_event.set()

        logger.info("DJ stopped")

    async def run_once(self) -> PlaybackOutcome:
        """Play one track: the next request if there is one, else a random pick."""
        entry = await self.selector.claim_next()
        if entry is not None:
            outcome = await self.engine.play(entry)
            if outcome.concludes_play:
                await self.selector.complete(entry)
            else:
                logger.warning(
                    "Leaving %s in progress after %s playback", entry.describe(), outcome.value
                )
            return outcome

        # Random picks are never persisted, so their outcome does not matter.
        return await self.engine.play(self.selector.random_fallback())

    async def play_songs(self) -> None:
        """Play tracks until stopped."""
        while self._running:
            await self.run_once()

    async def run(self) -> None:
        """
        Run the station until shutdown is requested.

        Starts all components, then plays until SIGINT/SIGTERM.
        """
        await self.start()

        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Received shutdown signal")
            self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                # Signal handlers not supported on Windows
                pass

        play_task = asyncio.create_task(self.play_songs(), name="rubedo-play-loop")
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())
        try:
            done, _ = await asyncio.wait(
                {play_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (play_task, shutdown_task):
                task.cancel()
            await asyncio.gather(play_task, shutdown_task, return_exceptions=True)
            await self.stop()

        # Surface a crash of the play loop to the caller.
        if play_task in done and not play_task.cancelled():
            play_task.result()
