"""
NoteBuddy Client - Audio Source Interface
==========================================

What:  Abstract contract for whatever captures audio for the recording workflow.
Why:   The workflow treats audio as an opaque blob. Keeping capture behind an
       interface lets a desktop microphone, a browser bridge or a file on disk
       feed the same TranscriptionJobController.
How:   Concrete sources implement start/stop/release and push raw byte chunks
       to the callback handed to `start()`.
Who:   Driven by TranscriptionJobController.

Implementations:
    - FileAudioSource: streams an existing recording from disk (aiofiles)
    - an in-memory source in the test-suite
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Callable, Optional

import aiofiles

from notebuddy.scheduling import ScheduledTask, Scheduler, cancel_task

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[bytes], None]


class AudioSource(ABC):
    """
    Contract:
        - start() begins capture; every captured chunk is passed to on_chunk
        - stop() ends capture and flushes any buffered audio to on_chunk
        - release() frees the underlying device/file; a later start() reacquires it
        - all three are idempotent
    """

    content_type: str = "audio/webm"

    @abstractmethod
    async def start(self, on_chunk: ChunkCallback) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def release(self) -> None:
        ...

    @property
    @abstractmethod
    def active(self) -> bool:
        """True between start() and stop()."""
        ...


class FileAudioSource(AudioSource):
    """
    Replays an audio file as if it were being recorded live.

    One chunk of `chunk_size` bytes is delivered every `interval` seconds;
    stop() delivers whatever is left in one final chunk.
    """

    def __init__(
        self,
        path: str,
        scheduler: Scheduler,
        chunk_size: int = 64 * 1024,
        interval: float = 1.0,
        content_type: Optional[str] = None,
    ):
        self.path = path
        self._scheduler = scheduler
        self._chunk_size = chunk_size
        self._interval = interval
        self._offset = 0
        self._on_chunk: Optional[ChunkCallback] = None
        self._timer: Optional[ScheduledTask] = None
        if content_type:
            self.content_type = content_type
        elif path.lower().endswith(".wav"):
            self.content_type = "audio/wav"

    @property
    def active(self) -> bool:
        return self._on_chunk is not None

    async def start(self, on_chunk: ChunkCallback) -> None:
        if self.active:
            return
        if not os.path.isfile(self.path):
            raise FileNotFoundError(self.path)
        self._offset = 0
        self._on_chunk = on_chunk
        self._timer = self._scheduler.call_later(self._interval, self._tick)
        logger.debug("Streaming audio from %s", self.path)

    async def _read(self, size: int = -1) -> bytes:
        async with aiofiles.open(self.path, "rb") as f:
            await f.seek(self._offset)
            data = await f.read(size)
        self._offset += len(data)
        return data

    async def _tick(self) -> None:
        if self._on_chunk is None:
            return
        chunk = await self._read(self._chunk_size)
        if chunk:
            self._on_chunk(chunk)
        self._timer = self._scheduler.call_later(self._interval, self._tick)

    async def stop(self) -> None:
        if not self.active:
            return
        cancel_task(self._timer)
        self._timer = None
        on_chunk, self._on_chunk = self._on_chunk, None
        rest = await self._read()
        if rest:
            on_chunk(rest)

    async def release(self) -> None:
        cancel_task(self._timer)
        self._timer = None
        self._on_chunk = None
        self._offset = 0
