"""
Microphone capture sources
"""
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional
import asyncio
import logging

from .audio_utils import AudioFormat, float32_bytes_to_samples
from .exceptions import PermissionDenied

logger = logging.getLogger(__name__)


class MicrophoneSource(ABC):
    """Abstract source of captured float samples"""

    sample_rate = AudioFormat.INPUT_SAMPLE_RATE

    @abstractmethod
    async def open(self) -> None:
        """
        Acquire the device

        Raises:
            PermissionDenied: if the user declined or no device exists
        """
        pass

    @abstractmethod
    def start_capture(self) -> None:
        """Begin keeping samples; anything captured earlier is discarded"""
        pass

    @abstractmethod
    def blocks(self) -> AsyncIterator[List[float]]:
        """Yield fixed-size blocks of float samples until closed"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the device; safe to call more than once"""
        pass


class QueueMicrophone(MicrophoneSource):
    """
    Microphone fed by a remote client

    The browser owns the physical device and pushes float32 frames of any
    size; they are re-cut into blocks of `block_size` samples.
    """

    def __init__(self, granted: bool = True, block_size: int = AudioFormat.CAPTURE_BLOCK_SIZE):
        self.granted = granted
        self.block_size = block_size
        self._pending: List[float] = []
        self._queue: asyncio.Queue = asyncio.Queue()
        self._is_open = False
        self._is_closed = False
        self._capturing = False

    async def open(self) -> None:
        if not self.granted:
            raise PermissionDenied("Microphone access was denied or no device is available")
        if self._is_closed:
            raise PermissionDenied("Microphone already released")
        self._is_open = True

    def start_capture(self) -> None:
        if not self.is_open:
            return
        self._pending.clear()
        self._capturing = True

    @property
    def is_open(self) -> bool:
        return self._is_open and not self._is_closed

    def feed(self, raw: bytes) -> int:
        """
        Accept a float32 little-endian frame from the client

        Returns:
            Number of complete blocks queued; always 0 before capture starts
        """
        if not self.is_open or not self._capturing:
            return 0

        self._pending.extend(float32_bytes_to_samples(raw))
        queued = 0
        while len(self._pending) >= self.block_size:
            block = self._pending[:self.block_size]
            del self._pending[:self.block_size]
            self._queue.put_nowait(block)
            queued += 1
        return queued

    async def blocks(self) -> AsyncIterator[List[float]]:
        while True:
            block: Optional[List[float]] = await self._queue.get()
            if block is None:
                return
            yield block

    async def close(self) -> None:
        if self._is_closed:
            return
        self._is_closed = True
        self._is_open = False
        self._capturing = False
        self._pending.clear()
        self._queue.put_nowait(None)
