"""
Gapless playback scheduling for streamed agent audio
"""
from abc import ABC, abstractmethod
from typing import Callable, Optional, Set
import logging

from .audio_utils import AudioFormat, calculate_audio_duration

logger = logging.getLogger(__name__)


class AudioChunk:
    """Decoded PCM16 buffer received from the remote endpoint"""

    def __init__(
        self,
        pcm: bytes,
        sample_rate: int = AudioFormat.OUTPUT_SAMPLE_RATE,
        channels: int = AudioFormat.CHANNELS
    ):
        self.pcm = pcm
        self.sample_rate = sample_rate
        self.channels = channels
        self.start_time: Optional[float] = None

    @property
    def duration(self) -> float:
        """Duration in seconds"""
        return calculate_audio_duration(self.pcm, self.sample_rate, self.channels)

    @property
    def end_time(self) -> Optional[float]:
        if self.start_time is None:
            return None
        return self.start_time + self.duration


class PlaybackHandle(ABC):
    """A buffer handed to an output device"""

    @abstractmethod
    def stop(self) -> None:
        """Stop immediately; the ended callback must not fire afterwards"""
        pass


class AudioOutput(ABC):
    """Abstract audio output device that plays timed buffers back-to-back"""

    sample_rate = AudioFormat.OUTPUT_SAMPLE_RATE

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Device clock in seconds"""
        pass

    @abstractmethod
    def play(
        self,
        chunk: AudioChunk,
        start_time: float,
        on_ended: Callable[[PlaybackHandle], None]
    ) -> PlaybackHandle:
        """
        Schedule a chunk for playback

        Args:
            chunk: Decoded audio
            start_time: Device time at which playback starts
            on_ended: Called with the handle once the chunk finished playing

        Returns:
            Handle that can stop the chunk
        """
        pass


class PlaybackQueue:
    """
    Schedules inbound chunks so chunk N+1 never starts before chunk N ends

    Owns the output clock watermark and the set of playing/queued buffers
    of one session.
    """

    def __init__(self, output: AudioOutput):
        self.output = output
        self.output_clock = 0.0
        self.active_buffers: Set[PlaybackHandle] = set()

    def schedule(
        self,
        chunk: AudioChunk,
        on_ended: Callable[[PlaybackHandle], None]
    ) -> PlaybackHandle:
        """
        Play a chunk right after everything already queued

        Args:
            chunk: Decoded audio
            on_ended: Completion callback, receives the handle

        Returns:
            Playback handle, tracked in active_buffers
        """
        # Never schedule into the past nor before the previous chunk ends
        start_time = max(self.output_clock, self.output.current_time)
        chunk.start_time = start_time

        handle = self.output.play(chunk, start_time, on_ended)
        self.output_clock = start_time + chunk.duration
        self.active_buffers.add(handle)
        return handle

    def release(self, handle: PlaybackHandle) -> bool:
        """Forget a finished buffer; False if it was already dropped"""
        if handle not in self.active_buffers:
            return False
        self.active_buffers.discard(handle)
        return True

    def is_idle(self) -> bool:
        return not self.active_buffers

    def stop_all(self) -> int:
        """Stop and discard every active buffer"""
        stopped = 0
        for handle in list(self.active_buffers):
            try:
                handle.stop()
                stopped += 1
            except Exception as e:
                logger.debug(f"Ignoring error while stopping buffer: {e}")
        self.active_buffers.clear()
        return stopped

    def interrupt(self) -> int:
        """Barge-in: drop all queued audio and reset the clock"""
        stopped = self.stop_all()
        self.output_clock = 0.0
        return stopped
