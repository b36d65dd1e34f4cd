"""
Audio output that plays on the connected browser
"""
import asyncio
import logging
import uuid
from typing import Callable, Optional

from .audio_utils import AudioFormat, pcm16_to_base64
from .playback import AudioChunk, AudioOutput, PlaybackHandle

logger = logging.getLogger(__name__)


class BrowserPlaybackHandle(PlaybackHandle):
    """One chunk scheduled on the browser's audio context"""

    def __init__(self, output: "BrowserAudioOutput", buffer_id: str):
        self.output = output
        self.buffer_id = buffer_id
        self.timer: Optional[asyncio.TimerHandle] = None
        self.stopped = False

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        if self.timer is not None:
            self.timer.cancel()
        self.output.sink({"type": "stop_audio", "buffer_id": self.buffer_id})


class BrowserAudioOutput(AudioOutput):
    """
    Mirrors the browser's playback clock on the server

    Each chunk is sent with its start time relative to the moment the
    output was opened; the browser plays it at that offset on its own
    audio context. Completion is tracked with a loop timer at the chunk's
    end time.

    Args:
        sink: Non-blocking function that queues a JSON message for the client
    """

    def __init__(self, sink: Callable[[dict], None], sample_rate: int = AudioFormat.OUTPUT_SAMPLE_RATE):
        self.sink = sink
        self.sample_rate = sample_rate
        self._origin: Optional[float] = None
        self._is_open = False

    def _loop(self) -> asyncio.AbstractEventLoop:
        return asyncio.get_running_loop()

    async def open(self) -> None:
        self._origin = self._loop().time()
        self._is_open = True
        self.sink({"type": "audio_open", "sample_rate": self.sample_rate})

    async def close(self) -> None:
        if not self._is_open:
            return
        self._is_open = False
        self.sink({"type": "audio_close"})

    @property
    def current_time(self) -> float:
        if self._origin is None:
            return 0.0
        return self._loop().time() - self._origin

    def play(
        self,
        chunk: AudioChunk,
        start_time: float,
        on_ended: Callable[[PlaybackHandle], None]
    ) -> PlaybackHandle:
        handle = BrowserPlaybackHandle(self, str(uuid.uuid4()))

        self.sink({
            "type": "audio",
            "buffer_id": handle.buffer_id,
            "start_time": start_time,
            "duration": chunk.duration,
            "sample_rate": chunk.sample_rate,
            "audio": pcm16_to_base64(chunk.pcm)
        })

        def fire():
            if not handle.stopped:
                on_ended(handle)

        end_at = (self._origin or 0.0) + start_time + chunk.duration
        handle.timer = self._loop().call_at(end_at, fire)
        return handle
