import asyncio

import pytest

from generation.provider import ContentProvider
from generation.speech import SpeechProvider
from voice.exceptions import TransportError
from voice.playback import AudioOutput, PlaybackHandle
from voice.transport import LiveTransport


class FakeTransport(LiveTransport):
    """In-memory transport; opens immediately unless `hold` is set"""

    def __init__(self, hold=False, fail=False):
        super().__init__("test-key")
        self.hold = hold
        self.fail = fail
        self.released = asyncio.Event()
        self.observer = None
        self.live_config = None
        self.sent = []
        self.close_calls = 0
        self.connect_calls = 0

    async def connect(self, live_config, observer):
        self.connect_calls += 1
        self.live_config = live_config
        self.observer = observer
        if self.hold:
            await self.released.wait()
        if self.fail:
            raise TransportError("handshake refused")
        self._is_open = True
        await observer.on_open()

    def send(self, frame):
        if self._is_open:
            self.sent.append(frame)

    async def close(self):
        self.close_calls += 1
        self._is_open = False


class FakeHandle(PlaybackHandle):
    def __init__(self, chunk, start_time, on_ended):
        self.chunk = chunk
        self.start_time = start_time
        self.on_ended = on_ended
        self.stopped = False

    @property
    def end_time(self):
        return self.start_time + self.chunk.duration

    def stop(self):
        self.stopped = True

    def finish(self):
        if not self.stopped:
            self.on_ended(self)


class FakeOutput(AudioOutput):
    def __init__(self):
        self.now = 0.0
        self.handles = []
        self.opened = False
        self.closed = False

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    @property
    def current_time(self):
        return self.now

    def play(self, chunk, start_time, on_ended):
        handle = FakeHandle(chunk, start_time, on_ended)
        self.handles.append(handle)
        return handle


class FakeProvider(ContentProvider):
    """Returns canned replies in order, or raises `error`"""

    def __init__(self, replies=None, error=None, delay=0):
        super().__init__("test-key")
        self.replies = list(replies or [])
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, prompt, **kwargs):
        self.calls.append((prompt, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.replies.pop(0)


class FakeSpeech(SpeechProvider):
    """Replays queued results in order; queued exceptions are raised"""

    def __init__(self, results=None):
        super().__init__("test-key")
        self.results = list(results or [])
        self.calls = []

    async def synthesize(self, text, voice=None, speaker_voices=None):
        self.calls.append({"text": text, "voice": voice, "speaker_voices": speaker_voices})
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def grades(**overrides):
    """Grader answer with every criterion at A unless overridden"""
    keys = ["part1A", "part1B", "part1C", "part2", "part3", "pronunciation", "grammar", "vocabulary"]
    result = {key: {"grade": "A", "reason": "gut"} for key in keys}
    for key, grade in overrides.items():
        result[key] = {"grade": grade, "reason": "naja"}
    return result


async def drain(rounds=10):
    """Let pending tasks run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def output():
    return FakeOutput()
