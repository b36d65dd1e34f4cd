import asyncio

import pytest

from voice.browser import BrowserAudioOutput
from voice.playback import AudioChunk


async def test_browser_output_sends_timed_audio_and_fires_completion():
    sent = []
    ended = []
    output = BrowserAudioOutput(sent.append)
    await output.open()

    handle = output.play(AudioChunk(b"\x00\x00" * 240), output.current_time, ended.append)
    await asyncio.sleep(0.05)

    assert sent[0] == {"type": "audio_open", "sample_rate": 24000}
    audio = sent[1]
    assert audio["type"] == "audio"
    assert audio["buffer_id"] == handle.buffer_id
    assert audio["duration"] == pytest.approx(0.01)
    assert audio["sample_rate"] == 24000
    assert ended == [handle]

    await output.close()
    await output.close()
    assert sent[-1] == {"type": "audio_close"}
    assert sent.count({"type": "audio_close"}) == 1


async def test_browser_output_stop_cancels_completion():
    sent = []
    ended = []
    output = BrowserAudioOutput(sent.append)
    await output.open()

    handle = output.play(AudioChunk(b"\x00\x00" * 2400), 0.0, ended.append)
    handle.stop()
    handle.stop()
    await asyncio.sleep(0.15)

    assert ended == []
    assert sent.count({"type": "stop_audio", "buffer_id": handle.buffer_id}) == 1
