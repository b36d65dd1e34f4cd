import base64
import struct

import pytest

from conftest import FakeOutput
from voice.audio_utils import (
    AudioFormat,
    base64_to_pcm16,
    calculate_audio_duration,
    float32_bytes_to_samples,
    float32_to_pcm16,
    pcm16_to_base64,
)
from voice.exceptions import PermissionDenied
from voice.microphone import QueueMicrophone
from voice.playback import AudioChunk, PlaybackQueue


def pcm16_to_samples(pcm):
    return list(struct.unpack(f"<{len(pcm) // 2}h", pcm))


def test_formats_match_live_protocol():
    assert AudioFormat.INPUT_SAMPLE_RATE == 16000
    assert AudioFormat.OUTPUT_SAMPLE_RATE == 24000
    assert AudioFormat.CAPTURE_BLOCK_SIZE == 4096
    assert AudioFormat.INPUT_MIME_TYPE == "audio/pcm;rate=16000"


def test_pcm_scale_and_clamp():
    pcm = float32_to_pcm16([0.5, -0.5, 1.0, -1.0])
    assert pcm16_to_samples(pcm) == [16384, -16384, 32767, -32768]


def test_pcm_wraps_without_clamp():
    pcm = float32_to_pcm16([0.5, -0.5, 1.0, -1.0], clamp=False)
    assert pcm16_to_samples(pcm) == [16384, -16384, -32768, -32768]


def test_pcm_truncates_toward_zero():
    pcm = float32_to_pcm16([0.00005, -0.00005, 0.25])
    assert pcm16_to_samples(pcm) == [1, -1, 8192]


def test_pcm_is_little_endian():
    assert float32_to_pcm16([0.5]) == b"\x00\x40"


def test_base64_helpers():
    pcm = b"\x01\x02\x03\x04"
    encoded = pcm16_to_base64(pcm)
    assert encoded == base64.b64encode(pcm).decode("utf-8")
    assert base64_to_pcm16(encoded) == pcm


def test_float32_bytes_drop_partial_sample():
    raw = struct.pack("<2f", 0.25, -0.75) + b"\x00\x01"
    assert float32_bytes_to_samples(raw) == [0.25, -0.75]


def test_duration():
    assert calculate_audio_duration(b"\x00\x00" * 24000, 24000) == pytest.approx(1.0)
    assert calculate_audio_duration(b"\x00\x00" * 16000, 16000, channels=2) == pytest.approx(0.5)
    assert calculate_audio_duration(b"", 24000) == 0


# Playback queue

def chunk(seconds):
    return AudioChunk(b"\x00\x00" * int(24000 * seconds))


def test_queue_schedules_back_to_back():
    output = FakeOutput()
    queue = PlaybackQueue(output)

    handles = [queue.schedule(chunk(0.5), lambda h: None) for _ in range(3)]

    assert [h.start_time for h in handles] == pytest.approx([0.0, 0.5, 1.0])
    assert queue.output_clock == pytest.approx(1.5)


def test_queue_never_schedules_into_the_past():
    output = FakeOutput()
    queue = PlaybackQueue(output)
    queue.schedule(chunk(0.5), lambda h: None)

    output.now = 2.0
    handle = queue.schedule(chunk(0.5), lambda h: None)

    assert handle.start_time == 2.0
    assert queue.output_clock == pytest.approx(2.5)


def test_chunk_records_start_time():
    queue = PlaybackQueue(FakeOutput())
    first, second = chunk(0.25), chunk(0.25)
    queue.schedule(first, lambda h: None)
    queue.schedule(second, lambda h: None)

    assert second.start_time == pytest.approx(first.end_time)


def test_interrupt_stops_everything_and_resets_clock():
    output = FakeOutput()
    queue = PlaybackQueue(output)
    for _ in range(3):
        queue.schedule(chunk(0.5), lambda h: None)

    assert queue.interrupt() == 3
    assert all(h.stopped for h in output.handles)
    assert queue.is_idle()
    assert queue.output_clock == 0.0


def test_release_only_once():
    queue = PlaybackQueue(FakeOutput())
    handle = queue.schedule(chunk(0.1), lambda h: None)

    assert queue.release(handle) is True
    assert queue.release(handle) is False
    assert queue.is_idle()


# Microphone

async def test_microphone_reblocks_frames():
    microphone = QueueMicrophone(block_size=4)
    await microphone.open()
    microphone.start_capture()

    assert microphone.feed(struct.pack("<3f", 0.1, 0.2, 0.3)) == 0
    assert microphone.feed(struct.pack("<6f", 0.4, 0.5, 0.6, 0.7, 0.8, 0.9)) == 2
    await microphone.close()

    blocks = [block async for block in microphone.blocks()]
    # Full blocks queued before close are still delivered; the remainder is dropped
    assert len(blocks) == 2
    assert blocks[0] == pytest.approx([0.1, 0.2, 0.3, 0.4])
    assert blocks[1] == pytest.approx([0.5, 0.6, 0.7, 0.8])


async def test_microphone_denied():
    with pytest.raises(PermissionDenied):
        await QueueMicrophone(granted=False).open()


async def test_microphone_cannot_reopen_after_close():
    microphone = QueueMicrophone()
    await microphone.open()
    microphone.start_capture()
    await microphone.close()
    await microphone.close()

    with pytest.raises(PermissionDenied):
        await microphone.open()
    assert microphone.feed(struct.pack("<f", 0.1)) == 0


async def test_microphone_discards_frames_before_capture_starts():
    microphone = QueueMicrophone(block_size=2)
    await microphone.open()

    assert microphone.feed(struct.pack("<5f", 0.1, 0.2, 0.3, 0.4, 0.5)) == 0
    microphone.start_capture()
    assert microphone.feed(struct.pack("<2f", 0.6, 0.7)) == 1
    await microphone.close()

    blocks = [block async for block in microphone.blocks()]
    assert len(blocks) == 1
    assert blocks[0] == pytest.approx([0.6, 0.7])
