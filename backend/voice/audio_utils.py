"""
Audio processing utilities for the live voice session
"""
import base64
import struct
import logging
from typing import Iterable, List

logger = logging.getLogger(__name__)

INT16_MIN = -32768
INT16_MAX = 32767
PCM16_SCALE = 32768


class AudioFormat:
    """Audio format constants"""
    # Fixed by the remote endpoint; decoded audio is pitched wrong otherwise
    INPUT_SAMPLE_RATE = 16000
    OUTPUT_SAMPLE_RATE = 24000

    CAPTURE_BLOCK_SIZE = 4096
    CHANNELS = 1

    INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"
    OUTPUT_MIME_TYPE = f"audio/pcm;rate={OUTPUT_SAMPLE_RATE}"


def pcm16_to_base64(pcm_bytes: bytes) -> str:
    """Convert PCM16 bytes to base64 string"""
    return base64.b64encode(pcm_bytes).decode('utf-8')


def base64_to_pcm16(b64_string: str) -> bytes:
    """Convert base64 string to PCM16 bytes"""
    return base64.b64decode(b64_string)


def _wrap_int16(value: int) -> int:
    return ((value - INT16_MIN) % 65536) + INT16_MIN


def float32_to_pcm16(samples: Iterable[float], clamp: bool = True) -> bytes:
    """
    Convert float samples in [-1, 1] to little-endian 16-bit PCM

    Each sample is multiplied by 32768 and truncated toward zero. With
    clamp=False out-of-range results wrap around like a signed 16-bit
    store would, so +1.0 becomes -32768.

    Args:
        samples: Float samples
        clamp: Saturate to the int16 range instead of wrapping

    Returns:
        Raw PCM16 bytes
    """
    ints = []
    for sample in samples:
        value = int(sample * PCM16_SCALE)
        if clamp:
            value = max(INT16_MIN, min(INT16_MAX, value))
        else:
            value = _wrap_int16(value)
        ints.append(value)

    return struct.pack(f'<{len(ints)}h', *ints)


def float32_bytes_to_samples(raw: bytes) -> List[float]:
    """
    Decode little-endian float32 bytes (as sent by the browser) into floats

    A trailing partial sample is dropped.
    """
    count = len(raw) // 4
    if len(raw) % 4:
        logger.debug(f"Dropping {len(raw) % 4} trailing bytes from float32 frame")
    return list(struct.unpack(f'<{count}f', raw[:count * 4]))


def calculate_audio_duration(pcm_bytes: bytes, sample_rate: int, channels: int = 1) -> float:
    """
    Calculate duration of PCM16 audio in seconds

    Args:
        pcm_bytes: Raw PCM16 audio bytes
        sample_rate: Sample rate in Hz
        channels: Number of channels

    Returns:
        Duration in seconds
    """
    frame_size = 2 * channels
    num_frames = len(pcm_bytes) // frame_size
    return num_frames / sample_rate
