import asyncio
import base64
import json

import pytest
import websockets

from voice.exceptions import TransportError
from voice.gemini_live import (
    DEFAULT_LIVE_MODEL,
    GeminiLiveTransport,
    build_setup_message,
    encode_frame,
    parse_server_message,
)
from voice.transport import LiveConfig, LiveEvent, MediaFrame, TextFrame, TransportObserver


def test_setup_message():
    config = LiveConfig(system_prompt="Sprich Deutsch.", voice_name="Kore")

    setup = build_setup_message(config)["setup"]

    assert setup["model"] == f"models/{DEFAULT_LIVE_MODEL}"
    assert setup["generationConfig"]["responseModalities"] == ["AUDIO"]
    assert setup["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"] == "Kore"
    assert setup["systemInstruction"] == {"parts": [{"text": "Sprich Deutsch."}]}
    assert setup["inputAudioTranscription"] == {}
    assert setup["outputAudioTranscription"] == {}


def test_setup_message_without_transcription_and_custom_model():
    config = LiveConfig("x", "Fenrir", transcription_enabled=False, model="models/custom-live")

    setup = build_setup_message(config)["setup"]

    assert setup["model"] == "models/custom-live"
    assert "inputAudioTranscription" not in setup


def test_encode_media_and_text_frames():
    media = encode_frame(MediaFrame(b"\x01\x02", "audio/pcm;rate=16000"))
    assert media == {
        "realtimeInput": {
            "mediaChunks": [{"mimeType": "audio/pcm;rate=16000", "data": "AQI="}]
        }
    }
    assert encode_frame(TextFrame("Hallo")) == {"realtimeInput": {"text": "Hallo"}}


def test_encode_rejects_unknown_frames():
    with pytest.raises(TypeError):
        encode_frame("raw")


def test_parse_server_content_in_application_order():
    audio = base64.b64encode(b"\x00\x01\x02\x03").decode()
    message = {
        "serverContent": {
            "modelTurn": {"parts": [
                {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": audio}},
                {"text": "not audio"},
            ]},
            "inputTranscription": {"text": "Wie bitte?"},
            "outputTranscription": {"text": "Gern"},
            "turnComplete": True,
        }
    }

    events = parse_server_message(message)

    assert [e.event_type for e in events] == [
        LiveEvent.INPUT_TRANSCRIPTION,
        LiveEvent.OUTPUT_TRANSCRIPTION,
        LiveEvent.AUDIO,
        LiveEvent.TURN_COMPLETE,
    ]
    assert events[0].text == "Wie bitte?"
    assert events[2].audio == b"\x00\x01\x02\x03"


def test_parse_interruption():
    events = parse_server_message({"serverContent": {"interrupted": True}})
    assert [e.event_type for e in events] == [LiveEvent.INTERRUPTED]


def test_parse_ignores_other_messages():
    assert parse_server_message({"setupComplete": {}}) == []
    assert parse_server_message({"goAway": {"timeLeft": "10s"}}) == []


class RecordingObserver(TransportObserver):
    def __init__(self):
        self.calls = []
        self.finished = asyncio.Event()

    async def on_open(self):
        self.calls.append(("open",))

    async def on_message(self, event):
        self.calls.append(("message", event.event_type, event.text))

    async def on_error(self, error):
        self.calls.append(("error", error))
        self.finished.set()

    async def on_close(self, reason=""):
        self.calls.append(("close",))
        self.finished.set()


async def test_transport_round_trip_against_local_server():
    received = []

    async def handler(ws):
        received.append(json.loads(await ws.recv()))
        await ws.send(json.dumps({"setupComplete": {}}))
        received.append(json.loads(await ws.recv()))
        await ws.send(json.dumps({"serverContent": {"outputTranscription": {"text": "Hallo!"}}}))
        await ws.close()

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        transport = GeminiLiveTransport("test-key", url=f"ws://127.0.0.1:{port}")
        observer = RecordingObserver()

        await transport.connect(LiveConfig("Sprich Deutsch.", "Kore"), observer)
        assert transport.is_open
        transport.send(TextFrame("Guten Tag"))

        await asyncio.wait_for(observer.finished.wait(), timeout=5)
        assert transport._send_task.done()
        await transport.close()

    assert "setup" in received[0]
    assert received[1] == {"realtimeInput": {"text": "Guten Tag"}}
    assert observer.calls == [
        ("open",),
        ("message", LiveEvent.OUTPUT_TRANSCRIPTION, "Hallo!"),
        ("close",),
    ]
    assert not transport.is_open


async def test_transport_rejects_unexpected_setup_reply():
    async def handler(ws):
        await ws.recv()
        await ws.send(json.dumps({"error": "bad model"}))
        await ws.wait_closed()

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        transport = GeminiLiveTransport("test-key", url=f"ws://127.0.0.1:{port}")

        with pytest.raises(TransportError):
            await transport.connect(LiveConfig("x", "Kore"), RecordingObserver())

        assert not transport.is_open


async def test_send_before_open_is_dropped():
    transport = GeminiLiveTransport("test-key")
    transport.send(TextFrame("verloren"))
    await transport.close()
    await transport.close()
