"""
Gemini Live duplex audio transport
"""
import asyncio
import json
import logging
from typing import List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from .audio_utils import base64_to_pcm16, pcm16_to_base64
from .exceptions import TransportError
from .transport import (
    Frame,
    LiveConfig,
    LiveEvent,
    LiveEventData,
    LiveTransport,
    MediaFrame,
    TextFrame,
    TransportObserver,
)

logger = logging.getLogger(__name__)

DEFAULT_LIVE_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
DEFAULT_LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-12-2025"


def build_setup_message(live_config: LiveConfig, default_model: str = DEFAULT_LIVE_MODEL) -> dict:
    """Build the first client message of a Live session"""
    model = live_config.model or default_model
    if not model.startswith("models/"):
        model = f"models/{model}"

    setup = {
        "model": model,
        "generationConfig": {
            "responseModalities": ["AUDIO"],
            "speechConfig": {
                "voiceConfig": {
                    "prebuiltVoiceConfig": {"voiceName": live_config.voice_name}
                }
            },
        },
        "systemInstruction": {"parts": [{"text": live_config.system_prompt}]},
    }

    if live_config.transcription_enabled:
        setup["inputAudioTranscription"] = {}
        setup["outputAudioTranscription"] = {}

    return {"setup": setup}


def encode_frame(frame: Frame) -> dict:
    """Wrap an outbound frame in a realtime input message"""
    if isinstance(frame, MediaFrame):
        return {
            "realtimeInput": {
                "mediaChunks": [
                    {"mimeType": frame.mime_type, "data": pcm16_to_base64(frame.data)}
                ]
            }
        }
    if isinstance(frame, TextFrame):
        return {"realtimeInput": {"text": frame.text}}
    raise TypeError(f"Unsupported frame type: {type(frame).__name__}")


def parse_server_message(data: dict) -> List[LiveEventData]:
    """
    Turn one server message into inbound events

    Transcriptions come first, then audio, then the interruption and turn
    markers, matching the order they have to be applied in.
    """
    events: List[LiveEventData] = []
    content = data.get("serverContent")
    if not content:
        return events

    input_text = (content.get("inputTranscription") or {}).get("text")
    if input_text:
        events.append(LiveEventData(LiveEvent.INPUT_TRANSCRIPTION, text=input_text))

    output_text = (content.get("outputTranscription") or {}).get("text")
    if output_text:
        events.append(LiveEventData(LiveEvent.OUTPUT_TRANSCRIPTION, text=output_text))

    model_turn = content.get("modelTurn") or {}
    for part in model_turn.get("parts") or []:
        inline = part.get("inlineData") or {}
        audio_b64 = inline.get("data")
        mime_type = inline.get("mimeType", "")
        if audio_b64 and (not mime_type or mime_type.startswith("audio/")):
            events.append(LiveEventData(
                LiveEvent.AUDIO,
                audio=base64_to_pcm16(audio_b64),
                mime_type=mime_type
            ))

    if content.get("interrupted"):
        events.append(LiveEventData(LiveEvent.INTERRUPTED))

    if content.get("turnComplete"):
        events.append(LiveEventData(LiveEvent.TURN_COMPLETE))

    return events


def _loads(message: Union[str, bytes]) -> dict:
    if isinstance(message, bytes):
        message = message.decode("utf-8")
    return json.loads(message)


class GeminiLiveTransport(LiveTransport):
    """
    Gemini Live API over its BidiGenerateContent WebSocket

    Outbound frames go through a queue drained by a send task so callers
    never wait on the network; inbound messages are parsed and handed to
    the observer in arrival order.
    """

    def __init__(self, api_key: str, **config):
        super().__init__(api_key, **config)

        self.url = config.get("url") or DEFAULT_LIVE_URL
        self.model = config.get("model") or DEFAULT_LIVE_MODEL
        self.setup_timeout = config.get("setup_timeout", 15.0)

        self._websocket = None
        self._observer: Optional[TransportObserver] = None
        self._outbound: Optional[asyncio.Queue] = None
        self._send_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closing = False

    async def connect(self, live_config: LiveConfig, observer: TransportObserver) -> None:
        """Open the socket, send the setup message and wait for setupComplete"""
        if self._websocket is not None or self._closing:
            raise TransportError("Transport already used")

        self._observer = observer
        ws_url = f"{self.url}?key={self.api_key}"

        try:
            self._websocket = await websockets.connect(ws_url, max_size=None)
            await self._websocket.send(json.dumps(build_setup_message(live_config, self.model)))

            reply = await asyncio.wait_for(self._websocket.recv(), timeout=self.setup_timeout)
            data = _loads(reply)
            if "setupComplete" not in data:
                raise TransportError(f"Unexpected setup reply: {str(data)[:200]}")

        except asyncio.CancelledError:
            await self._discard_websocket()
            raise
        except TransportError:
            await self._discard_websocket()
            raise
        except Exception as e:
            logger.error(f"[Gemini Live] Error opening session: {e}", exc_info=True)
            await self._discard_websocket()
            raise TransportError(str(e)) from e

        self._is_open = True
        self._outbound = asyncio.Queue()
        self._send_task = asyncio.create_task(self._send_loop())
        self._receive_task = asyncio.create_task(self._receive_loop())

        logger.info(f"[Gemini Live] Session open (voice={live_config.voice_name})")
        await observer.on_open()

    def send(self, frame: Frame) -> None:
        """Queue a frame; dropped silently once the channel is closed"""
        if not self._is_open or self._outbound is None:
            logger.debug("[Gemini Live] Channel not open, dropping frame")
            return
        self._outbound.put_nowait(encode_frame(frame))

    async def _send_loop(self) -> None:
        try:
            while True:
                payload = await self._outbound.get()
                await self._websocket.send(json.dumps(payload))
        except ConnectionClosed:
            logger.debug("[Gemini Live] Connection closed while sending")

    async def _receive_loop(self) -> None:
        """Receive and dispatch messages until the socket closes"""
        error: Optional[Exception] = None
        reason = ""

        try:
            async for message in self._websocket:
                try:
                    data = _loads(message)
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    logger.error(f"[Gemini Live] Undecodable message: {e}")
                    continue

                if "goAway" in data:
                    logger.warning(f"[Gemini Live] Server going away: {data['goAway']}")

                for event in parse_server_message(data):
                    await self._observer.on_message(event)

        except ConnectionClosedOK as e:
            reason = getattr(e, "reason", "") or "closed"
            logger.info(f"[Gemini Live] Connection closed: {reason}")
        except ConnectionClosed as e:
            logger.error(f"[Gemini Live] Connection lost: {e}")
            error = TransportError(str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Gemini Live] Error in receive loop: {e}", exc_info=True)
            error = TransportError(str(e))
        finally:
            self._is_open = False

        if self._closing:
            return

        # Remote end: release what close() would
        await self._stop_send_task()
        await self._discard_websocket()
        if error is not None:
            await self._observer.on_error(error)
        else:
            await self._observer.on_close(reason)

    async def _stop_send_task(self) -> None:
        task = self._send_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _discard_websocket(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is None:
            return
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"[Gemini Live] Ignoring close error: {e}")

    async def close(self) -> None:
        """Close the socket and stop the background tasks"""
        if self._closing:
            return
        self._closing = True
        self._is_open = False

        current = asyncio.current_task()
        for task in (self._send_task, self._receive_task):
            if task is None or task.done() or task is current:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"[Gemini Live] Ignoring task error on close: {e}")

        await self._discard_websocket()
        logger.info("[Gemini Live] Session closed")
