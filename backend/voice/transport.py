"""
Duplex streaming transport abstraction
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)


class LiveEvent(Enum):
    """Inbound event types"""
    AUDIO = "audio"
    INTERRUPTED = "interrupted"
    INPUT_TRANSCRIPTION = "input_transcription"
    OUTPUT_TRANSCRIPTION = "output_transcription"
    TURN_COMPLETE = "turn_complete"


class LiveEventData:
    """Inbound event data"""
    def __init__(
        self,
        event_type: LiveEvent,
        text: str = "",
        audio: bytes = b"",
        mime_type: str = ""
    ):
        self.event_type = event_type
        self.text = text
        self.audio = audio
        self.mime_type = mime_type

    def to_dict(self):
        return {
            "event_type": self.event_type.value,
            "text": self.text,
            "audio_bytes": len(self.audio),
            "mime_type": self.mime_type
        }


class MediaFrame:
    """Outbound binary payload (microphone PCM or a document image)"""
    def __init__(self, data: bytes, mime_type: str):
        self.data = data
        self.mime_type = mime_type


class TextFrame:
    """Outbound text payload"""
    def __init__(self, text: str):
        self.text = text


Frame = Union[MediaFrame, TextFrame]


class LiveConfig:
    """Parameters the remote endpoint needs at open time"""
    def __init__(
        self,
        system_prompt: str,
        voice_name: str,
        transcription_enabled: bool = True,
        model: Optional[str] = None
    ):
        self.system_prompt = system_prompt
        self.voice_name = voice_name
        self.transcription_enabled = transcription_enabled
        self.model = model


class TransportObserver(ABC):
    """Lifecycle callbacks a transport delivers to its owner"""

    @abstractmethod
    async def on_open(self) -> None:
        pass

    @abstractmethod
    async def on_message(self, event: LiveEventData) -> None:
        pass

    @abstractmethod
    async def on_error(self, error: Exception) -> None:
        pass

    @abstractmethod
    async def on_close(self, reason: str = "") -> None:
        pass


class LiveTransport(ABC):
    """Abstract base class for duplex conversational endpoints"""

    def __init__(self, api_key: str, **config):
        self.api_key = api_key
        self.config = config
        self._is_open = False

    @abstractmethod
    async def connect(self, live_config: LiveConfig, observer: TransportObserver) -> None:
        """
        Open the channel; returns once the remote handshake completed

        Raises:
            TransportError: if the endpoint cannot be reached
        """
        pass

    @abstractmethod
    def send(self, frame: Frame) -> None:
        """
        Queue a frame for sending; does not wait for the network

        Args:
            frame: MediaFrame or TextFrame
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the channel; safe to call more than once"""
        pass

    @property
    def is_open(self) -> bool:
        """Check if the channel is open"""
        return self._is_open
