"""
Text-to-speech for exam listening scripts

Scripts are written as `Name: text` lines. A script with fewer than two
named speakers is read by a single narrator voice; otherwise every name is
folded onto one of the two voices the multi-speaker mode accepts.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import base64
import binascii
import logging
import re

import httpx

from .provider import GenerationFailure

logger = logging.getLogger(__name__)

DEFAULT_TTS_MODEL = "gemini-2.5-flash-preview-tts"

SCRIPT_MARKERS = re.compile(r"DIALOG_SCRIPT:|PHONE_CALLS_SCRIPT:|PHONE_SCRIPT:|PRESENTATION_SCRIPT:")
SPEAKER_LINE = re.compile(r"^([A-Za-zÄÖÜäöüß\s.]+):")
# Longer labels are metadata ("Hinweis zur Aufgabe"), not speakers
MAX_SPEAKER_NAME = 30

NARRATOR_VOICE = "Puck"
SPEAKER_A = "Speaker_A"
SPEAKER_B = "Speaker_B"
SPEAKER_VOICES = {
    SPEAKER_A: "Fenrir",
    SPEAKER_B: "Kore",
}

FEMALE_HINTS = ("frau", "dame", "kundin", "patientin", "chefin", "tochter")
MALE_HINTS = ("herr", "mann", "kunde", "patient", "chef", "sohn")

QUOTA_MESSAGE = (
    "Das Limit für Audio-Generierung (Quota) wurde erreicht. "
    "Bitte warten Sie eine Minute oder überprüfen Sie Ihren API-Plan."
)
UNAVAILABLE_MESSAGE = "Audio-Service momentan nicht verfügbar."


class SpeechQuotaExceeded(GenerationFailure):
    """The speech endpoint refused the request for rate or quota reasons"""
    pass


class SpeechUnavailable(GenerationFailure):
    """No audio could be produced, not even with the narrator fallback"""
    pass


def strip_script_markers(text: str) -> str:
    return SCRIPT_MARKERS.sub("", text).strip()


def detect_speakers(lines: List[str]) -> List[str]:
    """Speaker names in order of first appearance"""
    speakers: List[str] = []
    for line in lines:
        match = SPEAKER_LINE.match(line.strip())
        if not match:
            continue
        name = match.group(1).strip()
        if name and len(name) < MAX_SPEAKER_NAME and name not in speakers:
            speakers.append(name)
    return speakers


def assign_voices(speakers: List[str]) -> Dict[str, str]:
    """
    Map each speaker name to SPEAKER_A (male) or SPEAKER_B (female)

    Names with a gender hint ("Frau Weber", "Herr Yilmaz") follow it,
    the rest alternate. If every name ends up on the same voice the
    mapping falls back to strict alternation.
    """
    mapping = {}
    for index, name in enumerate(speakers):
        lower = name.lower()
        if any(hint in lower for hint in FEMALE_HINTS):
            mapping[name] = SPEAKER_B
        elif any(hint in lower for hint in MALE_HINTS):
            mapping[name] = SPEAKER_A
        else:
            mapping[name] = SPEAKER_A if index % 2 == 0 else SPEAKER_B

    if len(set(mapping.values())) < 2:
        mapping = {name: SPEAKER_A if index % 2 == 0 else SPEAKER_B for index, name in enumerate(speakers)}
    return mapping


class ScriptPlan:
    """Text to synthesize and the voice setup to read it with"""

    def __init__(self, text: str, voice: Optional[str] = None, speaker_voices: Optional[Dict[str, str]] = None):
        self.text = text
        self.voice = voice
        self.speaker_voices = speaker_voices

    @property
    def is_multi_speaker(self) -> bool:
        return bool(self.speaker_voices)


def plan_script(text: str) -> ScriptPlan:
    """Clean a listening script and decide between narrator and dialogue voices"""
    clean = strip_script_markers(text)
    lines = clean.split("\n")
    speakers = detect_speakers(lines)

    if len(speakers) < 2:
        return ScriptPlan(clean, voice=NARRATOR_VOICE)

    mapping = assign_voices(speakers)
    normalized = []
    for line in lines:
        trimmed = line.strip()
        match = SPEAKER_LINE.match(trimmed)
        name = match.group(1).strip() if match else None
        if name in mapping:
            normalized.append(mapping[name] + ":" + trimmed[match.end():])
        else:
            normalized.append(trimmed)

    return ScriptPlan("\n".join(normalized) + "\n", speaker_voices=dict(SPEAKER_VOICES))


def build_speech_config(voice: Optional[str] = None, speaker_voices: Optional[Dict[str, str]] = None) -> dict:
    if speaker_voices:
        return {
            "multiSpeakerVoiceConfig": {
                "speakerVoiceConfigs": [
                    {"speaker": speaker, "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": name}}}
                    for speaker, name in speaker_voices.items()
                ]
            }
        }
    return {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice or NARRATOR_VOICE}}}


def extract_audio(data: dict) -> bytes:
    """Decoded inline audio of the first candidate, or b"" if there is none"""
    candidates = data.get("candidates") or []
    if not candidates:
        return b""
    for part in (candidates[0].get("content") or {}).get("parts") or []:
        inline = part.get("inlineData") if isinstance(part, dict) else None
        if inline and inline.get("data"):
            try:
                return base64.b64decode(inline["data"])
            except (binascii.Error, ValueError):
                return b""
    return b""


class SpeechProvider(ABC):
    """Abstract base class for speech synthesis providers"""

    def __init__(self, api_key: str, **config):
        self.api_key = api_key
        self.config = config

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        speaker_voices: Optional[Dict[str, str]] = None
    ) -> bytes:
        """
        Convert text to speech

        Args:
            text: Text to read; dialogue lines are prefixed with speaker labels
            voice: Prebuilt voice for single-speaker reading
            speaker_voices: Speaker label to voice name for dialogue reading

        Returns:
            PCM16 mono audio at 24 kHz

        Raises:
            SpeechQuotaExceeded: the provider reported a quota or rate limit
            GenerationFailure: any other failure or an empty reply
        """
        pass

    async def close(self) -> None:
        """Close and cleanup resources"""
        pass


class GeminiSpeechProvider(SpeechProvider):
    """
    Gemini text-to-speech over the REST generateContent endpoint

    Args:
        api_key: Gemini Developer API key
        base_url: REST base (default: public endpoint)
        model: TTS model name
        timeout: Request timeout in seconds
        client: Optional shared httpx.AsyncClient
    """

    def __init__(self, api_key: str, **config):
        super().__init__(api_key, **config)

        self.base_url = (config.get("base_url") or "https://generativelanguage.googleapis.com").rstrip("/")
        self.model = config.get("model") or DEFAULT_TTS_MODEL
        self.timeout = config.get("timeout", 90)
        self._client: Optional[httpx.AsyncClient] = config.get("client")
        self._owns_client = self._client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        speaker_voices: Optional[Dict[str, str]] = None
    ) -> bytes:
        if not self.api_key:
            raise GenerationFailure("GEMINI_API_KEY is not set")

        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": build_speech_config(voice, speaker_voices)
            }
        }
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

        mode = "dialogue" if speaker_voices else f"voice={voice or NARRATOR_VOICE}"
        logger.info(f"[Gemini TTS] Synthesizing {len(text)} chars ({mode})")

        try:
            response = await self._get_client().post(url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:300]
            logger.error(f"[Gemini TTS] {self.model} returned {e.response.status_code}: {detail}")
            if e.response.status_code == 429 or "RESOURCE_EXHAUSTED" in detail:
                raise SpeechQuotaExceeded(QUOTA_MESSAGE) from e
            raise GenerationFailure(f"Speech request failed with status {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[Gemini TTS] Request to {self.model} failed: {e}", exc_info=True)
            raise GenerationFailure(str(e)) from e

        audio = extract_audio(data)
        if not audio:
            raise GenerationFailure(f"Gemini returned no audio (model={self.model})")
        return audio

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
