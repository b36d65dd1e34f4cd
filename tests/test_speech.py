import base64
import json

import httpx
import pytest

from generation.provider import GenerationFailure
from generation.speech import (
    NARRATOR_VOICE,
    SPEAKER_A,
    SPEAKER_B,
    GeminiSpeechProvider,
    SpeechQuotaExceeded,
    SpeechUnavailable,
    assign_voices,
    detect_speakers,
    plan_script,
)
from generation.tutor import TutorService

from conftest import FakeProvider, FakeSpeech

DIALOGUE = (
    "DIALOG_SCRIPT:\n"
    "Frau Weber: Guten Morgen, Herr Yilmaz.\n"
    "Herr Yilmaz: Guten Morgen! Ich habe die Lieferung geprüft.\n"
    "Frau Weber: Danke, dann machen wir weiter."
)


# Script planning

def test_dialogue_is_mapped_onto_two_voices():
    plan = plan_script(DIALOGUE)

    assert plan.is_multi_speaker
    assert plan.voice is None
    assert plan.speaker_voices == {SPEAKER_A: "Fenrir", SPEAKER_B: "Kore"}
    assert plan.text == (
        "Speaker_B: Guten Morgen, Herr Yilmaz.\n"
        "Speaker_A: Guten Morgen! Ich habe die Lieferung geprüft.\n"
        "Speaker_B: Danke, dann machen wir weiter.\n"
    )


def test_single_speaker_uses_narrator():
    plan = plan_script("PRESENTATION_SCRIPT: Sprecher: Willkommen zur Schulung.")

    assert not plan.is_multi_speaker
    assert plan.voice == NARRATOR_VOICE
    assert plan.text == "Sprecher: Willkommen zur Schulung."


def test_long_labels_are_not_speakers():
    lines = [
        "Hinweis zur Aufgabe für alle Teilnehmenden: bitte zuhören",
        "Anna: Hallo",
        "Anna: Noch etwas",
    ]
    assert detect_speakers(lines) == ["Anna"]


def test_voice_assignment():
    assert assign_voices(["Kundin Roth", "Herr Berg"]) == {"Kundin Roth": SPEAKER_B, "Herr Berg": SPEAKER_A}
    assert assign_voices(["Anna", "Ben", "Chris"]) == {"Anna": SPEAKER_A, "Ben": SPEAKER_B, "Chris": SPEAKER_A}
    # Both hints point to the same voice: alternate instead
    assert assign_voices(["Herr Meier", "Herr Schulz"]) == {"Herr Meier": SPEAKER_A, "Herr Schulz": SPEAKER_B}


# Gemini speech provider

def audio_reply(pcm):
    return {"candidates": [{"content": {"parts": [
        {"inlineData": {"mimeType": "audio/L16;codec=pcm;rate=24000", "data": base64.b64encode(pcm).decode()}}
    ]}}]}


async def test_gemini_speech_request_and_reply():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=audio_reply(b"\x01\x02\x03\x04"))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = GeminiSpeechProvider("secret", client=client, base_url="https://gemini.test")

    audio = await provider.synthesize("Speaker_A: Hallo", speaker_voices={SPEAKER_A: "Fenrir", SPEAKER_B: "Kore"})
    await client.aclose()

    assert audio == b"\x01\x02\x03\x04"
    assert seen["url"] == "https://gemini.test/v1beta/models/gemini-2.5-flash-preview-tts:generateContent"
    assert seen["key"] == "secret"
    config = seen["body"]["generationConfig"]
    assert config["responseModalities"] == ["AUDIO"]
    speakers = config["speechConfig"]["multiSpeakerVoiceConfig"]["speakerVoiceConfigs"]
    assert [(s["speaker"], s["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"]) for s in speakers] == [
        (SPEAKER_A, "Fenrir"),
        (SPEAKER_B, "Kore"),
    ]


async def test_gemini_speech_single_voice_config():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=audio_reply(b"\x00\x00"))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    await GeminiSpeechProvider("secret", client=client).synthesize("Hallo", voice="Puck")
    await client.aclose()

    assert bodies[0]["generationConfig"]["speechConfig"] == {
        "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": "Puck"}}
    }


@pytest.mark.parametrize("status, body", [
    (429, "Too Many Requests"),
    (400, '{"error": {"status": "RESOURCE_EXHAUSTED"}}'),
])
async def test_gemini_speech_quota_errors(status, body):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(status, text=body)))

    with pytest.raises(SpeechQuotaExceeded):
        await GeminiSpeechProvider("secret", client=client).synthesize("Hallo")
    await client.aclose()


async def test_gemini_speech_other_failures():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []})))
    provider = GeminiSpeechProvider("secret", client=client)

    with pytest.raises(GenerationFailure) as excinfo:
        await provider.synthesize("Hallo")
    assert not isinstance(excinfo.value, SpeechQuotaExceeded)
    await client.aclose()


# Tutor exam audio

async def test_exam_audio_reads_dialogue_with_two_voices():
    speech = FakeSpeech([b"pcm"])
    tutor = TutorService(FakeProvider(), speech=speech)

    assert await tutor.generate_exam_audio(DIALOGUE) == b"pcm"
    call, = speech.calls
    assert call["speaker_voices"] == {SPEAKER_A: "Fenrir", SPEAKER_B: "Kore"}
    assert call["text"].startswith("Speaker_B:")


async def test_exam_audio_falls_back_to_narrator():
    speech = FakeSpeech([GenerationFailure("multi-speaker refused"), b"narrator"])
    tutor = TutorService(FakeProvider(), speech=speech)
    script = DIALOGUE + "\n" + "Herr Yilmaz: " + "sehr lang " * 100

    assert await tutor.generate_exam_audio(script) == b"narrator"
    fallback = speech.calls[1]
    assert fallback["voice"] == NARRATOR_VOICE
    assert fallback["speaker_voices"] is None
    assert fallback["text"] == script[:500]


async def test_exam_audio_quota_is_not_retried():
    speech = FakeSpeech([SpeechQuotaExceeded("quota")])
    tutor = TutorService(FakeProvider(), speech=speech)

    with pytest.raises(SpeechQuotaExceeded):
        await tutor.generate_exam_audio(DIALOGUE)
    assert len(speech.calls) == 1


async def test_exam_audio_unavailable_after_fallback_fails():
    speech = FakeSpeech([GenerationFailure("a"), GenerationFailure("b")])
    tutor = TutorService(FakeProvider(), speech=speech)

    with pytest.raises(SpeechUnavailable):
        await tutor.generate_exam_audio(DIALOGUE)


async def test_exam_audio_rejects_short_text():
    speech = FakeSpeech()
    tutor = TutorService(FakeProvider(), speech=speech)

    with pytest.raises(ValueError):
        await tutor.generate_exam_audio("  Hi ")
    assert speech.calls == []


async def test_exam_audio_without_speech_provider():
    with pytest.raises(SpeechUnavailable):
        await TutorService(FakeProvider()).generate_exam_audio(DIALOGUE)
