import base64

import httpx

from voice.context import VisualContext, build_lesson_context, fetch_visual
from voice.prompts import (
    MISSING_VISUAL_WARNING,
    Persona,
    build_priming_text,
    build_system_prompt,
    truncate_context,
    voice_for,
)


def test_lesson_context_keeps_long_model_replies():
    analysis = "Textsorte: Geschäftsbrief. " * 5
    messages = [
        {"role": "user", "text": "Bitte analysiere das Dokument ausführlich für mich."},
        {"role": "model", "text": "Gern!"},
        {"role": "model", "text": analysis},
        {"role": "model", "text": analysis.upper()},
    ]

    context = build_lesson_context(messages)

    assert context == analysis + "\n\n---\n\n" + analysis.upper()


def test_lesson_context_empty():
    assert build_lesson_context([]) == ""


def test_visual_from_base64():
    visual = VisualContext.from_base64(base64.b64encode(b"img").decode(), "image/jpeg")
    assert visual.data == b"img"
    assert VisualContext.from_base64("not base64!!", "image/png") is None


async def test_fetch_visual():
    def handler(request):
        return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png; charset=binary"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        visual = await fetch_visual("https://storage.example/doc.png", client=client)

    assert visual.data == b"\x89PNG"
    assert visual.mime_type == "image/png"


async def test_fetch_visual_failure_falls_back():
    def handler(request):
        return httpx.Response(403)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await fetch_visual("https://storage.example/doc.png", client=client) is None


def test_teacher_prompt_has_persona_and_rules():
    prompt = build_system_prompt(Persona.TEACHER, "egal")

    assert "MARI" in prompt
    assert "UNTERBRICH DEN SCHÜLER NICHT" in prompt
    assert prompt.rstrip().endswith("AUSSCHLIESSLICH auf DEUTSCH statt.")


def test_role_prompts_quote_bounded_topic():
    prompt = build_system_prompt(Persona.COLLEAGUE, "T" * 600)

    assert "DU BIST KOLLEGE" in prompt
    assert "T" * 500 + '"' in prompt
    assert "T" * 501 not in prompt


def test_voices():
    assert voice_for(Persona.TEACHER) == "Kore"
    assert voice_for(Persona.EXAMINER) == "Kore"
    assert voice_for(Persona.COLLEAGUE) == "Fenrir"
    assert voice_for(Persona.PARTNER) == "Fenrir"


def test_priming_texts():
    teacher = build_priming_text(Persona.TEACHER, "ANALYSE", has_visual=True)
    assert "TEXT-ANALYSE (PRIORITÄT):\nANALYSE" in teacher

    examiner = build_priming_text(Persona.EXAMINER, "SZENE", has_visual=False)
    assert examiner.startswith("SZENARIO:")
    assert "SZENARIO:\nSZENE" in examiner
    assert examiner.endswith("Begrüße den Kandidaten und beginne die Simulation.")


def test_truncate_context():
    assert truncate_context(None) == ""
    assert len(truncate_context("a" * 10000)) == 8000


def test_missing_visual_warning_only_for_lessons():
    lesson = build_priming_text(Persona.TEACHER, "ANALYSE", has_visual=False)
    assert lesson.startswith(MISSING_VISUAL_WARNING)

    for persona in (Persona.EXAMINER, Persona.COLLEAGUE, Persona.PARTNER):
        assert MISSING_VISUAL_WARNING not in build_priming_text(persona, "SZENE", has_visual=False)
