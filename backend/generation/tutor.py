"""
Tutoring operations built on a content provider

Every public method converts failures into a sentinel value (None, an
empty list, the apology text or the fallback evaluation) so the API layer
never sees a raw provider exception. Exam audio is the exception: it has
no usable sentinel and raises SpeechQuotaExceeded or SpeechUnavailable
with a message meant for the learner.
"""
import asyncio
import logging
from typing import List, Optional

from voice.prompts import SYSTEM_INSTRUCTION

from .provider import ContentProvider, GenerationFailure, HistoryMessage, InlineMedia, parse_json_response
from .scoring import TOO_SHORT_FEEDBACK, build_speaking_result, fallback_result
from .speech import (
    NARRATOR_VOICE, UNAVAILABLE_MESSAGE, SpeechProvider, SpeechQuotaExceeded, SpeechUnavailable, plan_script
)

logger = logging.getLogger(__name__)

CHAT_APOLOGY = "Es gab ein Problem. Können wir es nochmal versuchen?"

MAX_EXAM_CONTEXT_CHARS = 45000
MAX_TRANSCRIPT_CHARS = 15000
MIN_TRANSCRIPT_CHARS = 5
MIN_AUDIO_TEXT_CHARS = 5
MAX_FALLBACK_AUDIO_CHARS = 500

AUDIO_TEXT_TOO_SHORT = "Text ist zu kurz für Audio."

ANALYSIS_PROMPT = """
Führe eine UMFASSENDE MASTER-ANALYSE dieses Dokuments durch, um eine perfekte Lernbasis für das Niveau B2 (DTB) zu schaffen.

DEINE AUFGABE:
1. Extrahiere den GESAMTEN Text Wort für Wort.
2. Bestimme die Textsorte und das berufliche Thema.
3. Identifiziere B2-Grammatikstrukturen.

Antworte auf Deutsch.
"""

CHAT_IMAGE_PREFIX = "(Beziehe dich bei der Antwort auch auf das hier erneut beigefügte Bild/Dokument). "

EXAM_PROMPT_TEMPLATE = """
CONTEXT: DU BIST EIN OFFIZIELLER, RATIONALER PRÜFUNGSENTWICKLER FÜR DEN "DEUTSCH-TEST FÜR DEN BERUF B2" (telc).
Dies ist eine KOMMERZIELLE ANWENDUNG. Fehler sind inakzeptabel.

GEWÜNSCHTES THEMA: "{topic}"

AUFGABE:
Erstelle NUR den Teil "Mündliche Prüfung" (Sprechen) für eine DTB B2 Prüfung.
Ignoriere Lesen, Hören und Schreiben komplett.

DOCUMENT ANALYSIS RESULTS (Für Kontext):
{context}

FALLS KEINE DATEN VORHANDEN SIND:
- Erfinde realistische Szenarien passend zum Thema "{topic}".

STRUKTUR (MUSS EXAKT DIESEM JSON FORMAT ENTSPRECHEN):
{{
  "title": "DTB B2 Sprechen - {topic}",
  "sections": [
    {{
      "title": "Mündliche Prüfung (16 Min)",
      "type": "sprechen",
      "durationMinutes": 16,
      "parts": [
         {{
           "title": "Teil 1: Über ein Thema sprechen",
           "content": "Wählen Sie eines der folgenden Themen:\\n\\nTHEMA A: [Erstelle ein komplexes Berufsthema passend zu {topic} mit 3 Unterpunkten]\\n\\nTHEMA B: [Alternativthema mit 3 Unterpunkten]\\n\\nAufgabe: Präsentieren Sie Ihre Meinung, nennen Sie Vor- und Nachteile und berichten Sie von Erfahrungen."
         }},
         {{
           "title": "Teil 2: Mit Kollegen sprechen",
           "content": "SITUATION: [Erstelle eine realistische Konflikt- oder Planungssituation im Betrieb passend zu {topic}].\\n\\nAUFGABE: Diskutieren Sie mit Ihrem Kollegen/Ihrer Kollegin. Finden Sie einen Kompromiss. Schlagen Sie Lösungen vor."
         }},
         {{
           "title": "Teil 3: Lösungswege diskutieren",
           "content": "PROBLEM: [Beschreibe ein spezifisches Arbeitsproblem, z.B. Lieferverzögerung, Personalmangel].\\n\\nAUFGABE: Sie müssen das Problem gemeinsam in 5 Minuten lösen. Analysieren Sie die Situation und entscheiden Sie sich für den besten Weg."
         }}
      ]
    }}
  ]
}}

Antworte NUR mit validem JSON. Keine Markdown-Blöcke.
"""

VOCABULARY_PROMPT_TEMPLATE = (
    'Erstelle eine Vokabelliste für DTB B2 zum Thema "{topic}". '
    'Jeder Eintrag hat die Felder "word", "article", "definition" und "example". '
    "JSON Output only."
)

EVALUATION_PROMPT_TEMPLATE = '''
DU BIST EIN LIZENZIERTER TELC PRÜFER FÜR "DEUTSCH-TEST FÜR DEN BERUF B2".

DEINE AUFGABE:
Bewerte das folgende Prüfungstranskript streng nach den offiziellen Bewertungskriterien (Modelltest 1).

BEWERTUNGSKRITERIEN (ZUSAMMENFASSUNG):

KRITERIUM I: AUFGABENBEWÄLTIGUNG (Inhaltliche Angemessenheit)
- A (B2 gut erfüllt): Voll adäquat, flüssig, adressatengerecht.
- B (B2 erfüllt): Überwiegend adäquat, weitgehend flüssig.
- C (B1 erfüllt): Nur teilweise adäquat, Stockungen.
- D (unter B1): Nicht adäquat, häufiges Stocken.

KRITERIUM II: AUSSPRACHE/INTONATION (Global)
- A: Klar, natürlich, kaum akzentgefärbt.
- B: Klar, natürlich, wenig akzentgefärbt.
- C: Weitestgehend verständlich, deutlich akzentgefärbt.
- D: Stark akzentgefärbt, Rückfragen nötig.

KRITERIUM III: FORMALE RICHTIGKEIT (Global - Grammatik)
- A: Komplexe Strukturen weitgehend korrekt.
- B: Einfache Strukturen korrekt, komplexe mit Fehlern.
- C: Häufige Formen in vertrauten Situationen korrekt.
- D: Systematische elementare Fehler.

KRITERIUM IV: SPEKTRUM SPRACHL. MITTEL (Global - Wortschatz)
- A: Breites Spektrum, Variation, kaum Umschreibungen.
- B: Hinreichend breites Spektrum, Variation möglich.
- C: Genügend Mittel, um zurechtzukommen (B1).
- D: Kurze gebräuchliche Ausdrücke (A2).

HIER IST DAS TRANSKRIPT:
"""{transcript}"""

AUFGABE:
1. Repariere das Transkript (STT Fehler korrigieren).
2. Gib für jeden Teil eine Note (A, B, C, D) und eine kurze Begründung auf Deutsch.

ANTWORTE NUR MIT DIESEM JSON FORMAT:
{{
  "reconstructedTranscript": "Reparierter Text...",
  "grades": {{
     "part1A": {{ "grade": "A|B|C|D", "reason": "..." }},
     "part1B": {{ "grade": "A|B|C|D", "reason": "..." }},
     "part1C": {{ "grade": "A|B|C|D", "reason": "..." }},
     "part2":  {{ "grade": "A|B|C|D", "reason": "..." }},
     "part3":  {{ "grade": "A|B|C|D", "reason": "..." }},
     "pronunciation": {{ "grade": "A|B|C|D", "reason": "..." }},
     "grammar":       {{ "grade": "A|B|C|D", "reason": "..." }},
     "vocabulary":    {{ "grade": "A|B|C|D", "reason": "..." }}
  }},
  "generalFeedback": "Zusammenfassendes Feedback an den Kandidaten (Motivierend aber ehrlich)."
}}
'''


class TutorService:
    """
    Document analysis, chat, exam generation and grading

    Args:
        provider: Content provider used for every call
        chat_model: Model for analysis, chat, vocabulary and grading
        exam_model: Model for exam generation
        timeout: Seconds before a call counts as failed
        speech: Speech provider for exam listening scripts
    """

    def __init__(
        self,
        provider: ContentProvider,
        chat_model: Optional[str] = None,
        exam_model: Optional[str] = None,
        timeout: float = 90.0,
        speech: Optional[SpeechProvider] = None
    ):
        self.provider = provider
        self.chat_model = chat_model
        self.exam_model = exam_model
        self.timeout = timeout
        self.speech = speech

    async def _generate(self, prompt: str, **kwargs) -> str:
        try:
            return await asyncio.wait_for(
                self.provider.generate(prompt, **kwargs),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise GenerationFailure(f"Generation timed out after {self.timeout}s") from e

    async def analyze_document(self, document: Optional[InlineMedia]) -> Optional[str]:
        """
        Master analysis of a lesson document

        Returns:
            Analysis text, or None if there is no document or the call failed
        """
        if document is None or not document.data:
            return None

        try:
            text = await self._generate(
                ANALYSIS_PROMPT,
                system=SYSTEM_INSTRUCTION,
                media=document,
                temperature=0.1,
                model=self.chat_model
            )
            logger.info(f"Document analysis complete ({len(text)} chars)")
            return text
        except GenerationFailure as e:
            logger.error(f"Initial analysis error: {e}", exc_info=True)
            return None

    async def send_chat_message(
        self,
        message: str,
        document: Optional[InlineMedia] = None,
        history: Optional[List[HistoryMessage]] = None
    ) -> str:
        """Tutor reply; the document image is re-attached when available"""
        prompt = f"{CHAT_IMAGE_PREFIX}{message}" if document is not None else message

        try:
            return await self._generate(
                prompt,
                system=SYSTEM_INSTRUCTION,
                media=document,
                history=history,
                temperature=0.4,
                model=self.chat_model
            )
        except GenerationFailure as e:
            logger.error(f"Chat error: {e}", exc_info=True)
            return CHAT_APOLOGY

    async def generate_exam(self, context_data: str, topic_titles: str) -> Optional[dict]:
        """
        Generate the speaking part of a DTB B2 exam

        Returns:
            Exam dict with title and sections, or None on failure
        """
        prompt = EXAM_PROMPT_TEMPLATE.format(
            topic=topic_titles,
            context=(context_data or "")[:MAX_EXAM_CONTEXT_CHARS]
        )

        try:
            text = await self._generate(prompt, json_mode=True, model=self.exam_model)
        except GenerationFailure as e:
            logger.error(f"Exam generation error: {e}", exc_info=True)
            return None

        exam = parse_json_response(text)
        if not isinstance(exam, dict) or not exam.get("sections"):
            logger.error("Exam generation returned no sections")
            return None
        return exam

    async def generate_vocabulary(self, topic: str) -> list:
        """Vocabulary cards for a topic; empty list on failure"""
        try:
            text = await self._generate(
                VOCABULARY_PROMPT_TEMPLATE.format(topic=topic),
                json_mode=True,
                model=self.chat_model
            )
        except GenerationFailure as e:
            logger.error(f"Vocabulary generation error: {e}")
            return []

        cards = parse_json_response(text, default=[])
        if isinstance(cards, dict):
            # Some replies wrap the list in an object
            cards = next((v for v in cards.values() if isinstance(v, list)), [])
        if not isinstance(cards, list):
            return []
        return [c for c in cards if isinstance(c, dict) and c.get("word")]

    async def evaluate_speaking(self, transcript: str) -> dict:
        """
        Grade a speaking exam transcript by the DTB B2 criteria

        Always returns a result: a "too short" result for near-empty
        transcripts and the fallback result when grading fails.
        """
        if not transcript or len(transcript.strip()) < MIN_TRANSCRIPT_CHARS:
            return fallback_result(transcript, feedback=TOO_SHORT_FEEDBACK)

        prompt = EVALUATION_PROMPT_TEMPLATE.format(transcript=transcript[:MAX_TRANSCRIPT_CHARS])

        try:
            text = await self._generate(prompt, json_mode=True, model=self.chat_model)
            raw = parse_json_response(text)
            result = build_speaking_result(raw, transcript)
        except (GenerationFailure, ValueError) as e:
            logger.error(f"Evaluation error: {e}", exc_info=True)
            return fallback_result(transcript)

        logger.info(f"Speaking evaluation: {result['totalScore']} points, passed={result['passed']}")
        return result

    async def _synthesize(self, text: str, **kwargs) -> bytes:
        try:
            return await asyncio.wait_for(self.speech.synthesize(text, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise GenerationFailure(f"Speech synthesis timed out after {self.timeout}s") from e

    async def generate_exam_audio(self, text: str) -> bytes:
        """
        Read an exam listening script aloud

        Dialogue scripts get two voices; if that fails for any reason other
        than quota, the first part of the raw text is read by the narrator.

        Returns:
            PCM16 mono audio at 24 kHz

        Raises:
            ValueError: the text is too short to read
            SpeechQuotaExceeded: the speech quota is used up
            SpeechUnavailable: no audio could be produced
        """
        if not text or len(text.strip()) < MIN_AUDIO_TEXT_CHARS:
            raise ValueError(AUDIO_TEXT_TOO_SHORT)
        if self.speech is None:
            raise SpeechUnavailable(UNAVAILABLE_MESSAGE)

        plan = plan_script(text)
        logger.info(f"Exam audio: {'dialogue' if plan.is_multi_speaker else 'narrator'} reading of {len(plan.text)} chars")
        try:
            return await self._synthesize(plan.text, voice=plan.voice, speaker_voices=plan.speaker_voices)
        except SpeechQuotaExceeded:
            raise
        except GenerationFailure as e:
            logger.error(f"Audio generation error: {e}", exc_info=True)

        try:
            return await self._synthesize(text[:MAX_FALLBACK_AUDIO_CHARS], voice=NARRATOR_VOICE)
        except SpeechQuotaExceeded:
            raise
        except GenerationFailure as e:
            logger.error(f"Narrator fallback failed: {e}")
            raise SpeechUnavailable(UNAVAILABLE_MESSAGE) from e
