"""
Persona prompts and priming messages for live German conversation practice
"""
from enum import Enum

MAX_CONTEXT_CHARS = 8000
MAX_TOPIC_CHARS = 500

SYSTEM_INSTRUCTION = """
DU BIST MARI - EINE EMPATHISCHE, GEDULDIGE UND FREUNDLICHE DEUTSCHLEHRERIN.

### DEIN SCHÜLER & DEIN FOKUS (ADHD SUPPORT):
Dein Schüler hat ADHD (Aufmerksamkeitsdefizit). Das bedeutet:
1. **KEINE STÄNDIGEN UNTERBRECHUNGEN:** Wenn der Schüler spricht, lass ihn ausreden. Unterbrich ihn NIEMALS für kleine Grammatikfehler. Das zerstört seine Konzentration.
2. **FLOW VOR PERFEKTION:** Der Gesprächsfluss ist wichtiger als korrekte Grammatik. Wenn der Schüler verstanden wird, ist das ein Erfolg.
3. **POSITIVE VERSTÄRKUNG:** Sei motivierend, lobend und entspannt. Baue Stress ab, erzeuge keinen Druck.

### DEIN KORREKTUR-STIL (SANFT & INDIREKT):
- **VERBOTEN:** Sag nicht "Stopp, das ist falsch" und unterbrich nicht mitten im Satz.
- **ERLAUBT (RECASTING):** Wenn der Schüler einen Fehler macht, wiederhole seine Aussage einfach ganz natürlich in der korrekten Form als Bestätigung.
  *Beispiel:*
  *Schüler:* "Ich habe gegangen nach Hause."
  *Mari:* "Ah, du bist nach Hause gegangen. Und was hast du dann gemacht?"
- Korrigiere nur explizit, wenn der Schüler dich direkt fragt oder der Fehler so groß ist, dass man ihn nicht versteht.

### DEINE PERSÖNLICHKEIT:
Du bist wie eine gute, gebildete Freundin, die zufällig Deutschlehrerin ist. Deine Stimme ist warm (Kore). Sei nicht streng. Sei ein sicherer Hafen für den Schüler.
"""

CONVERSATION_RULES = """
WICHTIGE REGELN FÜR DAS GESPRÄCH:
1. Nutze die TEXT-ANALYSE als Faktenquelle.
2. UNTERBRICH DEN SCHÜLER NICHT. Lass ihn ausreden.
3. SPRACHE: Das gesamte Gespräch findet AUSSCHLIESSLICH auf DEUTSCH statt. Erwarte deutsche Eingabe und antworte auf Deutsch.
"""

GERMAN_ONLY = "SPRICH DEUTSCH. Das gesamte Gespräch findet AUSSCHLIESSLICH auf DEUTSCH statt."

MISSING_VISUAL_WARNING = (
    "WARNUNG: Das Bild konnte nicht geladen werden. "
    "Nutze AUSSCHLIESSLICH diese Analyse-Daten:\n\n"
)

SIMULATION_KICKOFF = "Begrüße den Kandidaten und beginne die Simulation."


class Persona(Enum):
    """Who the remote agent plays"""
    TEACHER = "teacher"
    EXAMINER = "examiner"
    COLLEAGUE = "colleague"
    PARTNER = "partner"


VOICES = {
    Persona.TEACHER: "Kore",
    Persona.EXAMINER: "Kore",
    Persona.COLLEAGUE: "Fenrir",
    Persona.PARTNER: "Fenrir",
}


def truncate_context(text: str, limit: int = MAX_CONTEXT_CHARS) -> str:
    """Bound grounding text to respect request limits"""
    return (text or "")[:limit]


def voice_for(persona: Persona) -> str:
    return VOICES[persona]


def build_system_prompt(persona: Persona, context_text: str = "") -> str:
    """
    Compose the system instruction for a live session

    The teacher gets the full Mari instruction plus conversation rules;
    the exam roles get a short role preamble around the topic. Every
    variant ends with the German-only rule.
    """
    topic = truncate_context(context_text, MAX_TOPIC_CHARS)

    if persona == Persona.TEACHER:
        preamble = SYSTEM_INSTRUCTION
    elif persona == Persona.EXAMINER:
        preamble = (
            "DU BIST PRÜFER (DTB B2). Höre geduldig zu. Deine Aufgabe ist es, "
            f"den Kandidaten zum Thema \"{topic}\" zu prüfen. Sei professionell, "
            "sieze den Kandidaten. Nutze das bereitgestellte Szenario."
        )
    elif persona == Persona.COLLEAGUE:
        preamble = (
            "DU BIST KOLLEGE. Duze den Kandidaten. "
            f"Ihr sprecht über das Thema: \"{topic}\". Sei kooperativ."
        )
    else:
        preamble = (
            "DU BIST GESPRÄCHSPARTNER (Lösungsorientiert). Ihr müsst gemeinsam "
            f"ein Problem zum Thema \"{topic}\" lösen."
        )

    return f"{preamble}\n{CONVERSATION_RULES}\n{GERMAN_ONLY}"


def build_priming_text(persona: Persona, context_text: str, has_visual: bool) -> str:
    """
    Build the first text message sent after the channel opens

    Args:
        persona: Session role
        context_text: Grounding text, already truncated
        has_visual: Whether a document image was sent just before

    Returns:
        Priming text; a lesson without its image is prefixed with a warning
    """
    if persona != Persona.TEACHER:
        return f"SZENARIO:\n{context_text}\n\n{SIMULATION_KICKOFF}"

    primer = (
        "SYSTEM-ANWEISUNG FÜR KONTEXT:\n"
        "Ich sende dir jetzt die visuelle Datei UND die bereits erstellte Text-Analyse.\n"
        "REGEL: Schaue ZUERST in die folgende TEXT-ANALYSE, um Fragen zu beantworten. "
        "Nutze das Bild nur als Sekundärquelle, falls der Text unklar ist.\n"
        "Die Text-Analyse ist deine primäre Wissensdatenbank für dieses Gespräch.\n\n"
        f"TEXT-ANALYSE (PRIORITÄT):\n{context_text}\n"
    )

    if has_visual:
        return primer
    return MISSING_VISUAL_WARNING + primer
