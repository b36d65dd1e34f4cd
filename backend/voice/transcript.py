"""
Live transcript accumulation
"""
from enum import Enum
from typing import Dict, List


class Speaker(Enum):
    USER = "user"
    AGENT = "agent"


DEFAULT_LABELS = {
    Speaker.USER: "Kandidat",
    Speaker.AGENT: "Mari",
}


class TranscriptTurn:
    """One speaker turn; grows while the same speaker keeps talking"""

    def __init__(self, speaker: Speaker, text: str = ""):
        self.speaker = speaker
        self.text = text

    def to_dict(self) -> dict:
        return {"speaker": self.speaker.value, "text": self.text}

    def __eq__(self, other):
        if not isinstance(other, TranscriptTurn):
            return NotImplemented
        return self.speaker == other.speaker and self.text == other.text

    def __repr__(self):
        return f"TranscriptTurn({self.speaker.value!r}, {self.text!r})"


class TranscriptLog:
    """
    Append-only ordered list of speaker turns

    Fragments are applied in arrival order. A fragment from the speaker of
    the last turn is appended to that turn verbatim; a new turn starts only
    when the speaker changes.
    """

    def __init__(self):
        self._turns: List[TranscriptTurn] = []

    def append(self, speaker: Speaker, fragment: str) -> TranscriptTurn:
        """
        Add a transcription fragment

        Args:
            speaker: Who produced the fragment
            fragment: Raw fragment text, spacing preserved

        Returns:
            The turn the fragment was added to
        """
        if self._turns and self._turns[-1].speaker == speaker:
            turn = self._turns[-1]
            turn.text += fragment
        else:
            turn = TranscriptTurn(speaker, fragment)
            self._turns.append(turn)
        return turn

    @property
    def turns(self) -> List[TranscriptTurn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def is_blank(self) -> bool:
        """True when no turn holds anything but whitespace"""
        return all(not t.text.strip() for t in self._turns)

    def render(self, labels: Dict[Speaker, str] = None) -> str:
        """Render as `SPEAKER: text` lines in turn order"""
        labels = labels or DEFAULT_LABELS
        return "\n".join(f"{labels[t.speaker]}: {t.text}" for t in self._turns)

    def to_list(self) -> List[dict]:
        return [t.to_dict() for t in self._turns]
