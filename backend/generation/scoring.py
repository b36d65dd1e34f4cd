"""
DTB B2 speaking exam scoring
"""
from typing import Dict, Optional

GRADES = ("A", "B", "C", "D")

# Points per grade from the official DTB B2 assessment table
POINTS_TABLE: Dict[str, Dict[str, float]] = {
    "1A": {"A": 5, "B": 3.5, "C": 2, "D": 0},
    "1B": {"A": 5, "B": 3.5, "C": 2, "D": 0},
    "1C": {"A": 2, "B": 1.5, "C": 1, "D": 0},
    "2": {"A": 8, "B": 6, "C": 3, "D": 0},
    "3": {"A": 10, "B": 7.5, "C": 4, "D": 0},
    "global": {"A": 10, "B": 7.5, "C": 4, "D": 0},
}

# (result key, table section)
PART_SECTIONS = (
    ("part1A", "1A"),
    ("part1B", "1B"),
    ("part1C", "1C"),
    ("part2", "2"),
    ("part3", "3"),
)
GLOBAL_CRITERIA = ("pronunciation", "grammar", "vocabulary")

PASS_MARK = 36

FALLBACK_REASON = "Fehler"
FALLBACK_FEEDBACK = "Technischer Fehler bei der Bewertung."
TOO_SHORT_FEEDBACK = "Das Gespräch war zu kurz für eine Bewertung."
NO_DATA = "Keine Daten."


def _as_text(value, default: str = "") -> str:
    if value is None or value == "":
        return default
    return value if isinstance(value, str) else str(value)


def calculate_points(section: str, grade: str) -> float:
    """Points for a grade in a section; unknown grades score 0"""
    return POINTS_TABLE[section].get(grade, 0)


def max_points(section: str) -> float:
    return POINTS_TABLE[section]["A"]


def _criterion(section: str, grade: str, reason: str) -> dict:
    return {
        "grade": grade,
        "points": calculate_points(section, grade),
        "maxPoints": max_points(section),
        "reason": reason
    }


def build_speaking_result(raw: dict, transcript: str = "") -> dict:
    """
    Turn the grader's letter grades into a scored result

    Args:
        raw: Parsed model answer with `grades`, `generalFeedback` and
            `reconstructedTranscript`
        transcript: Original transcript, used if no reconstruction came back

    Returns:
        Result with partScores, globalScores, totalScore and passed

    Raises:
        ValueError: if a criterion is missing from the answer
    """
    grades = raw.get("grades") if isinstance(raw, dict) else None
    if not isinstance(grades, dict):
        raise ValueError("Grader answer has no grades")

    def entry(key: str, section: str) -> dict:
        item = grades.get(key)
        if not isinstance(item, dict):
            raise ValueError(f"Grader answer is missing {key}")
        grade = str(item.get("grade", "D")).strip().upper()
        if grade not in GRADES:
            grade = "D"
        return _criterion(section, grade, _as_text(item.get("reason")))

    part_scores = {key: entry(key, section) for key, section in PART_SECTIONS}
    global_scores = {key: entry(key, "global") for key in GLOBAL_CRITERIA}

    total = sum(c["points"] for c in part_scores.values()) + \
        sum(c["points"] for c in global_scores.values())

    return {
        "partScores": part_scores,
        "globalScores": global_scores,
        "totalScore": total,
        "passed": total >= PASS_MARK,
        "generalFeedback": _as_text(raw.get("generalFeedback")),
        "reconstructedTranscript": _as_text(raw.get("reconstructedTranscript"), transcript)
    }


def fallback_result(transcript: Optional[str], feedback: str = FALLBACK_FEEDBACK) -> dict:
    """All-D result returned whenever grading cannot be completed"""
    return {
        "partScores": {
            key: _criterion(section, "D", FALLBACK_REASON) for key, section in PART_SECTIONS
        },
        "globalScores": {
            key: _criterion("global", "D", FALLBACK_REASON) for key in GLOBAL_CRITERIA
        },
        "totalScore": 0,
        "passed": False,
        "generalFeedback": feedback,
        "reconstructedTranscript": transcript or NO_DATA
    }
