from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Optional, Literal, List, Union

"""
Pydantic models for request/response validation
"""


class HealthResponse(BaseModel):
    status: str
    version: str = "0.1.0"
    voiceSessions: int = 0


class InlineDocument(BaseModel):
    data: str  # base64, optionally with a data: prefix
    mimeType: str = "image/png"


# Chat models
class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    text: str


class ChatRequest(BaseModel):
    message: str
    document: Optional[InlineDocument] = None
    history: List[ChatMessage] = []


class ChatResponse(BaseModel):
    text: str


# Admin generation
class AnalyzeRequest(BaseModel):
    document: InlineDocument


class AnalyzeResponse(BaseModel):
    analysis: str


class ExamRequest(BaseModel):
    topic: str
    context: str = ""


# Exam listening audio
class ExamAudioRequest(BaseModel):
    text: str


class ExamAudioResponse(BaseModel):
    audio: str  # base64 PCM16 mono
    sampleRate: int
    mimeType: str


class VocabularyRequest(BaseModel):
    topic: str


class VocabCard(BaseModel):
    word: str
    article: str = ""
    definition: str = ""
    example: str = ""


class VocabularyResponse(BaseModel):
    cards: List[VocabCard]


class SpeakingEvaluationRequest(BaseModel):
    transcript: str


# Speaking evaluation result
class CriterionScore(BaseModel):
    grade: Literal["A", "B", "C", "D"]
    points: float
    maxPoints: float
    reason: str = ""


class PartScores(BaseModel):
    part1A: CriterionScore
    part1B: CriterionScore
    part1C: CriterionScore
    part2: CriterionScore
    part3: CriterionScore


class GlobalScores(BaseModel):
    pronunciation: CriterionScore
    grammar: CriterionScore
    vocabulary: CriterionScore


class SpeakingResult(BaseModel):
    partScores: PartScores
    globalScores: GlobalScores
    totalScore: float
    passed: bool
    generalFeedback: str = ""
    reconstructedTranscript: str = ""


# Voice WebSocket client messages
class StartVoiceMessage(BaseModel):
    type: Literal["start"]
    role: Literal["teacher", "examiner", "colleague", "partner"] = "teacher"
    context: str = ""
    messages: List[ChatMessage] = []  # earlier lesson chat, analysis replies are reused as context
    visual: Optional[InlineDocument] = None
    imageUrl: Optional[str] = None
    microphone: bool = True  # False when the browser could not get a microphone


class StopVoiceMessage(BaseModel):
    type: Literal["stop"]


class EvaluateVoiceMessage(BaseModel):
    type: Literal["evaluate"]


class StatusVoiceMessage(BaseModel):
    type: Literal["status"]


VoiceClientMessage = Union[StartVoiceMessage, StopVoiceMessage, EvaluateVoiceMessage, StatusVoiceMessage]


class VoiceClientEnvelope(BaseModel):
    message: VoiceClientMessage = Field(discriminator="type")
