"""
Content generation for tutoring, exams and grading
"""
from .provider import ContentProvider, GenerationFailure, InlineMedia, HistoryMessage
from .speech import SpeechProvider, SpeechQuotaExceeded, SpeechUnavailable
from .tutor import TutorService

__all__ = [
    'ContentProvider',
    'GenerationFailure',
    'InlineMedia',
    'HistoryMessage',
    'SpeechProvider',
    'SpeechQuotaExceeded',
    'SpeechUnavailable',
    'TutorService',
]
