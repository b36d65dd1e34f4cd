"""
Live voice conversation module for spoken German practice
"""
from .exceptions import EmptyTranscript, PermissionDenied, SessionAlreadyActive, TransportError, VoiceError
from .session import LiveSession, SessionCallbacks, VoiceSessionManager
from .state_machine import LiveState, VoiceStateMachine
from .transcript import Speaker, TranscriptLog
from .transport import LiveTransport

__all__ = [
    'LiveSession',
    'SessionCallbacks',
    'VoiceSessionManager',
    'LiveState',
    'VoiceStateMachine',
    'Speaker',
    'TranscriptLog',
    'LiveTransport',
    'VoiceError',
    'PermissionDenied',
    'TransportError',
    'SessionAlreadyActive',
    'EmptyTranscript',
]
