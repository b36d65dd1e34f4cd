"""Custom exceptions for the live voice system."""


class VoiceError(Exception):
    """Base exception for live voice errors."""
    pass


class PermissionDenied(VoiceError):
    """Raised when the microphone is unavailable or access was declined."""
    pass


class TransportError(VoiceError):
    """Raised when the duplex transport fails to open or breaks mid-session."""
    pass


class SessionAlreadyActive(VoiceError):
    """Raised when a caller starts a session while another one is still running."""
    pass


class EmptyTranscript(VoiceError):
    """Raised when grading is requested for a transcript without any speech."""
    pass
