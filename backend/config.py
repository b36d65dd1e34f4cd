"""Configuration management for API keys and settings."""

import os
from typing import List, Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration from environment variables."""

    def __init__(self):
        # Gemini settings
        self.GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
        self.GEMINI_BASE_URL: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
        self.GEMINI_LIVE_URL: Optional[str] = os.getenv("GEMINI_LIVE_URL")
        self.GEMINI_LIVE_MODEL: str = os.getenv(
            "GEMINI_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-12-2025")
        self.GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-exp")
        self.GEMINI_EXAM_MODEL: str = os.getenv("GEMINI_EXAM_MODEL", "gemini-3-pro-preview")
        self.GEMINI_TTS_MODEL: str = os.getenv("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts")

        # Content generation backend: "gemini" or "claude"
        self.CONTENT_PROVIDER: str = os.getenv("CONTENT_PROVIDER", "gemini").strip().lower()
        self.CLAUDE_API_KEY: Optional[str] = os.getenv("CLAUDE_API_KEY")
        self.CHAT_MODEL: str = os.getenv("CHAT_MODEL", "claude-sonnet-4-5")
        self.GENERATION_TIMEOUT_SECONDS: float = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "90"))

        # Access
        self.ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "")
        self.ALLOWED_ORIGINS: List[str] = [
            origin.strip()
            for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
            if origin.strip()
        ]

        # Live voice
        self.VOICE_SETTLE_DELAY_MS: int = int(os.getenv("VOICE_SETTLE_DELAY_MS", "500"))
        self.VOICE_CLAMP_PCM: bool = _env_bool("VOICE_CLAMP_PCM", True)

    @property
    def voice_settle_delay(self) -> float:
        """Settle delay in seconds"""
        return self.VOICE_SETTLE_DELAY_MS / 1000.0

    def validate(self) -> List[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []

        # Live voice always talks to Gemini
        if not self.GEMINI_API_KEY:
            missing.append("GEMINI_API_KEY")

        if self.CONTENT_PROVIDER == "claude" and not self.CLAUDE_API_KEY:
            missing.append("CLAUDE_API_KEY (required when CONTENT_PROVIDER=claude)")
        elif self.CONTENT_PROVIDER not in ("gemini", "claude"):
            missing.append(f"CONTENT_PROVIDER (unknown value '{self.CONTENT_PROVIDER}')")

        if not self.ADMIN_EMAIL:
            missing.append("ADMIN_EMAIL (admin-only endpoints will reject every caller)")

        return missing
