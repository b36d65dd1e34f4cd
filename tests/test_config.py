import pytest

from config import Config
from roles import Role, resolve_role


@pytest.mark.parametrize("email, admin_email, expected", [
    ("admin@mari.de", "admin@mari.de", Role.ADMIN),
    ("  ADMIN@Mari.DE ", "admin@mari.de", Role.ADMIN),
    ("anna@example.de", "admin@mari.de", Role.STUDENT),
    (None, "admin@mari.de", Role.STUDENT),
    ("admin@mari.de", "", Role.STUDENT),
])
def test_resolve_role(email, admin_email, expected):
    assert resolve_role(email, admin_email) == expected


def test_config_defaults(monkeypatch):
    for name in ["GEMINI_LIVE_MODEL", "VOICE_SETTLE_DELAY_MS", "VOICE_CLAMP_PCM", "CONTENT_PROVIDER", "GEMINI_MODEL", "GEMINI_TTS_MODEL"]:
        monkeypatch.delenv(name, raising=False)

    config = Config()

    assert config.GEMINI_LIVE_MODEL == "gemini-2.5-flash-native-audio-preview-12-2025"
    assert config.GEMINI_MODEL == "gemini-2.0-flash-exp"
    assert config.GEMINI_TTS_MODEL == "gemini-2.5-flash-preview-tts"
    assert config.CONTENT_PROVIDER == "gemini"
    assert config.voice_settle_delay == 0.5
    assert config.VOICE_CLAMP_PCM is True


def test_config_overrides(monkeypatch):
    monkeypatch.setenv("VOICE_SETTLE_DELAY_MS", "800")
    monkeypatch.setenv("VOICE_CLAMP_PCM", "false")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://mari.app, https://admin.mari.app")

    config = Config()

    assert config.voice_settle_delay == 0.8
    assert config.VOICE_CLAMP_PCM is False
    assert config.ALLOWED_ORIGINS == ["https://mari.app", "https://admin.mari.app"]


def test_config_validate(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("CLAUDE_API_KEY", raising=False)
    monkeypatch.setenv("CONTENT_PROVIDER", "claude")
    monkeypatch.setenv("ADMIN_EMAIL", "admin@mari.de")

    missing = Config().validate()

    assert "GEMINI_API_KEY" in missing
    assert any(item.startswith("CLAUDE_API_KEY") for item in missing)

