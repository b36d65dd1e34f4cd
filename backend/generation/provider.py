"""
Request/response content generation abstraction
"""
from abc import ABC, abstractmethod
from typing import Any, List, Optional
import base64
import json
import logging

logger = logging.getLogger(__name__)


class GenerationFailure(Exception):
    """A generation call failed, timed out or returned unusable content"""
    pass


class InlineMedia:
    """Image or document attached to a prompt"""

    def __init__(self, data: bytes, mime_type: str):
        self.data = data
        self.mime_type = mime_type

    @classmethod
    def from_base64(cls, b64_string: str, mime_type: str) -> "InlineMedia":
        # Remove data:<mime>;base64, prefix if present
        if "," in b64_string and b64_string.startswith("data:"):
            b64_string = b64_string.split(",", 1)[1]
        return cls(base64.b64decode(b64_string, validate=True), mime_type)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")


class HistoryMessage:
    """Earlier chat turn; role is 'user' or 'model'"""

    def __init__(self, role: str, text: str):
        self.role = role
        self.text = text


class ContentProvider(ABC):
    """Abstract base class for single-shot generation backends"""

    def __init__(self, api_key: str, **config):
        self.api_key = api_key
        self.config = config

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        media: Optional[InlineMedia] = None,
        history: Optional[List[HistoryMessage]] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None,
        model: Optional[str] = None
    ) -> str:
        """
        Generate one reply

        Args:
            prompt: User prompt text
            system: Optional system instruction
            media: Optional image/document placed before the prompt
            history: Earlier turns, oldest first
            json_mode: Ask the backend for a JSON-only answer
            temperature: Sampling temperature override
            model: Model override

        Returns:
            Reply text

        Raises:
            GenerationFailure: on any backend error or empty reply
        """
        pass

    async def close(self) -> None:
        """Release network resources"""
        pass


def clean_json(text: Optional[str]) -> str:
    """Strip code-fence wrappers around a JSON answer"""
    if not text:
        return "{}"

    clean = text.strip()
    if clean.startswith("```"):
        clean = clean[3:]
        if clean.startswith("json"):
            clean = clean[4:]
        if clean.endswith("```"):
            clean = clean[:-3]
    return clean.strip()


def parse_json_response(text: Optional[str], default: Any = None) -> Any:
    """Parse a model's JSON answer; returns `default` when it is not valid JSON"""
    try:
        return json.loads(clean_json(text))
    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"Failed to parse JSON response: {e}")
        return default
