"""
Gemini Developer API provider (REST generateContent)
"""
from typing import List, Optional
import logging

import httpx

from .provider import ContentProvider, GenerationFailure, HistoryMessage, InlineMedia

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_BASE = "https://generativelanguage.googleapis.com"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-exp"


def build_contents(
    prompt: str,
    media: Optional[InlineMedia] = None,
    history: Optional[List[HistoryMessage]] = None
) -> list:
    """Build the `contents` array: history first, then the new user turn"""
    contents = [
        {"role": m.role, "parts": [{"text": m.text}]}
        for m in (history or [])
        if m.text and m.text.strip()
    ]

    parts = []
    if media is not None:
        parts.append({"inlineData": {"data": media.to_base64(), "mimeType": media.mime_type}})
    parts.append({"text": prompt})

    contents.append({"role": "user", "parts": parts})
    return contents


def extract_text(data: dict) -> str:
    """Concatenate the text parts of the first candidate"""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


class GeminiProvider(ContentProvider):
    """
    Gemini text generation over httpx

    Args:
        api_key: Gemini Developer API key
        base_url: REST base (default: public endpoint)
        model: Default model name
        timeout: Request timeout in seconds
        client: Optional shared httpx.AsyncClient
    """

    def __init__(self, api_key: str, **config):
        super().__init__(api_key, **config)

        self.base_url = (config.get("base_url") or DEFAULT_GEMINI_BASE).rstrip("/")
        self.model = config.get("model") or DEFAULT_GEMINI_MODEL
        self.timeout = config.get("timeout", 90)
        self._client: Optional[httpx.AsyncClient] = config.get("client")
        self._owns_client = self._client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

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
        if not self.api_key:
            raise GenerationFailure("GEMINI_API_KEY is not set")

        model_name = model or self.model
        # Gemini REST: POST /v1beta/models/{model}:generateContent
        url = f"{self.base_url}/v1beta/models/{model_name}:generateContent"

        body = {"contents": build_contents(prompt, media, history)}
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        generation_config = {}
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        if temperature is not None:
            generation_config["temperature"] = temperature
        if generation_config:
            body["generationConfig"] = generation_config

        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

        try:
            response = await self._get_client().post(url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"[Gemini] {model_name} returned {e.response.status_code}: {e.response.text[:300]}")
            raise GenerationFailure(f"Gemini request failed with status {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[Gemini] Request to {model_name} failed: {e}", exc_info=True)
            raise GenerationFailure(str(e)) from e

        text = extract_text(data)
        if not text:
            raise GenerationFailure(f"Gemini returned no text (model={model_name})")

        logger.info(f"[Gemini] {model_name} replied with {len(text)} chars")
        return text

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
