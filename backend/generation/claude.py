"""
Anthropic Messages provider
"""
from typing import List, Optional
import logging

from anthropic import AsyncAnthropic, APIError

from .provider import ContentProvider, GenerationFailure, HistoryMessage, InlineMedia

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "claude-sonnet-4-5"


def media_block(media: InlineMedia) -> dict:
    """Image or PDF content block"""
    block_type = "document" if media.mime_type == "application/pdf" else "image"
    return {
        "type": block_type,
        "source": {
            "type": "base64",
            "media_type": media.mime_type,
            "data": media.to_base64()
        }
    }


def build_messages(
    prompt: str,
    media: Optional[InlineMedia] = None,
    history: Optional[List[HistoryMessage]] = None
) -> list:
    """Convert history and the new prompt to Anthropic format, skipping empty turns"""
    messages = []
    for m in history or []:
        content = (m.text or "").strip()
        if not content:
            logger.warning(f"Skipping empty history message (role: {m.role})")
            continue
        role = "assistant" if m.role == "model" else "user"
        # Anthropic requires alternating roles
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += f"\n\n{content}"
        else:
            messages.append({"role": role, "content": content})

    if media is not None:
        user_content = [media_block(media), {"type": "text", "text": prompt}]
    else:
        user_content = prompt

    if messages and messages[-1]["role"] == "user":
        previous = messages.pop()["content"]
        if isinstance(user_content, str):
            user_content = f"{previous}\n\n{user_content}"
        else:
            user_content.insert(0, {"type": "text", "text": previous})

    messages.append({"role": "user", "content": user_content})
    return messages


class ClaudeProvider(ContentProvider):
    """Claude text generation"""

    def __init__(self, api_key: str, **config):
        super().__init__(api_key, **config)

        self.model = config.get("model") or DEFAULT_CHAT_MODEL
        self.max_tokens = config.get("max_tokens", 4096)
        self.client = config.get("client") or AsyncAnthropic(
            api_key=api_key,
            timeout=config.get("timeout", 90)
        )

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
            raise GenerationFailure("CLAUDE_API_KEY not configured")

        # Gemini model names are not valid here
        model_name = model if model and model.startswith("claude") else self.model

        system_prompt = system or ""
        if json_mode:
            system_prompt = (system_prompt + "\n\nOutput format: Return ONLY valid JSON, no other text.").strip()

        kwargs = {
            "model": model_name,
            "max_tokens": self.max_tokens,
            "messages": build_messages(prompt, media, history)
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if temperature is not None:
            kwargs["temperature"] = temperature

        try:
            response = await self.client.messages.create(**kwargs)
        except APIError as e:
            logger.error(f"[Claude] Request to {model_name} failed: {e}", exc_info=True)
            raise GenerationFailure(str(e)) from e

        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise GenerationFailure(f"Claude returned no text (model={model_name})")

        logger.info(f"[Claude] {model_name} replied with {len(text)} chars")
        return text

    async def close(self) -> None:
        await self.client.close()
