"""
Grounding material for live sessions
"""
import base64
import binascii
import logging
from typing import Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

MIN_ANALYSIS_LENGTH = 50
ANALYSIS_SEPARATOR = "\n\n---\n\n"


class VisualContext:
    """Document image sent to the agent before the priming text"""

    def __init__(self, data: bytes, mime_type: str):
        self.data = data
        self.mime_type = mime_type

    @classmethod
    def from_base64(cls, b64_string: str, mime_type: str) -> Optional["VisualContext"]:
        try:
            return cls(base64.b64decode(b64_string, validate=True), mime_type)
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Ignoring undecodable inline document data: {e}")
            return None


def build_lesson_context(messages: Iterable) -> str:
    """
    Join the model's earlier analysis replies into one grounding text

    Short model replies (greetings, acknowledgements) are skipped.

    Args:
        messages: Items with `role` and `text` (dicts or objects)
    """
    texts = []
    for message in messages:
        role = message.get("role") if isinstance(message, dict) else getattr(message, "role", None)
        text = message.get("text") if isinstance(message, dict) else getattr(message, "text", "")
        if role == "model" and text and len(text) > MIN_ANALYSIS_LENGTH:
            texts.append(text)
    return ANALYSIS_SEPARATOR.join(texts)


async def fetch_visual(
    image_url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 15.0
) -> Optional[VisualContext]:
    """
    Download a document image for inline grounding

    Any failure is logged and yields None; the session then relies on
    the text analysis only.
    """
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    try:
        response = await client.get(image_url)
        response.raise_for_status()
        mime_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        logger.info(f"Fetched document image ({len(response.content)} bytes, {mime_type})")
        return VisualContext(response.content, mime_type)
    except httpx.HTTPError as e:
        logger.warning(f"Image fetch failed, falling back to text context: {e}")
        return None
    finally:
        if owns_client:
            await client.aclose()
