"""
Hand a finished conversation over for evaluation
"""
import asyncio
import logging
from typing import Any, Callable, Optional, Union

from .exceptions import EmptyTranscript
from .transcript import TranscriptLog

logger = logging.getLogger(__name__)


async def submit_for_grading(
    transcript: Union[TranscriptLog, str],
    grader: Callable[[str], Any],
    labels: Optional[dict] = None
) -> Any:
    """
    Render the transcript and pass it to the grader

    Args:
        transcript: Live transcript log or already rendered text
        grader: Sync or async function receiving the rendered text
        labels: Optional speaker labels for rendering

    Returns:
        Whatever the grader returns

    Raises:
        EmptyTranscript: nothing was said; the grader is not called
    """
    if isinstance(transcript, TranscriptLog):
        if transcript.is_blank():
            raise EmptyTranscript("Transcript is empty")
        text = transcript.render(labels)
    else:
        text = transcript or ""
        if not text.strip():
            raise EmptyTranscript("Transcript is empty")

    logger.info(f"Submitting transcript for grading ({len(text)} chars)")

    result = grader(text)
    if asyncio.iscoroutine(result):
        result = await result
    return result
