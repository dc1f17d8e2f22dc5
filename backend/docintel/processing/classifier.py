"""
Document type classification.

Best effort: returns None when AI is not configured, the provider fails, or
the reply names no known type. The caller keeps the current type then.
"""

from __future__ import annotations

import logging

from docintel.core.exceptions import handle_ai_error
from docintel.llm.gateway import ModelClient
from docintel.llm.prompts import CLASSIFICATION_PROMPT

logger = logging.getLogger(__name__)

# Substring matching checks labels in this order
VALID_TYPES: tuple[str, ...] = ("contract", "email", "meeting_notes", "quotation")

SAMPLE_LENGTH     = 1000
MAX_OUTPUT_TOKENS = 20


def parse_label(reply: str) -> str | None:
    """Exact label first, then the first label contained in the reply."""
    normalized = reply.strip().lower()
    if normalized in VALID_TYPES:
        return normalized
    for label in VALID_TYPES:
        if label in normalized:
            return label
    return None


async def classify_document(client: ModelClient | None, text: str) -> str | None:
    if client is None:
        return None

    try:
        reply = await client.generate(
            system=CLASSIFICATION_PROMPT,
            prompt=text[:SAMPLE_LENGTH],
            max_tokens=MAX_OUTPUT_TOKENS,
        )
    except Exception as exc:
        code, message = handle_ai_error(exc)
        logger.warning("Classification failed | code=%s error=%s", code, message)
        return None

    label = parse_label(reply)
    if label is None:
        logger.info("Classification reply not recognised | reply=%r", reply[:50])
    return label
