"""Extract description, keywords and detected text from a model completion."""

from __future__ import annotations

import logging
import re
from typing import List

from .models import ExtractedAnalysis

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 5
DESCRIPTION_FALLBACK_CHARS = 300
FALLBACK_KEYWORDS = ["image", "analysis", "content", "visual", "photo"]
PARSE_FAILURE_DESCRIPTION = "Analysis completed but response parsing failed"
PARSE_FAILURE_KEYWORDS = ["image", "content"]

_DESCRIPTION_RE = re.compile(
    r"DESCRIPTION:(.*?)(?=\n\s*(?:KEYWORDS|DETECTED_TEXT):|\Z)", re.IGNORECASE | re.DOTALL
)
_KEYWORDS_RE = re.compile(r"KEYWORDS:(.*?)(?=\n\s*DETECTED_TEXT:|\Z)", re.IGNORECASE | re.DOTALL)
_DETECTED_TEXT_RE = re.compile(r"DETECTED_TEXT:(.*)\Z", re.IGNORECASE | re.DOTALL)
_BRACKETS_RE = re.compile(r"[\[\]]")


def _split_list(raw: str) -> List[str]:
    cleaned = _BRACKETS_RE.sub("", raw)
    return [entry.strip() for entry in cleaned.split(",") if entry.strip()]


def parse_model_response(response_text: str) -> ExtractedAnalysis:
    """
    Parse a completion that follows the DESCRIPTION / KEYWORDS / DETECTED_TEXT
    layout requested by the analysis prompt.

    Never raises: missing sections fall back to the raw text or placeholder
    keywords, and input that cannot be processed at all yields the
    parse-failure placeholders.
    """
    try:
        description = ""
        keywords: List[str] = []
        detected_text: List[str] = []

        desc_match = _DESCRIPTION_RE.search(response_text)
        if desc_match:
            description = desc_match.group(1).strip()

        keywords_match = _KEYWORDS_RE.search(response_text)
        if keywords_match:
            keywords = _split_list(keywords_match.group(1).strip())[:MAX_KEYWORDS]

        text_match = _DETECTED_TEXT_RE.search(response_text)
        if text_match:
            text_block = text_match.group(1).strip()
            if "no text detected" not in text_block.lower():
                detected_text = [
                    entry for entry in _split_list(text_block)
                    if "no text" not in entry.lower()
                ]

        if not description:
            description = response_text[:DESCRIPTION_FALLBACK_CHARS]
        if not keywords:
            keywords = list(FALLBACK_KEYWORDS)

        logger.debug(
            f"Parsed model response: {len(keywords)} keyword(s), "
            f"{len(detected_text)} detected text item(s)"
        )
        return ExtractedAnalysis(description=description, keywords=keywords, detected_text=detected_text)

    except Exception as e:  # noqa: BLE001
        logger.error(f"Error parsing model response: {e}")
        return ExtractedAnalysis(
            description=PARSE_FAILURE_DESCRIPTION,
            keywords=list(PARSE_FAILURE_KEYWORDS),
            detected_text=[],
        )
