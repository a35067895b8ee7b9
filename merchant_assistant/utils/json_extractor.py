"""
JSON extraction for LLM responses that may wrap the payload in thinking
blocks, markdown code fences or surrounding prose.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_DECODER = json.JSONDecoder()


def strip_think_blocks(text: str) -> str:
    """Remove <think>...</think> reasoning sections."""
    return _THINK_RE.sub("", text).strip()


def _scan_documents(text: str, openers: str):
    """Yield every JSON document that starts at one of the opener characters."""
    index = 0
    while index < len(text):
        positions = [p for p in (text.find(ch, index) for ch in openers) if p != -1]
        if not positions:
            return
        start = min(positions)
        try:
            document, end = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            index = start + 1
            continue
        yield document
        index = end


def extract_json_from_text(
    text: str | None,
    default: dict[str, Any] | list | None = None,
    required_keys: list[str] | None = None,
) -> dict[str, Any] | list | None:
    """
    Extract the first JSON object or array from text.

    Handles:
    - <think> blocks
    - Markdown code blocks (```json, ```)
    - Bare JSON embedded in prose, including nested objects

    Args:
        text: The text containing JSON data
        default: Value returned if extraction fails
        required_keys: Keys an extracted object must contain to be accepted

    Returns:
        Parsed JSON (dict or list) or default
    """
    if not text:
        logger.warning("Empty text provided for JSON extraction")
        return default

    clean_text = strip_think_blocks(text)

    sources = [block for block in _FENCE_RE.findall(clean_text)]
    sources.append(clean_text)

    for source in sources:
        for document in _scan_documents(source, "{["):
            if not isinstance(document, (dict, list)):
                continue
            if required_keys and isinstance(document, dict) and not all(k in document for k in required_keys):
                logger.debug(f"JSON missing required keys: {required_keys}")
                continue
            return document

    logger.warning("Could not extract valid JSON from text")
    return default


def extract_json_safely(
    text: str | None,
    expected_type: type = dict,
    default: dict[str, Any] | list | None = None,
) -> dict[str, Any] | list | None:
    """
    Extract JSON ensuring it matches the expected type.

    Unlike extract_json_from_text, documents of the wrong type are skipped
    rather than returned, so an array wrapped in prose before an object
    does not hide the object.
    """
    if not text:
        return default

    clean_text = strip_think_blocks(text)
    sources = [block for block in _FENCE_RE.findall(clean_text)]
    sources.append(clean_text)
    openers = "{" if expected_type is dict else "["

    for source in sources:
        for document in _scan_documents(source, openers):
            if isinstance(document, expected_type):
                return document

    logger.warning(f"No JSON {expected_type.__name__} found in text")
    return default
