"""
Response formatting utilities for AI model output.

Handles JSON sanitization of model responses and tolerant field coercion
for values the model sometimes returns as strings.
"""

import json
import re
import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


def sanitize_json_response(text: str) -> str:
    """Clean up AI response text for JSON parsing."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    text = text.replace("```json", "").replace("```", "")

    replacements = {
        "\u2018": "'", "\u2019": "'", "\u201c": '"', "\u201d": '"',
        "\u00a0": " ",
    }
    for old, new in replacements.items():
        text = text.replace(old, new)

    # Extract JSON object if there's extra text before/after
    if text and '{' in text:
        start = text.find('{')
        end = text.rfind('}') + 1
        if start < end:
            text = text[start:end]

    # Try to parse - if it works, return as-is
    try:
        json.loads(text)
        return text.strip()
    except (json.JSONDecodeError, ValueError):
        # Only do aggressive ASCII cleanup if JSON parse fails
        text = text.encode('ascii', 'ignore').decode('ascii')
        text = " ".join(text.split())
        return text.strip()


def parse_price(value: Any) -> Optional[float]:
    """Parse '$1,299.00', 45, '45.5' into a float. None if unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r'[^\d.]', '', str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def optional_text(value: Any) -> Optional[str]:
    """
    Normalize an optional model field.

    Empty strings and the model's "not visible" / "unknown" placeholders
    mean the attribute is absent.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.lower() in ("n/a", "na", "none", "unknown", "not visible", "not applicable", "null"):
        return None
    return text


def text_list(value: Any) -> List[str]:
    """Accept a list or a single string and return a clean list of strings"""
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]
