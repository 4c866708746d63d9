"""Tolerant parsing of oracle output and product names."""

import json
import math
import re
from typing import Any, Optional

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_DESCRIPTORS = (
    "bags of", "bag of", "bunches of", "bunch of", "boxes of", "box of",
    "cartons of", "carton of", "packs of", "pack of", "packages of", "package of",
    "bottles of", "bottle of", "jars of", "jar of", "cans of", "can of",
    "gallons of", "gallon of", "pounds of", "pound of", "lbs of", "lb of",
    "containers of", "container of", "quarts of", "quart of", "pints of", "pint of",
    "heads of", "head of", "loaves of", "loaf of", "a dozen", "dozen",
    "pieces of", "piece of",
)

_ARTICLES = ("a", "an", "the", "some")

_SINGULARS = {
    "apples": "apple",
    "bananas": "banana",
    "oranges": "orange",
    "carrots": "carrots",
    "potatoes": "potato",
    "tomatoes": "tomato",
    "onions": "onion",
    "eggs": "egg",
    "breads": "bread",
    "milks": "milk",
    "cheeses": "cheese",
    "yogurts": "yogurt",
    "cereals": "cereal",
}


def safe_parse_json(text: Any) -> Optional[dict]:
    """Parse *text* as a JSON object, falling back to its first ``{...}`` span.

    Returns None when nothing object-shaped can be recovered.
    """
    if isinstance(text, dict):
        return text
    if not isinstance(text, str) or not text.strip():
        return None

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    match = _OBJECT_RE.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_llm_text(response: Any) -> str:
    """Pull the text out of whatever a chat model returned."""
    if response is None:
        return ""
    if isinstance(response, str):
        return response
    if isinstance(response, dict):
        content = response.get("content", "")
    else:
        content = getattr(response, "content", "")
    if isinstance(content, list):
        return "".join(
            str(block.get("text", "")) if isinstance(block, dict) else str(block)
            for block in content
        )
    return "" if content is None else str(content)


def clamp_confidence(value: Any, default: float = 0.5) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    # json.loads accepts NaN and Infinity
    if not math.isfinite(value):
        return default
    return max(0.0, min(1.0, float(value)))


def normalize_product_name(name: str) -> str:
    """Reduce a free-text product mention to a catalog product code.

    Strips packaging descriptors ("bag of", "a dozen"), leading articles and
    maps common plurals to their catalog spelling.

    Examples:
        >>> normalize_product_name("a bag of Apples")
        'apple'
        >>> normalize_product_name("a dozen eggs")
        'egg'
    """
    text = " ".join((name or "").lower().split())
    for descriptor in _DESCRIPTORS:
        text = re.sub(rf"\b{re.escape(descriptor)}\b", " ", text)
    text = " ".join(text.split())

    words = text.split()
    while words and words[0] in _ARTICLES:
        words.pop(0)
    text = " ".join(words)

    return _SINGULARS.get(text, text)
