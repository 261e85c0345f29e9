"""Sanitisation helpers.

Strip HTML tags and surrounding whitespace from free-form text (review
content, administrator responses, service descriptions, captions)
before it is stored, so those values are safe to render later.
"""
import re
from typing import Optional

TAG_RE = re.compile(r"<[^>]+>")


def strip_tags(text: str) -> str:
    """Remove HTML tags from the given string.

    Parameters
    ----------
    text: str
        The input string that may contain HTML tags.

    Returns
    -------
    str
        The cleaned string with tags removed and whitespace trimmed.
    """
    if not text:
        return ""
    no_tags = TAG_RE.sub("", text)
    return no_tags.strip()


def clean_optional(text: Optional[str]) -> Optional[str]:
    """Like ``strip_tags`` but maps empty results to ``None``."""
    cleaned = strip_tags(text) if text else ""
    return cleaned or None
