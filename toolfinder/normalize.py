from __future__ import annotations

"""
Text normalization utilities used across the toolfinder project.

These helpers perform basic cleaning (HTML stripping, unicode
normalization, whitespace collapsing) for imported catalog content and
tidy up raw completions returned by the text-generation provider before
they are decoded.
"""

import re
import unicodedata
from typing import Iterable, List

from bs4 import BeautifulSoup

from .config import MAX_INPUT_CHARS


# ---------------------------
# Basic helpers
# ---------------------------

def clamp_text_length(text: str, max_chars: int = MAX_INPUT_CHARS) -> str:
    """
    Hard cap on input size so we don't accidentally feed huge strings
    into models.
    """
    if not isinstance(text, str):
        text = str(text)
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


def strip_html(raw: str) -> str:
    """
    Strip HTML tags using BeautifulSoup, then clean up whitespace and
    spacing around punctuation.  If parsing fails, the input is
    returned unchanged to fail open rather than drop text.
    """
    if not raw:
        return ""
    # Fast path: if there's no '<', it's almost certainly not HTML
    if "<" not in raw:
        return raw

    try:
        soup = BeautifulSoup(raw, "lxml")
        text = soup.get_text(" ", strip=True)
        text = normalize_whitespace(text)
        # Remove spaces before common punctuation marks
        text = re.sub(r"\s+([.,!?;:])", r"\1", text)
        return text
    except Exception:
        return raw


def normalize_unicode(text: str) -> str:
    """
    Normalize weird unicode (fancy quotes, etc.) into a more stable
    form.  Using NFC keeps things mostly intact but canonicalized.
    """
    if not text:
        return ""
    return unicodedata.normalize("NFC", text)


def normalize_whitespace(text: str) -> str:
    """
    Collapse all whitespace runs into a single space and strip edges.
    """
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def basic_clean(text: str) -> str:
    """
    End-to-end basic cleaning used for imported catalog content:

    - clamp length
    - strip HTML
    - normalize unicode
    - normalize whitespace
    """
    if text is None:
        return ""
    text = clamp_text_length(str(text))
    text = strip_html(text)
    text = normalize_unicode(text)
    text = normalize_whitespace(text)
    return text


def clean_list(values: Iterable[str]) -> List[str]:
    """Clean each entry with ``basic_clean`` and drop empties and duplicates."""
    out: List[str] = []
    for value in values:
        cleaned = basic_clean(value)
        if cleaned and cleaned not in out:
            out.append(cleaned)
    return out


def slugify(text: str) -> str:
    """Lowercase slug with runs of non-alphanumerics collapsed to ``-``."""
    s = re.sub(r"[^a-z0-9]+", "-", (text or "").lower())
    return s.strip("-")


# ---------------------------
# Completion cleanup
# ---------------------------

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """
    Remove a Markdown code fence wrapped around a completion.

    Models frequently answer ``` ```json ... ``` ``` even when asked for
    bare JSON.  Text without a surrounding fence is returned trimmed.
    """
    if not text:
        return ""
    stripped = text.strip()
    m = _FENCE_RE.match(stripped)
    if m:
        return m.group(1).strip()
    return stripped
