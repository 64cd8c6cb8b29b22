from __future__ import annotations

import re
from typing import Optional


# Three or more placeholder glyphs in a row, e.g. "J***n T**" -> masked
MASK_MARKER_RE = re.compile(r"[*•●]{3,}")
WHITESPACE_RE = re.compile(r"\s+")


def has_mask_marker(text: Optional[str]) -> bool:
    if not text:
        return False
    return MASK_MARKER_RE.search(text) is not None


def clean_text(text: Optional[str]) -> str:
    """Collapse runs of whitespace and trim."""
    if not text:
        return ''
    return WHITESPACE_RE.sub(' ', text).strip()
