"""Text helpers shared by the rendering and slug code."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

_WORD_RE = re.compile(r"\w+(?:[-']\w+)*", re.UNICODE)
_ANCHOR_STRIP_RE = re.compile(r"[^\w\s-]", re.UNICODE)


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())


def count_words(text: str) -> int:
    return len(_WORD_RE.findall(text))


def fold(text: str) -> str:
    """Case- and normalization-insensitive key for name lookups."""
    return unicodedata.normalize("NFC", text).strip().casefold()


def slugify_anchor(text: str) -> str:
    """Heading text -> anchor id, GitHub style (``Hello, World!`` -> ``hello-world``)."""
    anchor = _ANCHOR_STRIP_RE.sub("", text.strip().lower())
    anchor = re.sub(r"\s+", "-", anchor)
    return re.sub(r"-+", "-", anchor).strip("-")


def title_from_filename(stem: str) -> str:
    return re.sub(r"\s+", " ", stem.replace("_", " ")).strip()


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars]
