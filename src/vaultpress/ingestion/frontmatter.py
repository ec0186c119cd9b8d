"""Frontmatter parsing and scalar type coercion.

The YAML block is loaded with a loader that keeps every scalar as text, so
the coercion rules below (and not PyYAML's implicit resolvers) decide what
becomes a boolean, number or date. Quoted scalars are never coerced.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

import yaml

from vaultpress.issues import IssueCategory, IssueCollector, IssueModule, IssueSeverity

LOGGER = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
EMPTY_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n---[ \t]*(?:\r?\n|\Z)")

_INT_RE = re.compile(r"^[-+]?\d+$")
_FLOAT_RE = re.compile(r"^[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?$")
_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_NULL_LITERALS = {"", "~", "null"}
_BOOL_LITERALS = {"true": True, "false": False}
_YAML11_BOOLS = {"yes", "no", "on", "off", "y", "n"}


class QuotedStr(str):
    """A scalar that was explicitly quoted in the source YAML."""


class _TextLoader(yaml.BaseLoader):
    pass


def _construct_text(loader: yaml.BaseLoader, node: yaml.ScalarNode) -> str:
    value = loader.construct_scalar(node)
    return QuotedStr(value) if node.style in ("'", '"') else value


_TextLoader.add_constructor("tag:yaml.org,2002:str", _construct_text)


def split_frontmatter(text: str) -> Tuple[str | None, str]:
    """Split a document into (frontmatter block, body)."""
    if EMPTY_FRONTMATTER_RE.match(text):
        return "", EMPTY_FRONTMATTER_RE.sub("", text, count=1)
    match = FRONTMATTER_RE.match(text)
    if not match:
        return None, text
    return match.group(1), text[match.end():]


def parse_date(value: str) -> datetime | None:
    """Parse a complete ``Y-M-D`` string (zero-padded or not) to midnight UTC."""
    match = _DATE_RE.match(value)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def coerce_scalar(value: str) -> Any:
    """Coerce scalar text: null, boolean, number, date, then string."""
    if isinstance(value, QuotedStr):
        return str(value)
    text = value.strip()
    lowered = text.lower()
    if lowered in _NULL_LITERALS:
        return None
    if lowered in _BOOL_LITERALS:
        return _BOOL_LITERALS[lowered]
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    parsed = parse_date(text)
    if parsed is not None:
        return parsed
    return value


def coerce_value(value: Any) -> Any:
    """Recursively coerce a loaded frontmatter value. Pure function."""
    if isinstance(value, str):
        return coerce_scalar(value)
    if isinstance(value, list):
        return [coerce_value(item) for item in value]
    if isinstance(value, dict):
        return {key: coerce_value(item) for key, item in value.items()}
    return value


def find_ambiguities(value: Any, path: str = "") -> list[tuple[str, str, str]]:
    """Return (field path, raw value, reason) for values whose type is a judgment call."""
    found: list[tuple[str, str, str]] = []
    if isinstance(value, QuotedStr):
        return found
    if isinstance(value, str):
        text = value.strip()
        if text.lower() in _YAML11_BOOLS:
            found.append((path, text, "YAML 1.1 boolean kept as string"))
        elif _DATE_RE.match(text) and parse_date(text) is None:
            found.append((path, text, "date-shaped value is not a calendar date"))
    elif isinstance(value, list):
        for index, item in enumerate(value):
            found.extend(find_ambiguities(item, f"{path}[{index}]"))
    elif isinstance(value, dict):
        for key, item in value.items():
            found.extend(find_ambiguities(item, f"{path}.{key}" if path else str(key)))
    return found


def parse_frontmatter(
    text: str,
    *,
    file_path: str | None = None,
    issues: IssueCollector | None = None,
) -> Tuple[Dict[str, Any], str]:
    """Parse the frontmatter block of a document into a typed property map.

    Returns ``(metadata, body)``. Malformed YAML yields an empty map and a
    ``parse-error`` issue; the body is still returned.
    """
    block, body = split_frontmatter(text)
    if not block:
        return {}, body

    try:
        raw = yaml.load(block, Loader=_TextLoader)
    except yaml.YAMLError as exc:
        if issues is not None:
            issues.add(
                IssueSeverity.WARNING,
                IssueCategory.PARSE_ERROR,
                IssueModule.FRONTMATTER_PARSER,
                f"Invalid frontmatter: {exc}",
                file_path=file_path,
            )
        else:
            LOGGER.warning("Invalid frontmatter in %s: %s", file_path, exc)
        return {}, body

    if not isinstance(raw, dict):
        if issues is not None and raw is not None:
            issues.add(
                IssueSeverity.WARNING,
                IssueCategory.PARSE_ERROR,
                IssueModule.FRONTMATTER_PARSER,
                "Frontmatter is not a mapping",
                file_path=file_path,
            )
        return {}, body

    if issues is not None:
        for field_path, raw_value, reason in find_ambiguities(raw):
            issues.add(
                IssueSeverity.INFO,
                IssueCategory.FRONTMATTER_AMBIGUOUS,
                IssueModule.FRONTMATTER_PARSER,
                f"Ambiguous value for '{field_path}': {raw_value!r} ({reason})",
                file_path=file_path,
                field=field_path,
                value=raw_value,
            )

    metadata = {str(key): coerce_value(value) for key, value in raw.items()}
    return metadata, body
