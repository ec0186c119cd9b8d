"""Resolution of internal cross references (``[[page#header|alias]]``).

The resolver is built once per build from the final slug table and the
publishable document set, and is read-only afterwards so it can be shared by
the render workers.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from typing import Dict, List, Literal, Sequence
from urllib.parse import unquote

from vaultpress.issues import IssueCollector
from vaultpress.models import DocumentRecord
from vaultpress.utils.text import fold, slugify_anchor

LOGGER = logging.getLogger(__name__)

LinkKind = Literal["page", "page-header", "page-block", "header", "block"]

BROKEN_LINK_PREFIX = "#broken-link:"
_EXTERNAL_PREFIXES = ("http://", "https://", "mailto:", "tel:", "data:", "//")


@dataclass(slots=True, frozen=True)
class WikiLink:
    raw: str
    page: str
    header: str | None = None
    block: str | None = None
    alias: str | None = None

    @property
    def kind(self) -> LinkKind:
        if not self.page:
            return "header" if self.header is not None else "block"
        if self.header is not None:
            return "page-header"
        if self.block is not None:
            return "page-block"
        return "page"

    @property
    def label(self) -> str:
        if self.alias:
            return self.alias
        if self.page:
            return self.page if self.header is None else f"{self.page} > {self.header}"
        if self.header is not None:
            return self.header
        return f"^{self.block}"


@dataclass(slots=True, frozen=True)
class ResolvedLink:
    target: DocumentRecord | None
    href: str
    text: str
    fragment: str | None = None


def parse_wikilink(token: str) -> WikiLink:
    """Parse the inside of ``[[...]]``.

    Supports ``page``, ``page#header``, ``page^block``, ``#header`` and
    ``^block``, each optionally followed by ``|alias``.
    """
    raw = token
    target, _, alias = token.partition("|")
    alias = alias.strip() or None
    target = target.strip()
    header = block = None
    if "#" in target:
        target, _, header = target.partition("#")
        header = header.strip()
        if header.startswith("^"):
            block, header = header[1:], None
    elif "^" in target:
        target, _, block = target.partition("^")
        block = block.strip()
    page = target.strip()
    if page.lower().endswith(".md"):
        page = page[:-3]
    return WikiLink(raw=raw, page=page, header=header, block=block, alias=alias)


def is_external(href: str) -> bool:
    return href.lower().startswith(_EXTERNAL_PREFIXES)


class LinkResolver:
    """Case-insensitive lookup of link targets among publishable documents."""

    def __init__(self, documents: Sequence[DocumentRecord], *, prefix: str = "/content") -> None:
        self.prefix = prefix
        self._by_slug: Dict[str, List[DocumentRecord]] = {}
        self._by_desired: Dict[str, List[DocumentRecord]] = {}
        self._by_name: Dict[str, List[DocumentRecord]] = {}
        self._by_alias: Dict[str, List[DocumentRecord]] = {}
        self._by_path: Dict[str, DocumentRecord] = {}
        for doc in documents:
            self._by_slug.setdefault(fold(doc.slug), []).append(doc)
            self._by_desired.setdefault(fold(doc.desired_slug), []).append(doc)
            self._by_name.setdefault(fold(doc.file_name), []).append(doc)
            name_path = doc.path.rsplit(".", 1)[0]
            if name_path != doc.file_name:
                self._by_name.setdefault(fold(name_path), []).append(doc)
            for alias in doc.aliases:
                self._by_alias.setdefault(fold(alias), []).append(doc)
            self._by_path[fold(doc.path)] = doc

    def url_for(self, doc: DocumentRecord, fragment: str | None = None) -> str:
        url = f"{self.prefix}/{doc.slug}"
        return f"{url}#{fragment}" if fragment else url

    def lookup(self, page: str) -> DocumentRecord | None:
        """Find a page by final slug, desired slug, file name, then alias.

        When several documents match at the same level the first one in
        traversal order wins.
        """
        key = fold(page)
        for index in (self._by_slug, self._by_desired, self._by_name, self._by_alias):
            candidates = index.get(key)
            if candidates:
                if len(candidates) > 1:
                    LOGGER.debug(
                        "Ambiguous link target '%s': %s", page, [c.path for c in candidates]
                    )
                return candidates[0]
        return None

    def resolve(
        self,
        link: WikiLink,
        *,
        source: DocumentRecord | None = None,
        issues: IssueCollector | None = None,
    ) -> ResolvedLink:
        fragment = None
        if link.header is not None:
            fragment = slugify_anchor(link.header)
        elif link.block is not None:
            fragment = f"^{link.block}"

        if not link.page:
            if source is None:
                return ResolvedLink(target=None, href=f"#{fragment}", text=link.label, fragment=fragment)
            return ResolvedLink(
                target=source, href=self.url_for(source, fragment), text=link.label, fragment=fragment
            )

        target = self.lookup(link.page)
        if target is None:
            if issues is not None:
                issues.add_broken_link(
                    file_path=source.path if source else "",
                    link_text=link.label,
                    link_target=link.page,
                    link_type="wiki",
                )
            return ResolvedLink(target=None, href=f"{BROKEN_LINK_PREFIX}{link.page}", text=link.label)

        return ResolvedLink(
            target=target, href=self.url_for(target, fragment), text=link.label, fragment=fragment
        )

    def resolve_markdown_href(
        self,
        href: str,
        *,
        source: DocumentRecord,
        issues: IssueCollector | None = None,
    ) -> ResolvedLink | None:
        """Rewrite a relative ``[text](other.md#part)`` link; ``None`` leaves it untouched."""
        if not href or href.startswith("#") or is_external(href):
            return None
        path_part, _, fragment = href.partition("#")
        path_part = unquote(path_part)
        if not path_part.lower().endswith((".md", ".markdown")):
            return None
        base = posixpath.dirname(source.path)
        candidate = posixpath.normpath(posixpath.join(base, path_part))
        target = self._by_path.get(fold(candidate)) or self._by_path.get(fold(path_part.lstrip("/")))
        if target is None:
            if issues is not None:
                issues.add_broken_link(
                    file_path=source.path,
                    link_text=href,
                    link_target=path_part,
                    link_type="markdown",
                )
            return ResolvedLink(target=None, href=f"{BROKEN_LINK_PREFIX}{path_part}", text=href)
        anchor = slugify_anchor(fragment) if fragment else None
        return ResolvedLink(target=target, href=self.url_for(target, anchor), text=href, fragment=anchor)
