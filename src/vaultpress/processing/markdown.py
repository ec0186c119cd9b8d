"""Markdown rendering pipeline.

Rendering runs as a fixed sequence of stages over the markdown-it token
stream: parse, resolve internal links, resolve media embeds, render diagrams,
then serialize and sanitize the HTML while collecting headings, plain text
and the first image.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from html import escape
from typing import Any, Dict, List, Sequence, Tuple

from bs4 import BeautifulSoup, NavigableString
from markdown_it import MarkdownIt
from markdown_it.rules_inline import StateInline
from markdown_it.token import Token

from vaultpress.config import BuildConfig
from vaultpress.issues import IssueCollector
from vaultpress.media.processor import MediaIndex, select_best_variant, variant_address
from vaultpress.models import DocumentRecord, MediaRecord, TocItem
from vaultpress.processing.diagrams import DiagramRenderer
from vaultpress.processing.links import LinkResolver, parse_wikilink
from vaultpress.utils.files import IMAGE_SUFFIXES, MEDIA_SUFFIXES
from vaultpress.utils.text import count_words, normalize_whitespace, slugify_anchor

LOGGER = logging.getLogger(__name__)

FRONTMATTER_EMBED_RE = re.compile(r"^!\[\[([^\]]+)\]\]$")
_NUMERIC_RE = re.compile(r"^\d+(?:x\d+)?$")

_UNSAFE_TAGS = (
    "script", "iframe", "object", "embed", "frame", "frameset", "applet", "base", "meta", "link",
    "animate", "animatemotion", "animatetransform", "set",
)
_UNSAFE_SCHEMES = ("javascript:", "vbscript:")
_URL_ATTRS = ("href", "src", "xlink:href", "action", "formaction", "poster")
_BLOCK_TAGS = (
    "p", "li", "h1", "h2", "h3", "h4", "h5", "h6", "pre", "blockquote",
    "tr", "td", "th", "div", "br", "hr", "table", "ul", "ol",
)
_HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
_VIDEO_SUFFIXES = {".mp4", ".webm", ".mov"}
_AUDIO_SUFFIXES = {".mp3", ".wav", ".m4a"}


@dataclass(slots=True)
class RenderedDocument:
    html: str
    plain: str
    toc: List[TocItem] = field(default_factory=list)
    first_image: str | None = None
    link_targets: List[str] = field(default_factory=list)
    media_hashes: List[str] = field(default_factory=list)
    word_count: int = 0
    first_paragraph_text: str = ""


@dataclass(slots=True)
class _RenderContext:
    document: DocumentRecord
    issues: IssueCollector | None
    link_targets: List[str] = field(default_factory=list)
    media_hashes: List[str] = field(default_factory=list)

    def add_link(self, doc_hash: str) -> None:
        if doc_hash not in self.link_targets:
            self.link_targets.append(doc_hash)

    def add_media(self, media_hash: str) -> None:
        if media_hash not in self.media_hashes:
            self.media_hashes.append(media_hash)


def wikilink_rule(state: StateInline, silent: bool) -> bool:
    """Inline rule for ``[[target]]`` and ``![[target]]``."""
    pos = state.pos
    src = state.src
    embed = src.startswith("![[", pos)
    if not embed and not src.startswith("[[", pos):
        return False
    start = pos + (3 if embed else 2)
    end = src.find("]]", start)
    if end < 0 or end + 2 > state.posMax:
        return False
    content = src[start:end]
    if not content.strip() or "\n" in content or "[" in content:
        return False
    if not silent:
        token = state.push("wikilink_embed" if embed else "wikilink", "", 0)
        token.content = content.replace("\\|", "|")
        token.markup = src[pos:end + 2]
    state.pos = end + 2
    return True


def create_parser() -> MarkdownIt:
    md = MarkdownIt("commonmark", {"html": True}).enable("table")
    md.inline.ruler.before("link", "wikilink", wikilink_rule)
    return md


def _text(content: str) -> Token:
    return Token("text", "", 0, content=content)


def _link_tokens(href: str, label: str, *, broken: bool = False) -> List[Token]:
    attrs: Dict[str, Any] = {"href": href}
    if broken:
        attrs["class"] = "broken-link"
    return [Token("link_open", "a", 1, attrs=attrs), _text(label), Token("link_close", "a", -1)]


def _is_media_reference(target: str) -> bool:
    return any(target.lower().endswith(suffix) for suffix in MEDIA_SUFFIXES)


def _iter_inline(tokens: Sequence[Token]):
    for token in tokens:
        if token.type == "inline" and token.children:
            yield token


class RenderPipeline:
    """Renders one document body at a time; safe to share between worker threads."""

    def __init__(
        self,
        config: BuildConfig,
        resolver: LinkResolver,
        media_index: MediaIndex,
        diagram_renderer: DiagramRenderer | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.media_index = media_index
        self.diagram_renderer = diagram_renderer if config.diagrams_enabled else None
        self.md = create_parser()

    def render(
        self, body: str, document: DocumentRecord, issues: IssueCollector | None = None
    ) -> RenderedDocument:
        ctx = _RenderContext(document=document, issues=issues)
        tokens = self.md.parse(body, {})
        self._resolve_links(tokens, ctx)
        self._resolve_media(tokens, ctx)
        if self.diagram_renderer is not None:
            tokens = self._render_diagrams(tokens, ctx)
        html = self.md.renderer.render(tokens, self.md.options, {})
        return self._finalize(html, ctx)

    # stage: internal links
    def _resolve_links(self, tokens: Sequence[Token], ctx: _RenderContext) -> None:
        for inline in _iter_inline(tokens):
            children: List[Token] = []
            for child in inline.children:
                if child.type == "wikilink" or (
                    child.type == "wikilink_embed" and not _is_media_reference(child.content.split("|", 1)[0])
                ):
                    children.extend(self._wikilink_tokens(child, ctx))
                    continue
                if child.type == "link_open":
                    self._rewrite_markdown_link(child, ctx)
                children.append(child)
            inline.children = children

    def _wikilink_tokens(self, token: Token, ctx: _RenderContext) -> List[Token]:
        link = parse_wikilink(token.content)
        resolved = self.resolver.resolve(link, source=ctx.document, issues=ctx.issues)
        if resolved.target is not None and resolved.target is not ctx.document:
            ctx.add_link(resolved.target.hash)
        return _link_tokens(resolved.href, resolved.text, broken=resolved.target is None)

    def _rewrite_markdown_link(self, token: Token, ctx: _RenderContext) -> None:
        href = str(token.attrGet("href") or "")
        resolved = self.resolver.resolve_markdown_href(href, source=ctx.document, issues=ctx.issues)
        if resolved is None:
            return
        token.attrSet("href", resolved.href)
        if resolved.target is None:
            token.attrSet("class", "broken-link")
        elif resolved.target is not ctx.document:
            ctx.add_link(resolved.target.hash)

    # stage: media
    def _resolve_media(self, tokens: Sequence[Token], ctx: _RenderContext) -> None:
        for inline in _iter_inline(tokens):
            children: List[Token] = []
            for child in inline.children:
                if child.type == "wikilink_embed":
                    children.append(self._embed_token(child, ctx))
                elif child.type == "image":
                    children.append(self._image_token(child, ctx))
                else:
                    children.append(child)
            inline.children = children

    def _embed_token(self, token: Token, ctx: _RenderContext) -> Token:
        target, _, option = token.content.partition("|")
        target = target.strip()
        option = option.strip()
        record = self.media_index.find(target, ctx.document.path)
        if record is None:
            self._missing_media(ctx, target, token.markup)
            return _text(token.markup)
        ctx.add_media(record.hash)
        alt = "" if _NUMERIC_RE.match(option) else option
        suffix = "." + target.rsplit(".", 1)[-1].lower() if "." in target else ""
        if suffix in IMAGE_SUFFIXES or suffix in (".svg", ".gif"):
            image = self._media_image(record, alt or record.file_name)
            if option and _NUMERIC_RE.match(option):
                width, _, height = option.partition("x")
                image.attrSet("width", width)
                if height:
                    image.attrSet("height", height)
            return image
        return Token("html_inline", "", 0, content=self._media_html(record, suffix, alt))

    def _image_token(self, token: Token, ctx: _RenderContext) -> Token:
        src = str(token.attrGet("src") or "")
        if not src or src.startswith(("http://", "https://", "data:", "//")):
            return token
        record = self.media_index.find(src, ctx.document.path)
        if record is None:
            self._missing_media(ctx, src, f"![{token.content}]({src})")
            return _text(f"![{token.content}]({src})")
        ctx.add_media(record.hash)
        token.attrSet("src", record.url or src)
        best = record.best
        if best is not None and best.width:
            token.attrSet("width", str(best.width))
            token.attrSet("height", str(best.height))
        return token

    def _media_image(self, record: MediaRecord, alt: str) -> Token:
        image = Token("image", "img", 0, attrs={"src": record.url or "", "alt": ""}, content=alt)
        image.children = [_text(alt)]
        best = record.best
        if best is not None and best.width:
            image.attrSet("width", str(best.width))
            image.attrSet("height", str(best.height))
        return image

    def _media_html(self, record: MediaRecord, suffix: str, label: str) -> str:
        url = record.url or ""
        if suffix in _VIDEO_SUFFIXES:
            return f'<video controls src="{url}"></video>'
        if suffix in _AUDIO_SUFFIXES:
            return f'<audio controls src="{url}"></audio>'
        return f'<a href="{url}">{escape(label or record.file_name)}</a>'

    def _missing_media(self, ctx: _RenderContext, reference: str, original: str) -> None:
        # a file that exists but failed processing was already reported by the media stage
        if ctx.issues is not None and not self.media_index.failed(reference, ctx.document.path):
            ctx.issues.add_missing_media(
                file_path=ctx.document.path,
                media_path=reference,
                referenced_from="content",
                original_reference=original,
            )

    # stage: diagrams
    def _render_diagrams(self, tokens: List[Token], ctx: _RenderContext) -> List[Token]:
        rendered: List[Token] = []
        for token in tokens:
            if token.type == "fence" and token.info.strip().lower() == "mermaid":
                try:
                    html = self.diagram_renderer.render(token.content)
                except Exception as exc:  # the fence is kept whatever the renderer raised
                    LOGGER.warning("Diagram in %s failed to render: %s", ctx.document.path, exc)
                    if ctx.issues is not None:
                        ctx.issues.add_diagram_error(
                            file_path=ctx.document.path,
                            error_type=self.diagram_renderer.name,
                            error=exc,
                            diagram=token.content,
                        )
                    rendered.append(token)
                    continue
                rendered.append(Token("html_block", "", 0, content=html + "\n", block=True, map=token.map))
                continue
            rendered.append(token)
        return rendered

    # stage: sanitize and serialize
    def _finalize(self, html: str, ctx: _RenderContext) -> RenderedDocument:
        soup = BeautifulSoup(html, "html.parser")
        sanitize(soup)
        toc = assign_heading_ids(soup)

        first_image = None
        image = soup.find("img")
        if image is not None and image.get("src"):
            first_image = str(image["src"])

        first_paragraph = ""
        for paragraph in soup.find_all("p"):
            text = " ".join(paragraph.get_text(" ").split())
            if text:
                first_paragraph = text
                break

        plain = plain_text(soup)
        return RenderedDocument(
            html=str(soup),
            plain=plain,
            toc=toc,
            first_image=first_image,
            link_targets=list(ctx.link_targets),
            media_hashes=list(ctx.media_hashes),
            word_count=count_words(plain),
            first_paragraph_text=first_paragraph,
        )

    def resolve_frontmatter(
        self,
        frontmatter: Dict[str, Any],
        document: DocumentRecord,
        issues: IssueCollector | None = None,
    ) -> Tuple[Dict[str, Any], List[str]]:
        """Replace ``![[file]]`` values with media addresses.

        Top-level keys also gain ``{key}-{size}`` entries, one per available
        size. Returns the new mapping and the referenced media hashes.
        """
        hashes: List[str] = []

        def resolve(value: Any) -> Tuple[Any, MediaRecord | None]:
            if isinstance(value, str):
                match = FRONTMATTER_EMBED_RE.match(value.strip())
                if not match:
                    return value, None
                reference = match.group(1).split("|", 1)[0].strip()
                record = self.media_index.find(reference, document.path)
                if record is None:
                    if issues is not None and not self.media_index.failed(reference, document.path):
                        issues.add_missing_media(
                            file_path=document.path,
                            media_path=reference,
                            referenced_from="frontmatter",
                            original_reference=value,
                        )
                    return value, None
                if record.hash not in hashes:
                    hashes.append(record.hash)
                return record.url or value, record
            if isinstance(value, list):
                return [resolve(item)[0] for item in value], None
            if isinstance(value, dict):
                return {k: resolve(v)[0] for k, v in value.items()}, None
            return value, None

        result: Dict[str, Any] = {}
        for key, value in frontmatter.items():
            resolved, record = resolve(value)
            result[key] = resolved
            if record is None:
                continue
            for size in list(self.config.image_sizes) + ["original"]:
                variants = {v.key: v for v in record.variants_for_size(size)}
                best_key = select_best_variant(variants, size)
                if best_key is not None:
                    result[f"{key}-{size}"] = variant_address(variants[best_key], self.config)
        return result, hashes


def sanitize(soup: BeautifulSoup) -> None:
    """Strip active content in place.

    Removes scripting and SVG animation elements, event handler attributes,
    ``javascript:``/``vbscript:`` urls, and ``data:`` urls anywhere except an
    image source.
    """
    for tag in soup.find_all(_UNSAFE_TAGS):
        tag.decompose()
    for tag in soup.find_all("style"):
        if tag.find_parent("svg") is None:
            tag.decompose()
    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith("on"):
                del tag[attr]
            elif attr.lower() in _URL_ATTRS:
                value = "".join(str(tag[attr]).split()).lower()
                if value.startswith(_UNSAFE_SCHEMES):
                    del tag[attr]
                elif value.startswith("data:") and not (tag.name == "img" and attr.lower() == "src"):
                    del tag[attr]


def assign_heading_ids(soup: BeautifulSoup) -> List[TocItem]:
    """Give every heading a unique anchor id and return the table of contents."""
    seen: Dict[str, int] = {}
    toc: List[TocItem] = []
    for heading in soup.find_all(_HEADING_TAGS):
        if heading.find_parent("svg") is not None:
            continue
        title = " ".join(heading.get_text(" ").split())
        anchor = slugify_anchor(title) or "section"
        if anchor in seen:
            seen[anchor] += 1
            anchor = f"{anchor}-{seen[anchor]}"
        else:
            seen[anchor] = 0
        heading["id"] = anchor
        toc.append(TocItem(title=title, depth=int(heading.name[1]), id=anchor))
    return toc


def plain_text(soup: BeautifulSoup) -> str:
    """Readable text of the rendered HTML, one block per line, without diagrams."""
    copy = BeautifulSoup(str(soup), "html.parser")
    for tag in copy.find_all(["svg", "style"]):
        tag.decompose()
    for tag in copy.find_all("pre", class_="mermaid"):
        tag.decompose()
    for tag in copy.find_all(_BLOCK_TAGS):
        tag.append(NavigableString("\n"))
    return normalize_whitespace(copy.get_text().splitlines())
