"""Tests for the Markdown rendering pipeline."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from vaultpress.config import BuildConfig
from vaultpress.errors import DiagramRenderError
from vaultpress.issues import IssueCategory, IssueCollector
from vaultpress.media.processor import MediaBatch, MediaIndex
from vaultpress.models import DocumentRecord, MediaRecord, MediaVariant
from vaultpress.processing.diagrams import DiagramRenderer, MermaidCliRenderer, PreMermaidRenderer
from vaultpress.processing.links import LinkResolver
from vaultpress.processing.markdown import RenderPipeline


def make_doc(path: str, slug: str) -> DocumentRecord:
    stem = path.rsplit("/", 1)[-1].rsplit(".", 1)[0]
    return DocumentRecord(
        path=path,
        file_name=stem,
        title=stem,
        hash=f"hash-{slug}",
        desired_slug=slug,
        frontmatter={},
        body="",
        slug=slug,
    )


def media_batch() -> MediaBatch:
    variants = {
        "md-webp": MediaVariant("md", "webp", 128, 64, "", "/_media/abc-md.webp"),
        "sm-webp": MediaVariant("sm", "webp", 64, 32, "", "/_media/abc-sm.webp"),
    }
    record = MediaRecord(
        hash="abc",
        path="assets/cover.png",
        file_name="cover.png",
        mime_type="image/png",
        width=256,
        height=128,
        variants=variants,
        best_key="md-webp",
        url="/_media/abc-md.webp",
        aliases=["assets/cover.png"],
    )
    return MediaBatch(
        records={"abc": record},
        path_map={"assets/cover.png": record.url},
        path_hashes={"assets/cover.png": "abc"},
    )


class FailingRenderer(DiagramRenderer):
    name = "inline-svg"

    def render(self, source: str) -> str:
        raise DiagramRenderError("mmdc not found on PATH")


class CrashingRenderer(DiagramRenderer):
    def render(self, source: str) -> str:
        raise RuntimeError("renderer crashed")


@pytest.fixture
def docs() -> list[DocumentRecord]:
    return [make_doc("notes/source.md", "source"), make_doc("notes/Other.md", "other")]


def make_pipeline(docs: list[DocumentRecord], renderer: DiagramRenderer | None = None, **config) -> RenderPipeline:
    return RenderPipeline(
        BuildConfig(**config),
        LinkResolver(docs),
        MediaIndex(media_batch()),
        renderer,
    )


class TestStructure:
    """Test headings, text extraction and tables."""

    def test_headings_get_ids_and_toc(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("# Hello World\n\n## Details\n\nText", docs[0])

        assert '<h1 id="hello-world">' in rendered.html
        assert [(t.title, t.depth, t.id) for t in rendered.toc] == [
            ("Hello World", 1, "hello-world"),
            ("Details", 2, "details"),
        ]

    def test_duplicate_headings(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("## Intro\n\n## Intro", docs[0])
        assert [t.id for t in rendered.toc] == ["intro", "intro-1"]

    def test_plain_text_and_counts(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("# Title\n\nFirst *para* here.\n\nSecond one.", docs[0])

        assert rendered.plain == "Title\nFirst para here.\nSecond one."
        assert rendered.first_paragraph_text == "First para here."
        assert rendered.word_count == 6

    def test_tables(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("| a | b |\n|---|---|\n| 1 | 2 |", docs[0])
        assert "<table>" in rendered.html


class TestLinks:
    """Test internal link rewriting."""

    def test_wikilink(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("See [[Other]].", docs[0])

        assert '<a href="/content/other">Other</a>' in rendered.html
        assert rendered.link_targets == ["hash-other"]

    def test_wikilink_alias_and_header(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("[[Other#Part Two|the other]]", docs[0])
        assert '<a href="/content/other#part-two">the other</a>' in rendered.html

    def test_broken_link_still_renders(self, docs: list[DocumentRecord]) -> None:
        issues = IssueCollector()
        rendered = make_pipeline(docs).render("Before [[Nowhere]] after", docs[0], issues)

        assert 'href="#broken-link:Nowhere"' in rendered.html
        assert "broken-link" in rendered.html
        assert "after" in rendered.plain
        assert len(issues.filter(category=IssueCategory.BROKEN_LINK)) == 1
        assert rendered.link_targets == []

    def test_relative_markdown_link(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("[see](Other.md)", docs[0])
        assert 'href="/content/other"' in rendered.html
        assert rendered.link_targets == ["hash-other"]

    def test_note_embed_renders_as_link(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("![[Other]]", docs[0])
        assert '<a href="/content/other">Other</a>' in rendered.html

    def test_self_links_are_not_targets(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("[[#Local]]", docs[0])
        assert 'href="/content/source#local"' in rendered.html
        assert rendered.link_targets == []


class TestMedia:
    """Test media embeds."""

    def test_wiki_embed(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("![[cover.png|A cover]]", docs[0])

        assert 'src="/_media/abc-md.webp"' in rendered.html
        assert 'alt="A cover"' in rendered.html
        assert rendered.first_image == "/_media/abc-md.webp"
        assert rendered.media_hashes == ["abc"]

    def test_embed_width(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("![[cover.png|300]]", docs[0])
        assert 'width="300"' in rendered.html

    def test_markdown_image(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("![alt](../assets/cover.png)", docs[0])
        assert 'src="/_media/abc-md.webp"' in rendered.html
        assert rendered.media_hashes == ["abc"]

    def test_external_image_untouched(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs).render("![x](https://example.com/a.png)", docs[0])
        assert 'src="https://example.com/a.png"' in rendered.html
        assert rendered.media_hashes == []

    def test_missing_media(self, docs: list[DocumentRecord]) -> None:
        issues = IssueCollector()
        rendered = make_pipeline(docs).render("![[nope.png]]", docs[0], issues)

        assert "![[nope.png]]" in rendered.html
        missing = issues.filter(category=IssueCategory.MISSING_MEDIA)
        assert len(missing) == 1
        assert missing[0].context["media_path"] == "nope.png"

    def test_failed_media_not_reported_again(self, docs: list[DocumentRecord]) -> None:
        """A vault file that failed processing is not also reported as missing."""
        batch = media_batch()
        batch.failed_paths.append("assets/broken.png")
        pipeline = RenderPipeline(BuildConfig(), LinkResolver(docs), MediaIndex(batch))
        issues = IssueCollector()

        rendered = pipeline.render("![[broken.png]]\n\n![[nope.png]]", docs[0], issues)

        assert "![[broken.png]]" in rendered.html
        missing = issues.filter(category=IssueCategory.MISSING_MEDIA)
        assert [issue.context["media_path"] for issue in missing] == ["nope.png"]


class TestDiagrams:
    """Test the diagram stage."""

    def test_pre_mermaid(self, docs: list[DocumentRecord]) -> None:
        rendered = make_pipeline(docs, PreMermaidRenderer()).render("```mermaid\ngraph TD; A-->B\n```", docs[0])
        assert '<pre class="mermaid">' in rendered.html
        assert "graph" not in rendered.plain

    def test_render_failure_keeps_code_block(self, docs: list[DocumentRecord]) -> None:
        issues = IssueCollector()
        rendered = make_pipeline(docs, FailingRenderer()).render("```mermaid\ngraph TD\n```", docs[0], issues)

        assert 'class="language-mermaid"' in rendered.html
        errors = issues.filter(category=IssueCategory.DIAGRAM_RENDER_ERROR)
        assert len(errors) == 1
        assert errors[0].context["fallback"] == "code-block"

    def test_unexpected_renderer_error_keeps_code_block(self, docs: list[DocumentRecord]) -> None:
        """Any exception from a renderer falls back to the code block."""
        issues = IssueCollector()
        rendered = make_pipeline(docs, CrashingRenderer()).render(
            "# Title\n\n```mermaid\ngraph TD\n```\n\nAfter.", docs[0], issues
        )

        assert 'class="language-mermaid"' in rendered.html
        assert "After." in rendered.plain
        errors = issues.filter(category=IssueCategory.DIAGRAM_RENDER_ERROR)
        assert len(errors) == 1
        assert "renderer crashed" in errors[0].message
        assert issues.filter(category=IssueCategory.PARSE_ERROR) == []

    def test_cli_output_decode_error_is_render_error(self) -> None:
        """Unreadable mmdc output surfaces as a DiagramRenderError."""

        def write_garbage(command, **kwargs):
            Path(command[command.index("-o") + 1]).write_bytes(b"\xff\xfe<svg>")

        renderer = MermaidCliRenderer("inline-svg", executable="mmdc")
        with patch("vaultpress.processing.diagrams.subprocess.run", side_effect=write_garbage):
            with pytest.raises(DiagramRenderError):
                renderer.render("graph TD")

    def test_disabled(self, docs: list[DocumentRecord]) -> None:
        pipeline = make_pipeline(docs, PreMermaidRenderer(), diagrams_enabled=False)
        rendered = pipeline.render("```mermaid\ngraph TD\n```", docs[0])
        assert 'class="language-mermaid"' in rendered.html


class TestSanitize:
    """Test removal of active content."""

    def test_scripts_and_handlers_removed(self, docs: list[DocumentRecord]) -> None:
        body = '<script>alert(1)</script>\n\nText <a href="javascript:alert(1)" onclick="x()">click</a>'
        rendered = make_pipeline(docs).render(body, docs[0])

        assert "<script" not in rendered.html
        assert "javascript:" not in rendered.html
        assert "onclick" not in rendered.html
        assert "click" in rendered.plain

    def test_svg_animation_removed(self, docs: list[DocumentRecord]) -> None:
        body = (
            '<svg><a><animate attributeName="href" values="javascript:alert(1)"/>'
            '<set attributeName="href" to="javascript:alert(2)"/><text>x</text></a></svg>'
        )
        rendered = make_pipeline(docs).render(body, docs[0])

        assert "javascript:" not in rendered.html
        assert "<animate" not in rendered.html
        assert "<set" not in rendered.html

    def test_data_urls_only_for_images(self, docs: list[DocumentRecord]) -> None:
        body = (
            '<a href="data:text/html;base64,PHNjcmlwdD4=">open</a>\n\n'
            '<img src="data:image/png;base64,iVBORw0KGgo=" alt="dot">'
        )
        rendered = make_pipeline(docs).render(body, docs[0])

        assert "data:text/html" not in rendered.html
        assert 'src="data:image/png;base64,iVBORw0KGgo="' in rendered.html


class TestFrontmatterMedia:
    """Test media references inside frontmatter."""

    def test_resolves_with_size_siblings(self, docs: list[DocumentRecord]) -> None:
        frontmatter = {"title": "Post", "cover": "![[cover.png]]"}
        resolved, hashes = make_pipeline(docs).resolve_frontmatter(frontmatter, docs[0])

        assert resolved["title"] == "Post"
        assert resolved["cover"] == "/_media/abc-md.webp"
        assert resolved["cover-sm"] == "/_media/abc-sm.webp"
        assert resolved["cover-md"] == "/_media/abc-md.webp"
        assert "cover-lg" not in resolved
        assert hashes == ["abc"]

    def test_missing_reference_kept(self, docs: list[DocumentRecord]) -> None:
        issues = IssueCollector()
        resolved, hashes = make_pipeline(docs).resolve_frontmatter({"cover": "![[gone.png]]"}, docs[0], issues)

        assert resolved == {"cover": "![[gone.png]]"}
        assert hashes == []
        assert issues.issues[0].context["referenced_from"] == "frontmatter"
