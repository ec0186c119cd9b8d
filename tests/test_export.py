"""Tests for bundle export and prior-state loading."""

from __future__ import annotations

import json
from pathlib import Path

from vaultpress.embedding.cache import EmbeddingResult
from vaultpress.export import load_embedding_map, load_media_registry, write_bundle
from vaultpress.models import DocumentRecord, MediaRecord, MediaVariant
from vaultpress.vault.builder import BuildResult


def make_result(with_embeddings: bool = False) -> BuildResult:
    doc = DocumentRecord(
        path="notes/a.md",
        file_name="a",
        title="A",
        hash="h-a",
        desired_slug="a",
        frontmatter={"public": True},
        body="",
        slug="a",
        url="/content/a",
        html="<p>hi</p>",
        plain="hi",
        folder="notes",
    )
    other = DocumentRecord(
        path="b.md", file_name="b", title="B", hash="h-b", desired_slug="b", frontmatter={}, body="", slug="b"
    )
    media = MediaRecord(
        hash="m1",
        path="img.png",
        file_name="img.png",
        mime_type="image/png",
        width=10,
        height=5,
        variants={"md-webp": MediaVariant("md", "webp", 10, 5, "/tmp/m1-md.webp", "/_media/m1-md.webp")},
        best_key="md-webp",
        url="/_media/m1-md.webp",
        aliases=["img.png"],
    )
    result = BuildResult(documents=[doc, other], media={"m1": media}, media_paths={"img.png": media.url})
    if with_embeddings:
        result.embeddings = EmbeddingResult(
            hash_map={"h-a": [1.0, 0.0], "h-b": [0.0, 1.0]},
            slug_map={"a": [1.0, 0.0], "b": [0.0, 1.0]},
            computed=2,
        )
    return result


class TestWriteBundle:
    """Test the on-disk bundle layout."""

    def test_layout(self, tmp_path: Path) -> None:
        write_bundle(make_result(), tmp_path)

        assert (tmp_path / "posts" / "hash" / "h-a.json").exists()
        assert (tmp_path / "posts" / "slug" / "a.json").exists()
        for name in ("media.json", "graph.json", "slugs.json", "issues.json"):
            assert (tmp_path / name).exists()
        assert not (tmp_path / "posts-embedding-hash-map.json").exists()

        post = json.loads((tmp_path / "posts" / "slug" / "a.json").read_text())
        assert post["html"] == "<p>hi</p>"
        assert post["original_file_path"] == "notes/a.md"
        index = json.loads((tmp_path / "posts" / "index.json").read_text())
        assert [p["slug"] for p in index] == ["a", "b"]

    def test_embedding_files(self, tmp_path: Path) -> None:
        write_bundle(make_result(with_embeddings=True), tmp_path)

        hash_map = json.loads((tmp_path / "posts-embedding-hash-map.json").read_text())
        assert hash_map == {"h-a": [1.0, 0.0], "h-b": [0.0, 1.0]}
        similarity = json.loads((tmp_path / "posts-similarity.json").read_text())
        assert list(similarity) == ["h-a-h-b"]
        similar = json.loads((tmp_path / "posts-similar-hash.json").read_text())
        assert similar == {"h-a": ["h-b"], "h-b": ["h-a"]}

    def test_issue_report_has_groupings(self, tmp_path: Path) -> None:
        result = make_result()
        result.issues.add_broken_link(file_path="notes/a.md", link_text="x", link_target="x")
        write_bundle(result, tmp_path)

        report = json.loads((tmp_path / "issues.json").read_text())
        assert report["summary"]["error_count"] == 1
        assert "notes/a.md" in report["by_file"]


class TestLoaders:
    """Test loading state from a previous bundle."""

    def test_media_registry_roundtrip(self, tmp_path: Path) -> None:
        write_bundle(make_result(), tmp_path)

        registry = load_media_registry(tmp_path)

        record = registry["m1"]
        assert record.url == "/_media/m1-md.webp"
        assert record.variants["md-webp"].reused

    def test_embedding_map_from_directory(self, tmp_path: Path) -> None:
        write_bundle(make_result(with_embeddings=True), tmp_path)
        assert load_embedding_map(tmp_path)["h-a"] == [1.0, 0.0]

    def test_missing_files(self, tmp_path: Path) -> None:
        assert load_media_registry(tmp_path / "nothing") == {}
        assert load_embedding_map(tmp_path / "nothing.json") == {}
