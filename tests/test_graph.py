"""Tests for the relationship graph builder."""

from __future__ import annotations

from vaultpress.models import DocumentRecord, MediaRecord
from vaultpress.processing.graph import GraphBuilder


def make_doc(name: str, links: list[str] | None = None, media: list[str] | None = None) -> DocumentRecord:
    doc = DocumentRecord(
        path=f"{name}.md",
        file_name=name,
        title=name.title(),
        hash=f"h-{name}",
        desired_slug=name,
        frontmatter={},
        body="",
        slug=name,
    )
    doc.links = list(links or [])
    doc.media_hashes = list(media or [])
    return doc


def make_media(file_hash: str) -> MediaRecord:
    return MediaRecord(hash=file_hash, path=f"{file_hash}.png", file_name=f"{file_hash}.png", mime_type="image/png")


class TestGraphBuilder:
    """Test node and edge construction."""

    def test_nodes_and_edges(self) -> None:
        a = make_doc("a", links=["h-b"], media=["m1"])
        b = make_doc("b", links=["h-a"])
        graph = GraphBuilder().build([a, b], {"m1": make_media("m1")})

        assert {(n.id, n.kind) for n in graph.nodes} == {
            ("h-a", "document"),
            ("h-b", "document"),
            ("m1", "media"),
        }
        assert [(e.source, e.target, e.kind) for e in graph.edges] == [
            ("h-a", "m1", "embeds-media"),
            ("h-a", "h-b", "links-to"),
            ("h-b", "h-a", "links-to"),
        ]

    def test_unknown_targets_dropped(self) -> None:
        a = make_doc("a", links=["h-missing", "h-a"], media=["unknown"])
        graph = GraphBuilder().build([a], {})

        assert graph.edges == []
        assert a.links == []

    def test_duplicate_edges_collapsed(self) -> None:
        a = make_doc("a", links=["h-b", "h-b"])
        b = make_doc("b")
        graph = GraphBuilder().build([a, b], {})

        assert len(graph.edges) == 1
        assert a.links == ["h-b"]

    def test_links_to_media_hash_ignored(self) -> None:
        a = make_doc("a", links=["m1"])
        graph = GraphBuilder().build([a], {"m1": make_media("m1")})
        assert graph.edges == []

    def test_to_dict(self) -> None:
        a = make_doc("a")
        data = GraphBuilder().build([a], {}).to_dict()
        assert data == {"nodes": [{"id": "h-a", "type": "document", "label": "A"}], "edges": []}
