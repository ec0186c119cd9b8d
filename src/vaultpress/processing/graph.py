"""Relationship graph between documents and media, keyed by content hash."""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence

from vaultpress.models import DocumentRecord, Graph, GraphEdge, GraphNode, MediaRecord

LOGGER = logging.getLogger(__name__)


class GraphBuilder:
    """Builds the document/media graph once every slug is final.

    Node ids are content hashes, so they survive renames. Edges pointing at
    unknown hashes are dropped.
    """

    def build(
        self,
        documents: Sequence[DocumentRecord],
        media_records: Mapping[str, MediaRecord],
    ) -> Graph:
        nodes: Dict[str, GraphNode] = {}
        for doc in documents:
            nodes.setdefault(doc.hash, GraphNode(id=doc.hash, kind="document", label=doc.title))
        for media_hash, record in media_records.items():
            nodes.setdefault(media_hash, GraphNode(id=media_hash, kind="media", label=record.file_name))

        edges = set()
        for doc in documents:
            links: List[str] = []
            for target in doc.links:
                node = nodes.get(target)
                if node is None or node.kind != "document" or target == doc.hash:
                    continue
                edges.add(GraphEdge(source=doc.hash, target=target, kind="links-to"))
                if target not in links:
                    links.append(target)
            doc.links = links
            for media_hash in doc.media_hashes:
                node = nodes.get(media_hash)
                if node is not None and node.kind == "media":
                    edges.add(GraphEdge(source=doc.hash, target=media_hash, kind="embeds-media"))

        graph = Graph(
            nodes=sorted(nodes.values(), key=lambda n: (n.kind, n.id)),
            edges=sorted(edges, key=lambda e: (e.source, e.kind, e.target)),
        )
        LOGGER.info("Graph: %d nodes, %d edges", len(graph.nodes), len(graph.edges))
        return graph
