"""Core vaultpress data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

NodeKind = Literal["document", "media"]
EdgeKind = Literal["links-to", "embeds-media"]


@dataclass(slots=True)
class SlugInfo:
    """How a document's slug was derived."""

    desired: str
    disambiguated: str
    final: str
    is_disambiguated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "desired_slug": self.desired,
            "disambiguated_slug": self.disambiguated,
            "final_slug": self.final,
            "is_disambiguated": self.is_disambiguated,
        }


@dataclass(slots=True)
class TocItem:
    title: str
    depth: int
    id: str


@dataclass(slots=True)
class DocumentRecord:
    """A parsed (and later rendered) vault document."""

    path: str
    file_name: str
    title: str
    hash: str
    desired_slug: str
    frontmatter: Dict[str, Any]
    body: str
    folder: str = ""
    explicit_slug: bool = False
    aliases: List[str] = field(default_factory=list)
    slug: str = ""
    url: str = ""
    html: str = ""
    plain: str = ""
    word_count: int = 0
    first_paragraph_text: str = ""
    toc: List[TocItem] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    media_hashes: List[str] = field(default_factory=list)
    first_image: str | None = None
    fs_created: datetime | None = None
    fs_modified: datetime | None = None
    git_created: datetime | None = None
    git_modified: datetime | None = None
    slug_info: SlugInfo | None = None
    render_failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the document, as handed to publishers."""
        return {
            "file_name": self.file_name,
            "slug": self.slug,
            "title": self.title,
            "hash": self.hash,
            "url": self.url,
            "html": self.html,
            "plain": self.plain,
            "word_count": self.word_count,
            "first_paragraph_text": self.first_paragraph_text,
            "frontmatter": to_jsonable(self.frontmatter),
            "toc": [{"title": t.title, "depth": t.depth, "id": t.id} for t in self.toc],
            "original_file_path": self.path,
            "folder": self.folder,
            "links": list(self.links),
            "first_image": self.first_image,
            "fs_created": to_jsonable(self.fs_created),
            "fs_modified": to_jsonable(self.fs_modified),
            "git_created": to_jsonable(self.git_created),
            "git_modified": to_jsonable(self.git_modified),
            "slug_info": self.slug_info.to_dict() if self.slug_info else None,
        }


@dataclass(slots=True)
class MediaVariant:
    """One (size, format) rendition of a media asset."""

    size: str
    format: str
    width: int
    height: int
    output_path: str
    public_path: str
    absolute_url: str | None = None
    bytes: int = 0
    reused: bool = False

    @property
    def key(self) -> str:
        return f"{self.size}-{self.format}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size,
            "format": self.format,
            "width": self.width,
            "height": self.height,
            "output_path": self.output_path,
            "public_path": self.public_path,
            "absolute_url": self.absolute_url,
            "bytes": self.bytes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaVariant":
        return cls(
            size=data["size"],
            format=data["format"],
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
            output_path=data.get("output_path", ""),
            public_path=data["public_path"],
            absolute_url=data.get("absolute_url"),
            bytes=int(data.get("bytes") or 0),
            reused=True,
        )


@dataclass(slots=True)
class MediaRecord:
    """A content-addressed media asset and its variants."""

    hash: str
    path: str
    file_name: str
    mime_type: str
    width: int = 0
    height: int = 0
    source_bytes: int = 0
    variants: Dict[str, MediaVariant] = field(default_factory=dict)
    best_key: str | None = None
    url: str | None = None
    aliases: List[str] = field(default_factory=list)

    @property
    def best(self) -> MediaVariant | None:
        if self.best_key is None:
            return None
        return self.variants.get(self.best_key)

    def variants_for_size(self, size: str) -> List[MediaVariant]:
        return [v for v in self.variants.values() if v.size == size]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "path": self.path,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "width": self.width,
            "height": self.height,
            "bytes": self.source_bytes,
            "aliases": list(self.aliases),
            "variants": {key: v.to_dict() for key, v in sorted(self.variants.items())},
            "best": self.best_key,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaRecord":
        return cls(
            hash=data["hash"],
            path=data.get("path", ""),
            file_name=data.get("file_name", ""),
            mime_type=data.get("mime_type", "application/octet-stream"),
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
            source_bytes=int(data.get("bytes") or 0),
            variants={
                key: MediaVariant.from_dict(value)
                for key, value in (data.get("variants") or {}).items()
            },
            best_key=data.get("best"),
            url=data.get("url"),
            aliases=list(data.get("aliases") or []),
        )


@dataclass(slots=True, frozen=True)
class GraphNode:
    id: str
    kind: NodeKind
    label: str


@dataclass(slots=True, frozen=True)
class GraphEdge:
    source: str
    target: str
    kind: EdgeKind


@dataclass(slots=True)
class Graph:
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [{"id": n.id, "type": n.kind, "label": n.label} for n in self.nodes],
            "edges": [
                {"source": e.source, "target": e.target, "type": e.kind} for e in self.edges
            ],
        }


def format_datetime(value: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with millisecond precision and ``Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def to_jsonable(value: Any) -> Any:
    """Recursively convert datetimes (and containers of them) to JSON-ready values."""
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
