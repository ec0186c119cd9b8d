"""Writing a build result to disk and loading prior-build state."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from vaultpress.embedding.cache import Vector, compute_similarity
from vaultpress.models import MediaRecord
from vaultpress.vault.builder import BuildResult

LOGGER = logging.getLogger(__name__)

MEDIA_FILE = "media.json"
EMBEDDING_HASH_MAP_FILE = "posts-embedding-hash-map.json"
EMBEDDING_SLUG_MAP_FILE = "posts-embedding-slug-map.json"


def _write_json(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


def write_bundle(result: BuildResult, out_dir: Path) -> List[Path]:
    """Write every artifact of ``result`` under ``out_dir``; returns the written paths."""
    out_dir = Path(out_dir)
    written: List[Path] = []

    index: List[Dict[str, Any]] = []
    for doc in result.documents:
        data = doc.to_dict()
        written.append(_write_json(out_dir / "posts" / "hash" / f"{doc.hash}.json", data))
        written.append(_write_json(out_dir / "posts" / "slug" / f"{doc.slug}.json", data))
        index.append(
            {
                "slug": doc.slug,
                "hash": doc.hash,
                "title": doc.title,
                "url": doc.url,
                "file_name": doc.file_name,
                "folder": doc.folder,
                "word_count": doc.word_count,
                "first_image": doc.first_image,
            }
        )
    written.append(_write_json(out_dir / "posts" / "index.json", index))

    media = {
        "media": {h: record.to_dict() for h, record in sorted(result.media.items())},
        "path_map": dict(sorted(result.media_paths.items())),
    }
    written.append(_write_json(out_dir / MEDIA_FILE, media))
    written.append(_write_json(out_dir / "graph.json", result.graph.to_dict()))
    written.append(_write_json(out_dir / "slugs.json", result.slugs))
    written.append(_write_json(out_dir / "issues.json", result.issues.report(include_aggregates=True)))

    if result.embeddings is not None:
        embeddings = result.embeddings
        written.append(_write_json(out_dir / EMBEDDING_HASH_MAP_FILE, embeddings.hash_map))
        written.append(_write_json(out_dir / EMBEDDING_SLUG_MAP_FILE, embeddings.slug_map))
        pairs, similar = compute_similarity(embeddings.hash_map)
        written.append(_write_json(out_dir / "posts-similarity.json", pairs))
        written.append(_write_json(out_dir / "posts-similar-hash.json", similar))

    LOGGER.info("Wrote %d files to %s", len(written), out_dir)
    return written


def load_media_registry(path: Path) -> Dict[str, MediaRecord]:
    """Load ``media.json`` from an earlier build; a missing file yields an empty registry."""
    path = Path(path)
    if path.is_dir():
        path = path / MEDIA_FILE
    if not path.exists():
        LOGGER.info("No previous media registry at %s", path)
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    records = data.get("media", data) if isinstance(data, dict) else {}
    return {file_hash: MediaRecord.from_dict(entry) for file_hash, entry in records.items()}


def load_embedding_map(path: Path) -> Dict[str, Vector]:
    """Load a content-hash to vector map; a missing file yields an empty map."""
    path = Path(path)
    if path.is_dir():
        path = path / EMBEDDING_HASH_MAP_FILE
    if not path.exists():
        LOGGER.info("No previous embeddings at %s", path)
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        LOGGER.warning("Ignoring malformed embedding map %s", path)
        return {}
    return {str(k): [float(x) for x in v] for k, v in data.items()}
