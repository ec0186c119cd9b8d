"""Build configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml

from vaultpress.embedding.encoder import DEFAULT_MODEL
from vaultpress.errors import ConfigurationError

DEFAULT_IMAGE_SIZES: Dict[str, int] = {
    "xs": 320,
    "sm": 640,
    "md": 1024,
    "lg": 1920,
    "xl": 3840,
}

DEFAULT_IMAGE_FORMATS: Dict[str, int] = {
    "webp": 80,
    "jpeg": 85,
}

DEFAULT_IGNORE_FILES: List[str] = [
    "CONTRIBUTING.md",
    "README.md",
    "readme.md",
    "LICENSE.md",
    "node_modules",
    "dist",
    "build",
    "_build",
    "__pycache__",
    "*.tmp",
    "*.log",
]

SUPPORTED_FORMATS = {"webp", "jpeg", "png", "avif"}
DIAGRAM_STRATEGIES = {"inline-svg", "img-svg", "pre-mermaid"}


def _default_workers() -> int:
    return min(8, (os.cpu_count() or 1) + 4)


def _normalize_prefix(prefix: str) -> str:
    """``content/`` -> ``/content``; empty stays empty."""
    stripped = prefix.strip("/")
    return f"/{stripped}" if stripped else ""


@dataclass(slots=True)
class BuildConfig:
    # publishability
    process_all_files: bool = False
    ignore_files: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_FILES))

    # addressing
    note_path_prefix: str = "/content"
    media_path_prefix: str = "/_media"
    use_absolute_urls: bool = False
    domain: str | None = None

    # media
    media_output_dir: Path | None = None
    image_sizes: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_IMAGE_SIZES))
    image_formats: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_IMAGE_FORMATS))
    preferred_size: str = "md"
    skip_existing: bool = True
    force_reprocess: bool = False
    skip_hashes: List[str] = field(default_factory=list)
    use_media_sharding: bool = False

    # slugs
    slug_strategy: Literal["number", "hash"] = "number"

    # diagrams
    diagrams_enabled: bool = True
    diagram_strategy: Literal["inline-svg", "img-svg", "pre-mermaid"] = "inline-svg"

    # documents
    include_git_dates: bool = False
    max_workers: int = field(default_factory=_default_workers)

    # embeddings
    embed: bool = False
    model_name: str = DEFAULT_MODEL
    embedding_batch_size: int = 16
    embedding_concurrency: int = 2

    def __post_init__(self) -> None:
        if self.slug_strategy not in ("number", "hash"):
            raise ConfigurationError(f"Unknown slug strategy: {self.slug_strategy}")
        if self.diagram_strategy not in DIAGRAM_STRATEGIES:
            raise ConfigurationError(f"Unknown diagram strategy: {self.diagram_strategy}")
        unknown = set(self.image_formats) - SUPPORTED_FORMATS
        if unknown:
            raise ConfigurationError(f"Unsupported image formats: {', '.join(sorted(unknown))}")
        if self.preferred_size not in self.image_sizes:
            raise ConfigurationError(f"Preferred size '{self.preferred_size}' is not configured")
        if self.use_absolute_urls and not self.domain:
            raise ConfigurationError("use_absolute_urls requires a domain")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        self.note_path_prefix = _normalize_prefix(self.note_path_prefix)
        self.media_path_prefix = _normalize_prefix(self.media_path_prefix)
        if self.domain:
            self.domain = self.domain.rstrip("/")
        if self.media_output_dir is not None:
            self.media_output_dir = Path(self.media_output_dir)

    def resolve_media_dir(self, base_dir: Path | None = None) -> Path:
        target = self.media_output_dir or Path("dist") / "_media"
        if target.is_absolute() or base_dir is None:
            return target
        return base_dir / target

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        return cls(**data)

    @classmethod
    def from_file(cls, path: Path, **overrides: Any) -> "BuildConfig":
        """Load a YAML config file, applying keyword overrides on top."""
        try:
            data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Failed to read config {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config {path} must contain a mapping")
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)
