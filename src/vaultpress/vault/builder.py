"""Vault build orchestration.

Stages run in a fixed order with a barrier between each: enumerate, parse,
allocate slugs, process media, render, build the graph, embed. Parsing,
media and rendering fan out over a thread pool; everything that needs the
whole document set (slugs, link resolution, the graph) runs between pools.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Mapping, Tuple

from vaultpress.config import BuildConfig
from vaultpress.embedding.cache import EmbeddingCache, EmbeddingResult, Embedder, Vector
from vaultpress.embedding.encoder import EmbeddingConfig, EmbeddingModel
from vaultpress.errors import BuildCancelled, ConfigurationError
from vaultpress.ingestion.frontmatter import parse_frontmatter
from vaultpress.issues import IssueCategory, IssueCollector, IssueModule, IssueSeverity
from vaultpress.media.processor import MediaBatch, MediaIndex, MediaProcessor
from vaultpress.models import DocumentRecord, Graph, MediaRecord
from vaultpress.processing.diagrams import DiagramRenderer, create_renderer
from vaultpress.processing.graph import GraphBuilder
from vaultpress.processing.links import LinkResolver
from vaultpress.processing.markdown import RenderPipeline
from vaultpress.processing.slugs import SlugAllocator, SlugRequest
from vaultpress.utils.files import (
    MARKDOWN_SUFFIXES,
    MEDIA_SUFFIXES,
    file_times,
    git_times,
    iter_vault_files,
    load_ignore_patterns,
    relative_posix,
    sha256_bytes,
)
from vaultpress.utils.text import title_from_filename

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BuildStats:
    parsed: int = 0
    skipped: int = 0
    failed: int = 0
    rendered: int = 0
    render_failed: int = 0
    media_processed: int = 0
    media_reused: int = 0
    media_failed: int = 0
    processed_files: list[str] = field(default_factory=list)

    def increment(self, status: str, path: str) -> None:
        if status == "parsed":
            self.parsed += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


@dataclass(slots=True)
class BuildResult:
    documents: List[DocumentRecord] = field(default_factory=list)
    media: Dict[str, MediaRecord] = field(default_factory=dict)
    media_paths: Dict[str, str] = field(default_factory=dict)
    graph: Graph = field(default_factory=Graph)
    slugs: Dict[str, Any] = field(default_factory=dict)
    issues: IssueCollector = field(default_factory=IssueCollector)
    embeddings: EmbeddingResult | None = None
    stats: BuildStats = field(default_factory=BuildStats)

    @property
    def is_empty(self) -> bool:
        return not self.documents


def _frontmatter_text(frontmatter: Mapping[str, Any], key: str) -> str | None:
    value = frontmatter.get(key)
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def _frontmatter_aliases(frontmatter: Mapping[str, Any]) -> List[str]:
    value = frontmatter.get("aliases", frontmatter.get("alias"))
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


class VaultBuilder:
    """Turns a vault directory into a :class:`BuildResult`."""

    def __init__(
        self,
        config: BuildConfig | None = None,
        embedder: Callable[[], Embedder] | None = None,
        *,
        diagram_renderer: DiagramRenderer | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.config = config or BuildConfig()
        self.embedder = embedder
        self.diagram_renderer = diagram_renderer
        self.cancel = cancel or threading.Event()

    def build(
        self,
        root: Path,
        *,
        media_dir: Path | None = None,
        media_registry: Mapping[str, MediaRecord] | None = None,
        previous_embeddings: Mapping[str, Vector] | None = None,
    ) -> BuildResult:
        root = Path(root)
        if not root.is_dir() or not os.access(root, os.R_OK | os.X_OK):
            raise ConfigurationError(f"Vault root is not a readable directory: {root}")

        result = BuildResult()
        issues = result.issues
        ignore = load_ignore_patterns(root, self.config.ignore_files)
        try:
            markdown_files = list(iter_vault_files(root, MARKDOWN_SUFFIXES, ignore))
            media_files = list(iter_vault_files(root, MEDIA_SUFFIXES, ignore))
        except OSError as exc:
            raise ConfigurationError(f"Cannot list vault {root}: {exc}") from exc
        LOGGER.info("Found %d documents and %d media files in %s", len(markdown_files), len(media_files), root)

        documents = self._parse_all(root, markdown_files, result)
        if not documents:
            LOGGER.warning("No publishable documents found")

        self._check_cancel()
        self._apply_folder_slugs(documents, root, markdown_files)
        allocator = SlugAllocator(self.config.slug_strategy, issues)
        slugs = allocator.allocate(
            [SlugRequest(doc.path, doc.desired_slug, doc.hash, doc.explicit_slug) for doc in documents]
        )
        for doc in documents:
            doc.slug_info = slugs[doc.path]
            doc.slug = doc.slug_info.final
            doc.url = self._document_url(doc.slug)
        result.slugs = allocator.table()

        self._check_cancel()
        processor = MediaProcessor(
            self.config,
            root=root,
            output_dir=media_dir or self.config.resolve_media_dir(Path.cwd()),
            issues=issues,
            registry=media_registry,
            cancel=self.cancel,
        )
        batch = processor.process(media_files)
        result.media = batch.records
        result.media_paths = batch.path_map
        result.stats.media_processed = batch.processed
        result.stats.media_reused = batch.reused
        result.stats.media_failed = batch.failed

        self._check_cancel()
        self._render_all(documents, batch, result)

        self._check_cancel()
        result.graph = GraphBuilder().build(documents, batch.records)
        result.documents = documents

        if self.config.embed or self.embedder is not None:
            self._check_cancel()
            cache = EmbeddingCache(
                self.embedder or self._default_embedder,
                concurrency=self.config.embedding_concurrency,
                batch_size=self.config.embedding_batch_size,
                cancel=self.cancel,
            )
            result.embeddings = cache.compute(
                [doc for doc in documents if not doc.render_failed], previous_embeddings
            )
            if result.embeddings.error:
                issues.add(
                    IssueSeverity.WARNING,
                    IssueCategory.CONFIGURATION,
                    IssueModule.EMBEDDING,
                    f"Embeddings incomplete: {result.embeddings.error}",
                )

        LOGGER.info(
            "Built %d documents (%d skipped, %d failed), %d media, %d issues",
            len(documents),
            result.stats.skipped,
            result.stats.failed,
            len(result.media),
            len(issues),
        )
        return result

    def _default_embedder(self) -> EmbeddingModel:
        return EmbeddingModel(
            EmbeddingConfig(model_name=self.config.model_name, batch_size=self.config.embedding_batch_size)
        )

    def _check_cancel(self) -> None:
        if self.cancel.is_set():
            raise BuildCancelled("build cancelled")

    def _document_url(self, slug: str) -> str:
        path = f"{self.config.note_path_prefix}/{slug}"
        if self.config.use_absolute_urls and self.config.domain:
            return f"{self.config.domain}{path}"
        return path

    # parse
    def _parse_all(self, root: Path, paths: List[Path], result: BuildResult) -> List[DocumentRecord]:
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            outcomes = list(pool.map(lambda p: self._parse_safely(root, p, result.issues), paths))

        documents: List[DocumentRecord] = []
        for path, (status, doc) in zip(paths, outcomes):
            result.stats.increment(status, relative_posix(path, root))
            if doc is not None:
                documents.append(doc)
        return documents

    def _parse_safely(
        self, root: Path, path: Path, issues: IssueCollector
    ) -> Tuple[str, DocumentRecord | None]:
        if self.cancel.is_set():
            return "skipped", None
        relative = relative_posix(path, root)
        try:
            return self._parse_one(root, path, issues)
        except Exception as exc:
            LOGGER.error(f"Failed to parse {relative}: {exc}")
            issues.add(
                IssueSeverity.ERROR,
                IssueCategory.PARSE_ERROR,
                IssueModule.FILE_SYSTEM if isinstance(exc, OSError) else IssueModule.MARKDOWN_PARSER,
                f"Failed to parse document: {exc}",
                file_path=relative,
                error_type=type(exc).__name__,
            )
            return "failed", None

    def _parse_one(
        self, root: Path, path: Path, issues: IssueCollector
    ) -> Tuple[str, DocumentRecord | None]:
        relative = relative_posix(path, root)
        raw = path.read_bytes()
        text = raw.decode("utf-8-sig")
        frontmatter, body = parse_frontmatter(text, file_path=relative, issues=issues)

        if not self.config.process_all_files and frontmatter.get("public") is not True:
            LOGGER.debug("Skipping unpublished %s", relative)
            return "skipped", None

        explicit = _frontmatter_text(frontmatter, "slug")
        title = _frontmatter_text(frontmatter, "title") or title_from_filename(path.stem)
        folder = PurePosixPath(relative).parent.as_posix()
        doc = DocumentRecord(
            path=relative,
            file_name=path.stem,
            title=title,
            hash=sha256_bytes(raw),
            desired_slug=explicit or _frontmatter_text(frontmatter, "title") or path.stem,
            frontmatter=frontmatter,
            body=body,
            folder="" if folder == "." else folder,
            explicit_slug=explicit is not None,
            aliases=_frontmatter_aliases(frontmatter),
        )
        doc.fs_created, doc.fs_modified = file_times(path)
        if self.config.include_git_dates:
            doc.git_created, doc.git_modified = git_times(path)
        return "parsed", doc

    def _apply_folder_slugs(self, documents: List[DocumentRecord], root: Path, markdown_files: List[Path]) -> None:
        """An ``index`` note alone in its folder takes the folder's name."""
        per_folder = Counter(relative_posix(p.parent, root) for p in markdown_files)
        for doc in documents:
            if doc.explicit_slug or doc.file_name.lower() != "index" or not doc.folder:
                continue
            if _frontmatter_text(doc.frontmatter, "title"):
                continue
            if per_folder.get(doc.folder, 0) == 1:
                doc.desired_slug = PurePosixPath(doc.folder).name

    # render
    def _render_all(self, documents: List[DocumentRecord], batch: MediaBatch, result: BuildResult) -> None:
        resolver = LinkResolver(documents, prefix=self.config.note_path_prefix)
        renderer = self.diagram_renderer
        if renderer is None and self.config.diagrams_enabled:
            renderer = create_renderer(self.config.diagram_strategy)
        pipeline = RenderPipeline(self.config, resolver, MediaIndex(batch), renderer)

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            outcomes = list(pool.map(lambda d: self._render_safely(pipeline, d, result.issues), documents))
        for ok in outcomes:
            if ok:
                result.stats.rendered += 1
            else:
                result.stats.render_failed += 1

    def _render_safely(self, pipeline: RenderPipeline, doc: DocumentRecord, issues: IssueCollector) -> bool:
        if self.cancel.is_set():
            return False
        try:
            frontmatter, frontmatter_media = pipeline.resolve_frontmatter(doc.frontmatter, doc, issues)
            rendered = pipeline.render(doc.body, doc, issues)
        except Exception as exc:
            LOGGER.error(f"Failed to render {doc.path}: {exc}")
            issues.add(
                IssueSeverity.ERROR,
                IssueCategory.PARSE_ERROR,
                IssueModule.MARKDOWN_PARSER,
                f"Failed to render document: {exc}",
                file_path=doc.path,
                error_type=type(exc).__name__,
            )
            doc.html = ""
            doc.render_failed = True
            return False

        doc.frontmatter = frontmatter
        doc.html = rendered.html
        doc.plain = rendered.plain
        doc.toc = rendered.toc
        doc.word_count = rendered.word_count
        doc.first_paragraph_text = rendered.first_paragraph_text
        doc.first_image = rendered.first_image
        doc.links = rendered.link_targets
        doc.media_hashes = frontmatter_media + [h for h in rendered.media_hashes if h not in frontmatter_media]
        return True
