"""Content-addressed media processing.

Every asset is identified by the SHA256 of its bytes. Variants are written
under ``{hash}-{size}.{format}`` (optionally sharded by the first two hash
characters), so byte-identical files referenced under different names share
one variant set, and outputs from earlier builds can be reused by checking
for the file on disk.
"""

from __future__ import annotations

import io
import logging
import os
import posixpath
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Sequence
from urllib.parse import unquote

from PIL import Image, ImageOps, UnidentifiedImageError

from vaultpress.config import BuildConfig
from vaultpress.errors import MediaProcessingError
from vaultpress.issues import IssueCollector
from vaultpress.models import MediaRecord, MediaVariant
from vaultpress.utils.files import IMAGE_SUFFIXES, guess_mime_type, relative_posix, sha256_bytes

LOGGER = logging.getLogger(__name__)

SIZE_LADDER = ["md", "sm", "lg", "xl", "xs", "original"]
FORMAT_PREFERENCE = ["webp", "avif", "jpeg", "jpg", "png"]

_PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "png": "PNG", "avif": "AVIF"}


@dataclass(slots=True)
class MediaBatch:
    """Result of processing a set of media paths."""

    records: Dict[str, MediaRecord] = field(default_factory=dict)
    path_map: Dict[str, str] = field(default_factory=dict)
    path_hashes: Dict[str, str] = field(default_factory=dict)
    failed_paths: List[str] = field(default_factory=list)
    processed: int = 0
    reused: int = 0
    failed: int = 0


def select_best_variant(
    variants: Mapping[str, MediaVariant], preferred_size: str | None = None
) -> str | None:
    """Pick the variant key to use as an asset's default address.

    Sizes are tried in the order preferred size, ``md, sm, lg, xl, xs,
    original``; within a size, formats in the order ``webp, avif, jpeg, jpg,
    png`` and then anything else alphabetically.
    """
    if not variants:
        return None
    sizes = [preferred_size] if preferred_size else []
    sizes += [s for s in SIZE_LADDER if s not in sizes]
    sizes += sorted({v.size for v in variants.values()} - set(sizes))
    for size in sizes:
        candidates = {v.format: key for key, v in variants.items() if v.size == size}
        if not candidates:
            continue
        for fmt in FORMAT_PREFERENCE + sorted(set(candidates) - set(FORMAT_PREFERENCE)):
            if fmt in candidates:
                return candidates[fmt]
    return sorted(variants)[0]


def variant_address(variant: MediaVariant, config: BuildConfig) -> str:
    """Public address of a variant: absolute when configured, else root-relative."""
    if config.use_absolute_urls and variant.absolute_url:
        return variant.absolute_url
    return variant.public_path


class MediaProcessor:
    """Produces size/format variants for vault media, deduplicated by content."""

    def __init__(
        self,
        config: BuildConfig,
        *,
        root: Path,
        output_dir: Path,
        issues: IssueCollector | None = None,
        registry: Mapping[str, MediaRecord] | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.root = Path(root)
        self.output_dir = Path(output_dir)
        self.issues = issues if issues is not None else IssueCollector()
        self.registry = dict(registry or {})
        self.cancel = cancel or threading.Event()
        self.skip_hashes = set(config.skip_hashes)
        self._records: Dict[str, MediaRecord] = {}
        self._hash_locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def process(self, paths: Sequence[Path]) -> MediaBatch:
        """Process all ``paths``; failures are recorded as issues and skipped."""
        batch = MediaBatch()
        self.output_dir.mkdir(parents=True, exist_ok=True)
        if not paths:
            return batch

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            results = list(pool.map(self._process_safely, paths))

        for path, record in zip(paths, results):
            relative = relative_posix(path, self.root)
            if record is None:
                batch.failed += 1
                batch.failed_paths.append(relative)
                continue
            batch.path_hashes[relative] = record.hash
            if record.url:
                batch.path_map[relative] = record.url

        for record in self._records.values():
            record.aliases.sort()
            batch.records[record.hash] = record
            if all(v.reused for v in record.variants.values()):
                batch.reused += 1
            else:
                batch.processed += 1

        LOGGER.info(
            "Processed %d media files (%d reused, %d failed, %d unique)",
            len(paths),
            batch.reused,
            batch.failed,
            len(batch.records),
        )
        return batch

    def _process_safely(self, path: Path) -> MediaRecord | None:
        if self.cancel.is_set():
            LOGGER.debug("Cancelled before %s", path)
            return None
        relative = relative_posix(path, self.root)
        try:
            return self.process_one(path)
        except FileNotFoundError as exc:
            self.issues.add_missing_media(file_path=relative, media_path=relative)
            LOGGER.debug("Missing media %s: %s", path, exc)
        except MediaProcessingError as exc:
            self.issues.add_media_error(media_path=relative, operation="optimize", error=exc)
        except OSError as exc:
            self.issues.add_media_error(media_path=relative, operation="read", error=exc)
        return None

    def _lock_for(self, file_hash: str) -> threading.Lock:
        with self._guard:
            return self._hash_locks.setdefault(file_hash, threading.Lock())

    def process_one(self, path: Path) -> MediaRecord:
        """Process one file and return its (possibly shared) record."""
        relative = relative_posix(path, self.root)
        data = path.read_bytes()
        file_hash = sha256_bytes(data)

        with self._lock_for(file_hash):
            existing = self._records.get(file_hash)
            if existing is not None:
                existing.aliases.append(relative)
                LOGGER.debug("Duplicate media %s shares %s", relative, file_hash[:12])
                return existing

            record = MediaRecord(
                hash=file_hash,
                path=relative,
                file_name=path.name,
                mime_type=guess_mime_type(path),
                source_bytes=len(data),
                aliases=[relative],
            )
            if path.suffix.lower() in IMAGE_SUFFIXES:
                self._build_image_variants(record, data, path.suffix.lower())
            else:
                self._build_passthrough_variant(record, data, path.suffix.lower())

            record.best_key = select_best_variant(record.variants, self.config.preferred_size)
            best = record.best
            if best is not None:
                record.url = self._address(best)
            self._records[file_hash] = record
            return record

    def _address(self, variant: MediaVariant) -> str:
        return variant_address(variant, self.config)

    def _locate(self, file_hash: str, size: str, fmt: str) -> tuple[Path, str, str | None]:
        name = f"{file_hash}.{fmt}" if size == "original" else f"{file_hash}-{size}.{fmt}"
        relative = f"{file_hash[:2]}/{name}" if self.config.use_media_sharding else name
        public_path = f"{self.config.media_path_prefix}/{relative}"
        absolute = f"{self.config.domain}{public_path}" if self.config.domain else None
        return self.output_dir / relative, public_path, absolute

    def _build_image_variants(self, record: MediaRecord, data: bytes, suffix: str) -> None:
        prior = self.registry.get(record.hash)
        if prior is not None and prior.width:
            record.width, record.height = prior.width, prior.height

        if record.hash in self.skip_hashes and prior is not None:
            LOGGER.debug("Hash-skipped %s, reusing recorded variants", record.path)
            record.variants = {k: _as_reused(v) for k, v in prior.variants.items()}
            return

        slots: list[tuple[str, str, int, int, MediaVariant | None]] = []
        for size, width in self.config.image_sizes.items():
            for fmt, quality in self.config.image_formats.items():
                slots.append((size, fmt, width, quality, self._reuse_existing(record, prior, size, fmt)))

        skipped = record.hash in self.skip_hashes
        must_encode = not skipped and any(variant is None for *_, variant in slots)
        # Decode only when something must be encoded or the source size is unknown.
        image = None
        if record.width == 0 or must_encode:
            image = _decode(data)
            record.width, record.height = image.size

        if skipped:
            LOGGER.debug("Hash-skipped %s", record.path)
        for size, fmt, width, quality, variant in slots:
            if variant is None:
                if skipped:
                    variant = self._planned_variant(record, size, fmt, width)
                else:
                    if self.cancel.is_set():
                        raise MediaProcessingError("cancelled")
                    variant = self._encode(record, image, size, fmt, width, quality)
            record.variants[variant.key] = variant

    def _planned_variant(self, record: MediaRecord, size: str, fmt: str, width: int) -> MediaVariant:
        out_path, public_path, absolute = self._locate(record.hash, size, fmt)
        w, h = _scaled(record.width, record.height, width)
        return MediaVariant(
            size=size,
            format=fmt,
            width=w,
            height=h,
            output_path=str(out_path),
            public_path=public_path,
            absolute_url=absolute,
            reused=True,
        )

    def _reuse_existing(
        self, record: MediaRecord, prior: MediaRecord | None, size: str, fmt: str
    ) -> MediaVariant | None:
        if self.config.force_reprocess or not self.config.skip_existing:
            return None
        out_path, public_path, absolute = self._locate(record.hash, size, fmt)
        if not out_path.exists():
            return None
        key = f"{size}-{fmt}"
        if prior is not None and key in prior.variants:
            return _as_reused(prior.variants[key])
        try:
            with Image.open(out_path) as existing:
                width, height = existing.size
        except (UnidentifiedImageError, OSError):
            LOGGER.debug("Existing output %s unreadable, re-encoding", out_path)
            return None
        return MediaVariant(
            size=size,
            format=fmt,
            width=width,
            height=height,
            output_path=str(out_path),
            public_path=public_path,
            absolute_url=absolute,
            bytes=out_path.stat().st_size,
            reused=True,
        )

    def _encode(
        self, record: MediaRecord, image: Image.Image, size: str, fmt: str, width: int, quality: int
    ) -> MediaVariant:
        out_path, public_path, absolute = self._locate(record.hash, size, fmt)
        target_w, target_h = _scaled(image.width, image.height, width)
        rendition = image
        if (target_w, target_h) != image.size:
            rendition = image.resize((target_w, target_h), Image.Resampling.LANCZOS)
        if fmt == "jpeg" and rendition.mode not in ("RGB", "L"):
            rendition = rendition.convert("RGB")

        params: Dict[str, object] = {"optimize": True} if fmt == "png" else {"quality": quality}
        try:
            _atomic_write(out_path, lambda handle: rendition.save(handle, _PIL_FORMATS[fmt], **params))
        except (OSError, ValueError, KeyError) as exc:
            raise MediaProcessingError(f"cannot encode {fmt}: {exc}") from exc

        LOGGER.debug("Saved %s (%dx%d)", public_path, target_w, target_h)
        return MediaVariant(
            size=size,
            format=fmt,
            width=target_w,
            height=target_h,
            output_path=str(out_path),
            public_path=public_path,
            absolute_url=absolute,
            bytes=out_path.stat().st_size,
        )

    def _build_passthrough_variant(self, record: MediaRecord, data: bytes, suffix: str) -> None:
        fmt = suffix.lstrip(".") or "bin"
        out_path, public_path, absolute = self._locate(record.hash, "original", fmt)
        reused = out_path.exists() and not self.config.force_reprocess
        if not reused and record.hash not in self.skip_hashes:
            try:
                _atomic_write(out_path, lambda handle: handle.write(data))
            except OSError as exc:
                raise MediaProcessingError(f"cannot copy: {exc}") from exc
        variant = MediaVariant(
            size="original",
            format=fmt,
            width=0,
            height=0,
            output_path=str(out_path),
            public_path=public_path,
            absolute_url=absolute,
            bytes=len(data),
            reused=reused or record.hash in self.skip_hashes,
        )
        record.variants[variant.key] = variant


def _decode(data: bytes) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as opened:
            image = ImageOps.exif_transpose(opened)
            image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise MediaProcessingError(f"cannot decode image: {exc}") from exc
    return image


def _scaled(width: int, height: int, target_width: int) -> tuple[int, int]:
    """Fit inside ``target_width`` without enlarging."""
    if width <= target_width or width == 0:
        return width, height
    return target_width, max(1, round(height * target_width / width))


def _as_reused(variant: MediaVariant) -> MediaVariant:
    return MediaVariant(
        size=variant.size,
        format=variant.format,
        width=variant.width,
        height=variant.height,
        output_path=variant.output_path,
        public_path=variant.public_path,
        absolute_url=variant.absolute_url,
        bytes=variant.bytes,
        reused=True,
    )


def _atomic_write(target: Path, write) -> None:
    """Write through a temp file and rename; an existing target is never clobbered mid-write."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=target.suffix)
    try:
        with os.fdopen(fd, "wb") as handle:
            write(handle)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class MediaIndex:
    """Read-only lookup from a reference written in a document to its media record.

    References are tried relative to the referencing document, then relative
    to the vault root, then by bare file name (first path in traversal order
    wins).
    """

    def __init__(self, batch: MediaBatch) -> None:
        self._records = batch.records
        self._by_path: Dict[str, str] = {}
        self._by_name: Dict[str, str] = {}
        for relative, file_hash in batch.path_hashes.items():
            self._by_path[relative.casefold()] = file_hash
            self._by_name.setdefault(posixpath.basename(relative).casefold(), file_hash)
        self._failed_paths = {p.casefold() for p in batch.failed_paths}
        self._failed_names = {posixpath.basename(p).casefold() for p in batch.failed_paths}

    def __len__(self) -> int:
        return len(self._records)

    def find(self, reference: str, source_path: str = "") -> MediaRecord | None:
        reference = _clean_reference(reference)
        if not reference:
            return None
        candidates = _candidate_paths(reference, source_path)
        for candidate in candidates:
            file_hash = self._by_path.get(candidate.casefold())
            if file_hash:
                return self._records.get(file_hash)
        file_hash = self._by_name.get(posixpath.basename(reference).casefold())
        return self._records.get(file_hash) if file_hash else None

    def failed(self, reference: str, source_path: str = "") -> bool:
        """True when ``reference`` names a vault file that failed processing."""
        reference = _clean_reference(reference)
        if not reference:
            return False
        if any(c.casefold() in self._failed_paths for c in _candidate_paths(reference, source_path)):
            return True
        return posixpath.basename(reference).casefold() in self._failed_names


def _clean_reference(reference: str) -> str:
    return unquote(reference.strip()).split("#", 1)[0].split("?", 1)[0]


def _candidate_paths(reference: str, source_path: str) -> list[str]:
    base = posixpath.dirname(source_path)
    return [
        posixpath.normpath(posixpath.join(base, reference)),
        posixpath.normpath(reference.lstrip("/")),
    ]
