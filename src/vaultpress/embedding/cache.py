"""Content-hash keyed reuse of post embeddings across builds."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Protocol, Sequence

import numpy as np

from vaultpress.models import DocumentRecord
from vaultpress.utils.text import truncate

LOGGER = logging.getLogger(__name__)

MAX_EMBED_CHARS = 8000
SIMILAR_POSTS = 10

Vector = List[float]


class Embedder(Protocol):
    name: str

    def embed(self, texts: Sequence[str]) -> np.ndarray: ...


@dataclass(slots=True)
class EmbeddingResult:
    hash_map: Dict[str, Vector] = field(default_factory=dict)
    slug_map: Dict[str, Vector] = field(default_factory=dict)
    title_map: Dict[str, Vector] = field(default_factory=dict)
    reused: int = 0
    computed: int = 0
    error: str | None = None
    model: str | None = None


def embedding_text(doc: DocumentRecord) -> str:
    return truncate(f"{doc.title}\n\n{doc.plain}".strip(), MAX_EMBED_CHARS)


class EmbeddingCache:
    """Computes embeddings only for documents whose content hash is new.

    ``previous`` maps content hash to vector from an earlier build; hits are
    carried over unchanged and never sent to the model. The model is created
    lazily, so a fully cached build never loads it.
    """

    def __init__(
        self,
        model_factory: Callable[[], Embedder],
        *,
        concurrency: int = 2,
        batch_size: int = 16,
        cancel: threading.Event | None = None,
    ) -> None:
        self.model_factory = model_factory
        self.concurrency = max(1, concurrency)
        self.batch_size = max(1, batch_size)
        self.cancel = cancel or threading.Event()

    def compute(
        self,
        documents: Sequence[DocumentRecord],
        previous: Mapping[str, Vector] | None = None,
    ) -> EmbeddingResult:
        previous = previous or {}
        result = EmbeddingResult()

        pending: Dict[str, DocumentRecord] = {}
        for doc in documents:
            if doc.hash in result.hash_map or doc.hash in pending:
                continue
            if doc.hash in previous:
                result.hash_map[doc.hash] = list(previous[doc.hash])
                result.reused += 1
            else:
                pending[doc.hash] = doc

        if pending:
            try:
                model = self.model_factory()
            except Exception as exc:
                LOGGER.error("Embedding model initialization failed: %s", exc)
                return EmbeddingResult(error=f"model initialization failed: {exc}")
            result.model = getattr(model, "name", None)
            self._compute_missing(model, list(pending.values()), result)

        for doc in documents:
            vector = result.hash_map.get(doc.hash)
            if vector is None:
                continue
            result.slug_map[doc.slug] = vector
            result.title_map.setdefault(doc.title, vector)

        LOGGER.info(
            "Embeddings: %d reused, %d computed%s",
            result.reused,
            result.computed,
            f" ({result.error})" if result.error else "",
        )
        return result

    def _compute_missing(
        self, model: Embedder, docs: List[DocumentRecord], result: EmbeddingResult
    ) -> None:
        batches = [docs[i:i + self.batch_size] for i in range(0, len(docs), self.batch_size)]
        lock = threading.Lock()
        errors: List[str] = []

        def run(batch: List[DocumentRecord]) -> None:
            if self.cancel.is_set():
                return
            try:
                vectors = model.embed([embedding_text(doc) for doc in batch])
            except Exception as exc:
                LOGGER.warning("Embedding batch of %d documents failed: %s", len(batch), exc)
                with lock:
                    errors.append(str(exc))
                return
            with lock:
                for doc, vector in zip(batch, vectors):
                    result.hash_map[doc.hash] = [float(x) for x in vector]
                    result.computed += 1

        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            list(pool.map(run, batches))

        if self.cancel.is_set():
            errors.append("cancelled")
        if errors:
            result.error = "; ".join(errors)


def compute_similarity(
    hash_map: Mapping[str, Vector], top_n: int = SIMILAR_POSTS
) -> tuple[Dict[str, float], Dict[str, List[str]]]:
    """Cosine similarity for every pair of posts, plus the ``top_n`` neighbours per post.

    Pair keys are ``"{a}-{b}"`` with ``a < b``.
    """
    hashes = sorted(hash_map)
    if len(hashes) < 2:
        return {}, {}
    matrix = np.asarray([hash_map[h] for h in hashes], dtype="float32")
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    unit = matrix / norms
    scores = unit @ unit.T

    pairs: Dict[str, float] = {}
    for i in range(len(hashes) - 1):
        for j in range(i + 1, len(hashes)):
            pairs[f"{hashes[i]}-{hashes[j]}"] = float(scores[i, j])

    similar: Dict[str, List[str]] = {}
    for i, file_hash in enumerate(hashes):
        order = [j for j in np.argsort(-scores[i], kind="stable") if j != i]
        similar[file_hash] = [hashes[j] for j in order[:top_n]]
    return pairs, similar
