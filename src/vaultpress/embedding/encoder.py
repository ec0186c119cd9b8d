"""Sentence-transformers model wrapper used for post embeddings."""

from __future__ import annotations

import logging
import platform
import sys
from dataclasses import dataclass
from typing import Iterable, Literal, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"

logger = logging.getLogger(__name__)


def _onnx_providers() -> list[str]:
    try:
        import onnxruntime as ort
    except ImportError:
        return []
    return ort.get_available_providers()


def detect_backend() -> tuple[Literal["torch", "onnx"], str | None]:
    """Pick ``onnx`` when ONNX Runtime is installed, otherwise ``torch``.

    Returns ``(backend, onnx_model_file)``; Apple Silicon gets the quantized
    ARM64 export.
    """
    providers = _onnx_providers()
    if not providers:
        logger.info("ONNX Runtime not available, using PyTorch backend")
        return "torch", None
    if sys.platform == "darwin" and platform.machine() == "arm64":
        logger.info("Apple Silicon detected - using quantized ONNX model")
        return "onnx", "onnx/model_qint8_arm64.onnx"
    logger.info("Using ONNX backend (providers: %s)", ", ".join(providers))
    return "onnx", None


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] | None = None
    onnx_model_file: str | None = None
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for document embeddings.

    A failing non-torch backend falls back to PyTorch once; a failing torch
    load propagates to the caller.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        if self.config.backend is None:
            self.config.backend, self.config.onnx_model_file = detect_backend()

        try:
            self._model = self._load_model()
        except Exception as exc:
            if self.config.backend == "torch":
                raise
            logger.warning(
                "Failed to load model with backend '%s': %s. Falling back to PyTorch.",
                self.config.backend,
                exc,
            )
            self.config.backend = "torch"
            self.config.onnx_model_file = None
            self._model = self._load_model()

        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded %s (backend: %s, dimension: %d)",
            self.config.model_name,
            self.config.backend,
            self.dimension,
        )

    @property
    def name(self) -> str:
        return self.config.model_name

    def _load_model(self) -> SentenceTransformer:
        model_kwargs = {}
        if self.config.backend == "onnx" and self.config.onnx_model_file:
            model_kwargs["file_name"] = self.config.onnx_model_file
        return SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
            model_kwargs=model_kwargs or None,
        )

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        embeddings = self._model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)
