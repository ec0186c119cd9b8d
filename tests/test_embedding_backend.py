"""Tests for embedding backend detection and model loading."""

from __future__ import annotations

import platform
import sys
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from vaultpress.embedding.encoder import EmbeddingConfig, EmbeddingModel, detect_backend


class TestBackendDetection:
    """Test automatic backend selection."""

    @patch("vaultpress.embedding.encoder._onnx_providers", return_value=[])
    def test_torch_without_onnx(self, mock_providers: MagicMock) -> None:
        """Falls back to PyTorch when ONNX Runtime is missing."""
        assert detect_backend() == ("torch", None)

    @patch("vaultpress.embedding.encoder._onnx_providers", return_value=["CPUExecutionProvider"])
    def test_onnx_on_linux(self, mock_providers: MagicMock, monkeypatch: pytest.MonkeyPatch) -> None:
        """Uses ONNX with the standard model when providers exist."""
        monkeypatch.setattr(sys, "platform", "linux")
        assert detect_backend() == ("onnx", None)

    @patch("vaultpress.embedding.encoder._onnx_providers", return_value=["CPUExecutionProvider"])
    def test_apple_silicon(self, mock_providers: MagicMock, monkeypatch: pytest.MonkeyPatch) -> None:
        """Apple Silicon gets the quantized ARM64 export."""
        monkeypatch.setattr(sys, "platform", "darwin")
        monkeypatch.setattr(platform, "machine", lambda: "arm64")
        assert detect_backend() == ("onnx", "onnx/model_qint8_arm64.onnx")


class TestEmbeddingModel:
    """Test model loading with a stubbed SentenceTransformer."""

    @patch("vaultpress.embedding.encoder.SentenceTransformer")
    def test_explicit_torch_backend(self, mock_st: MagicMock) -> None:
        """An explicit backend skips detection."""
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 384
        model = EmbeddingModel(EmbeddingConfig(backend="torch"))

        assert model.dimension == 384
        assert model.config.backend == "torch"
        assert mock_st.call_args[1]["backend"] == "torch"

    @patch("vaultpress.embedding.encoder.SentenceTransformer")
    def test_onnx_model_file_passed(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 768
        EmbeddingModel(EmbeddingConfig(backend="onnx", onnx_model_file="onnx/model.onnx"))
        assert mock_st.call_args[1]["model_kwargs"] == {"file_name": "onnx/model.onnx"}

    @patch("vaultpress.embedding.encoder.SentenceTransformer")
    def test_fallback_to_torch(self, mock_st: MagicMock) -> None:
        """A failing ONNX load retries once with PyTorch."""
        loaded = MagicMock()
        loaded.get_sentence_embedding_dimension.return_value = 768
        mock_st.side_effect = [RuntimeError("onnx broken"), loaded]

        model = EmbeddingModel(EmbeddingConfig(backend="onnx"))

        assert model.config.backend == "torch"
        assert model.config.onnx_model_file is None
        assert mock_st.call_count == 2

    @patch("vaultpress.embedding.encoder.SentenceTransformer")
    def test_torch_failure_propagates(self, mock_st: MagicMock) -> None:
        mock_st.side_effect = RuntimeError("no weights")
        with pytest.raises(RuntimeError):
            EmbeddingModel(EmbeddingConfig(backend="torch"))

    @patch("vaultpress.embedding.encoder.SentenceTransformer")
    def test_embed_returns_float32(self, mock_st: MagicMock) -> None:
        instance = mock_st.return_value
        instance.get_sentence_embedding_dimension.return_value = 2
        instance.encode.return_value = np.array([[1.0, 2.0]], dtype="float64")

        model = EmbeddingModel(EmbeddingConfig(backend="torch"))
        vectors = model.embed(["hello"])

        assert vectors.dtype == np.float32
        assert instance.encode.call_args[1]["normalize_embeddings"] is True
        assert model.name == model.config.model_name
