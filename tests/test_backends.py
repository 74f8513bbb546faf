"""Tests for model formats and inference backends."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from conftest import make_settings

from classifyx.ml.backends import (
    MockBackend,
    ModelFormat,
    OnnxBackend,
    TorchScriptBackend,
    create_backend,
)
from classifyx.ml.errors import InferError, ModelLoadError, UnsupportedFormatError

if TYPE_CHECKING:
    from pathlib import Path


def _tensor() -> np.ndarray:
    return np.zeros((3, 224, 224), dtype=np.float32)


def _model_file(tmp_path: Path, name: str = "model.onnx") -> Path:
    path = tmp_path / name
    path.write_bytes(b"\x00")
    return path


# ---------------------------------------------------------------------------
# ModelFormat
# ---------------------------------------------------------------------------


class TestModelFormat:
    @pytest.mark.parametrize(
        ("tag", "expected"),
        [
            ("onnx", ModelFormat.ONNX),
            ("ONNX", ModelFormat.ONNX),
            ("TorchScript", ModelFormat.TORCHSCRIPT),
            (" torchscript ", ModelFormat.TORCHSCRIPT),
        ],
    )
    def test_parse_known_tags(self, tag: str, expected: ModelFormat) -> None:
        assert ModelFormat.parse(tag) is expected

    @pytest.mark.parametrize("tag", ["tensorflow", "", "pt", "mock"])
    def test_parse_rejects_unknown_tags(self, tag: str) -> None:
        with pytest.raises(UnsupportedFormatError, match="Unsupported model type"):
            ModelFormat.parse(tag)

    def test_create_backend_selects_variant(self) -> None:
        settings = make_settings()
        assert isinstance(create_backend(ModelFormat.ONNX, settings), OnnxBackend)
        assert isinstance(create_backend(ModelFormat.TORCHSCRIPT, settings), TorchScriptBackend)
        assert isinstance(create_backend(ModelFormat.MOCK, settings), MockBackend)


# ---------------------------------------------------------------------------
# OnnxBackend
# ---------------------------------------------------------------------------


class TestOnnxBackend:
    def test_load_missing_file(self, tmp_path: Path) -> None:
        backend = OnnxBackend(make_settings())
        with pytest.raises(ModelLoadError, match="not found"):
            backend.load(tmp_path / "missing.onnx")

    @patch("classifyx.ml.backends.InferenceSession")
    def test_load_corrupt_file(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_session_cls.side_effect = RuntimeError("protobuf parsing failed")
        backend = OnnxBackend(make_settings())

        with pytest.raises(ModelLoadError, match="protobuf parsing failed"):
            backend.load(_model_file(tmp_path))

    @patch("classifyx.ml.backends.InferenceSession")
    def test_load_and_infer(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        input_meta = MagicMock()
        input_meta.name = "pixel_values"
        session = MagicMock()
        session.get_inputs.return_value = [input_meta]
        session.run.return_value = [np.array([[0.1, 0.7, 0.2]], dtype=np.float32)]
        mock_session_cls.return_value = session

        backend = OnnxBackend(make_settings())
        model_path = _model_file(tmp_path)
        backend.load(model_path)
        scores = backend.infer(_tensor())

        mock_session_cls.assert_called_once()
        assert mock_session_cls.call_args.args[0] == str(model_path)
        feed = session.run.call_args.args[1]
        assert feed["pixel_values"].shape == (1, 3, 224, 224)
        np.testing.assert_allclose(scores, [0.1, 0.7, 0.2])

    @patch("classifyx.ml.backends.InferenceSession")
    def test_infer_failure_wrapped(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        session = MagicMock()
        session.run.side_effect = RuntimeError("bad input shape")
        mock_session_cls.return_value = session

        backend = OnnxBackend(make_settings())
        backend.load(_model_file(tmp_path))

        with pytest.raises(InferError, match="bad input shape"):
            backend.infer(_tensor())

    @patch("classifyx.ml.backends.InferenceSession")
    def test_non_numeric_output_wrapped(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        # ZipMap-style classifiers emit a list of {label: probability} maps
        session = MagicMock()
        session.run.return_value = [[{"cat": 0.9, "dog": 0.1}]]
        mock_session_cls.return_value = session

        backend = OnnxBackend(make_settings())
        backend.load(_model_file(tmp_path))

        with pytest.raises(InferError, match="ONNX inference failed"):
            backend.infer(_tensor())

    @patch("classifyx.ml.backends.InferenceSession")
    def test_model_without_inputs_rejected(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        session = MagicMock()
        session.get_inputs.return_value = []
        mock_session_cls.return_value = session

        backend = OnnxBackend(make_settings())
        with pytest.raises(ModelLoadError, match="no usable input"):
            backend.load(_model_file(tmp_path))

        with pytest.raises(InferError):
            backend.infer(_tensor())

    def test_infer_before_load(self) -> None:
        with pytest.raises(InferError):
            OnnxBackend(make_settings()).infer(_tensor())

    def test_provider_building_cpu(self) -> None:
        backend = OnnxBackend(make_settings(device="cpu"))
        assert backend._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        backend = OnnxBackend(make_settings(device="cuda", gpu_mem_limit=1024))
        assert len(backend._providers) == 2
        provider_name, provider_opts = backend._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["gpu_mem_limit"] == 1024
        assert backend._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        backend = OnnxBackend(make_settings(device="openvino"))
        provider_name, _provider_opts = backend._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert backend._providers[1] == "CPUExecutionProvider"

    def test_session_options_threads(self) -> None:
        backend = OnnxBackend(make_settings(intra_op_threads=3, inter_op_threads=2))
        assert backend._session_options.intra_op_num_threads == 3
        assert backend._session_options.inter_op_num_threads == 2


# ---------------------------------------------------------------------------
# TorchScriptBackend
# ---------------------------------------------------------------------------


class TestTorchScriptBackend:
    def test_declines_without_torch(self, tmp_path: Path) -> None:
        backend = TorchScriptBackend(make_settings())
        with patch.dict(sys.modules, {"torch": None}), pytest.raises(UnsupportedFormatError, match="TorchScript"):
            backend.load(_model_file(tmp_path, "model.pt"))

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ModelLoadError):
            TorchScriptBackend(make_settings()).load(tmp_path / "missing.pt")

    def test_load_and_infer_with_jit_module(self, tmp_path: Path) -> None:
        fake_torch = MagicMock()
        module = MagicMock()
        output = MagicMock()
        output.detach.return_value.cpu.return_value.numpy.return_value = np.array([[2.0, 1.0, 3.0]])
        module.return_value = output
        fake_torch.jit.load.return_value = module

        backend = TorchScriptBackend(make_settings())
        model_path = _model_file(tmp_path, "model.pt")
        with patch.dict(sys.modules, {"torch": fake_torch}):
            backend.load(model_path)
            scores = backend.infer(_tensor())

        fake_torch.jit.load.assert_called_once_with(str(model_path), map_location="cpu")
        module.eval.assert_called_once()
        np.testing.assert_allclose(scores, [2.0, 1.0, 3.0])

    def test_unexpected_output_type_wrapped(self, tmp_path: Path) -> None:
        fake_torch = MagicMock()
        module = MagicMock()
        module.return_value = {"logits": [1.0, 2.0]}
        fake_torch.jit.load.return_value = module

        backend = TorchScriptBackend(make_settings())
        with patch.dict(sys.modules, {"torch": fake_torch}):
            backend.load(_model_file(tmp_path, "model.pt"))
            with pytest.raises(InferError, match="TorchScript inference failed"):
                backend.infer(_tensor())

    def test_jit_load_failure(self, tmp_path: Path) -> None:
        fake_torch = MagicMock()
        fake_torch.jit.load.side_effect = RuntimeError("not a zip archive")

        backend = TorchScriptBackend(make_settings())
        with patch.dict(sys.modules, {"torch": fake_torch}), pytest.raises(ModelLoadError, match="zip"):
            backend.load(_model_file(tmp_path, "model.pt"))


# ---------------------------------------------------------------------------
# MockBackend
# ---------------------------------------------------------------------------


class TestMockBackend:
    def test_descending_head(self, tmp_path: Path) -> None:
        backend = MockBackend(num_classes=10)
        backend.load(tmp_path / "anything")

        scores = backend.infer(_tensor())

        assert scores.shape == (10,)
        assert list(np.argsort(-scores, kind="stable")[:5]) == [0, 1, 2, 3, 4]

    def test_infer_before_load(self) -> None:
        with pytest.raises(InferError):
            MockBackend().infer(_tensor())

    def test_small_output(self, tmp_path: Path) -> None:
        backend = MockBackend(num_classes=2)
        backend.load(tmp_path / "anything")
        np.testing.assert_allclose(backend.infer(_tensor()), [100.0, 85.0])
