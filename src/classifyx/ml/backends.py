"""Model backends: load a model artifact and produce raw class scores.

The set of formats is closed (``ModelFormat``); ``create_backend`` maps each
format to its backend class. Backends are read-only once loaded, so ``infer``
may be called from several threads against one backend.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from classifyx.ml.errors import InferError, ModelLoadError, UnsupportedFormatError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------


class ModelFormat(StrEnum):
    ONNX = "onnx"
    TORCHSCRIPT = "torchscript"
    MOCK = "mock"

    @classmethod
    def parse(cls, tag: str) -> ModelFormat:
        """Match a caller-supplied format tag case-insensitively.

        Only the public formats are accepted; ``mock`` is reserved for tests
        that construct it directly.

        Raises:
            UnsupportedFormatError: For any other tag.
        """
        normalized = tag.strip().lower()
        if normalized == cls.ONNX:
            return cls.ONNX
        if normalized == cls.TORCHSCRIPT:
            return cls.TORCHSCRIPT
        raise UnsupportedFormatError(f"Unsupported model type: {tag!r} (expected 'onnx' or 'torchscript')")


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class InferenceBackend(Protocol):
    """Protocol for a loaded classification model."""

    @property
    def format(self) -> ModelFormat:
        """Return the format this backend executes."""
        ...

    def load(self, path: str | Path) -> None:
        """Load the model artifact at ``path``.

        Raises:
            ModelLoadError: If the file is missing or cannot be parsed.
            UnsupportedFormatError: If the backend cannot run this format here.
        """
        ...

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run a forward pass on a (3, H, W) tensor.

        Returns:
            1-D array of raw per-class scores.

        Raises:
            InferError: If the forward pass fails.
        """
        ...


# ---------------------------------------------------------------------------
# ONNX Runtime
# ---------------------------------------------------------------------------


class OnnxBackend:
    """Runs ONNX models through an onnxruntime InferenceSession."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._session: InferenceSession | None = None
        self._input_name: str | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    @property
    def format(self) -> ModelFormat:
        return ModelFormat.ONNX

    def load(self, path: str | Path) -> None:
        model_path = _require_file(path)
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise ModelLoadError(f"Cannot load ONNX model {model_path}: {exc}") from exc

        try:
            input_name = session.get_inputs()[0].name
        except Exception as exc:
            raise ModelLoadError(f"ONNX model {model_path} declares no usable input: {exc}") from exc

        self._session = session
        self._input_name = input_name
        logger.info("Loaded ONNX session for %s (providers=%s)", model_path, session.get_providers())

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        if self._session is None or self._input_name is None:
            raise InferError("ONNX backend has no loaded session")

        batch = np.expand_dims(tensor, axis=0).astype(np.float32, copy=False)
        try:
            outputs = self._session.run(None, {self._input_name: batch})
            return np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        except Exception as exc:
            raise InferError(f"ONNX inference failed: {exc}") from exc

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts


# ---------------------------------------------------------------------------
# TorchScript
# ---------------------------------------------------------------------------


class TorchScriptBackend:
    """Runs TorchScript modules through ``torch.jit``.

    PyTorch is an optional dependency; without it ``load`` declines with
    UnsupportedFormatError.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._module: Any = None
        self._device = "cuda" if settings.device == "cuda" else "cpu"

    @property
    def format(self) -> ModelFormat:
        return ModelFormat.TORCHSCRIPT

    def load(self, path: str | Path) -> None:
        model_path = _require_file(path)
        try:
            import torch
        except ImportError as exc:
            raise UnsupportedFormatError(
                "TorchScript models are not supported in this install; install classifyx[torch] or use ONNX"
            ) from exc

        try:
            module = torch.jit.load(str(model_path), map_location=self._device)
        except Exception as exc:
            raise ModelLoadError(f"Cannot load TorchScript model {model_path}: {exc}") from exc

        module.eval()
        self._module = module
        logger.info("Loaded TorchScript module %s on %s", model_path, self._device)

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        if self._module is None:
            raise InferError("TorchScript backend has no loaded module")

        import torch

        try:
            batch = torch.from_numpy(np.ascontiguousarray(tensor)).unsqueeze(0).to(self._device)
            with torch.inference_mode():
                output = self._module(batch)
            if isinstance(output, (tuple, list)):
                output = output[0]
            return output.detach().cpu().numpy().astype(np.float32).reshape(-1)
        except Exception as exc:
            raise InferError(f"TorchScript inference failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Mock (tests only)
# ---------------------------------------------------------------------------


class MockBackend:
    """Returns a fixed descending score ranking without running a model.

    Class ``i`` scores ``max(100 - 15 * i, 5)`` for the first ranks and 0 for
    the rest, so the top-5 order is always 0, 1, 2, 3, 4.
    """

    def __init__(self, num_classes: int = 1000) -> None:
        self._num_classes = num_classes
        self.loaded_path: Path | None = None

    @property
    def format(self) -> ModelFormat:
        return ModelFormat.MOCK

    def load(self, path: str | Path) -> None:
        self.loaded_path = Path(path)

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        if self.loaded_path is None:
            raise InferError("Mock backend was not loaded")
        scores = np.zeros(self._num_classes, dtype=np.float32)
        head = min(self._num_classes, 7)
        scores[:head] = [max(100.0 - 15.0 * i, 5.0) for i in range(head)]
        return scores


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_backend(model_format: ModelFormat, settings: Settings) -> InferenceBackend:
    """Build an unloaded backend for ``model_format``."""
    match model_format:
        case ModelFormat.ONNX:
            return OnnxBackend(settings)
        case ModelFormat.TORCHSCRIPT:
            return TorchScriptBackend(settings)
        case ModelFormat.MOCK:
            return MockBackend(settings.default_num_classes)


def _require_file(path: str | Path) -> Path:
    model_path = Path(path)
    if not model_path.is_file():
        raise ModelLoadError(f"Model file not found: {path}")
    return model_path
