"""Inference engine: model lifecycle, single-image and directory inference.

All mutable state (backend + label set) sits behind one lock. Load, single
inference and batch inference each hold it for their whole duration, so a
model is never swapped while an inference is running and a batch processes
images strictly one at a time.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from classifyx.ml.backends import InferenceBackend, ModelFormat, create_backend
from classifyx.ml.errors import ClassifyXError, DirectoryError, InferError, LoadError, NotLoadedError
from classifyx.ml.labels import ClassLabelStore
from classifyx.ml.preprocessing import ImagePreprocessor
from classifyx.ml.ranking import InferenceResult, rank_scores

if TYPE_CHECKING:
    from classifyx.config import Settings

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS: frozenset[str] = frozenset({"png", "jpg", "jpeg", "bmp", "webp"})

BackendFactory = Callable[[ModelFormat, "Settings"], InferenceBackend]


class EngineState(StrEnum):
    UNLOADED = "unloaded"
    LOADED = "loaded"


@dataclass(frozen=True)
class BatchResult:
    """Top-1 prediction for one image of a batch."""

    image_name: str
    result: InferenceResult
    inference_time_ms: float


@dataclass(frozen=True)
class InferenceStats:
    """Aggregate timing over one batch run."""

    total_images: int
    successful_images: int
    total_time_ms: float
    average_time_ms: float
    fps: float

    @classmethod
    def from_timings(cls, total_images: int, timings_ms: list[float]) -> InferenceStats:
        successful = len(timings_ms)
        total_time = float(sum(timings_ms))
        return cls(
            total_images=total_images,
            successful_images=successful,
            total_time_ms=total_time,
            average_time_ms=total_time / successful if successful > 0 else 0.0,
            fps=1000.0 * successful / total_time if total_time > 0 else 0.0,
        )


@dataclass(frozen=True)
class EngineInfo:
    """Snapshot of the engine's loaded model."""

    state: EngineState
    model_path: str | None
    model_format: ModelFormat | None
    num_classes: int


@dataclass
class _LoadedModel:
    backend: InferenceBackend
    labels: ClassLabelStore
    path: Path


class InferenceEngine:
    """Owns the loaded model and label set and runs inference against them."""

    def __init__(
        self,
        settings: Settings,
        backend_factory: BackendFactory = create_backend,
        preprocessor: ImagePreprocessor | None = None,
    ) -> None:
        self._settings = settings
        self._backend_factory = backend_factory
        self._preprocessor = preprocessor or ImagePreprocessor(
            input_size=settings.input_size,
            max_image_pixels=settings.max_image_pixels,
        )
        self._lock = threading.Lock()
        self._model: _LoadedModel | None = None

    # -- Public API ---------------------------------------------------------

    # State readers do not take the lock: they read the single _model
    # reference, which load_model replaces wholesale.

    @property
    def state(self) -> EngineState:
        return EngineState.LOADED if self._model is not None else EngineState.UNLOADED

    def info(self) -> EngineInfo:
        model = self._model
        if model is None:
            return EngineInfo(state=EngineState.UNLOADED, model_path=None, model_format=None, num_classes=0)
        return EngineInfo(
            state=EngineState.LOADED,
            model_path=str(model.path),
            model_format=model.backend.format,
            num_classes=len(model.labels),
        )

    def class_names(self) -> list[str]:
        model = self._model
        return model.labels.names if model is not None else []

    def load_model(
        self,
        model_path: str | Path,
        model_format: str | ModelFormat,
        class_names_path: str | Path | None = None,
    ) -> None:
        """Load a model and its labels, replacing the current pair together.

        An unknown format tag fails before any backend is created. If either
        the model or the label stage fails, the previously loaded model and
        labels stay active.

        Raises:
            UnsupportedFormatError: Unknown tag, or the backend declined.
            ModelLoadError: The model file is missing or corrupt.
            LabelLoadError: The label file exists but is invalid.
        """
        fmt = model_format if isinstance(model_format, ModelFormat) else ModelFormat.parse(model_format)

        with self._lock:
            backend = self._backend_factory(fmt, self._settings)
            backend.load(model_path)

            labels = ClassLabelStore(default_count=self._settings.default_num_classes)
            try:
                labels.load(class_names_path)
            except LoadError:
                logger.warning("Label load failed for %s; keeping previous model", model_path)
                raise

            self._model = _LoadedModel(backend=backend, labels=labels, path=Path(model_path))
            logger.info(
                "Model loaded (path=%s, format=%s, classes=%d)",
                model_path,
                fmt,
                len(labels),
            )

    def infer_one(self, image_path: str | Path) -> tuple[list[InferenceResult], float]:
        """Classify one image.

        Returns:
            Ranked results (best first) and elapsed milliseconds covering
            preprocessing and inference.

        Raises:
            NotLoadedError: If no model has been loaded.
            DecodeError: If the image cannot be decoded.
            InferError: If the backend fails.
        """
        with self._lock:
            model = self._require_model()
            return self._infer_locked(model, image_path)

    def infer_batch(self, image_dir: str | Path) -> tuple[dict[str, BatchResult], InferenceStats]:
        """Classify every image in a directory (non-recursive).

        Files that fail to decode or infer are logged and skipped; they count
        toward ``total_images`` but not ``successful_images``.

        Raises:
            NotLoadedError: If no model has been loaded.
            DirectoryError: If the directory cannot be listed.
        """
        with self._lock:
            model = self._require_model()
            candidates = list_images(image_dir)

            results: dict[str, BatchResult] = {}
            timings: list[float] = []
            for image_path in candidates:
                logger.debug("Processing %s", image_path.name)
                try:
                    ranked, elapsed_ms = self._infer_locked(model, image_path)
                except ClassifyXError as exc:
                    logger.warning("Skipping %s: %s", image_path.name, exc)
                    continue
                except Exception:
                    logger.exception("Skipping %s: unexpected backend failure", image_path.name)
                    continue
                if not ranked:
                    logger.warning("Skipping %s: model returned no ranked classes", image_path.name)
                    continue
                results[image_path.name] = BatchResult(
                    image_name=image_path.name,
                    result=ranked[0],
                    inference_time_ms=elapsed_ms,
                )
                timings.append(elapsed_ms)

        stats = InferenceStats.from_timings(len(candidates), timings)
        logger.info(
            "Batch done: %d images, %d successful, total %.2f ms, average %.2f ms, %.2f FPS",
            stats.total_images,
            stats.successful_images,
            stats.total_time_ms,
            stats.average_time_ms,
            stats.fps,
        )
        return results, stats

    # -- Internal -----------------------------------------------------------

    def _require_model(self) -> _LoadedModel:
        if self._model is None:
            raise NotLoadedError("No model loaded; load a model before running inference")
        return self._model

    def _infer_locked(self, model: _LoadedModel, image_path: str | Path) -> tuple[list[InferenceResult], float]:
        start = time.perf_counter()
        tensor = self._preprocessor.preprocess(image_path)
        scores = model.backend.infer(tensor)
        if not np.all(np.isfinite(scores)):
            raise InferError(f"Model produced non-finite scores for {image_path}")
        ranked = rank_scores(
            scores,
            model.labels.names,
            top_k=self._settings.top_k,
            apply_softmax=self._settings.apply_softmax,
        )
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        return ranked, elapsed_ms


def list_images(image_dir: str | Path) -> list[Path]:
    """Return image files directly inside ``image_dir``, sorted by name.

    Extensions are matched case-insensitively against IMAGE_EXTENSIONS.

    Raises:
        DirectoryError: If the path is not a readable directory.
    """
    directory = Path(image_dir)
    if not directory.is_dir():
        raise DirectoryError(f"Not a directory: {image_dir}")
    try:
        entries = list(directory.iterdir())
    except OSError as exc:
        raise DirectoryError(f"Cannot read directory {image_dir}: {exc}") from exc

    images = [p for p in entries if p.is_file() and p.suffix.lower().lstrip(".") in IMAGE_EXTENSIONS]
    return sorted(images, key=lambda p: p.name)
