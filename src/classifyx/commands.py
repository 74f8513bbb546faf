"""Caller-facing operations: load model, infer one image, infer a directory.

Each operation returns an InferenceResponse. Engine errors, pool timeouts
and unexpected exceptions all become ``success=False`` responses with a
readable message; nothing raised inside the engine crosses this boundary.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from classifyx.api.schemas import (
    BatchResult,
    InferenceResponse,
    InferenceResult,
    InferenceStats,
)
from classifyx.ml.backends import ModelFormat
from classifyx.ml.engine import EngineState
from classifyx.ml.errors import ClassifyXError, LabelLoadError, UnsupportedFormatError

if TYPE_CHECKING:
    from classifyx.ml import engine as engine_types
    from classifyx.ml import ranking
    from classifyx.ml.engine import InferenceEngine
    from classifyx.ml.inference import InferencePool

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "Inference engine is busy, try again later"


class InferenceCommands:
    """Runs engine operations on the inference pool and shapes responses."""

    def __init__(self, engine: InferenceEngine, pool: InferencePool) -> None:
        self._engine = engine
        self._pool = pool

    async def load_model(
        self,
        model_path: str,
        model_type: str,
        class_names_path: str | None = None,
    ) -> InferenceResponse:
        try:
            model_format = ModelFormat.parse(model_type)
        except UnsupportedFormatError as exc:
            return _failure(str(exc))

        try:
            await self._pool.run(self._engine.load_model, model_path, model_format, class_names_path)
        except TimeoutError:
            return _failure(BUSY_MESSAGE)
        except ClassifyXError as exc:
            stage = "class names" if isinstance(exc, LabelLoadError) else "model"
            message = f"Failed to load {stage}: {exc}"
            if self._engine.state is EngineState.LOADED:
                message += " (the previously loaded model remains active)"
            logger.warning("%s", message)
            return _failure(message)
        except Exception as exc:
            logger.exception("Unexpected error while loading %s", model_path)
            return _failure(f"Failed to load model: {exc}")

        return InferenceResponse(success=True, message="Model loaded successfully")

    async def infer_single_image(self, image_path: str) -> InferenceResponse:
        try:
            results, elapsed_ms = await self._pool.run(self._engine.infer_one, image_path)
        except TimeoutError:
            return _failure(BUSY_MESSAGE)
        except ClassifyXError as exc:
            return _failure(f"Inference failed: {exc}")
        except Exception as exc:
            logger.exception("Unexpected error while classifying %s", image_path)
            return _failure(f"Inference failed: {exc}")

        logger.info("Inference time: %.2f ms", elapsed_ms)
        return InferenceResponse(
            success=True,
            message=f"Inference finished in {elapsed_ms:.2f} ms",
            results=[_to_result(r) for r in results],
        )

    async def batch_inference(self, image_dir: str) -> InferenceResponse:
        try:
            batch_results, stats = await self._pool.run(self._engine.infer_batch, image_dir)
        except TimeoutError:
            return _failure(BUSY_MESSAGE)
        except ClassifyXError as exc:
            return _failure(f"Batch inference failed: {exc}")
        except Exception as exc:
            logger.exception("Unexpected error during batch inference over %s", image_dir)
            return _failure(f"Batch inference failed: {exc}")

        return InferenceResponse(
            success=True,
            message=f"Batch inference finished: {stats.successful_images}/{stats.total_images} images",
            batch_results={name: _to_batch_result(br) for name, br in batch_results.items()},
            stats=InferenceStats(
                total_images=stats.total_images,
                successful_images=stats.successful_images,
                total_time_ms=stats.total_time_ms,
                average_time_ms=stats.average_time_ms,
                fps=stats.fps,
            ),
        )


def _failure(message: str) -> InferenceResponse:
    return InferenceResponse(success=False, message=message)


def _to_result(result: ranking.InferenceResult) -> InferenceResult:
    return InferenceResult(
        class_id=result.class_id,
        class_name=result.class_name,
        probability=result.probability,
    )


def _to_batch_result(batch_result: engine_types.BatchResult) -> BatchResult:
    return BatchResult(
        image_name=batch_result.image_name,
        result=_to_result(batch_result.result),
        inference_time_ms=batch_result.inference_time_ms,
    )
