"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, status

from classifyx.api.middleware import verify_api_key
from classifyx.api.schemas import (
    BatchInferenceRequest,
    ErrorResponse,
    HealthResponse,
    InferenceResponse,
    InferImageRequest,
    LoadModelRequest,
    ModelInfo,
)
from classifyx.ml.engine import EngineState

if TYPE_CHECKING:
    from classifyx.commands import InferenceCommands
    from classifyx.config import Settings
    from classifyx.ml.engine import InferenceEngine
    from classifyx.ml.inference import InferencePool

router = APIRouter(
    prefix="/api/v1",
    dependencies=[Depends(verify_api_key)],
    responses={status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse, "description": "Missing or invalid API key"}},
)


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_engine(request: Request) -> InferenceEngine:
    engine: InferenceEngine = request.app.state.engine
    return engine


def _get_commands(request: Request) -> InferenceCommands:
    commands: InferenceCommands = request.app.state.commands
    return commands


@router.post(
    "/models/load",
    response_model=InferenceResponse,
    summary="Load a classification model and its class names",
)
async def load_model(body: LoadModelRequest, request: Request) -> InferenceResponse:
    """Load an ONNX or TorchScript model, replacing any loaded model."""
    return await _get_commands(request).load_model(body.model_path, body.model_type, body.class_names_path)


@router.post(
    "/infer",
    response_model=InferenceResponse,
    summary="Classify a single image",
)
async def infer_single_image(body: InferImageRequest, request: Request) -> InferenceResponse:
    """Classify one image file and return the ranked top-K classes."""
    return await _get_commands(request).infer_single_image(body.image_path)


@router.post(
    "/infer/batch",
    response_model=InferenceResponse,
    summary="Classify every image in a directory",
)
async def batch_inference(body: BatchInferenceRequest, request: Request) -> InferenceResponse:
    """Classify each image in a directory and return per-image top-1 results with timing stats."""
    return await _get_commands(request).batch_inference(body.image_dir)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    engine = _get_engine(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model_loaded=engine.state is EngineState.LOADED,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelInfo,
    summary="Describe the loaded model",
)
async def model_info(request: Request) -> ModelInfo:
    """Return the engine state and the currently loaded model, if any."""
    info = _get_engine(request).info()
    return ModelInfo(
        state=str(info.state),
        model_path=info.model_path,
        model_format=str(info.model_format) if info.model_format is not None else None,
        num_classes=info.num_classes,
    )
