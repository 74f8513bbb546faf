"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LoadModelRequest(BaseModel):
    """Request to load a model and its class names."""

    model_config = ConfigDict(protected_namespaces=())

    model_path: str
    model_type: str = Field(description="Model format tag: 'onnx' or 'torchscript' (case-insensitive)")
    class_names_path: str | None = Field(
        default=None,
        description="JSON list or newline-delimited text; omitted or missing falls back to Class_0..Class_999",
    )


class InferImageRequest(BaseModel):
    """Request to classify a single image file."""

    image_path: str


class BatchInferenceRequest(BaseModel):
    """Request to classify every image in a directory."""

    image_dir: str


class InferenceResult(BaseModel):
    """A single ranked prediction."""

    class_id: int = Field(ge=0)
    class_name: str
    probability: float


class BatchResult(BaseModel):
    """Top-1 prediction for one image of a batch."""

    image_name: str
    result: InferenceResult
    inference_time_ms: float


class InferenceStats(BaseModel):
    """Aggregate timing for a batch run."""

    total_images: int
    successful_images: int
    total_time_ms: float
    average_time_ms: float
    fps: float


class InferenceResponse(BaseModel):
    """Uniform response for load, single and batch operations.

    Failures are reported with ``success=False`` and a message, never as an
    HTTP error.
    """

    success: bool
    message: str
    results: list[InferenceResult] | None = None
    batch_results: dict[str, BatchResult] | None = None
    stats: InferenceStats | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_loaded: bool
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about the currently loaded model."""

    model_config = ConfigDict(protected_namespaces=())

    state: str = Field(description="Engine state: 'unloaded' or 'loaded'")
    model_path: str | None
    model_format: str | None
    num_classes: int


class ErrorResponse(BaseModel):
    """Body of HTTP errors raised outside the uniform response, such as a rejected API key."""

    detail: str
