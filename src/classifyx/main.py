"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from classifyx.config import Settings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classifyx.api.routes import router
from classifyx.commands import InferenceCommands
from classifyx.config import get_settings
from classifyx.ml.engine import InferenceEngine
from classifyx.ml.inference import InferencePool

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def init_state(app: FastAPI, settings: Settings) -> None:
    """Attach settings, engine, pool and command boundary to ``app.state``."""
    engine = InferenceEngine(settings)
    pool = InferencePool(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.inference_pool = pool
    app.state.commands = InferenceCommands(engine, pool)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    logger.info(
        "Starting ClassifyX (device=%s, max_concurrent=%s, input_size=%s, top_k=%s)",
        settings.device,
        settings.max_concurrent,
        settings.input_size,
        settings.top_k,
    )

    init_state(app, settings)

    logger.info("ClassifyX ready, no model loaded yet")
    yield

    logger.info("Shutting down ClassifyX")
    app.state.inference_pool.shutdown()
    logger.info("ClassifyX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="Local image classification inference backend (ONNX / TorchScript)",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
