"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from classifyx.config import Settings
    from classifyx.ml.model_manager import ModelManager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from classifyx.api.routes import router, stream_router
from classifyx.config import get_settings
from classifyx.errors import DependencyFailureError, InvalidInputError
from classifyx.ml.image_classifier import OnnxImageClassifier
from classifyx.ml.inference import InferencePool
from classifyx.ml.labels import LabelCatalog
from classifyx.ml.model_manager import OnnxModelManager
from classifyx.ml.postprocessing import Postprocessor

logger = logging.getLogger(__name__)

EVICTION_INTERVAL_SECONDS: float = 60.0


def build_labels(settings: Settings) -> LabelCatalog:
    """Load the label catalog from the configured file, or the built-in table."""
    if settings.labels_file is None:
        return LabelCatalog.default()
    return LabelCatalog.from_file(settings.labels_file)


async def _evict_idle_models(model_manager: ModelManager) -> None:
    while True:
        await asyncio.sleep(EVICTION_INTERVAL_SECONDS)
        model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ClassifyX (device=%s, max_concurrent=%s, model=%s, input=%dx%d)",
        settings.device,
        settings.max_concurrent,
        settings.classification_model,
        settings.input_width,
        settings.input_height,
    )

    labels = build_labels(settings)
    app.state.labels = labels

    model_manager = OnnxModelManager(settings)
    # A missing model stops startup
    model_manager.ensure_downloaded(settings.classification_model)
    app.state.model_manager = model_manager

    app.state.classifier = OnnxImageClassifier(
        model_manager,
        settings.classification_model,
        Postprocessor(labels, top_k=settings.top_k, num_classes=settings.num_classes),
        input_width=settings.input_width,
        input_height=settings.input_height,
    )

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    eviction_task = asyncio.create_task(_evict_idle_models(model_manager))

    logger.info("ClassifyX ready")
    yield

    logger.info("Shutting down ClassifyX")
    eviction_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await eviction_task
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("ClassifyX shutdown complete")


async def _invalid_input_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.info("Rejected request to %s: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


async def _dependency_failure_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


async def _timeout_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Inference queue full, rejecting %s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Inference capacity exhausted, retry later"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="ONNX image classification API: top-K ImageNet labels for images and live frames",
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

    application.add_exception_handler(InvalidInputError, _invalid_input_handler)
    application.add_exception_handler(DependencyFailureError, _dependency_failure_handler)
    application.add_exception_handler(TimeoutError, _timeout_handler)

    application.include_router(router)
    application.include_router(stream_router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("classifyx.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
