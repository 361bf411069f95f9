"""API route definitions."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from classifyx.api.middleware import verify_api_key, websocket_authorized
from classifyx.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    LabelsResponse,
    ModelInfo,
    ModelsResponse,
    PredictionOut,
    StreamConfig,
    StreamResult,
)
from classifyx.errors import DependencyFailureError, InvalidInputError
from classifyx.ml.inference import FrameGate
from classifyx.ml.model_manager import MODEL_REGISTRY
from classifyx.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.image_classifier import ImageClassifier
    from classifyx.ml.inference import InferencePool
    from classifyx.ml.labels import LabelCatalog
    from classifyx.ml.model_manager import ModelManager
    from classifyx.ml.postprocessing import Prediction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

# Websockets authenticate during the handshake, not through HTTPBearer.
stream_router = APIRouter(prefix="/api/v1")

_CLASSIFY_RESPONSES: dict[int | str, dict[str, object]] = {
    413: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> ImageClassifier:
    classifier: ImageClassifier = request.app.state.classifier
    return classifier


def _predictions_out(predictions: list[Prediction]) -> list[PredictionOut]:
    return [PredictionOut.from_prediction(p) for p in predictions]


async def _read_body(request: Request, expected: int, max_size: int) -> bytes:
    """Read the request body, refusing anything past what the frame size allows.

    A body shorter than ``expected`` is passed through so the preprocessor can
    report the length mismatch.
    """
    limit = min(expected, max_size)
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise HTTPException(status_code=413, detail=f"Body exceeds {limit} bytes")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise HTTPException(status_code=413, detail=f"Body exceeds {limit} bytes")
    return bytes(body)


def _decode_and_classify(
    classifier: ImageClassifier, image_bytes: bytes, max_pixels: int
) -> tuple[list[Prediction], int, int]:
    pixels, width, height = decode_image(image_bytes, max_pixels)
    return classifier.classify_pixels(pixels, width, height), width, height


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses=_CLASSIFY_RESPONSES,
    summary="Classify an uploaded image file",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Decode an uploaded image and return the top-K ranked classes."""
    settings = _get_settings(request)
    image_bytes = await file.read()
    if len(image_bytes) > settings.max_file_size:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)
    predictions, width, height = await pool.run(
        _decode_and_classify, classifier, image_bytes, settings.max_image_pixels
    )
    logger.debug("Classified %s (%dx%d): %s", file.filename, width, height, predictions[:1])
    return ClassifyImageResponse(
        model=classifier.model_name,
        width=width,
        height=height,
        predictions=_predictions_out(predictions),
    )


@router.post(
    "/classify-pixels",
    response_model=ClassifyImageResponse,
    responses=_CLASSIFY_RESPONSES,
    summary="Classify a raw RGBA pixel buffer",
)
async def classify_pixels(
    request: Request,
    width: Annotated[int, Query(ge=1)],
    height: Annotated[int, Query(ge=1)],
) -> ClassifyImageResponse:
    """Classify a request body of ``width * height * 4`` interleaved RGBA bytes."""
    settings = _get_settings(request)
    if width * height > settings.max_image_pixels:
        raise InvalidInputError(f"Frame is {width}x{height}, limit is {settings.max_image_pixels} pixels")

    pixels = await _read_body(request, width * height * 4, settings.max_file_size)
    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)
    predictions = await pool.run(classifier.classify_pixels, pixels, width, height)
    return ClassifyImageResponse(
        model=classifier.model_name,
        width=width,
        height=height,
        predictions=_predictions_out(predictions),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    model_manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        device=settings.device,
        gpu=settings.device in ("cuda", "directml"),
        models_loaded=model_manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and their status based on current configuration."""
    settings = _get_settings(request)
    models = [
        ModelInfo(
            name=spec.name,
            task=spec.task,
            status="active" if spec.name == settings.classification_model else "available",
            license=spec.license,
            num_classes=spec.num_classes,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)


@router.get(
    "/labels",
    response_model=LabelsResponse,
    summary="List known class labels",
)
async def list_labels(request: Request) -> LabelsResponse:
    """Return the canonical label table loaded at startup."""
    labels: LabelCatalog = request.app.state.labels
    return LabelsResponse(count=len(labels), labels=dict(labels))


@stream_router.websocket("/stream")
async def stream(websocket: WebSocket) -> None:
    """Classify live RGBA frames, dropping frames that arrive while one is in flight.

    Protocol: one text message ``{"width": W, "height": H}``, then binary
    frames of ``W * H * 4`` bytes. Every classified frame gets one
    StreamResult message back.
    """
    if not websocket_authorized(websocket):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()

    try:
        config = StreamConfig.model_validate_json(await websocket.receive_text())
    except (ValidationError, KeyError) as exc:
        logger.warning("Rejected stream config: %s", exc)
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA, reason="Invalid stream config")
        return

    pool: InferencePool = websocket.app.state.inference_pool
    classifier: ImageClassifier = websocket.app.state.classifier
    gate = FrameGate()
    pending: set[asyncio.Task[None]] = set()
    frame_count = 0
    logger.info("Stream opened (%dx%d)", config.width, config.height)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            data = message.get("bytes")
            if data is None:
                continue

            frame_count += 1
            if not gate.try_acquire():
                continue
            task = asyncio.create_task(
                _classify_frame(websocket, gate, pool, classifier, config, data, frame_count)
            )
            pending.add(task)
            task.add_done_callback(pending.discard)
    finally:
        for task in pending:
            task.cancel()
        logger.info("Stream closed after %d frames (%d dropped)", frame_count, gate.dropped)


async def _classify_frame(
    websocket: WebSocket,
    gate: FrameGate,
    pool: InferencePool,
    classifier: ImageClassifier,
    config: StreamConfig,
    data: bytes,
    frame: int,
) -> None:
    try:
        predictions = await pool.run(classifier.classify_pixels, data, config.width, config.height)
        result = StreamResult(frame=frame, predictions=_predictions_out(predictions), dropped=gate.dropped)
    except (InvalidInputError, DependencyFailureError, TimeoutError) as exc:
        logger.warning("Frame %d failed: %s", frame, exc)
        result = StreamResult(frame=frame, error=str(exc) or type(exc).__name__, dropped=gate.dropped)
    finally:
        gate.release()

    try:
        await websocket.send_text(result.model_dump_json(exclude_none=True))
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Frame %d result not sent, client gone: %s", frame, exc)
