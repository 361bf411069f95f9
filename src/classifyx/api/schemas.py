"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from classifyx.ml.postprocessing import Prediction


class PredictionOut(BaseModel):
    """A single ranked class with its probability."""

    class_index: int = Field(ge=0)
    label: str
    probability: float = Field(ge=0.0, le=1.0)

    @classmethod
    def from_prediction(cls, prediction: Prediction) -> PredictionOut:
        return cls(
            class_index=prediction.class_index,
            label=prediction.display_name,
            probability=prediction.probability,
        )


class ClassifyImageResponse(BaseModel):
    """Response for the classification endpoints."""

    model: str
    width: int = Field(description="Source image width in pixels")
    height: int = Field(description="Source image height in pixels")
    predictions: list[PredictionOut]


class StreamConfig(BaseModel):
    """First message on the stream websocket: dimensions of every following frame."""

    width: int = Field(ge=1)
    height: int = Field(ge=1)


class StreamResult(BaseModel):
    """Per-frame message sent back on the stream websocket."""

    frame: int
    predictions: list[PredictionOut] | None = None
    error: str | None = None
    dropped: int = Field(default=0, description="Frames dropped so far on this stream")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    device: str
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task, e.g. 'image_classification'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str
    num_classes: int


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class LabelsResponse(BaseModel):
    """The label catalog: canonical names keyed by class index."""

    count: int
    labels: dict[int, str]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
