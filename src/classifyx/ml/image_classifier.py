"""Image classification: preprocess -> ONNX session -> softmax/top-K."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np

from classifyx.errors import DependencyFailureError, InvalidInputError
from classifyx.ml.preprocessing import to_tensor

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.ml.model_manager import ModelManager
    from classifyx.ml.postprocessing import Postprocessor, Prediction

logger = logging.getLogger(__name__)


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify_pixels(self, pixels: bytes | NDArray[np.uint8], width: int, height: int) -> list[Prediction]:
        """Classify an interleaved RGBA buffer and return ranked predictions."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        """Classify an image and return ranked predictions.

        Args:
            image: HxWx3 RGB or HxWx4 RGBA uint8 array.

        Returns:
            Predictions sorted by probability (descending).
        """
        ...


class OnnxImageClassifier:
    """Runs a single-input, single-output ONNX classification model."""

    def __init__(
        self,
        model_manager: ModelManager,
        model_name: str,
        postprocessor: Postprocessor,
        input_width: int = 224,
        input_height: int = 224,
    ) -> None:
        self._model_manager = model_manager
        self._model_name = model_name
        self._postprocessor = postprocessor
        self.input_width = input_width
        self.input_height = input_height

    @property
    def model_name(self) -> str:
        return self._model_name

    def classify_pixels(self, pixels: bytes | NDArray[np.uint8], width: int, height: int) -> list[Prediction]:
        tensor = to_tensor(pixels, width, height, self.input_width, self.input_height)
        scores = self._run(tensor)
        return self._postprocessor(scores)

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        if image.ndim != 3 or image.shape[2] not in (3, 4):
            raise InvalidInputError(f"Expected HxWx3 or HxWx4 image, got shape {image.shape}")
        height, width = image.shape[:2]
        if image.shape[2] == 3:
            alpha = np.full((height, width, 1), 255, dtype=np.uint8)
            image = np.concatenate([image, alpha], axis=2)
        return self.classify_pixels(np.ascontiguousarray(image), width, height)

    def _run(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        try:
            session = self._model_manager.get_session(self._model_name)
            input_name = session.get_inputs()[0].name
            outputs = session.run(None, {input_name: tensor})
        except Exception as exc:
            logger.exception("Inference failed for %s", self._model_name)
            raise DependencyFailureError(f"Inference failed for {self._model_name}: {exc}") from exc

        # Drop the batch axis: (1, num_classes) -> (num_classes,)
        return np.asarray(outputs[0]).reshape(-1)
