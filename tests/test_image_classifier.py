"""Tests for the ONNX image classifier (preprocess -> session -> postprocess)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from classifyx.errors import DependencyFailureError, InvalidInputError
from classifyx.ml.image_classifier import OnnxImageClassifier
from classifyx.ml.labels import LabelCatalog
from classifyx.ml.postprocessing import Postprocessor

NUM_CLASSES = 1000


def _scores(*hot: int) -> np.ndarray:
    scores = np.zeros((1, NUM_CLASSES), dtype=np.float32)
    for rank, index in enumerate(hot):
        scores[0, index] = 10.0 - rank
    return scores


def _make_classifier(session: MagicMock, **kwargs: int) -> tuple[OnnxImageClassifier, MagicMock]:
    manager = MagicMock()
    manager.get_session.return_value = session
    postprocessor = Postprocessor(LabelCatalog.default(), top_k=3, num_classes=NUM_CLASSES)
    return OnnxImageClassifier(manager, "mobilenetv2_10", postprocessor, **kwargs), manager


def _session(scores: np.ndarray) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="input")]
    session.run.return_value = [scores]
    return session


class TestOnnxImageClassifier:
    def test_classify_pixels_ranks_model_output(self) -> None:
        session = _session(_scores(2, 9, 500))
        classifier, manager = _make_classifier(session)

        predictions = classifier.classify_pixels(bytes([255, 0, 0, 255]) * 16, 4, 4)

        manager.get_session.assert_called_once_with("mobilenetv2_10")
        assert [p.class_index for p in predictions] == [2, 9, 500]
        assert [p.display_name for p in predictions] == ["great white shark", "ostrich", "class 500"]
        assert predictions[0].probability > predictions[1].probability > predictions[2].probability

    def test_session_receives_planar_tensor(self) -> None:
        session = _session(_scores(0))
        classifier, _ = _make_classifier(session, input_width=8, input_height=6)

        classifier.classify_pixels(bytes([0, 255, 0, 255]) * 100, 10, 10)

        output_names, feeds = session.run.call_args.args
        assert output_names is None
        tensor = feeds["input"]
        assert tensor.shape == (1, 3, 6, 8)
        assert tensor.dtype == np.float32
        np.testing.assert_allclose(tensor[0, 1], 1.0)
        np.testing.assert_allclose(tensor[0, 0], 0.0)

    def test_classify_accepts_rgb_array(self) -> None:
        session = _session(_scores(7))
        classifier, _ = _make_classifier(session)

        predictions = classifier.classify(np.zeros((12, 16, 3), dtype=np.uint8))

        assert predictions[0].display_name == "cock"
        assert session.run.call_args.args[1]["input"].shape == (1, 3, 224, 224)

    def test_classify_rejects_bad_shape(self) -> None:
        classifier, _ = _make_classifier(_session(_scores(0)))
        with pytest.raises(InvalidInputError, match="HxWx3"):
            classifier.classify(np.zeros((12, 16), dtype=np.uint8))

    def test_malformed_buffer_does_not_reach_session(self) -> None:
        session = _session(_scores(0))
        classifier, _ = _make_classifier(session)

        with pytest.raises(InvalidInputError):
            classifier.classify_pixels(bytes(10), 2, 2)
        session.run.assert_not_called()

    def test_session_failure_becomes_dependency_failure(self) -> None:
        session = _session(_scores(0))
        session.run.side_effect = RuntimeError("provider crashed")
        classifier, _ = _make_classifier(session)

        with pytest.raises(DependencyFailureError, match="provider crashed"):
            classifier.classify_pixels(bytes(16), 2, 2)

    def test_model_load_failure_becomes_dependency_failure(self) -> None:
        classifier, manager = _make_classifier(_session(_scores(0)))
        manager.get_session.side_effect = OSError("no such file")

        with pytest.raises(DependencyFailureError, match="no such file"):
            classifier.classify_pixels(bytes(16), 2, 2)

    def test_wrong_output_size_is_invalid_input(self) -> None:
        classifier, _ = _make_classifier(_session(np.zeros((1, 10), dtype=np.float32)))

        with pytest.raises(InvalidInputError, match="Expected 1000 class scores, got 10"):
            classifier.classify_pixels(bytes(16), 2, 2)

    def test_failure_does_not_poison_later_requests(self) -> None:
        session = _session(_scores(3))
        session.run.side_effect = [RuntimeError("transient"), [_scores(3)]]
        classifier, _ = _make_classifier(session)

        with pytest.raises(DependencyFailureError):
            classifier.classify_pixels(bytes(16), 2, 2)
        assert classifier.classify_pixels(bytes(16), 2, 2)[0].class_index == 3
