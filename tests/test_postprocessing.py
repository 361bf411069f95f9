"""Tests for softmax, top-K selection, and the Postprocessor."""

from __future__ import annotations

import numpy as np
import pytest

from classifyx.errors import InvalidInputError
from classifyx.ml.labels import LabelCatalog
from classifyx.ml.postprocessing import Postprocessor, Prediction, softmax, top_k

SCORE_VECTORS: list[list[float]] = [
    [1.0, 2.0, 3.0],
    [0.0],
    [-5.0, 0.0, 5.0, 10.0],
    [3.3, 3.3, 3.3],
    list(np.linspace(-20, 20, 1000)),
]


class TestSoftmax:
    def test_known_values(self) -> None:
        result = softmax([1, 2, 3])
        np.testing.assert_allclose(result, [0.0900, 0.2447, 0.6652], atol=1e-4)

    @pytest.mark.parametrize("scores", SCORE_VECTORS)
    def test_sums_to_one_and_in_open_unit_interval(self, scores: list[float]) -> None:
        result = softmax(scores)

        assert len(result) == len(scores)
        assert abs(result.sum() - 1.0) < 1e-6
        assert np.all(result > 0.0)
        assert np.all(result <= 1.0)

    @pytest.mark.parametrize("shift", [-1000.0, -3.5, 0.0, 7.0, 1e4])
    def test_shift_invariance(self, shift: float) -> None:
        scores = np.array([0.5, -1.2, 3.0, 2.2])
        np.testing.assert_allclose(softmax(scores), softmax(scores + shift), rtol=1e-9, atol=1e-12)

    def test_large_scores_do_not_overflow(self) -> None:
        result = softmax([1000.0, 1000.0])
        np.testing.assert_allclose(result, [0.5, 0.5])

    def test_accepts_float32_array(self) -> None:
        result = softmax(np.array([1, 2, 3], dtype=np.float32))
        assert result.dtype == np.float64

    def test_empty_raises(self) -> None:
        with pytest.raises(InvalidInputError, match="empty"):
            softmax([])

    def test_nan_raises(self) -> None:
        with pytest.raises(InvalidInputError, match="NaN"):
            softmax([1.0, float("nan")])

    def test_two_dimensional_raises(self) -> None:
        with pytest.raises(InvalidInputError, match="1-D"):
            softmax([[1.0, 2.0]])


class TestTopK:
    def test_example(self) -> None:
        result = top_k([0.1, 0.7, 0.2], 2)

        assert [(p.class_index, p.probability) for p in result] == [(1, 0.7), (2, 0.2)]

    def test_default_k_is_five(self) -> None:
        assert len(top_k(np.linspace(0, 1, 10))) == 5

    def test_sorted_non_increasing(self) -> None:
        probs = softmax(np.random.default_rng(0).normal(size=200))
        result = top_k(probs, 17)

        assert len(result) == 17
        values = [p.probability for p in result]
        assert values == sorted(values, reverse=True)
        assert result[0].class_index == int(np.argmax(probs))

    def test_ties_keep_index_order(self) -> None:
        result = top_k([0.2, 0.5, 0.2, 0.1, 0.2], 4)
        assert [p.class_index for p in result] == [1, 0, 2, 4]

    def test_k_larger_than_length_returns_all(self) -> None:
        result = top_k([0.3, 0.7], 10)
        assert [p.class_index for p in result] == [1, 0]

    def test_k_zero_returns_empty(self) -> None:
        assert top_k([0.3, 0.7], 0) == []

    def test_negative_k_raises(self) -> None:
        with pytest.raises(InvalidInputError, match="non-negative"):
            top_k([0.3, 0.7], -1)

    def test_ranking_is_idempotent(self) -> None:
        probs = [0.05, 0.3, 0.05, 0.4, 0.2]
        first = top_k(probs, 3)
        second = top_k([p.probability for p in first], 3)

        assert [p.probability for p in second] == [p.probability for p in first]
        assert [p.class_index for p in second] == [0, 1, 2]

    def test_labels_are_looked_up_and_spaced(self) -> None:
        result = top_k([0.1, 0.2, 0.7], 1, labels=LabelCatalog.default())
        assert result[0] == Prediction(class_index=2, display_name="great white shark", probability=0.7)

    def test_missing_label_falls_back(self) -> None:
        probs = np.zeros(30)
        probs[25] = 1.0

        result = top_k(probs, 1, labels=LabelCatalog.default())

        assert result[0].display_name == "class 25"

    def test_plain_dict_labels(self) -> None:
        result = top_k([0.9, 0.1], 2, labels={0: "sea_lion"})
        assert [p.display_name for p in result] == ["sea lion", "class 1"]

    def test_without_labels(self) -> None:
        assert top_k([1.0], 1)[0].display_name == "class 0"


class TestPostprocessor:
    def test_ranks_raw_scores(self) -> None:
        post = Postprocessor(LabelCatalog.default(), top_k=3, num_classes=5)

        result = post([0.0, 1.0, 5.0, 2.0, -1.0])

        assert [p.class_index for p in result] == [2, 3, 1]
        assert result[0].display_name == "great white shark"
        assert sum(p.probability for p in post([0.0] * 5, k=5)) == pytest.approx(1.0)

    def test_length_mismatch_raises(self) -> None:
        post = Postprocessor(LabelCatalog.default(), num_classes=1000)
        with pytest.raises(InvalidInputError, match="Expected 1000 class scores, got 3"):
            post([1.0, 2.0, 3.0])

    def test_unbounded_class_count(self) -> None:
        post = Postprocessor(LabelCatalog.default(), top_k=2)
        assert len(post([1.0, 2.0, 3.0])) == 2

    def test_empty_scores_raise(self) -> None:
        post = Postprocessor(LabelCatalog.default())
        with pytest.raises(InvalidInputError):
            post([])
