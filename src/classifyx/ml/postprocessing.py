"""Turn raw class scores into a ranked list of labelled predictions."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from classifyx.errors import InvalidInputError
from classifyx.ml.labels import display_name

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.ml.labels import LabelCatalog

DEFAULT_TOP_K: int = 5


@dataclass(frozen=True)
class Prediction:
    """A single ranked classification result."""

    class_index: int
    display_name: str
    probability: float


def softmax(scores: Sequence[float] | NDArray[np.floating]) -> NDArray[np.float64]:
    """Numerically stable softmax over a 1-D score vector.

    Raises:
        InvalidInputError: If the vector is empty, not 1-D, or holds NaN/inf.
    """
    values = np.asarray(scores, dtype=np.float64)
    if values.ndim != 1:
        raise InvalidInputError(f"Expected a 1-D score vector, got shape {values.shape}")
    if values.size == 0:
        raise InvalidInputError("Cannot apply softmax to an empty score vector")
    if not np.all(np.isfinite(values)):
        raise InvalidInputError("Score vector contains NaN or infinite values")

    exps = np.exp(values - values.max())
    return exps / exps.sum()


def top_k(
    probabilities: Sequence[float] | NDArray[np.floating],
    k: int = DEFAULT_TOP_K,
    labels: Mapping[int, str] | None = None,
) -> list[Prediction]:
    """Select the ``k`` most probable classes, highest first.

    Ties keep ascending index order. A ``k`` larger than the number of
    classes returns every class.

    Args:
        probabilities: 1-D probability vector, one entry per class.
        k: Number of predictions to return.
        labels: Index -> canonical name table; missing indices become
            ``class_<index>``.

    Raises:
        InvalidInputError: If ``k`` is negative or the vector is not 1-D.
    """
    if k < 0:
        raise InvalidInputError(f"k must be non-negative, got {k}")
    values = np.asarray(probabilities, dtype=np.float64)
    if values.ndim != 1:
        raise InvalidInputError(f"Expected a 1-D probability vector, got shape {values.shape}")

    order = np.argsort(-values, kind="stable")[:k]
    return [
        Prediction(
            class_index=int(index),
            display_name=display_name(labels, int(index)),
            probability=float(values[index]),
        )
        for index in order
    ]


class Postprocessor:
    """Softmax plus top-K, bound to a label catalog and an expected class count."""

    def __init__(
        self,
        labels: LabelCatalog,
        top_k: int = DEFAULT_TOP_K,
        num_classes: int | None = None,
    ) -> None:
        self.labels = labels
        self.top_k = top_k
        self.num_classes = num_classes

    def __call__(self, scores: Sequence[float] | NDArray[np.floating], k: int | None = None) -> list[Prediction]:
        """Rank a raw score vector.

        Raises:
            InvalidInputError: If the vector length differs from ``num_classes``
                or the scores are otherwise unusable.
        """
        values = np.asarray(scores, dtype=np.float64)
        if self.num_classes is not None and values.size != self.num_classes:
            raise InvalidInputError(f"Expected {self.num_classes} class scores, got {values.size}")
        return top_k(softmax(values), self.top_k if k is None else k, self.labels)
