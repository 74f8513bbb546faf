"""Top-K ranking of raw class scores."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

MAX_TOP_K: int = 5


@dataclass(frozen=True)
class InferenceResult:
    """A single ranked classification prediction."""

    class_id: int
    class_name: str
    probability: float


def softmax(scores: NDArray[np.floating]) -> NDArray[np.float64]:
    """Numerically stable softmax over a 1-D score vector."""
    shifted = scores.astype(np.float64) - np.max(scores)
    exp = np.exp(shifted)
    return exp / exp.sum()


def rank_scores(
    scores: NDArray[np.floating],
    class_names: Sequence[str],
    top_k: int = MAX_TOP_K,
    *,
    apply_softmax: bool = False,
) -> list[InferenceResult]:
    """Return the top ``min(top_k, len(class_names))`` classes, best first.

    Scores beyond the label count are ignored so every ``class_id`` has a
    name. Ties keep ascending ``class_id`` order.
    """
    flat = np.asarray(scores).reshape(-1)[: len(class_names)]
    k = min(top_k, MAX_TOP_K, flat.size)
    if k == 0:
        return []

    values = softmax(flat) if apply_softmax else flat.astype(np.float64)
    # Stable sort on negated scores keeps equal scores in index order.
    order = np.argsort(-flat, kind="stable")[:k]
    return [
        InferenceResult(
            class_id=int(idx),
            class_name=class_names[int(idx)],
            probability=float(values[idx]),
        )
        for idx in order
    ]
