"""Genome compatibility distances.

Niching only ever compares a distance against the compatibility threshold with
a strict ``<``, so a distance need not be a metric. It must be non-negative.

Provided implementations:

    FunctionDistance(fn)
        Adapter for a plain ``fn(a, b) -> float`` callable.

    EuclideanDistance()
        L2 norm of the element-wise difference of array-like genomes.

    HammingDistance(normalized=False)
        Number (or fraction) of positions at which two genomes differ.

Edge cases:
    - Genomes of different shape -> ValueError.
    - Empty genomes have distance 0.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import numpy as np

__all__ = [
    "Distance",
    "EuclideanDistance",
    "FunctionDistance",
    "HammingDistance",
]


class Distance(ABC):
    """Abstract base class for genome compatibility distances."""

    @abstractmethod
    def distance(self, a: Any, b: Any) -> float:
        """Return a non-negative distance between genomes ``a`` and ``b``."""
        pass

    def __call__(self, a: Any, b: Any) -> float:
        return self.distance(a, b)


class FunctionDistance(Distance):
    """Wrap a plain callable as a :class:`Distance`."""

    def __init__(self, fn: Callable[[Any, Any], float]):
        self.fn = fn

    def distance(self, a: Any, b: Any) -> float:
        return float(self.fn(a, b))


def _as_arrays(a: Any, b: Any) -> tuple[np.ndarray, np.ndarray]:
    arr_a = np.asarray(a)
    arr_b = np.asarray(b)
    if arr_a.shape != arr_b.shape:
        raise ValueError(f"Genome shapes differ: {arr_a.shape} vs {arr_b.shape}.")
    return arr_a, arr_b


class EuclideanDistance(Distance):
    """L2 distance between numeric array-like genomes."""

    def distance(self, a: Any, b: Any) -> float:
        arr_a, arr_b = _as_arrays(a, b)
        diff = arr_a.astype(float) - arr_b.astype(float)
        return float(np.linalg.norm(diff.ravel()))


class HammingDistance(Distance):
    """Count of mismatched positions, optionally divided by genome length."""

    def __init__(self, normalized: bool = False):
        self.normalized = normalized

    def distance(self, a: Any, b: Any) -> float:
        arr_a, arr_b = _as_arrays(a, b)
        raw = float(np.count_nonzero(arr_a != arr_b))
        if self.normalized:
            return raw / max(1, arr_a.size)
        return raw
