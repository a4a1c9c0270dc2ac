"""Fitness value type.

Fitness is a thin wrapper around a float that guarantees a total order (NaN is
rejected) and supports the arithmetic needed to compute means: summation and
division by a count or by another fitness. Higher is better.
"""

from __future__ import annotations

import math
from functools import total_ordering


@total_ordering
class Fitness:
    """Totally ordered scalar fitness.

    Parameters
    ----------
    value : float
        Raw fitness. Must not be NaN.
    """

    __slots__ = ("_value",)

    def __init__(self, value: float) -> None:
        value = float(value)
        if math.isnan(value):
            raise ValueError("fitness must not be NaN")
        self._value: float = value

    @classmethod
    def of(cls, value: Fitness | float) -> Fitness:
        """Return ``value`` unchanged if it already is a Fitness, else wrap it."""
        if isinstance(value, Fitness):
            return value
        return cls(value)

    @classmethod
    def zero(cls) -> Fitness:
        return cls(0.0)

    def get(self) -> float:
        return self._value

    # ------------------------------------------------------------------
    # Ordering / hashing
    # ------------------------------------------------------------------
    def __eq__(self, other: object) -> bool:
        if isinstance(other, Fitness):
            return self._value == other._value
        if isinstance(other, (int, float)):
            return self._value == other
        return NotImplemented

    def __lt__(self, other: object) -> bool:
        if isinstance(other, Fitness):
            return self._value < other._value
        if isinstance(other, (int, float)):
            return self._value < other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------
    def __add__(self, other: Fitness | float) -> Fitness:
        if isinstance(other, Fitness):
            return Fitness(self._value + other._value)
        if isinstance(other, (int, float)):
            return Fitness(self._value + other)
        return NotImplemented

    # allows sum() with its default int start value
    __radd__ = __add__

    def __truediv__(self, other: Fitness | float) -> Fitness:
        if isinstance(other, Fitness):
            return Fitness(self._value / other._value)
        if isinstance(other, (int, float)):
            return Fitness(self._value / other)
        return NotImplemented

    def __float__(self) -> float:
        return self._value

    def __repr__(self) -> str:
        return f"Fitness({self._value!r})"
