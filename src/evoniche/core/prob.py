"""Stochastic helpers shared by the reproduction code.

Both functions take the random source explicitly so that a run is fully
determined by the generator handed in by the caller.
"""

from __future__ import annotations

import math

import numpy as np


def is_probable(probability: float, rng: np.random.Generator) -> bool:
    """Bernoulli trial: return True with the given probability.

    A probability of 1.0 (or more) always succeeds without consuming a draw.
    """
    if probability < 0.0:
        raise ValueError("probability must be >= 0")
    if probability < 1.0:
        return bool(rng.random() < probability)  # half open [0, 1)
    return True


def probabilistic_round(num: float, rng: np.random.Generator) -> int:
    """Round ``num`` up with probability equal to its fractional part, else down.

    The expectation of the result equals ``num``, so repeatedly rounding
    target sizes does not bias the population size in either direction.
    """
    if num < 0.0:
        raise ValueError("num must be >= 0")
    whole = math.floor(num)
    frac = num - whole
    p = rng.random()  # half open [0, 1)
    if p < frac:
        return int(whole) + 1
    return int(whole)
