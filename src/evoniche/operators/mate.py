"""
evoniche.operators.mate
=======================

Mating operators. A mating operator produces exactly one offspring genome
from two parents:

    mate(self, better, other, self_mated, rng) -> genome

Where:
    - better: genome of the parent that performs at least as well as ``other``
    - other: genome of the second parent
    - self_mated: True when both arguments are the same individual
    - rng: numpy.random.Generator to draw all randomness from

There is no need to use both parents; a mating operator may equally well be
mutation only. Usually it is crossover, mutation, or both.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import numpy as np

from evoniche.core.prob import is_probable


class Mate(ABC):
    """Abstract base class for mating operators."""

    @abstractmethod
    def mate(self, better: Any, other: Any, self_mated: bool, rng: np.random.Generator) -> Any:
        """Return one offspring genome created from ``better`` and ``other``."""
        pass

    def __call__(self, better: Any, other: Any, self_mated: bool, rng: np.random.Generator) -> Any:
        return self.mate(better, other, self_mated, rng)


class FunctionMate(Mate):
    """Wrap a plain ``fn(better, other, self_mated, rng)`` callable as a :class:`Mate`."""

    def __init__(self, fn: Callable[[Any, Any, bool, np.random.Generator], Any]):
        self.fn = fn

    def mate(self, better: Any, other: Any, self_mated: bool, rng: np.random.Generator) -> Any:
        return self.fn(better, other, self_mated, rng)


class CrossoverMutationMate(Mate):
    """
    Crossover followed by mutation.

    With probability ``crossover_probability`` (and only for two distinct
    parents) the child is ``crossover(better, other, rng)``; otherwise it is a
    deep copy of the better parent. The child is then passed through
    ``mutate(child, rng)`` with probability ``mutation_probability``.
    """

    def __init__(
        self,
        crossover: Callable[[Any, Any, np.random.Generator], Any],
        mutate: Callable[[Any, np.random.Generator], Any],
        crossover_probability: float = 1.0,
        mutation_probability: float = 1.0,
    ):
        if not (0.0 <= crossover_probability <= 1.0):
            raise ValueError("crossover_probability must be in [0,1]")
        if not (0.0 <= mutation_probability <= 1.0):
            raise ValueError("mutation_probability must be in [0,1]")
        self.crossover = crossover
        self.mutate = mutate
        self.crossover_probability = crossover_probability
        self.mutation_probability = mutation_probability

    def mate(self, better: Any, other: Any, self_mated: bool, rng: np.random.Generator) -> Any:
        if not self_mated and is_probable(self.crossover_probability, rng):
            child = self.crossover(better, other, rng)
        else:
            child = copy.deepcopy(better)
        if is_probable(self.mutation_probability, rng):
            child = self.mutate(child, rng)
        return child
