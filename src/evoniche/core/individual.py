"""Core individual abstraction.

The :class:`Individual` couples a genome with an optional fitness. Rating an
individual never changes it: :meth:`Individual.with_fitness` returns a new one.
"""

from __future__ import annotations

from typing import Any

from evoniche.core.fitness import Fitness


class PopulationStateError(RuntimeError):
    """An operation was used in a lifecycle state that does not allow it."""


class Individual:
    """Represents a single candidate solution.

    Parameters
    ----------
    genome : Any
        Underlying genetic representation. Opaque to the engine.
    fitness : Fitness | float | None, default None
        Fitness attached at construction, if already known.
    """

    __slots__ = ("_fitness", "_genome")

    def __init__(self, genome: Any, fitness: Fitness | float | None = None) -> None:
        self._genome = genome
        self._fitness: Fitness | None = None if fitness is None else Fitness.of(fitness)

    def has_fitness(self) -> bool:
        return self._fitness is not None

    @property
    def fitness(self) -> Fitness:
        if self._fitness is None:
            raise PopulationStateError("individual has no fitness attached")
        return self._fitness

    @property
    def genome(self) -> Any:
        return self._genome

    def with_fitness(self, fitness: Fitness | float) -> Individual:
        """Return a new individual sharing this genome, rated with ``fitness``."""
        if self._fitness is not None:
            raise PopulationStateError("individual is already rated")
        return Individual(self._genome, fitness)

    def __repr__(self) -> str:
        fitness = "unrated" if self._fitness is None else f"{self._fitness.get():.4f}"
        return f"Individual(genome={self._genome.__class__.__name__}, fitness={fitness})"
