"""Niches (species) and reproduction across them.

A :class:`Niche` is a non-empty rated population plus an optional centroid
index. :class:`Niches` holds all niches of one generation and distributes the
next generation's size among them in proportion to their mean fitness.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

import numpy as np

from evoniche.core.distance import Distance
from evoniche.core.fitness import Fitness
from evoniche.core.individual import Individual, PopulationStateError
from evoniche.core.population import Population, Rating, validate_fractions
from evoniche.operators.mate import Mate

logger = logging.getLogger(__name__)


class Niche:
    """A single species: a non-empty rated population.

    If ``centroid`` is set, the individual at that index is the representative
    new candidates are compared with; otherwise a random member is used.
    """

    __slots__ = ("_centroid", "_population")

    def __init__(self, population: Population) -> None:
        if population.state is not Rating.RATED:
            raise PopulationStateError("a niche requires a rated population")
        if len(population) == 0:
            raise ValueError("a niche must contain at least one individual")
        self._population = population
        self._centroid: int | None = None

    @classmethod
    def from_individual(cls, ind: Individual) -> Niche:
        if not ind.has_fitness():
            raise ValueError("only rated individuals can found a niche")
        return cls(Population(Rating.RATED, [ind]))

    @property
    def population(self) -> Population:
        return self._population

    @property
    def centroid(self) -> int | None:
        return self._centroid

    @centroid.setter
    def centroid(self, index: int | None) -> None:
        if index is not None and not (0 <= index < len(self._population)):
            raise IndexError("centroid index out of range")
        self._centroid = index

    def __len__(self) -> int:
        return len(self._population)

    def mean_fitness(self) -> Fitness:
        return self._population.mean_fitness()

    def add_individual(self, ind: Individual) -> None:
        self._population.add_individual(ind)

    def centroid_or_random(self, rng: np.random.Generator) -> Individual:
        """Return the centroid individual if specified, else a random member."""
        size = len(self._population)
        if self._centroid is not None and self._centroid < size:
            return self._population[self._centroid]
        return self._population[int(rng.integers(size))]

    def __repr__(self) -> str:
        return f"Niche(len={len(self)}, centroid={self._centroid})"


class Niches:
    """All niches of one generation, with a running count of individuals."""

    __slots__ = ("_niches", "_total_individuals")

    def __init__(self) -> None:
        self._niches: list[Niche] | None = []
        self._total_individuals = 0

    @classmethod
    def from_single_population(cls, pop: Population) -> Niches:
        """Create a ``Niches`` with one niche holding the whole population."""
        niches = cls()
        niches.add_niche(Niche(pop))
        niches._check_total()
        return niches

    def _live(self) -> list[Niche]:
        if self._niches is None:
            raise PopulationStateError("niches have been consumed by a previous operation")
        return self._niches

    def _check_total(self) -> None:
        actual = sum(len(niche) for niche in self._live())
        if actual != self._total_individuals:
            raise PopulationStateError(
                f"niche bookkeeping out of sync: tracked {self._total_individuals}, found {actual}"
            )

    def __iter__(self) -> Iterator[Niche]:
        return iter(tuple(self._live()))

    def __len__(self) -> int:
        return len(self._live())

    def num_niches(self) -> int:
        return len(self._live())

    def num_individuals(self) -> int:
        self._live()
        return self._total_individuals

    def add_niche(self, niche: Niche) -> None:
        self._live().append(niche)
        self._total_individuals += len(niche)

    def add_to_niche(self, niche: Niche, ind: Individual) -> None:
        """Add ``ind`` to one of our niches, keeping the individual count in step."""
        if not any(n is niche for n in self._live()):
            raise ValueError("niche does not belong to this collection")
        niche.add_individual(ind)
        self._total_individuals += 1

    def find_first_matching_niche(
        self,
        ind: Individual,
        compatibility_threshold: float,
        distance: Distance | Callable[[Any, Any], float],
        rng: np.random.Generator,
    ) -> Niche | None:
        """Return the first niche whose representative is closer than the threshold.

        Niches are scanned in creation order and compared via their centroid,
        or a random member when no centroid is set. A distance equal to the
        threshold does not match.
        """
        for niche in self._live():
            if distance(niche.centroid_or_random(rng).genome, ind.genome) < compatibility_threshold:
                return niche
        return None

    def total_mean(self) -> Fitness:
        """The sum of the mean fitness of every niche."""
        return sum((niche.mean_fitness() for niche in self._live()), Fitness.zero())

    def allocate(self, target_total_size: float) -> list[float]:
        """Return each niche's share of ``target_total_size``.

        Shares are proportional to niche mean fitness. If every individual has
        zero fitness, every niche gets an equal share.
        """
        niches = self._live()
        if not niches:
            raise ValueError("cannot allocate offspring without niches")
        if target_total_size < 0:
            raise ValueError("target_total_size must be >= 0")
        total_mean = self.total_mean().get()
        if total_mean < 0.0:
            raise ValueError("aggregate mean fitness must be >= 0")

        sizes: list[float] = []
        for niche in niches:
            if total_mean == 0.0:
                share = 1.0 / len(niches)
            else:
                share = niche.mean_fitness().get() / total_mean
            if not (0.0 <= share <= 1.0):
                raise ValueError("niche mean fitness must be >= 0 for proportional allocation")
            sizes.append(target_total_size * share)
        return sizes

    def reproduce_global(
        self,
        target_total_size: int,
        elite_fraction: float,
        selection_fraction: float,
        mate: Mate | Callable[..., Any],
        rng: np.random.Generator,
    ) -> tuple[Population, Population]:
        """Reproduce every niche into two pool-wide populations, consuming the niches.

        Each niche may produce a number of individuals relative to its
        performance compared to the other niches. Returns
        ``(rated elites, unrated offspring)``.
        """
        niches = self._live()
        if self._total_individuals <= 0:
            raise ValueError("cannot reproduce without individuals")
        validate_fractions(elite_fraction, selection_fraction)
        sizes = self.allocate(target_total_size)

        new_unrated = Population(Rating.UNRATED)
        new_rated = Population(Rating.RATED)
        self._niches = None

        for niche, niche_size in zip(niches, sizes):
            niche.population.reproduce_into(
                niche_size, elite_fraction, selection_fraction, mate, new_unrated, new_rated, rng
            )

        logger.debug(
            "Reproduced %d niches into %d elites and %d offspring",
            len(niches),
            len(new_rated),
            len(new_unrated),
        )
        return new_rated, new_unrated

    def collapse(self) -> Population:
        """Merge all niches back into a single rated population, consuming them."""
        niches = self._live()
        if not niches:
            raise ValueError("cannot collapse an empty set of niches")
        self._check_total()
        total = self._total_individuals
        self._niches = None

        pop = Population(Rating.RATED)
        for niche in niches:
            pop.append(niche.population)

        if len(pop) != total:
            raise PopulationStateError(f"collapsed population has {len(pop)} individuals, expected {total}")
        return pop

    def __repr__(self) -> str:
        if self._niches is None:
            return "Niches(consumed)"
        return f"Niches(num_niches={len(self._niches)}, total_individuals={self._total_individuals})"
