"""State-tagged populations.

A :class:`Population` is an ordered list of :class:`Individual` objects carrying
a lifecycle tag (:class:`Rating`) that decides which operations are legal:

    UNRATED       no individual has a fitness
    RATED         every individual has a fitness
    RATED_SORTED  rated, ordered by non-increasing fitness (index 0 is best)

Every state transition consumes the population it is called on and returns a
new value; touching a consumed population raises :class:`PopulationStateError`.
Only one owner therefore ever sees a given list of individuals, which keeps
the single-threaded stages free of shared mutable state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum
from functools import partial
from itertools import islice
from typing import TYPE_CHECKING, Any

import numpy as np

from evoniche.core.fitness import Fitness
from evoniche.core.individual import Individual, PopulationStateError
from evoniche.core.prob import probabilistic_round
from evoniche.operators.mate import Mate

if TYPE_CHECKING:
    from evoniche.core.distance import Distance
    from evoniche.core.niching import Niches

__all__ = [
    "FitnessFn",
    "Population",
    "PopulationStateError",
    "Rating",
    "validate_fractions",
]

FitnessFn = Callable[[Any], "Fitness | float"]

logger = logging.getLogger(__name__)

# attempts to draw a second parent distinct from the first
MATE_RETRIES = 3


class Rating(Enum):
    UNRATED = "unrated"
    RATED = "rated"
    RATED_SORTED = "rated_sorted"


def validate_fractions(elite_fraction: float, selection_fraction: float) -> None:
    if not (0.0 <= elite_fraction <= 1.0):
        raise ValueError("elite_fraction must be in [0,1]")
    if not (0.0 <= selection_fraction <= 1.0):
        raise ValueError("selection_fraction must be in [0,1]")
    if elite_fraction > selection_fraction:
        raise ValueError("elite_fraction cannot exceed selection_fraction")


def _rate_genome(fitness_fn: FitnessFn, genome: Any) -> Fitness:
    """Top-level helper for process pool pickling: evaluate one genome."""
    return Fitness.of(fitness_fn(genome))


def _check_invariant(state: Rating, individuals: list[Individual]) -> None:
    if state is Rating.UNRATED:
        if any(ind.has_fitness() for ind in individuals):
            raise ValueError("unrated population must not contain rated individuals")
        return
    if not all(ind.has_fitness() for ind in individuals):
        raise ValueError(f"{state.value} population must only contain rated individuals")
    if state is Rating.RATED_SORTED:
        for prev, cur in zip(individuals, individuals[1:]):
            if cur.fitness > prev.fitness:
                raise ValueError("rated_sorted population must be ordered by non-increasing fitness")


class Population:
    """An ordered collection of individuals tagged with a lifecycle state.

    Parameters
    ----------
    state : Rating, default Rating.UNRATED
        Lifecycle state of the new population.
    individuals : Iterable[Individual], default ()
        Initial members. They must satisfy the invariant of ``state``.
    """

    __slots__ = ("_individuals", "_state")

    def __init__(self, state: Rating = Rating.UNRATED, individuals: Iterable[Individual] = ()) -> None:
        items = list(individuals)
        _check_invariant(state, items)
        self._state: Rating = state
        self._individuals: list[Individual] | None = items

    @classmethod
    def from_individuals(cls, individuals: Iterable[Individual], state: Rating) -> Population:
        return cls(state, individuals)

    @classmethod
    def from_genomes(cls, genomes: Iterable[Any]) -> Population:
        """Create an unrated population directly from an iterable of genomes."""
        return cls(Rating.UNRATED, (Individual(g) for g in genomes))

    @classmethod
    def _adopt(cls, state: Rating, individuals: list[Individual]) -> Population:
        # internal constructor for lists whose invariant is already known to hold
        pop = cls.__new__(cls)
        pop._state = state
        pop._individuals = individuals
        return pop

    # ------------------------------------------------------------------
    # Ownership helpers
    # ------------------------------------------------------------------
    @property
    def state(self) -> Rating:
        return self._state

    @property
    def consumed(self) -> bool:
        return self._individuals is None

    def _live(self) -> list[Individual]:
        if self._individuals is None:
            raise PopulationStateError("population has been consumed by a previous operation")
        return self._individuals

    def _require(self, *states: Rating) -> list[Individual]:
        items = self._live()
        if self._state not in states:
            allowed = ", ".join(s.value for s in states)
            raise PopulationStateError(f"operation requires a {allowed} population, got {self._state.value}")
        return items

    def _take(self) -> list[Individual]:
        items = self._live()
        self._individuals = None
        return items

    # ------------------------------------------------------------------
    # Any state
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._live())

    def __iter__(self) -> Iterator[Individual]:
        return iter(tuple(self._live()))

    def __getitem__(self, index: int) -> Individual:
        return self._live()[index]

    @property
    def individuals(self) -> tuple[Individual, ...]:
        return tuple(self._live())

    def __repr__(self) -> str:
        size = "consumed" if self._individuals is None else f"len={len(self._individuals)}"
        return f"Population({self._state.value}, {size})"

    # ------------------------------------------------------------------
    # Unrated
    # ------------------------------------------------------------------
    def add_genome(self, genome: Any) -> None:
        self._require(Rating.UNRATED).append(Individual(genome))

    def rate_sequential(self, fitness_fn: FitnessFn) -> Population:
        """Evaluate ``fitness_fn`` on every genome in order and return a rated population."""
        items = self._require(Rating.UNRATED)
        fitnesses = [_rate_genome(fitness_fn, ind.genome) for ind in items]
        return self._rated(fitnesses)

    def rate_parallel(
        self, fitness_fn: FitnessFn, executor: Executor | None = None, max_workers: int | None = None
    ) -> Population:
        """Evaluate ``fitness_fn`` concurrently and return a rated population.

        ``fitness_fn`` must be a pure function of the genome. When no executor
        is given a private ThreadPoolExecutor is used for this call. A process
        executor additionally requires ``fitness_fn`` to be picklable. Member
        order is preserved and no randomness is consumed.
        """
        items = self._require(Rating.UNRATED)
        evaluate = partial(_rate_genome, fitness_fn)
        genomes = [ind.genome for ind in items]
        if executor is not None:
            fitnesses = list(executor.map(evaluate, genomes))
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                fitnesses = list(pool.map(evaluate, genomes))
        return self._rated(fitnesses)

    def _rated(self, fitnesses: list[Fitness]) -> Population:
        items = self._take()
        rated = [ind.with_fitness(f) for ind, f in zip(items, fitnesses, strict=True)]
        return Population._adopt(Rating.RATED, rated)

    # ------------------------------------------------------------------
    # Rated
    # ------------------------------------------------------------------
    def add_individual(self, ind: Individual) -> None:
        items = self._require(Rating.RATED)
        if not ind.has_fitness():
            raise ValueError("only rated individuals can be added to a rated population")
        items.append(ind)

    def sort(self) -> Population:
        """Stable sort by fitness, best first."""
        self._require(Rating.RATED)
        items = self._take()
        # list.sort is stable also with reverse=True
        items.sort(key=lambda ind: ind.fitness, reverse=True)
        return Population._adopt(Rating.RATED_SORTED, items)

    def best_individual(self) -> Individual | None:
        """Return the fittest individual, or None for an empty population.

        For a sorted population this is the first member. For an unsorted one
        the population is scanned; which of several equally fit individuals is
        returned is unspecified.
        """
        items = self._require(Rating.RATED, Rating.RATED_SORTED)
        if not items:
            return None
        if self._state is Rating.RATED_SORTED:
            return items[0]
        return max(items, key=lambda ind: ind.fitness)

    def mean_fitness(self) -> Fitness:
        items = self._require(Rating.RATED, Rating.RATED_SORTED)
        if not items:
            raise ValueError("mean fitness of an empty population is undefined")
        return sum((ind.fitness for ind in items), Fitness.zero()) / len(items)

    def merge(self, other: Population, n: int) -> None:
        """Append the ``n`` best individuals of the sorted population ``other``."""
        items = self._require(Rating.RATED)
        other._require(Rating.RATED_SORTED)
        if n < 0:
            raise ValueError("n must be >= 0")
        items.extend(islice(other._take(), n))

    def append(self, other: Population) -> None:
        """Append all individuals of another rated population, consuming it."""
        items = self._require(Rating.RATED)
        if other is self:
            raise ValueError("cannot append a population to itself")
        other._require(Rating.RATED, Rating.RATED_SORTED)
        items.extend(other._take())

    def reproduce(
        self,
        target_size: float,
        elite_fraction: float,
        selection_fraction: float,
        mate: Mate | Callable[..., Any],
        rng: np.random.Generator,
    ) -> tuple[Population, Population]:
        """Reproduce without niching; returns ``(rated elites, unrated offspring)``.

        Use :meth:`partition` and :meth:`Niches.reproduce_global` for niching.
        """
        new_rated = Population(Rating.RATED)
        new_unrated = Population(Rating.UNRATED)
        self.reproduce_into(target_size, elite_fraction, selection_fraction, mate, new_unrated, new_rated, rng)
        return new_rated, new_unrated

    def reproduce_into(  # noqa: PLR0913
        self,
        target_size: float,
        elite_fraction: float,
        selection_fraction: float,
        mate: Mate | Callable[..., Any],
        new_unrated: Population,
        new_rated: Population,
        rng: np.random.Generator,
    ) -> None:
        """Reproduce into existing result populations.

        The population is sorted by fitness. The best ``selection_fraction`` of
        ``target_size`` are allowed to mate, producing ``(1 - elite_fraction)``
        of ``target_size`` offspring into ``new_unrated``. Then the best
        ``elite_fraction`` of ``target_size`` (at least one) are copied as-is
        into ``new_rated``. All counts are probabilistically rounded, so the
        result size equals ``target_size`` in expectation.
        """
        items = self._require(Rating.RATED)
        validate_fractions(elite_fraction, selection_fraction)
        if target_size < 0:
            raise ValueError("target_size must be >= 0")
        if not items:
            raise ValueError("cannot reproduce an empty population")
        new_unrated._require(Rating.UNRATED)
        new_rated._require(Rating.RATED)

        elite_size = max(1, probabilistic_round(target_size * elite_fraction, rng))
        offspring_size = probabilistic_round(target_size * (1.0 - elite_fraction), rng)
        select_size = min(len(items), probabilistic_round(target_size * selection_fraction, rng))

        sorted_pop = self.sort()

        if select_size > 0:
            for _ in range(offspring_size):
                new_unrated.add_genome(sorted_pop.create_single_offspring(select_size, mate, rng))

        new_rated.merge(sorted_pop, elite_size)

    def partition(
        self, rng: np.random.Generator, compatibility_threshold: float, distance: Distance | Callable[[Any, Any], float]
    ) -> Niches:
        """Split the population into niches (species), consuming it.

        Each individual joins the first niche, in creation order, whose
        representative is at distance strictly below the threshold; if none
        matches it founds a new niche.
        """
        from evoniche.core.niching import Niche, Niches  # avoid circular import

        self._require(Rating.RATED)
        niches = Niches()
        for ind in self._take():
            niche = niches.find_first_matching_niche(ind, compatibility_threshold, distance, rng)
            if niche is not None:
                niches.add_to_niche(niche, ind)
            else:
                niches.add_niche(Niche.from_individual(ind))
        logger.debug(
            "Partitioned %d individuals into %d niches (threshold=%s)",
            niches.num_individuals(),
            niches.num_niches(),
            compatibility_threshold,
        )
        return niches

    # ------------------------------------------------------------------
    # Rated & sorted
    # ------------------------------------------------------------------
    def create_single_offspring(
        self, select_size: int, mate: Mate | Callable[..., Any], rng: np.random.Generator
    ) -> Any:
        """Mate two random parents drawn from the best ``select_size`` individuals.

        No tournament is needed as the population is sorted: a lower index is
        a better (or equal) individual, and the better parent is passed first.
        """
        items = self._require(Rating.RATED_SORTED)
        if not (0 < select_size <= len(items)):
            raise ValueError("select_size must be in (0, len(population)]")

        parent1 = int(rng.integers(select_size))
        parent2 = int(rng.integers(select_size))
        for _ in range(MATE_RETRIES):
            if parent2 != parent1:
                break
            parent2 = int(rng.integers(select_size))

        if parent1 > parent2:
            parent1, parent2 = parent2, parent1

        return mate(items[parent1].genome, items[parent2].genome, parent1 == parent2, rng)
