from __future__ import annotations

import logging
import pickle
import time
from collections.abc import Callable
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from evoniche.core.distance import Distance
from evoniche.core.population import FitnessFn, Population, Rating, validate_fractions
from evoniche.operators.mate import Mate

GoalFn = Callable[[int, Population, int], bool]

# ---------------------------------------------------------------------------
# Runner config & stats
# ---------------------------------------------------------------------------


@dataclass
class RunnerConfig:
    population_size: int = 100
    elite_fraction: float = 0.05
    selection_fraction: float = 0.2
    compatibility_threshold: float = 1.0
    num_workers: int | None = None  # 0 => sequential rating; None => executor default; >0 => pool size
    executor_type: str = "thread"  # 'thread' | 'process'
    seed: int | None = None
    max_history: int | None = None

    def __post_init__(self) -> None:
        """Validate configuration parameters early to fail fast.

        Rules
        -----
        - population_size > 0
        - elite_fraction, selection_fraction in [0,1]
        - elite_fraction <= selection_fraction
        - compatibility_threshold >= 0
        - num_workers is None or >= 0
        - executor_type in {"thread", "process"}
        - seed is None or >= 0
        - max_history is None or >= 0
        """
        if self.population_size <= 0:
            raise ValueError("population_size must be > 0")
        validate_fractions(self.elite_fraction, self.selection_fraction)
        if self.compatibility_threshold < 0:
            raise ValueError("compatibility_threshold must be >= 0")
        if self.num_workers is not None and self.num_workers < 0:
            raise ValueError("num_workers must be >= 0 or None")
        if self.executor_type not in {"thread", "process"}:
            raise ValueError("executor_type must be one of {'thread','process'}")
        if self.seed is not None and self.seed < 0:
            raise ValueError("seed must be >= 0 if provided")
        if self.max_history is not None and self.max_history < 0:
            raise ValueError("max_history must be >= 0 if provided")


@dataclass
class RunnerStats:
    generation: int = 0
    evaluations: int = 0
    best_fitness: float = float("-inf")
    mean_fitness: float = float("-inf")
    num_niches: int = 1
    history: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RunnerError(RuntimeError):
    pass


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class Runner:
    """Generational loop: rate, check goal, partition, reproduce, repeat.

    Parameters
    ----------
    config : RunnerConfig
        Population size target, elite/selection fractions, compatibility
        threshold and rating concurrency.
    distance : Distance | Callable
        Compatibility distance between two genomes.
    mate : Mate | Callable
        Mating operator producing one offspring genome from two parents.
    fitness : Callable
        Pure function mapping a genome to its fitness; called concurrently.
    executor : Executor | None
        Optional caller-owned executor used for rating. It is not shut down.
    """

    def __init__(  # noqa: PLR0913
        self,
        config: RunnerConfig,
        distance: Distance | Callable[[Any, Any], float],
        mate: Mate | Callable[..., Any],
        fitness: FitnessFn,
        executor: Executor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.distance = distance
        self.mate = mate
        self.fitness = fitness
        self._external_executor = executor
        self._executor: Executor | None = None

        self.stats = RunnerStats()
        self.logger = logger or logging.getLogger("evoniche.runner")

    # -----------------------------
    # Public API
    # -----------------------------

    def run(
        self,
        initial_population: Population,
        goal: GoalFn,
        rng: np.random.Generator | None = None,
    ) -> tuple[int, Population]:
        """Evolve until ``goal`` holds and return ``(generations, final rated population)``.

        Parameters
        ----------
        initial_population : Population
            Unrated seed population. It is consumed.
        goal : Callable[[int, Population, int], bool]
            Called with the generation index, the current rated population and
            the niche count of the previous partition (1 before the first).
            Checked after rating and before partitioning each generation.
        rng : numpy.random.Generator | None
            Random source for niching and reproduction. Defaults to a generator
            seeded with ``config.seed``.
        """
        if initial_population.state is not Rating.UNRATED:
            raise RunnerError("Initial population must be unrated.")
        if len(initial_population) == 0:
            raise RunnerError("Initial population is empty. Provide at least one genome.")
        if rng is None:
            rng = np.random.default_rng(self.config.seed)

        self.stats = RunnerStats()
        self._prepare_executor()

        try:
            generation = 0
            num_niches = 1
            current = self._rate(initial_population)
            self._update_stats(generation, current, num_niches)

            while not goal(generation, current, num_niches):
                self.logger.info("Generation %d start", generation)
                niches = current.partition(rng, self.config.compatibility_threshold, self.distance)
                num_niches = niches.num_niches()

                new_rated, new_unrated = niches.reproduce_global(
                    self.config.population_size,
                    self.config.elite_fraction,
                    self.config.selection_fraction,
                    self.mate,
                    rng,
                )
                new_rated.append(self._rate(new_unrated))
                current = new_rated

                generation += 1
                self._update_stats(generation, current, num_niches)

            self.logger.info("Goal reached after %d generations", generation)
            return generation, current
        finally:
            self._shutdown_executor()

    # -----------------------------
    # Internal helpers
    # -----------------------------

    def _prepare_executor(self) -> None:
        if self._external_executor is not None:
            self._executor = self._external_executor
            self.logger.info("Using external executor provided by caller")
            return

        num_workers = self.config.num_workers
        if num_workers == 0:
            self._executor = None
            self.logger.info("Rating sequentially (no executor)")
            return

        # test whether the fitness function is picklable
        fitness_picklable = True
        try:
            pickle.dumps(self.fitness)
        except Exception:
            fitness_picklable = False

        if self.config.executor_type == "process" and fitness_picklable:
            self._executor = ProcessPoolExecutor(max_workers=num_workers)
            self.logger.info("ProcessPoolExecutor prepared with %s workers", num_workers or "default")
        else:
            self._executor = ThreadPoolExecutor(max_workers=num_workers)
            if self.config.executor_type == "process":
                self.logger.warning(
                    "Fitness function not picklable: falling back to ThreadPoolExecutor to avoid pickling errors."
                )
            else:
                self.logger.info("ThreadPoolExecutor prepared with %s workers", num_workers or "default")

    def _shutdown_executor(self) -> None:
        if self._executor is not None and self._executor is not self._external_executor:
            self._executor.shutdown(wait=True)
        self._executor = None

    def _rate(self, population: Population) -> Population:
        self.stats.evaluations += len(population)
        if self._executor is None:
            return population.rate_sequential(self.fitness)
        return population.rate_parallel(self.fitness, executor=self._executor)

    def _update_stats(self, generation: int, population: Population, num_niches: int) -> None:
        best = population.best_individual()
        self.stats.generation = generation
        self.stats.num_niches = num_niches
        if best is not None:
            self.stats.best_fitness = best.fitness.get()
            self.stats.mean_fitness = population.mean_fitness().get()
        else:
            self.stats.best_fitness = float("-inf")
            self.stats.mean_fitness = float("-inf")

        snapshot = {
            "generation": generation,
            "best": self.stats.best_fitness,
            "mean": self.stats.mean_fitness,
            "num_niches": num_niches,
            "size": len(population),
            "evaluations": self.stats.evaluations,
            "time": time.time(),
        }
        self.stats.history.append(snapshot)
        max_history = self.config.max_history
        if max_history is not None:
            excess = len(self.stats.history) - max_history
            if excess > 0:
                del self.stats.history[:excess]

        self.logger.info(
            "Generation %d stats: best=%s mean=%s niches=%d size=%d evals=%d",
            generation,
            self.stats.best_fitness,
            self.stats.mean_fitness,
            num_niches,
            len(population),
            self.stats.evaluations,
        )
