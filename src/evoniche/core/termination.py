import time
from abc import ABC, abstractmethod

from evoniche.core.population import Population


class GoalCondition(ABC):
    """Abstract base class for the goal conditions that stop a run."""

    @abstractmethod
    def is_satisfied(self, generation: int, population: Population, num_niches: int) -> bool:
        """Determine whether the evolutionary process has reached its goal.

        Args:
            generation (int): The current generation number.
            population (Population): The current rated population.
            num_niches (int): Number of niches found by the previous partition.

        Returns:
            bool: True if the run should stop, False otherwise.
        """
        pass

    def __call__(self, generation: int, population: Population, num_niches: int) -> bool:
        return self.is_satisfied(generation, population, num_niches)


def _best_fitness(population: Population) -> float:
    best = population.best_individual()
    return float("-inf") if best is None else best.fitness.get()


class MaxGenerationsGoal(GoalCondition):
    """Stop after a maximum number of generations."""

    def __init__(self, max_generations: int):
        self.max_generations = max_generations

    def is_satisfied(self, generation: int, population: Population, num_niches: int) -> bool:
        return generation >= self.max_generations


class FitnessThresholdGoal(GoalCondition):
    """Stop when the best individual reaches a fitness threshold."""

    def __init__(self, fitness_threshold: float):
        self.fitness_threshold = fitness_threshold

    def is_satisfied(self, generation: int, population: Population, num_niches: int) -> bool:
        return _best_fitness(population) >= self.fitness_threshold


class StagnationGoal(GoalCondition):
    """Stop if the best fitness has not improved for a number of generations."""

    def __init__(self, max_stagnant_generations: int):
        self.max_stagnant_generations = max_stagnant_generations
        self.best_fitness_history: list[float] = []

    def is_satisfied(self, generation: int, population: Population, num_niches: int) -> bool:
        self.best_fitness_history.append(_best_fitness(population))
        if len(self.best_fitness_history) > self.max_stagnant_generations:
            self.best_fitness_history.pop(0)
            if all(f == self.best_fitness_history[0] for f in self.best_fitness_history):
                return True
        return False


class TimeLimitGoal(GoalCondition):
    """Stop after a wall-clock time limit (in seconds), counted from construction."""

    def __init__(self, time_limit_seconds: float):
        self.time_limit_seconds = time_limit_seconds
        self.start_time = time.time()

    def is_satisfied(self, generation: int, population: Population, num_niches: int) -> bool:
        return time.time() - self.start_time >= self.time_limit_seconds


class NicheCountGoal(GoalCondition):
    """Stop once the previous partition produced at least ``min_niches`` niches."""

    def __init__(self, min_niches: int):
        self.min_niches = min_niches

    def is_satisfied(self, generation: int, population: Population, num_niches: int) -> bool:
        return num_niches >= self.min_niches


class AnyGoal(GoalCondition):
    """Combine multiple goal conditions; satisfied if any of them is."""

    def __init__(self, conditions: list[GoalCondition]):
        self.conditions = conditions

    def is_satisfied(self, generation: int, population: Population, num_niches: int) -> bool:
        return any(condition(generation, population, num_niches) for condition in self.conditions)
