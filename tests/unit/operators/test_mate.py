import numpy as np
import pytest

from evoniche.operators import CrossoverMutationMate, FunctionMate, Mate


def _uniform_crossover(a: np.ndarray, b: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    mask = rng.random(a.shape) < 0.5
    return np.where(mask, a, b)


def _flip_first(genes: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    child = genes.copy()
    child[0] = not child[0]
    return child


class CountingCrossover:
    def __init__(self):
        self.calls = 0

    def __call__(self, a, b, rng):
        self.calls += 1
        return _uniform_crossover(a, b, rng)


def test_function_mate_passes_arguments_through():
    seen = []

    def fn(better, other, self_mated, rng):
        seen.append((better, other, self_mated))
        return better + other

    mate = FunctionMate(fn)
    assert isinstance(mate, Mate)
    assert mate("ab", "cd", False, np.random.default_rng(0)) == "abcd"
    assert seen == [("ab", "cd", False)]


def test_crossover_only():
    a = np.zeros(16, dtype=np.bool_)
    b = np.ones(16, dtype=np.bool_)
    mate = CrossoverMutationMate(_uniform_crossover, _flip_first, crossover_probability=1.0, mutation_probability=0.0)
    child = mate.mate(a, b, False, np.random.default_rng(3))
    assert child.shape == a.shape
    assert np.all((child == a) | (child == b))


def test_self_mated_pair_skips_crossover():
    crossover = CountingCrossover()
    parent = np.array([True, False, True])
    mate = CrossoverMutationMate(crossover, _flip_first, mutation_probability=0.0)
    child = mate.mate(parent, parent, True, np.random.default_rng(0))
    assert crossover.calls == 0
    assert np.array_equal(child, parent)
    assert child is not parent, "Child must be a copy of the better parent"


def test_no_crossover_copies_better_parent_then_mutates():
    crossover = CountingCrossover()
    better = np.array([False, False])
    other = np.array([True, True])
    mate = CrossoverMutationMate(crossover, _flip_first, crossover_probability=0.0, mutation_probability=1.0)
    child = mate.mate(better, other, False, np.random.default_rng(0))
    assert crossover.calls == 0
    assert child.tolist() == [True, False]
    assert better.tolist() == [False, False], "Parent must not be modified"


@pytest.mark.parametrize("kwargs", [{"crossover_probability": 1.5}, {"mutation_probability": -0.1}])
def test_invalid_probabilities(kwargs):
    with pytest.raises(ValueError):
        CrossoverMutationMate(_uniform_crossover, _flip_first, **kwargs)
