import random

import pytest

from subset_search.individual import Candidate
from subset_search.performance import Criterion, PerformanceVector, single


def make_candidate(weights, *fitness):
    """Candidate with one maximised criterion per given fitness value."""
    c = Candidate(weights)
    if fitness:
        c.performance = PerformanceVector(
            criteria=tuple(Criterion(name=f"c{i}", average=float(v)) for i, v in enumerate(fitness))
        )
    return c


class HitCountOracle:
    """score = (number of true attributes included) - penalty * (number included)."""

    def __init__(self, true_subset=(1, 4, 7), penalty=0.1):
        self.true_subset = tuple(true_subset)
        self.penalty = penalty
        self.calls = []

    def __call__(self, mask):
        if not any(mask):
            raise AssertionError("oracle called with an empty subset")
        self.calls.append(tuple(mask))
        hits = sum(1 for i in self.true_subset if mask[i])
        return single("score", hits - self.penalty * sum(mask))


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def names():
    return [f"a{i}" for i in range(10)]


@pytest.fixture
def hit_oracle():
    return HitCountOracle()
