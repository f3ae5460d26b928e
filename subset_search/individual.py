from __future__ import annotations

import itertools
import math
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from deap import base, creator

from .performance import PerformanceVector

# Creation order; breaks ties between candidates of equal fitness
_SERIAL = itertools.count()


def fitness_class(n_criteria: int):
    """Return the DEAP fitness class for vectors with ``n_criteria`` maximised criteria."""
    name = f"SubsetFitness{n_criteria}"
    if name not in creator.__dict__:
        creator.create(name, base.Fitness, weights=(1.0,) * n_criteria)
    return getattr(creator, name)


class Candidate:
    """One proposed attribute subset plus its cached performance.

    Weights are stored as floats (0.0 excluded, 1.0 included). Two candidates
    with the same weights are the same subset, whatever their performance.
    """

    def __init__(self, weights: Iterable[float], performance: Optional[PerformanceVector] = None) -> None:
        self.weights: Tuple[float, ...] = tuple(float(w) for w in weights)
        self.serial = next(_SERIAL)
        self._performance: Optional[PerformanceVector] = None
        self.fitness = None
        if performance is not None:
            self.performance = performance

    @classmethod
    def from_mask(cls, mask: Iterable[bool]) -> "Candidate":
        return cls(1.0 if b else 0.0 for b in mask)

    @property
    def performance(self) -> Optional[PerformanceVector]:
        return self._performance

    @performance.setter
    def performance(self, pv: Optional[PerformanceVector]) -> None:
        self._performance = pv
        if pv is None:
            self.fitness = None
            return
        # DEAP fitness view used by non-dominated sorting and crowding distance
        values = tuple(-math.inf if math.isnan(v) else v for v in pv.fitness_values)
        self.fitness = fitness_class(len(values))(values)

    @property
    def evaluated(self) -> bool:
        return self._performance is not None

    @property
    def mask(self) -> Tuple[bool, ...]:
        return tuple(w > 0 for w in self.weights)

    @property
    def used_count(self) -> int:
        return sum(1 for w in self.weights if w > 0)

    @property
    def main_fitness(self) -> float:
        if self._performance is None:
            return float("nan")
        return self._performance.fitness

    @property
    def sort_key(self) -> Tuple[float, int]:
        fit = self.main_fitness
        if math.isnan(fit):
            fit = -math.inf
        return (fit, -self.serial)

    def flipped(self, index: int) -> "Candidate":
        weights = list(self.weights)
        weights[index] = 0.0 if weights[index] > 0 else 1.0
        return Candidate(weights)

    def __len__(self) -> int:
        return len(self.weights)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Candidate):
            return NotImplemented
        return self.weights == other.weights

    def __hash__(self) -> int:
        return hash(self.weights)

    def __lt__(self, other: "Candidate") -> bool:
        return self.sort_key < other.sort_key

    def __repr__(self) -> str:
        bits = "".join("1" if w > 0 else "0" for w in self.weights)
        return f"Candidate({bits}, fitness={self.main_fitness:.6g})"


class Population:
    """Candidates of the current generation plus best-ever bookkeeping.

    The population only stores ``best_ever`` and ``generations_without_improvement``;
    the owning loop decides when they change.
    """

    def __init__(self, candidates: Optional[Iterable[Candidate]] = None) -> None:
        self._candidates: List[Candidate] = list(candidates or [])
        self.generation = 0
        self.best_ever: Optional[Candidate] = None
        self.generations_without_improvement = 0

    def add(self, candidate: Candidate) -> None:
        self._candidates.append(candidate)

    def extend(self, candidates: Iterable[Candidate]) -> None:
        self._candidates.extend(candidates)

    def replace(self, candidates: Iterable[Candidate]) -> None:
        self._candidates = list(candidates)

    def clear(self) -> None:
        # best_ever survives; use reset_best() to drop it
        self._candidates = []

    def reset_best(self) -> None:
        self.best_ever = None
        self.generations_without_improvement = 0

    def sort(self) -> None:
        """Sort ascending: the best candidate ends up last."""
        self._candidates.sort(key=lambda c: c.sort_key)

    def next_generation(self) -> None:
        self.generation += 1

    def best(self) -> Optional[Candidate]:
        evaluated = [c for c in self._candidates if c.evaluated]
        if not evaluated:
            return None
        return max(evaluated, key=lambda c: c.sort_key)

    def unevaluated(self) -> List[Candidate]:
        return [c for c in self._candidates if not c.evaluated]

    @property
    def candidates(self) -> List[Candidate]:
        return list(self._candidates)

    @property
    def best_ever_performance(self) -> Optional[PerformanceVector]:
        return self.best_ever.performance if self.best_ever is not None else None

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(list(self._candidates))

    def __getitem__(self, index: int) -> Candidate:
        return self._candidates[index]


def population_diversity(population: Sequence[Candidate]) -> float:
    """
    Average pairwise Hamming distance fraction across the population, in [0, 1].
    Uses per-position inclusion counts: sum_j 2 * n1_j * (N - n1_j) / (L * N * (N - 1)).
    """
    if not population:
        return float("nan")
    N = len(population)
    L = len(population[0])
    if N < 2 or L == 0:
        return 0.0
    M = np.asarray([c.mask for c in population], dtype=int)
    n1 = M.sum(axis=0)
    pairs_diff_per_bit = 2.0 * n1 * (N - n1)
    return float(pairs_diff_per_bit.sum()) / (N * (N - 1)) / L
