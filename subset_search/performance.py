"""
Performance vectors returned by the evaluation oracle.

A vector is an ordered list of named criteria (average, variance and sample
count, e.g. the fold scores of a cross-validation). One criterion is the main
criterion used for scalar comparison; all of them take part in Pareto
dominance for multi-objective selection.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Criterion:
    name: str
    average: float
    variance: float = 0.0
    count: int = 1
    direction: str = "max"  # "max" | "min"
    max_fitness: float = float("inf")

    def __post_init__(self) -> None:
        if self.direction not in ("max", "min"):
            raise ValueError(f"direction must be 'max' or 'min', got {self.direction!r}")

    @property
    def fitness(self) -> float:
        # Larger is always better for fitness, whatever the criterion direction
        avg = float(self.average)
        if math.isnan(avg):
            return float("nan")
        return avg if self.direction == "max" else -avg

    @property
    def std(self) -> float:
        return math.sqrt(self.variance) if self.variance > 0 else 0.0


@dataclass(frozen=True)
class PerformanceVector:
    criteria: Tuple[Criterion, ...]
    main_index: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "criteria", tuple(self.criteria))
        if not self.criteria:
            raise ValueError("a performance vector needs at least one criterion")
        if not 0 <= self.main_index < len(self.criteria):
            raise ValueError(f"main_index {self.main_index} out of range for {len(self.criteria)} criteria")

    @property
    def main_criterion(self) -> Criterion:
        return self.criteria[self.main_index]

    @property
    def fitness(self) -> float:
        return self.main_criterion.fitness

    @property
    def fitness_values(self) -> Tuple[float, ...]:
        return tuple(c.fitness for c in self.criteria)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.criteria]

    def __len__(self) -> int:
        return len(self.criteria)

    def __getitem__(self, name: str) -> Criterion:
        for c in self.criteria:
            if c.name == name:
                return c
        raise KeyError(name)

    def compare(self, other: Optional["PerformanceVector"]) -> int:
        """Compare main-criterion fitness: 1 if self is better, -1 if worse, 0 if equal.

        Missing performance and NaN fitness rank lowest.
        """
        mine = _fitness_or_lowest(self)
        theirs = _fitness_or_lowest(other)
        if mine > theirs:
            return 1
        if mine < theirs:
            return -1
        return 0

    def dominates(self, other: "PerformanceVector") -> bool:
        """Pareto dominance: no worse on every criterion, strictly better on at least one."""
        if len(other) != len(self):
            raise ValueError("cannot compare performance vectors with different criteria counts")
        strictly_better = False
        for mine, theirs in zip(self.fitness_values, other.fitness_values):
            mine = -math.inf if math.isnan(mine) else mine
            theirs = -math.inf if math.isnan(theirs) else theirs
            if mine < theirs:
                return False
            if mine > theirs:
                strictly_better = True
        return strictly_better

    def to_dict(self) -> dict:
        return {
            "main_criterion": self.main_criterion.name,
            "criteria": [
                {
                    "name": c.name,
                    "average": c.average,
                    "variance": c.variance,
                    "count": c.count,
                    "direction": c.direction,
                }
                for c in self.criteria
            ],
        }


def _fitness_or_lowest(pv: Optional[PerformanceVector]) -> float:
    if pv is None:
        return -math.inf
    fit = pv.fitness
    return -math.inf if math.isnan(fit) else fit


def criterion_from_scores(name: str, scores: Iterable[float], direction: str = "max") -> Criterion:
    arr = np.asarray(list(scores), dtype=float)
    if arr.size == 0:
        return Criterion(name=name, average=float("nan"), variance=float("nan"), count=0, direction=direction)
    return Criterion(
        name=name,
        average=float(np.mean(arr)),
        variance=float(np.var(arr)),
        count=int(arr.size),
        direction=direction,
    )


def performance_from_scores(name: str, scores: Sequence[float], direction: str = "max") -> PerformanceVector:
    """Build a single-criterion vector from raw per-fold scores."""
    return PerformanceVector(criteria=(criterion_from_scores(name, scores, direction),))


def single(name: str, value: float, direction: str = "max") -> PerformanceVector:
    return PerformanceVector(criteria=(Criterion(name=name, average=float(value), direction=direction),))
