"""
Variation operators over attribute subsets.

Pure functions take a candidate (and an explicit ``random.Random``) and return
new candidates; the operator classes apply them to a whole population through
``operate(population, rng)``.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .individual import Candidate, Population

logger = logging.getLogger(__name__)

CROSSOVER_TYPES = ("one_point", "uniform", "shuffle")


@dataclass(frozen=True)
class CardinalityConstraint:
    """Admissible number of included attributes.

    ``max_count`` of None means unbounded; ``exact`` overrides min and max when set.
    Zero attributes are never admitted.
    """

    min_count: int = 1
    max_count: Optional[int] = None
    exact: Optional[int] = None

    def __post_init__(self) -> None:
        if self.exact is not None and self.exact < 1:
            raise ConfigurationError(f"exact attribute count must be >= 1, got {self.exact}", "exact_attributes")
        if self.max_count is not None and self.max_count < max(self.min_count, 1):
            raise ConfigurationError(
                f"max_attributes ({self.max_count}) is smaller than min_attributes ({self.min_count})",
                "max_attributes",
            )

    @property
    def lower(self) -> int:
        if self.exact is not None:
            return self.exact
        return max(self.min_count, 1)

    def upper(self, length: int) -> int:
        if self.exact is not None:
            return self.exact
        if self.max_count is None:
            return length
        return min(self.max_count, length)

    def admits(self, candidate: Candidate) -> bool:
        n = candidate.used_count
        return self.lower <= n <= self.upper(len(candidate))

    def repair(self, mask: List[bool], rng: random.Random) -> List[bool]:
        """Include random positions up to the lower bound, exclude random positions down to the upper bound."""
        mask = list(mask)
        lower = min(self.lower, len(mask))
        upper = self.upper(len(mask))
        used = sum(mask)
        if used < lower:
            off = [i for i, b in enumerate(mask) if not b]
            for i in rng.sample(off, lower - used):
                mask[i] = True
        elif used > upper:
            on = [i for i, b in enumerate(mask) if b]
            for i in rng.sample(on, used - upper):
                mask[i] = False
        return mask


UNCONSTRAINED = CardinalityConstraint()


def forward_neighbors(candidate: Candidate) -> List[Candidate]:
    """One candidate per excluded position, with that position included."""
    return [candidate.flipped(i) for i, w in enumerate(candidate.weights) if w <= 0]


def backward_neighbors(candidate: Candidate) -> List[Candidate]:
    """One candidate per included position, with that position excluded.

    A single-attribute candidate has no backward neighbours.
    """
    if candidate.used_count <= 1:
        return []
    return [candidate.flipped(i) for i, w in enumerate(candidate.weights) if w > 0]


def mutate(candidate: Candidate, p: float, rng: random.Random) -> Candidate:
    """Flip every position independently with probability ``p`` (negative: 1/length)."""
    if p < 0:
        p = 1.0 / max(len(candidate), 1)
    weights = list(candidate.weights)
    for i, w in enumerate(weights):
        if rng.random() < p:
            weights[i] = 0.0 if w > 0 else 1.0
    return Candidate(weights)


def crossover_pair(
    a: Candidate,
    b: Candidate,
    kind: str,
    rng: random.Random,
    split_index: Optional[int] = None,
) -> Tuple[Candidate, Candidate]:
    if len(a) != len(b):
        raise ValueError("cannot cross candidates of different lengths")
    wa = list(a.weights)
    wb = list(b.weights)
    n = len(wa)
    if kind == "one_point":
        if n < 2:
            return Candidate(wa), Candidate(wb)
        split = split_index if split_index is not None else rng.randint(1, n - 1)
        return Candidate(wa[:split] + wb[split:]), Candidate(wb[:split] + wa[split:])
    if kind == "uniform":
        for i in range(n):
            if rng.random() < 0.5:
                wa[i], wb[i] = wb[i], wa[i]
        return Candidate(wa), Candidate(wb)
    if kind == "shuffle":
        if n == 0:
            return Candidate(wa), Candidate(wb)
        k = rng.randint(1, n)
        for i in rng.sample(range(n), k):
            wa[i], wb[i] = wb[i], wa[i]
        return Candidate(wa), Candidate(wb)
    raise ConfigurationError(f"unknown crossover type {kind!r}", "crossover_type")


def remove_redundant(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Drop repeated weight vectors, keeping first positions.

    When the kept occurrence has no performance yet and a later duplicate does,
    the duplicate's performance is carried over.
    """
    kept: Dict[Tuple[float, ...], Candidate] = {}
    order: List[Candidate] = []
    for c in candidates:
        first = kept.get(c.weights)
        if first is None:
            kept[c.weights] = c
            order.append(c)
        elif not first.evaluated and c.evaluated:
            first.performance = c.performance
    return order


class MutationOperator:
    def __init__(self, p_mutation: float, constraint: CardinalityConstraint = UNCONSTRAINED) -> None:
        self.p_mutation = p_mutation
        self.constraint = constraint

    def operate(self, population: Population, rng: random.Random) -> None:
        offspring = []
        for c in population:
            m = mutate(c, self.p_mutation, rng)
            if m != c and self.constraint.admits(m):
                offspring.append(m)
        population.extend(offspring)
        logger.debug("mutation added %d candidates", len(offspring))


class CrossoverOperator:
    def __init__(
        self,
        p_crossover: float,
        kind: str = "uniform",
        constraint: CardinalityConstraint = UNCONSTRAINED,
    ) -> None:
        if kind not in CROSSOVER_TYPES:
            raise ConfigurationError(f"unknown crossover type {kind!r}", "crossover_type")
        self.p_crossover = p_crossover
        self.kind = kind
        self.constraint = constraint

    def operate(self, population: Population, rng: random.Random) -> None:
        mating = population.candidates
        rng.shuffle(mating)
        offspring = []
        for i in range(0, len(mating) - 1, 2):
            if rng.random() >= self.p_crossover:
                continue
            for child in crossover_pair(mating[i], mating[i + 1], self.kind, rng):
                if self.constraint.admits(child):
                    offspring.append(child)
        population.extend(offspring)
        logger.debug("%s crossover added %d candidates", self.kind, len(offspring))


class RedundancyRemoval:
    def operate(self, population: Population, rng: Optional[random.Random] = None) -> None:
        before = len(population)
        population.replace(remove_redundant(population.candidates))
        if len(population) != before:
            logger.debug("removed %d duplicate candidates", before - len(population))


class _NeighborOperator:
    def __init__(self, constraint: CardinalityConstraint = UNCONSTRAINED) -> None:
        self.constraint = constraint

    def neighbors(self, candidate: Candidate) -> Sequence[Candidate]:
        raise NotImplementedError

    def operate(self, population: Population, rng: Optional[random.Random] = None) -> None:
        added = [n for c in population for n in self.neighbors(c) if self.constraint.admits(n)]
        population.extend(added)


class ForwardNeighborOperator(_NeighborOperator):
    def neighbors(self, candidate: Candidate) -> Sequence[Candidate]:
        return forward_neighbors(candidate)


class BackwardNeighborOperator(_NeighborOperator):
    def neighbors(self, candidate: Candidate) -> Sequence[Candidate]:
        return backward_neighbors(candidate)
