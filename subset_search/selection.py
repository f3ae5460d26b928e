"""
Selection schemes: each replaces the evaluated population with the next generation.

Every scheme exposes ``operate(population, rng)``. Randomness comes only from
the ``rng`` argument; ties are broken by ``Candidate.sort_key`` (older wins).
"""

from __future__ import annotations

import logging
import math
import random
from typing import List, Optional, Sequence

from deap import tools

from .individual import Candidate, Population

logger = logging.getLogger(__name__)

MINIMAL_TEMPERATURE = 1e-3
SHIFT_EPSILON = 1e-3


def _uniform_pick(weights: Sequence[float], rng: random.Random) -> int:
    total = float(sum(weights))
    if total <= 0.0:
        return rng.randrange(len(weights))
    r = rng.random() * total
    acc = 0.0
    for i, w in enumerate(weights):
        acc += w
        if r < acc:
            return i
    return len(weights) - 1


def _proportional_fitness(candidates: Sequence[Candidate]) -> List[float]:
    """Raw fitness as sampling weight; shifted above zero only when some fitness is negative.

    Missing or NaN fitness weighs 0.
    """
    fits = [c.sort_key[0] for c in candidates]
    finite = [f for f in fits if math.isfinite(f)]
    if not finite:
        return [0.0] * len(candidates)
    low = min(finite)
    offset = 0.0
    if low < 0.0:
        span = max(finite) - low
        # the worst candidate keeps a small non-zero share
        offset = -low + (span * SHIFT_EPSILON if span > 0.0 else 1.0)
    return [f + offset if math.isfinite(f) else 0.0 for f in fits]


class SelectionScheme:
    """Base class for schemes that keep an optional best-ever seed and fill up to ``population_size``."""

    def __init__(self, population_size: int, keep_best: bool = False) -> None:
        self.population_size = int(population_size)
        self.keep_best = keep_best

    def _seed(self, population: Population) -> List[Candidate]:
        if self.keep_best and population.best_ever is not None:
            return [population.best_ever]
        return []

    def select(self, candidates: List[Candidate], count: int, population: Population, rng: random.Random) -> List[Candidate]:
        raise NotImplementedError

    def operate(self, population: Population, rng: random.Random) -> None:
        candidates = population.candidates
        nxt = self._seed(population)
        need = self.population_size - len(nxt)
        if candidates and need > 0:
            nxt.extend(self.select(candidates, need, population, rng))
        logger.debug("%s: %d -> %d candidates", type(self).__name__, len(candidates), len(nxt))
        population.replace(nxt)


class CutSelection(SelectionScheme):
    """Deterministic truncation: keep the ``population_size`` best."""

    def __init__(self, population_size: int) -> None:
        super().__init__(population_size, keep_best=False)

    def select(self, candidates, count, population, rng):
        ordered = sorted(candidates, key=lambda c: c.sort_key)
        return ordered[-count:] if count < len(ordered) else ordered


class _WeightedSelection(SelectionScheme):
    def weights(self, candidates: List[Candidate], population: Population) -> List[float]:
        raise NotImplementedError

    def select(self, candidates, count, population, rng):
        w = self.weights(candidates, population)
        return [candidates[_uniform_pick(w, rng)] for _ in range(count)]


class UniformSelection(_WeightedSelection):
    def weights(self, candidates, population):
        return [1.0] * len(candidates)


class RouletteWheel(_WeightedSelection):
    def weights(self, candidates, population):
        return _proportional_fitness(candidates)


class StochasticUniversalSampling(SelectionScheme):
    def select(self, candidates, count, population, rng):
        w = _proportional_fitness(candidates)
        total = float(sum(w))
        if total <= 0.0:
            w = [1.0] * len(candidates)
            total = float(len(candidates))
        step = total / count
        start = rng.random() * step
        chosen: List[Candidate] = []
        acc = w[0]
        i = 0
        for k in range(count):
            pointer = start + k * step
            while pointer >= acc and i < len(w) - 1:
                i += 1
                acc += w[i]
            chosen.append(candidates[i])
        return chosen


class RankSelection(_WeightedSelection):
    def select(self, candidates, count, population, rng):
        ordered = sorted(candidates, key=lambda c: c.sort_key)
        return super().select(ordered, count, population, rng)

    def weights(self, candidates, population):
        # candidates arrive sorted ascending: the best gets weight m
        return [float(i + 1) for i in range(len(candidates))]


class BoltzmannSelection(_WeightedSelection):
    def __init__(
        self,
        population_size: int,
        start_temperature: float = 1.0,
        max_generations: int = 50,
        dynamic: bool = False,
        keep_best: bool = False,
    ) -> None:
        super().__init__(population_size, keep_best)
        self.start_temperature = float(start_temperature)
        self.max_generations = max(int(max_generations), 1)
        self.dynamic = dynamic

    def temperature(self, generation: int) -> float:
        if not self.dynamic:
            return max(self.start_temperature, MINIMAL_TEMPERATURE)
        t = self.start_temperature * (1.0 - generation / self.max_generations)
        return max(t, MINIMAL_TEMPERATURE)

    def weights(self, candidates, population):
        t = self.temperature(population.generation)
        fits = [c.sort_key[0] for c in candidates]
        finite = [f for f in fits if math.isfinite(f)]
        if not finite:
            return [1.0] * len(candidates)
        top = max(finite)
        # exp((f - top) / T) keeps the exponent <= 0
        return [math.exp((f - top) / t) if math.isfinite(f) else 0.0 for f in fits]


class TournamentSelection(SelectionScheme):
    def __init__(
        self,
        population_size: int,
        fraction: float = 0.25,
        max_generations: int = 50,
        dynamic: bool = False,
        keep_best: bool = False,
    ) -> None:
        super().__init__(population_size, keep_best)
        self.fraction = float(fraction)
        self.max_generations = max(int(max_generations), 1)
        self.dynamic = dynamic

    def current_fraction(self, generation: int) -> float:
        if not self.dynamic:
            return self.fraction
        f = self.fraction + (1.0 - self.fraction) * generation / self.max_generations
        return min(f, 1.0)

    def tournament_size(self, m: int, generation: int) -> int:
        # half-up rounding: 10 * 0.25 gives 3
        return max(int(math.floor(m * self.current_fraction(generation) + 0.5)), 1)

    def select(self, candidates, count, population, rng):
        size = self.tournament_size(len(candidates), population.generation)
        chosen = []
        for _ in range(count):
            members = [candidates[rng.randrange(len(candidates))] for _ in range(size)]
            chosen.append(max(members, key=lambda c: c.sort_key))
        return chosen


class NonDominatedSortingSelection(SelectionScheme):
    """NSGA-II environmental selection over every criterion of the performance vectors.

    Candidates with a NaN criterion are ranked behind every Pareto front.
    """

    disables_max_fitness = True

    def __init__(self, population_size: int) -> None:
        super().__init__(population_size, keep_best=False)

    def select(self, candidates, count, population, rng):
        ranked = [c for c in candidates if c.evaluated and all(math.isfinite(v) for v in c.fitness.values)]
        ranked_ids = {id(c) for c in ranked}
        rest = sorted((c for c in candidates if id(c) not in ranked_ids), key=lambda c: c.sort_key, reverse=True)
        chosen: List[Candidate] = []
        fronts = tools.sortNondominated(ranked, len(ranked)) if ranked else []
        for front in fronts:
            if len(chosen) + len(front) <= count:
                chosen.extend(front)
                continue
            tools.emo.assignCrowdingDist(front)
            # stable: equal distances keep front order
            front = sorted(front, key=lambda c: c.fitness.crowding_dist, reverse=True)
            chosen.extend(front[: count - len(chosen)])
            break
        if len(chosen) < count:
            chosen.extend(rest[: count - len(chosen)])
        return chosen


class BestSelection(SelectionScheme):
    """Collapse the population to the best-ever candidate."""

    def __init__(self) -> None:
        super().__init__(1, keep_best=True)

    def operate(self, population: Population, rng: Optional[random.Random] = None) -> None:
        if population.best_ever is None:
            best = population.best()
            population.replace([best] if best is not None else [])
            return
        population.replace([population.best_ever])
