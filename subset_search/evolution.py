"""
Generational evolutionary search over attribute subsets.

The loop evaluates the initial population, then repeats
pre-operators (crossover, mutation, redundancy removal) -> evaluation ->
post-operators (selection, checkpoint) until a stop condition holds.
Evaluation goes through a DEAP toolbox so that ``toolbox.map`` can be swapped
for an ordered parallel map (e.g. ``multiprocessing.Pool.map``).
"""

from __future__ import annotations

import itertools
import logging
import math
import numbers
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from deap import base, tools

from .checkpoint import SaveIntermediateWeights
from .config_loader import EvolutionConfig
from .errors import ConfigurationError, OracleEvaluationError
from .individual import Candidate, Population, population_diversity
from .operators import OperatorRegistry
from .performance import PerformanceVector, single
from .variation import CardinalityConstraint, CrossoverOperator, MutationOperator, RedundancyRemoval

logger = logging.getLogger(__name__)

Oracle = Callable[[Tuple[bool, ...]], PerformanceVector]

MAX_BRUTE_FORCE_CANDIDATES = 100_000

LOGBOOK_FIELDS = [
    "gen",
    "nevals",
    "size",
    "avg",
    "std",
    "min",
    "max",
    "best",
    "avg_length",
    "best_length",
    "diversity",
]


class GuardedOracle:
    """Picklable wrapper turning oracle failures into ``OracleEvaluationError``.

    Plain numbers returned by the oracle are wrapped into a one-criterion vector.
    """

    def __init__(self, oracle: Oracle, criterion_name: str = "fitness") -> None:
        self.oracle = oracle
        self.criterion_name = criterion_name

    def __call__(self, mask: Tuple[bool, ...]) -> PerformanceVector:
        try:
            result = self.oracle(mask)
        except OracleEvaluationError:
            raise
        except Exception as e:
            raise OracleEvaluationError(mask, e) from e
        if isinstance(result, PerformanceVector):
            return result
        if isinstance(result, numbers.Real):
            return single(self.criterion_name, float(result))
        raise OracleEvaluationError(mask, TypeError(f"oracle returned {type(result).__name__}, not a PerformanceVector"))


@dataclass
class SearchResult:
    weights: Dict[str, float]
    selected: List[str]
    performance: Optional[PerformanceVector]
    generations: int
    evaluations: int
    stop_reason: str
    logbook: tools.Logbook = field(default_factory=tools.Logbook)
    population: List[Candidate] = field(default_factory=list)

    @property
    def fitness(self) -> float:
        return self.performance.fitness if self.performance is not None else float("nan")


def count_admitted_subsets(n_attributes: int, constraint: CardinalityConstraint) -> int:
    return sum(math.comb(n_attributes, k) for k in range(constraint.lower, constraint.upper(n_attributes) + 1))


def brute_force_population(n_attributes: int, constraint: CardinalityConstraint) -> Population:
    """Every subset admitted by ``constraint``, smallest subsets first."""
    total = count_admitted_subsets(n_attributes, constraint)
    if total > MAX_BRUTE_FORCE_CANDIDATES:
        raise ConfigurationError(
            f"brute force would evaluate {total} subsets (limit {MAX_BRUTE_FORCE_CANDIDATES}); "
            "restrict min/max attributes or use the evolutionary search",
            "brute_force",
        )
    pop = Population()
    for k in range(constraint.lower, constraint.upper(n_attributes) + 1):
        for included in itertools.combinations(range(n_attributes), k):
            weights = [0.0] * n_attributes
            for i in included:
                weights[i] = 1.0
            pop.add(Candidate(weights))
    return pop


def seed_weights(weights: Sequence[float], p_initialize: float, rng: random.Random) -> List[float]:
    """Clip seed weights to [0, 1] and turn fractional weights into 0/1."""
    out = []
    for w in weights:
        w = float(w)
        if math.isnan(w):
            w = rng.random()
        w = min(max(w, 0.0), 1.0)
        if 0.0 < w < 1.0:
            w = 1.0 if w < 1.0 - p_initialize else 0.0
        out.append(w)
    return out


def random_population(
    n_attributes: int,
    size: int,
    p_initialize: float,
    constraint: CardinalityConstraint,
    rng: random.Random,
    initial_weights: Optional[Sequence[float]] = None,
) -> Population:
    pop = Population()
    if constraint.exact is not None:
        # seed weights are ignored when the exact count is fixed
        while len(pop) < size:
            mask = [False] * n_attributes
            for i in rng.sample(range(n_attributes), constraint.exact):
                mask[i] = True
            pop.add(Candidate.from_mask(mask))
        return pop

    seed = None
    if initial_weights is not None:
        if len(initial_weights) != n_attributes:
            raise ConfigurationError(
                f"initial weights have {len(initial_weights)} entries for {n_attributes} attributes", "initial_weights"
            )
        seed = Candidate(seed_weights(initial_weights, p_initialize, rng))
        if constraint.admits(seed):
            pop.add(seed)
        else:
            logger.warning(
                "initial weights select %d attributes, outside the allowed range; ignoring them", seed.used_count
            )
            seed = None

    while len(pop) < size:
        if seed is not None and rng.random() < 0.5:
            p = 1.0 / n_attributes
            mask = [(not b) if rng.random() < p else b for b in seed.mask]
        else:
            # p_initialize is the chance an attribute starts switched off
            mask = [rng.random() < 1.0 - p_initialize for _ in range(n_attributes)]
        pop.add(Candidate.from_mask(constraint.repair(mask, rng)))
    return pop


class EvolutionaryLoop:
    """Genetic search for the best attribute subset under a deterministic oracle."""

    def __init__(
        self,
        oracle: Oracle,
        attribute_names: Sequence[str],
        config: Optional[EvolutionConfig] = None,
        *,
        selection=None,
        pre_operators: Iterable = (),
        post_operators: Iterable = (),
        initial_weights: Optional[Sequence[float]] = None,
        rng: Optional[random.Random] = None,
        registry: Optional[OperatorRegistry] = None,
        toolbox: Optional[base.Toolbox] = None,
    ) -> None:
        self.attribute_names = list(attribute_names)
        self.registry = registry or OperatorRegistry()
        self.config = (config or EvolutionConfig()).validate(len(self.attribute_names), self.registry)
        self.constraint = self.config.constraint()
        self.rng = rng if rng is not None else random.Random(self.config.seed)
        self.initial_weights = initial_weights
        if selection is None:
            selection = self.registry.bind_selection(
                self.config.selection_scheme,
                self.config.selection_params(),
                {"population_size": self.config.population_size, "max_generations": self.config.max_generations},
            )
        self.selection = selection
        self.extra_pre_operators = list(pre_operators)
        self.extra_post_operators = list(post_operators)

        if toolbox is None:
            toolbox = base.Toolbox()
            toolbox.register("evaluate", GuardedOracle(oracle))
            # default to built-in map; callers may register pool.map
            toolbox.register("map", map)
        self.toolbox = toolbox

        self.stats = tools.Statistics(lambda c: c.main_fitness)
        self.stats.register("avg", np.nanmean)
        self.stats.register("std", np.nanstd)
        self.stats.register("min", np.nanmin)
        self.stats.register("max", np.nanmax)

        self.population: Optional[Population] = None
        self.logbook = tools.Logbook()
        self.logbook.header = list(LOGBOOK_FIELDS)
        self.evaluations = 0
        self._cache: Dict[Tuple[float, ...], PerformanceVector] = {}
        self._stop_requested = False

    # operators
    def pre_operators(self) -> List:
        ops: List = []
        if self.config.p_crossover > 0:
            ops.append(CrossoverOperator(self.config.p_crossover, self.config.crossover_type, self.constraint))
        ops.append(MutationOperator(self.config.p_mutation, self.constraint))
        if self.config.remove_redundant:
            ops.append(RedundancyRemoval())
        return ops + self.extra_pre_operators

    def post_operators(self) -> List:
        ops: List = [self.selection]
        if self.config.checkpoint_path:
            ops.append(SaveIntermediateWeights(self.config.checkpoint_path, self.attribute_names, self.config.checkpoint_interval))
        return ops + self.extra_post_operators

    @property
    def multi_objective(self) -> bool:
        return bool(getattr(self.selection, "disables_max_fitness", False))

    def stop(self) -> None:
        """Ask the loop to finish after the current generation."""
        self._stop_requested = True

    def initial_population(self) -> Population:
        n = len(self.attribute_names)
        if self.config.brute_force:
            return brute_force_population(n, self.constraint)
        return random_population(
            n,
            self.config.population_size,
            self.config.p_initialize,
            self.constraint,
            self.rng,
            self.initial_weights,
        )

    # evaluation
    def evaluate(self, population: Population) -> int:
        """Score every unevaluated candidate; returns the number of oracle calls."""
        empty = [c for c in population if c.used_count == 0]
        if empty:
            logger.warning("dropping %d candidates without attributes", len(empty))
            population.replace(c for c in population if c.used_count > 0)

        pending: Dict[Tuple[float, ...], List[Candidate]] = {}
        for c in population.unevaluated():
            cached = self._cache.get(c.weights)
            if cached is not None:
                c.performance = cached
            else:
                pending.setdefault(c.weights, []).append(c)
        if not pending:
            return 0

        keys = list(pending)
        masks = [pending[k][0].mask for k in keys]
        results = list(self.toolbox.map(self.toolbox.evaluate, masks))
        for key, pv in zip(keys, results):
            self._cache[key] = pv
            for c in pending[key]:
                c.performance = pv
        self.evaluations += len(keys)
        return len(keys)

    def update_best(self, population: Population) -> None:
        best = population.best()
        if best is None:
            return
        if population.best_ever is None or best.performance.compare(population.best_ever.performance) > 0:
            population.best_ever = best
            population.generations_without_improvement = 0
        else:
            population.generations_without_improvement += 1

    def record(self, population: Population, nevals: int) -> dict:
        members = population.candidates
        rec = self.stats.compile(members) if members else {}
        best = population.best_ever
        lengths = [c.used_count for c in members]
        rec.update(
            {
                "size": len(members),
                "best": best.main_fitness if best is not None else float("nan"),
                "avg_length": float(np.mean(lengths)) if lengths else float("nan"),
                "best_length": best.used_count if best is not None else 0,
                "diversity": population_diversity(members),
            }
        )
        self.logbook.record(gen=population.generation, nevals=nevals, **rec)
        logger.info(
            "generation %d: evaluations=%d size=%d best=%.6g best_length=%d",
            population.generation,
            nevals,
            rec["size"],
            rec["best"],
            rec["best_length"],
        )
        return rec

    # stopping
    def stop_reason(self, population: Population) -> Optional[str]:
        if self._stop_requested:
            return "stopped"
        if len(population) == 0:
            logger.warning("population is empty at generation %d", population.generation)
            return "empty_population"
        if self.config.brute_force:
            return "brute_force"
        if population.generation >= self.config.max_generations:
            return "max_generations"
        if (
            self.config.use_early_stopping
            and population.generations_without_improvement >= self.config.generations_without_improvement
        ):
            return "no_improvement"
        if not self.multi_objective and self._reached_maximal_fitness(population):
            return "maximal_fitness"
        return None

    def _reached_maximal_fitness(self, population: Population) -> bool:
        best = population.best_ever
        if best is None:
            return False
        fit = best.main_fitness
        if math.isnan(fit):
            return False
        limit = min(self.config.maximal_fitness, best.performance.main_criterion.max_fitness)
        return fit >= limit

    def run(self) -> SearchResult:
        self._stop_requested = False
        ops_pre = self.pre_operators()
        ops_post = self.post_operators()
        population = self.initial_population()
        self.population = population
        logger.info("initial population: %d candidates over %d attributes", len(population), len(self.attribute_names))

        nevals = self.evaluate(population)
        self.update_best(population)
        self.record(population, nevals)

        reason = self.stop_reason(population)
        while reason is None:
            population.next_generation()
            for op in ops_pre:
                op.operate(population, self.rng)
            nevals = self.evaluate(population)
            self.update_best(population)
            self.record(population, nevals)
            for op in ops_post:
                op.operate(population, self.rng)
            reason = self.stop_reason(population)

        logger.info("search finished after %d generations (%s)", population.generation, reason)
        return self.result(reason)

    def result(self, reason: str) -> SearchResult:
        population = self.population
        best = population.best_ever if population is not None else None
        if best is None:
            weights = {name: 0.0 for name in self.attribute_names}
            performance = None
        else:
            weights = dict(zip(self.attribute_names, best.weights))
            performance = best.performance
        return SearchResult(
            weights=weights,
            selected=[name for name, w in weights.items() if w > 0],
            performance=performance,
            generations=population.generation if population is not None else 0,
            evaluations=self.evaluations,
            stop_reason=reason,
            logbook=self.logbook,
            population=population.candidates if population is not None else [],
        )
