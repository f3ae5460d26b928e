"""
Greedy sequential attribute search: forward selection and backward elimination.

Each round tries every single flip toward the target state (include for
forward, exclude for backward), asks the oracle for each, and commits the
best one. Stopping is controlled by a stopping behaviour plus a number of
speculative rounds that may still be attempted after the condition first
fires; speculative moves that never pay off are rolled back.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config_loader import GreedyConfig
from .errors import SignificanceCalculationError
from .evolution import GuardedOracle, Oracle
from .performance import PerformanceVector
from .significance import AnovaCalculator

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


@dataclass
class GreedySearchState:
    included: List[bool]
    last_performance: Optional[PerformanceVector] = None
    best_performance: Optional[PerformanceVector] = None
    speculative_moves: List[int] = field(default_factory=list)
    fails_left: int = 0

    def flip(self, index: int) -> None:
        self.included[index] = not self.included[index]

    def rollback(self) -> List[int]:
        undone = list(self.speculative_moves)
        for index in reversed(undone):
            self.flip(index)
        self.speculative_moves.clear()
        return undone


@dataclass
class GreedyResult:
    weights: Dict[str, float]
    selected: List[str]
    performance: Optional[PerformanceVector]
    rounds: int
    evaluations: int
    stop_reason: str
    history: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def fitness(self) -> float:
        return self.performance.fitness if self.performance is not None else float("nan")


class GreedySequentialSearch:
    def __init__(
        self,
        oracle: Oracle,
        attribute_names: Sequence[str],
        config: Optional[GreedyConfig] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.attribute_names = list(attribute_names)
        self.config = (config or GreedyConfig()).validate(len(self.attribute_names))
        self.oracle = GuardedOracle(oracle)
        self.progress = progress
        self.evaluations = 0
        self.state: Optional[GreedySearchState] = None
        self._stop_requested = False

    @property
    def forward(self) -> bool:
        return self.config.direction == "forward"

    def max_rounds(self) -> int:
        n = len(self.attribute_names)
        limit = self.config.max_rounds if self.config.max_rounds is not None else n
        return min(limit, n) if self.forward else min(limit, n - 1)

    def stop(self) -> None:
        """Request cancellation; honoured before the next oracle call."""
        self._stop_requested = True

    def _evaluate(self, included: List[bool]) -> PerformanceVector:
        pv = self.oracle(tuple(included))
        self.evaluations += 1
        return pv

    def should_stop(self, last: PerformanceVector, current: PerformanceVector) -> bool:
        """True when ``current`` is not a sufficient improvement over ``last``."""
        behavior = self.config.stopping_behavior
        last_fit = last.fitness
        cur_fit = current.fitness
        if math.isnan(cur_fit):
            return True
        if math.isnan(last_fit):
            return False
        if behavior == "without_increase":
            return not cur_fit > last_fit
        if behavior == "without_increase_of_at_least":
            if self.config.use_relative_increase:
                threshold = last_fit + abs(last_fit) * self.config.min_relative_increase
            else:
                threshold = last_fit + self.config.min_absolute_increase
            return not cur_fit > threshold
        # without_significant_increase
        if not cur_fit > last_fit:
            return True
        calculator = AnovaCalculator(self.config.alpha)
        for pv in (current, last):
            c = pv.main_criterion
            calculator.add_group(c.count, c.average, c.variance)
        try:
            result = calculator.perform_test()
        except SignificanceCalculationError as e:
            raise SignificanceCalculationError(f"cannot test round improvement: {e}") from e
        logger.debug("%s", result)
        return not result.is_significant

    def run(self) -> GreedyResult:
        self._stop_requested = False
        self.evaluations = 0
        n = len(self.attribute_names)
        target = self.forward
        k = self.config.speculative_rounds
        state = GreedySearchState(included=[not target] * n, fails_left=k)
        self.state = state
        history: List[Dict[str, Any]] = []
        max_rounds = self.max_rounds()
        reason = "max_rounds"

        if not self.forward:
            state.last_performance = self._evaluate(state.included)
            state.best_performance = state.last_performance

        rounds = 0
        for r in range(max_rounds):
            best_index = None
            best_pv: Optional[PerformanceVector] = None
            for i in range(n):
                if state.included[i] != target:
                    if self._stop_requested:
                        undone = state.rollback()
                        logger.info("greedy search cancelled in round %d; rolled back %d moves", r, len(undone))
                        return self._result(rounds, "stopped", history)
                    state.flip(i)
                    try:
                        pv = self._evaluate(state.included)
                    finally:
                        state.flip(i)
                    if best_pv is None or pv.compare(best_pv) > 0:
                        best_index, best_pv = i, pv
                if self.progress is not None:
                    self.progress((r * n + i + 1) / (max_rounds * n))
            if best_index is None:
                reason = "exhausted"
                break

            fired = state.last_performance is not None and self.should_stop(state.last_performance, best_pv)
            entry = {
                "round": r,
                "attribute": self.attribute_names[best_index],
                "fitness": best_pv.fitness,
                "stop_fired": fired,
            }
            if fired:
                if state.fails_left == 0:
                    undone = state.rollback()
                    entry.update(committed=False, rolled_back=[self.attribute_names[j] for j in undone])
                    history.append(entry)
                    logger.info(
                        "round %d: stop condition met (fitness %.6g); rolled back %d speculative moves",
                        r,
                        best_pv.fitness,
                        len(undone),
                    )
                    reason = "converged"
                    break
                state.fails_left -= 1
                state.speculative_moves.append(best_index)
                if best_pv.compare(state.last_performance) > 0:
                    state.last_performance = best_pv
            else:
                state.fails_left = k
                state.speculative_moves.clear()
                state.last_performance = best_pv
                state.best_performance = best_pv
            state.flip(best_index)
            rounds += 1
            entry.update(committed=True, used=sum(state.included))
            history.append(entry)
            logger.info(
                "round %d: %s %s (fitness %.6g, %d attributes)%s",
                r,
                "added" if self.forward else "removed",
                self.attribute_names[best_index],
                best_pv.fitness,
                sum(state.included),
                " [speculative]" if fired else "",
            )
        undone = state.rollback()
        if undone:
            logger.info("search ended in speculation; rolled back %d moves", len(undone))

        return self._result(rounds, reason, history)

    def _result(self, rounds: int, reason: str, history: List[Dict[str, Any]]) -> GreedyResult:
        state = self.state
        weights = {name: 1.0 if inc else 0.0 for name, inc in zip(self.attribute_names, state.included)}
        return GreedyResult(
            weights=weights,
            selected=[name for name, w in weights.items() if w > 0],
            performance=state.best_performance,
            rounds=rounds,
            evaluations=self.evaluations,
            stop_reason=reason,
            history=history,
        )
