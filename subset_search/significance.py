"""
One-way ANOVA from group summaries (count, mean, variance).

Used by greedy search to decide whether a round improved significantly over
the previous one. Only summaries are needed, so the per-fold scores of a
cross-validation never have to be kept around.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from scipy import stats

from .errors import SignificanceCalculationError


@dataclass(frozen=True)
class SignificanceTestResult:
    f_value: float
    probability: float
    df_between: int
    df_within: int
    alpha: float

    @property
    def is_significant(self) -> bool:
        return self.probability < self.alpha

    def __str__(self) -> str:
        return (
            f"ANOVA F({self.df_between}, {self.df_within}) = {self.f_value:.4f}, "
            f"p = {self.probability:.4f} (alpha = {self.alpha})"
        )


class AnovaCalculator:
    def __init__(self, alpha: float = 0.05) -> None:
        if not 0.0 < alpha < 1.0:
            raise ValueError(f"alpha must be in (0, 1), got {alpha}")
        self.alpha = alpha
        self._groups: List[Tuple[int, float, float]] = []

    def add_group(self, count: int, mean: float, variance: float) -> None:
        self._groups.append((int(count), float(mean), float(variance)))

    def clear(self) -> None:
        self._groups = []

    def perform_test(self) -> SignificanceTestResult:
        groups = self._groups
        if len(groups) < 2:
            raise SignificanceCalculationError(f"ANOVA needs at least two groups, got {len(groups)}")
        if any(n <= 0 for n, _, _ in groups):
            raise SignificanceCalculationError("ANOVA group with zero sample count")

        total = sum(n for n, _, _ in groups)
        grand_mean = sum(n * m for n, m, _ in groups) / total
        ss_between = sum(n * (m - grand_mean) ** 2 for n, m, _ in groups)
        # variances are population variances of each group
        ss_within = sum(n * v for n, _, v in groups)

        df_between = len(groups) - 1
        df_within = total - len(groups)
        if df_within <= 0:
            raise SignificanceCalculationError(
                f"ANOVA needs more samples than groups (samples={total}, groups={len(groups)})"
            )
        if ss_within <= 0.0:
            raise SignificanceCalculationError("ANOVA within-group variance is zero")

        f_value = (ss_between / df_between) / (ss_within / df_within)
        probability = float(stats.f.sf(f_value, df_between, df_within))
        return SignificanceTestResult(f_value, probability, df_between, df_within, self.alpha)
