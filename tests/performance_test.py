import math

import pytest

from subset_search.performance import (
    Criterion,
    PerformanceVector,
    criterion_from_scores,
    performance_from_scores,
    single,
)


class TestCriterion:
    def test_fitness_follows_direction(self):
        assert Criterion("acc", 0.8).fitness == 0.8
        assert Criterion("err", 0.2, direction="min").fitness == -0.2

    def test_nan_average_gives_nan_fitness(self):
        assert math.isnan(Criterion("acc", float("nan")).fitness)
        assert math.isnan(Criterion("err", float("nan"), direction="min").fitness)

    def test_invalid_direction(self):
        with pytest.raises(ValueError):
            Criterion("acc", 0.5, direction="up")

    def test_from_scores_uses_population_variance(self):
        c = criterion_from_scores("acc", [0.0, 1.0, 0.0, 1.0])
        assert c.average == pytest.approx(0.5)
        assert c.variance == pytest.approx(0.25)
        assert c.count == 4
        assert c.std == pytest.approx(0.5)

    def test_from_no_scores(self):
        c = criterion_from_scores("acc", [])
        assert c.count == 0
        assert math.isnan(c.fitness)


class TestPerformanceVector:
    def test_main_criterion(self):
        pv = PerformanceVector((Criterion("a", 0.1), Criterion("b", 0.9)), main_index=1)
        assert pv.main_criterion.name == "b"
        assert pv.fitness == 0.9
        assert pv.fitness_values == (0.1, 0.9)
        assert pv["a"].average == 0.1
        with pytest.raises(KeyError):
            pv["missing"]

    def test_needs_criteria(self):
        with pytest.raises(ValueError):
            PerformanceVector(())
        with pytest.raises(ValueError):
            PerformanceVector((Criterion("a", 1.0),), main_index=1)

    def test_compare_puts_nan_and_missing_lowest(self):
        good = single("s", 0.5)
        bad = single("s", -3.0)
        nan = single("s", float("nan"))
        assert good.compare(bad) == 1
        assert bad.compare(good) == -1
        assert good.compare(single("s", 0.5)) == 0
        assert bad.compare(nan) == 1
        assert nan.compare(bad) == -1
        assert bad.compare(None) == 1

    def test_dominance(self):
        a = PerformanceVector((Criterion("x", 2.0), Criterion("y", 2.0)))
        b = PerformanceVector((Criterion("x", 1.0), Criterion("y", 2.0)))
        c = PerformanceVector((Criterion("x", 3.0), Criterion("y", 1.0)))
        assert a.dominates(b)
        assert not b.dominates(a)
        assert not a.dominates(c) and not c.dominates(a)
        assert not a.dominates(a)

    def test_dominance_respects_minimised_criteria(self):
        small = PerformanceVector((Criterion("acc", 0.9), Criterion("frac", 0.2, direction="min")))
        large = PerformanceVector((Criterion("acc", 0.9), Criterion("frac", 0.6, direction="min")))
        assert small.dominates(large)

    def test_dominance_needs_equal_lengths(self):
        with pytest.raises(ValueError):
            single("a", 1.0).dominates(PerformanceVector((Criterion("a", 1.0), Criterion("b", 1.0))))

    def test_to_dict(self):
        pv = performance_from_scores("acc", [0.5, 0.7])
        d = pv.to_dict()
        assert d["main_criterion"] == "acc"
        assert d["criteria"][0]["count"] == 2
        assert d["criteria"][0]["average"] == pytest.approx(0.6)
