import json
import random

import pytest
from deap import base

from conftest import HitCountOracle
from subset_search.config_loader import EvolutionConfig
from subset_search.errors import ConfigurationError, OracleEvaluationError
from subset_search.evolution import (
    EvolutionaryLoop,
    GuardedOracle,
    brute_force_population,
    count_admitted_subsets,
    random_population,
    seed_weights,
)
from subset_search.performance import Criterion, PerformanceVector, single
from subset_search.variation import CardinalityConstraint


def _config(**kw):
    base_kw = {"population_size": 8, "max_generations": 6, "seed": 3}
    base_kw.update(kw)
    return EvolutionConfig(**base_kw)


class TestGuardedOracle:
    def test_wraps_failures(self):
        def broken(mask):
            raise RuntimeError("model crashed")

        with pytest.raises(OracleEvaluationError) as err:
            GuardedOracle(broken)((True, False))
        assert err.value.mask == (True, False)
        assert isinstance(err.value.cause, RuntimeError)

    def test_plain_numbers_become_vectors(self):
        pv = GuardedOracle(lambda mask: 0.25, criterion_name="acc")((True,))
        assert pv.main_criterion.name == "acc"
        assert pv.fitness == 0.25

    def test_rejects_other_results(self):
        with pytest.raises(OracleEvaluationError):
            GuardedOracle(lambda mask: "0.5")((True,))


class TestInitialPopulation:
    def test_seed_weights_are_binarised(self):
        r = random.Random(0)
        assert seed_weights([1.0, 0.0, 0.2, 0.8, 2.0, -1.0], 0.5, r) == [1.0, 0.0, 1.0, 0.0, 1.0, 0.0]

    def test_seed_is_included(self, rng):
        pop = random_population(6, 10, 0.5, CardinalityConstraint(), rng, [1, 0, 0, 1, 0, 0])
        assert len(pop) == 10
        assert pop[0].weights == (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

    def test_inadmissible_seed_is_ignored(self, rng):
        pop = random_population(6, 4, 0.5, CardinalityConstraint(min_count=3), rng, [1, 0, 0, 0, 0, 0])
        assert all(c.used_count >= 3 for c in pop)

    def test_seed_of_wrong_length(self, rng):
        with pytest.raises(ConfigurationError):
            random_population(6, 4, 0.5, CardinalityConstraint(), rng, [1, 0])

    def test_exact_count(self, rng):
        pop = random_population(8, 12, 0.9, CardinalityConstraint(exact=3), rng, [1] * 8)
        assert len(pop) == 12
        assert all(c.used_count == 3 for c in pop)

    def test_no_empty_subsets(self, rng):
        pop = random_population(3, 50, 1.0, CardinalityConstraint(), rng)
        assert all(c.used_count == 1 for c in pop)

    def test_p_initialize_is_the_switch_off_probability(self, rng):
        assert all(c.used_count == 6 for c in random_population(6, 5, 0.0, CardinalityConstraint(), rng))
        assert all(c.used_count == 1 for c in random_population(6, 5, 1.0, CardinalityConstraint(), rng))
        # fractional seed weights use the same threshold
        assert seed_weights([0.3, 0.7], 0.5, rng) == [1.0, 0.0]
        assert seed_weights([0.3, 0.7], 0.2, rng) == [1.0, 1.0]

    def test_brute_force_enumerates_every_subset(self):
        pop = brute_force_population(4, CardinalityConstraint(min_count=2, max_count=3))
        assert len(pop) == 6 + 4
        assert len({c.weights for c in pop}) == 10
        assert count_admitted_subsets(5, CardinalityConstraint()) == 31


class TestEvolutionaryLoop:
    def test_best_ever_never_decreases(self, names, hit_oracle):
        result = EvolutionaryLoop(hit_oracle, names, _config(max_generations=10)).run()
        best = result.logbook.select("best")
        assert all(b2 >= b1 for b1, b2 in zip(best, best[1:]))
        assert result.stop_reason == "max_generations"
        assert result.generations == 10
        assert result.fitness == pytest.approx(max(best))

    def test_same_seed_same_result(self, names):
        r1 = EvolutionaryLoop(HitCountOracle(), names, _config()).run()
        r2 = EvolutionaryLoop(HitCountOracle(), names, _config()).run()
        assert r1.weights == r2.weights
        assert r1.logbook.select("best") == r2.logbook.select("best")
        assert r1.evaluations == r2.evaluations

    def test_identical_subsets_are_evaluated_once(self, names, hit_oracle):
        result = EvolutionaryLoop(hit_oracle, names, _config(max_generations=8)).run()
        assert len(hit_oracle.calls) == len(set(hit_oracle.calls)) == result.evaluations

    def test_brute_force(self):
        oracle = HitCountOracle(true_subset=(0, 3))
        names = [f"a{i}" for i in range(5)]
        result = EvolutionaryLoop(oracle, names, _config(brute_force=True)).run()
        assert result.stop_reason == "brute_force"
        assert result.evaluations == 31
        assert result.selected == ["a0", "a3"]
        assert result.fitness == pytest.approx(1.8)

    def test_brute_force_limit(self):
        names = [f"a{i}" for i in range(20)]
        loop = EvolutionaryLoop(HitCountOracle(true_subset=(0,)), names, _config(brute_force=True))
        with pytest.raises(ConfigurationError):
            loop.run()

    def test_oracle_failure_propagates(self, names):
        def failing(mask):
            raise ValueError("bad fold")

        with pytest.raises(OracleEvaluationError):
            EvolutionaryLoop(failing, names, _config()).run()

    def test_maximal_fitness_stops_immediately(self, names, hit_oracle):
        result = EvolutionaryLoop(hit_oracle, names, _config(maximal_fitness=-5.0)).run()
        assert result.stop_reason == "maximal_fitness"
        assert result.generations == 0
        assert len(result.logbook) == 1

    def test_criterion_maximum_stops_the_search(self, names):
        def capped(mask):
            return PerformanceVector((Criterion("acc", 0.5, max_fitness=0.5),))

        result = EvolutionaryLoop(capped, names, _config()).run()
        assert result.stop_reason == "maximal_fitness"

    def test_early_stopping(self, names):
        result = EvolutionaryLoop(
            lambda mask: single("flat", 1.0),
            names,
            _config(use_early_stopping=True, generations_without_improvement=2),
        ).run()
        assert result.stop_reason == "no_improvement"
        assert result.generations == 2

    def test_multi_objective_ignores_maximal_fitness(self, names):
        def two_criteria(mask):
            hits = sum(1 for i in (1, 4) if mask[i])
            return PerformanceVector(
                (Criterion("hits", float(hits)), Criterion("fraction", sum(mask) / len(mask), direction="min"))
            )

        result = EvolutionaryLoop(
            two_criteria, names, _config(selection_scheme="nsga2", maximal_fitness=0.0, max_generations=4)
        ).run()
        assert result.stop_reason == "max_generations"
        assert all(len(c.performance) == 2 for c in result.population)

    def test_stop_request_from_an_operator(self, names, hit_oracle):
        class StopAtTwo:
            def __init__(self):
                self.loop = None

            def operate(self, population, rng):
                if population.generation == 2:
                    self.loop.stop()

        op = StopAtTwo()
        loop = EvolutionaryLoop(hit_oracle, names, _config(max_generations=50), post_operators=[op])
        op.loop = loop
        result = loop.run()
        assert result.stop_reason == "stopped"
        assert result.generations == 2

    def test_checkpoint_written(self, tmp_path, names, hit_oracle):
        path = tmp_path / "weights.json"
        result = EvolutionaryLoop(hit_oracle, names, _config(checkpoint_path=str(path), max_generations=3)).run()
        saved = json.loads(path.read_text())
        assert list(saved) == names
        assert saved == result.weights

    def test_custom_toolbox_map(self, names, hit_oracle):
        mapped = []

        def recording_map(func, items):
            items = list(items)
            mapped.append(len(items))
            return [func(x) for x in items]

        toolbox = base.Toolbox()
        toolbox.register("evaluate", GuardedOracle(hit_oracle))
        toolbox.register("map", recording_map)
        result = EvolutionaryLoop(hit_oracle, names, _config(max_generations=3), toolbox=toolbox).run()
        assert sum(mapped) == result.evaluations
        # initial population: up to 8 distinct subsets in one batch
        assert 0 < mapped[0] <= 8

    def test_exact_attribute_count_is_kept(self, names, hit_oracle):
        result = EvolutionaryLoop(hit_oracle, names, _config(exact_attributes=3, max_generations=8)).run()
        assert len(result.selected) == 3
        assert all(c.used_count == 3 for c in result.population)

    def test_best_selection_keeps_one_candidate(self, names, hit_oracle):
        result = EvolutionaryLoop(hit_oracle, names, _config(selection_scheme="best", max_generations=3)).run()
        assert len(result.population) == 1
        assert result.population[0].weights == tuple(result.weights.values())
