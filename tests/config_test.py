import json
import math

import pytest

from subset_search.config_loader import EvolutionConfig, GreedyConfig, load_config
from subset_search.errors import ConfigurationError


def _write(tmp_path, payload):
    path = tmp_path / "search.json"
    path.write_text(json.dumps(payload))
    return str(path)


class TestLoadConfig:
    def test_both_sections(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "evolution": {"population_size": 20, "selection_scheme": "roulette", "keep_best": "yes"},
                "greedy": {"direction": "backward", "speculative_rounds": 2},
            },
        )
        cfg = load_config(path)
        evo, greedy = cfg["evolution"], cfg["greedy"]
        assert evo.population_size == 20
        assert evo.keep_best is True
        assert evo.max_generations == 30
        assert greedy.direction == "backward"
        assert greedy.speculative_rounds == 2

    def test_missing_sections_use_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, {}))
        assert cfg["evolution"] == EvolutionConfig()
        assert cfg["greedy"] == GreedyConfig()

    def test_unknown_option(self, tmp_path):
        with pytest.raises(ConfigurationError) as err:
            load_config(_write(tmp_path, {"evolution": {"populaton_size": 10}}))
        assert err.value.option == "populaton_size"

    def test_unknown_section(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, {"evolution": {}, "annealing": {}}))

    def test_root_must_be_object(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, [1, 2]))

    def test_bad_values(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, {"evolution": {"population_size": 0}}))
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, {"evolution": {"p_crossover": 1.5}}))
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, {"evolution": {"max_generations": 2.5}}))
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, {"greedy": {"use_relative_increase": "maybe"}}))


class TestEvolutionConfig:
    def test_defaults(self):
        cfg = EvolutionConfig()
        assert cfg.population_size == 5
        assert cfg.selection_scheme == "tournament"
        assert cfg.tournament_fraction == 0.25
        assert cfg.p_mutation == -1.0
        assert cfg.p_crossover == 0.5
        assert cfg.crossover_type == "uniform"
        assert math.isinf(cfg.maximal_fitness)

    def test_validate_canonicalizes_operator_names(self):
        cfg = EvolutionConfig(selection_scheme="NSGA-II", crossover_type="one-point").validate(5)
        assert cfg.selection_scheme == "non_dominated_sorting"
        assert cfg.crossover_type == "one_point"

    def test_validate_rejects_values_set_after_construction(self):
        cfg = EvolutionConfig()
        cfg.population_size = -3
        with pytest.raises(ConfigurationError):
            cfg.validate(5)

    def test_exact_count_above_attribute_count(self):
        with pytest.raises(ConfigurationError) as err:
            EvolutionConfig(exact_attributes=6).validate(5)
        assert err.value.option == "exact_attributes"

    def test_min_count_above_attribute_count(self):
        with pytest.raises(ConfigurationError):
            EvolutionConfig(min_attributes=6).validate(5)

    def test_max_below_min(self):
        with pytest.raises(ConfigurationError):
            EvolutionConfig(min_attributes=3, max_attributes=2).validate(5)

    def test_zero_means_unbounded(self):
        c = EvolutionConfig(min_attributes=0, max_attributes=0, exact_attributes=0).constraint()
        assert c.lower == 1
        assert c.max_count is None
        assert c.exact is None

    def test_checkpoint_directory_must_exist(self, tmp_path):
        with pytest.raises(ConfigurationError):
            EvolutionConfig(checkpoint_path=str(tmp_path / "missing" / "w.json")).validate(3)
        with pytest.raises(ConfigurationError):
            EvolutionConfig(checkpoint_path=str(tmp_path)).validate(3)
        EvolutionConfig(checkpoint_path=str(tmp_path / "w.json")).validate(3)

    def test_round_trip_through_dict(self):
        cfg = EvolutionConfig(population_size=12, keep_best=True)
        assert EvolutionConfig.from_dict(cfg.to_dict()) == cfg


class TestGreedyConfig:
    def test_normalizes_direction_and_behavior(self):
        cfg = GreedyConfig(direction=" Backward ", stopping_behavior="without increase of at least").validate(4)
        assert cfg.direction == "backward"
        assert cfg.stopping_behavior == "without_increase_of_at_least"

    def test_unknown_direction(self):
        with pytest.raises(ConfigurationError):
            GreedyConfig(direction="sideways").validate(4)

    def test_unknown_behavior(self):
        with pytest.raises(ConfigurationError):
            GreedyConfig(stopping_behavior="never").validate(4)

    def test_alpha_only_checked_for_significance(self):
        GreedyConfig(alpha=0.0).validate(4)
        with pytest.raises(ConfigurationError):
            GreedyConfig(stopping_behavior="without_significant_increase", alpha=0.0).validate(4)

    def test_negative_speculative_rounds(self):
        with pytest.raises(ConfigurationError):
            GreedyConfig(speculative_rounds=-1).validate(4)
