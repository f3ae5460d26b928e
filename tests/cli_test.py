import json
import os

import numpy as np
import pandas as pd
import pytest

from attribute_selection import CrossValidationOracle, build_configs, load_dataset, main, parse_args


@pytest.fixture
def csv_path(tmp_path):
    """Binary target driven by f0 and f2; the other columns are noise."""
    r = np.random.RandomState(0)
    X = r.normal(size=(60, 5))
    y = (X[:, 0] + X[:, 2] > 0).astype(int)
    df = pd.DataFrame(X, columns=[f"f{i}" for i in range(5)])
    df["label"] = y
    path = tmp_path / "data.csv"
    df.to_csv(path, index=False)
    return str(path)


class TestOracle:
    def test_same_mask_same_score(self, csv_path):
        data = load_dataset(csv_path, "label", None)
        oracle = CrossValidationOracle(data.X, data.y, cv=3, seed=7)
        mask = (True, False, True, False, False)
        assert oracle(mask).fitness == oracle(mask).fitness
        assert oracle(mask).main_criterion.count == 3

    def test_feature_fraction_criterion(self, csv_path):
        data = load_dataset(csv_path, "label", None)
        oracle = CrossValidationOracle(data.X, data.y, cv=3, feature_fraction=True)
        pv = oracle((True, True, False, False, False))
        assert pv.names == ["accuracy", "feature_fraction"]
        assert pv["feature_fraction"].average == pytest.approx(0.4)
        assert pv["feature_fraction"].direction == "min"

    def test_missing_target_column(self, csv_path):
        with pytest.raises(ValueError):
            load_dataset(csv_path, "nope", None)


class TestArguments:
    def test_overrides_reach_the_configs(self):
        args = parse_args(
            ["--csv", "x.csv", "--target-col", "y", "--pop-size", "9", "--selection", "sus", "--early-stopping", "3",
             "--min-increase", "0.1", "--absolute-increase", "--method", "backward"]
        )
        evo, greedy = build_configs(args)
        assert evo.population_size == 9
        assert evo.selection_scheme == "sus"
        assert evo.use_early_stopping and evo.generations_without_improvement == 3
        assert greedy.direction == "backward"
        assert greedy.stopping_behavior == "without_increase_of_at_least"
        assert greedy.use_relative_increase is False
        assert greedy.min_absolute_increase == 0.1


class TestMain:
    def test_forward_search(self, tmp_path, csv_path):
        out = tmp_path / "forward"
        code = main(["--csv", csv_path, "--target-col", "label", "--method", "forward", "--cv", "3",
                     "--output", str(out)])
        assert code == 0
        data = json.loads((out / "best_solution.json").read_text())
        assert data["method"] == "forward"
        assert data["num_selected"] >= 1
        assert os.path.exists(out / "greedy_log.csv")

    def test_genetic_search(self, tmp_path, csv_path):
        out = tmp_path / "ga"
        code = main(["--csv", csv_path, "--target-col", "label", "--pop-size", "4", "--generations", "2",
                     "--cv", "3", "--seed", "1", "--output", str(out)])
        assert code == 0
        for name in ("best_solution.json", "evolution_log.csv", "population_criteria.csv", "best_fitness.png"):
            assert os.path.exists(out / name)

    def test_configuration_error_exit_code(self, tmp_path, csv_path, capsys):
        code = main(["--csv", csv_path, "--target-col", "label", "--selection", "lottery",
                     "--output", str(tmp_path / "bad")])
        assert code == 2
        assert "[ERROR]" in capsys.readouterr().out

    def test_bad_config_file_exit_code(self, tmp_path, csv_path, capsys):
        cfg = tmp_path / "search.json"
        cfg.write_text(json.dumps({"evolution": {"populaton_size": 10}}))
        code = main(["--csv", csv_path, "--target-col", "label", "--config", str(cfg),
                     "--output", str(tmp_path / "bad")])
        assert code == 2
        assert "populaton_size" in capsys.readouterr().out
