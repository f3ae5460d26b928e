#!/usr/bin/env python3
"""
Attribute subset selection with a genetic algorithm or greedy forward/backward search.

Supports CSV input (with a target column) or built-in scikit-learn datasets.
Subsets are scored by cross-validation of a chosen classifier, with an
optional sparsity penalty to prefer fewer attributes and an optional second
criterion (fraction of attributes used) for NSGA-II.
"""

from __future__ import annotations

import argparse
import logging
import multiprocessing as mp
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from deap import base
from sklearn.datasets import fetch_openml, load_breast_cancer, load_iris, load_wine
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import StratifiedKFold, cross_val_score
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC

from subset_search.config_loader import EvolutionConfig, GreedyConfig, load_config
from subset_search.errors import SubsetSearchError
from subset_search.evolution import EvolutionaryLoop, GuardedOracle
from subset_search.greedy import GreedySequentialSearch
from subset_search.performance import Criterion, PerformanceVector, criterion_from_scores
from subset_search.reporting import (
    plot_best_fitness,
    plot_greedy_rounds,
    save_greedy_history,
    save_logbook,
    save_population_criteria,
    save_results,
)

# --- Global worker evaluation context for multiprocessing ---
_EVAL_ORACLE: Optional["CrossValidationOracle"] = None


def _init_eval_worker(ctx: Dict[str, Any]) -> None:
    """Initializer for worker processes: build the oracle (and its classifier) once per worker."""
    global _EVAL_ORACLE
    _EVAL_ORACLE = CrossValidationOracle(**ctx)


def _evaluate_mask_in_worker(mask: Tuple[bool, ...]) -> PerformanceVector:
    """Picklable evaluate function that reads the oracle from the worker context."""
    if _EVAL_ORACLE is None:
        raise RuntimeError("evaluation worker was not initialised")
    return _EVAL_ORACLE(mask)


# -----------------------------
# Data loading utilities
# -----------------------------


@dataclass
class Dataset:
    X: np.ndarray
    y: np.ndarray
    feature_names: List[str]


def load_dataset(
    csv: Optional[str],
    target_col: Optional[str],
    sklearn_dataset: Optional[str],
    openml_name: Optional[str] = None,
    data_home: Optional[str] = None,
) -> Dataset:
    if csv:
        if not target_col:
            raise ValueError("--target-col is required when using --csv")
        df = pd.read_csv(csv)
        if target_col not in df.columns:
            raise ValueError(f"Target column '{target_col}' not found in CSV")
        y = df[target_col].values
        X = df.drop(columns=[target_col]).values
        feature_names = [c for c in df.columns if c != target_col]
        return Dataset(X=X, y=y, feature_names=feature_names)

    if sklearn_dataset:
        name = sklearn_dataset.lower()
        if name == "breast_cancer":
            data = load_breast_cancer()
        elif name == "iris":
            data = load_iris()
        elif name == "wine":
            data = load_wine()
        else:
            raise ValueError("Unsupported sklearn dataset. Choose breast_cancer|iris|wine")
        X = data.data
        y = data.target
        feature_names = list(getattr(data, "feature_names", [f"f{i}" for i in range(X.shape[1])]))
        return Dataset(X=X, y=y, feature_names=feature_names)

    if openml_name:
        # requires network unless cached under data_home
        ds = fetch_openml(name=openml_name, as_frame=True, parser="auto", data_home=data_home)
        y_series = ds.target
        if y_series.dtype.kind in ("O", "U", "S") or str(y_series.dtype) == "category":
            y = pd.factorize(y_series)[0]
        else:
            y = np.asarray(y_series)
        return Dataset(X=ds.data.values, y=y, feature_names=list(ds.data.columns))

    raise ValueError("Provide either --csv with --target-col, --sklearn-dataset or --openml-name")


# -----------------------------
# Classifier factory
# -----------------------------


def make_classifier(name: str) -> Pipeline:
    name = name.lower()
    if name == "logistic":
        clf = Pipeline([
            ("scaler", StandardScaler()),
            ("clf", LogisticRegression(max_iter=200, solver="liblinear")),
        ])
    elif name == "svm":
        clf = Pipeline([
            ("scaler", StandardScaler()),
            ("clf", SVC(kernel="rbf", gamma="scale")),
        ])
    elif name == "rf":
        clf = RandomForestClassifier(n_estimators=200, random_state=0)
    else:
        raise ValueError("Unsupported classifier. Choose logistic|svm|rf")
    return clf


# -----------------------------
# Evaluation oracle
# -----------------------------


class CrossValidationOracle:
    """Scores an attribute mask by cross-validating a classifier on the selected columns.

    The splitter is seeded once, so identical masks always get identical scores.
    """

    def __init__(
        self,
        X: np.ndarray,
        y: np.ndarray,
        classifier: str = "logistic",
        scoring: str = "accuracy",
        cv: int = 5,
        seed: int = 0,
        sparsity_penalty: float = 0.0,
        feature_fraction: bool = False,
        n_jobs: int = 1,
    ) -> None:
        self.X = X
        self.y = y
        self.classifier = classifier
        self.scoring = scoring
        self.cv = int(cv)
        self.seed = int(seed)
        self.sparsity_penalty = float(sparsity_penalty)
        self.feature_fraction = feature_fraction
        self.n_jobs = n_jobs
        self.clf = make_classifier(classifier)
        self.splitter = StratifiedKFold(n_splits=self.cv, shuffle=True, random_state=self.seed)

    def context(self) -> Dict[str, Any]:
        """Constructor arguments, for rebuilding the oracle inside worker processes."""
        return {
            "X": self.X,
            "y": self.y,
            "classifier": self.classifier,
            "scoring": self.scoring,
            "cv": self.cv,
            "seed": self.seed,
            "sparsity_penalty": self.sparsity_penalty,
            "feature_fraction": self.feature_fraction,
            "n_jobs": self.n_jobs,
        }

    def __call__(self, mask: Tuple[bool, ...]) -> PerformanceVector:
        sel = np.asarray(mask, dtype=bool)
        scores = cross_val_score(self.clf, self.X[:, sel], self.y, scoring=self.scoring, cv=self.splitter, n_jobs=self.n_jobs)
        frac = float(sel.sum()) / sel.size
        # Apply sparsity penalty proportional to fraction of selected features
        main = criterion_from_scores(self.scoring, np.asarray(scores) - self.sparsity_penalty * frac)
        criteria = [main]
        if self.feature_fraction:
            criteria.append(Criterion(name="feature_fraction", average=frac, direction="min"))
        return PerformanceVector(criteria=tuple(criteria))


# -----------------------------
# CLI
# -----------------------------


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Attribute subset selection (GA / forward / backward)")
    src = p.add_mutually_exclusive_group(required=False)
    src.add_argument("--csv", type=str, help="Path to CSV file")
    src.add_argument("--sklearn-dataset", type=str, help="Built-in dataset: breast_cancer|iris|wine")
    src.add_argument("--openml-name", type=str, help="OpenML dataset by name (requires network)")
    p.add_argument("--target-col", type=str, help="Target column name (with --csv)")
    p.add_argument("--data-home", type=str, default=None, help="Cache directory for OpenML downloads")

    p.add_argument("--classifier", type=str, default="logistic", choices=["logistic", "svm", "rf"], help="Classifier to evaluate subsets")
    p.add_argument("--scoring", type=str, default="accuracy", help="sklearn scoring metric (e.g., accuracy, f1_macro)")
    p.add_argument("--cv", type=int, default=5, help="Number of CV folds")
    p.add_argument("--alpha", type=float, default=0.0, help="Sparsity penalty strength (higher => fewer features)")
    p.add_argument("--feature-fraction", action="store_true", help="Add the fraction of used attributes as a second (minimised) criterion")
    p.add_argument("--eval-n-jobs", type=int, default=1, help="n_jobs for sklearn cross_val_score inside each evaluation")

    p.add_argument("--method", type=str, default="ga", choices=["ga", "forward", "backward"], help="Search strategy")
    p.add_argument("--config", type=str, default=None, help="JSON file with 'evolution' and 'greedy' sections")
    p.add_argument("--seed", type=int, default=None, help="Random seed (search and CV splitter)")

    ga = p.add_argument_group("genetic algorithm (overrides --config)")
    ga.add_argument("--pop-size", type=int, default=None, help="Population size")
    ga.add_argument("--generations", type=int, default=None, help="Maximum number of generations")
    ga.add_argument("--selection", type=str, default=None, help="Selection scheme, e.g. tournament, roulette_wheel, nsga2")
    ga.add_argument("--tournament-fraction", type=float, default=None, help="Tournament size as a fraction of the population")
    ga.add_argument("--start-temperature", type=float, default=None, help="Boltzmann start temperature")
    ga.add_argument("--static-pressure", action="store_true", help="Do not raise selection pressure over generations")
    ga.add_argument("--keep-best", action="store_true", help="Always carry the best-ever subset into the next generation")
    ga.add_argument("--crossover", type=str, default=None, help="Crossover type: one_point|uniform|shuffle")
    ga.add_argument("--cxpb", type=float, default=None, help="Crossover probability")
    ga.add_argument("--mutpb", type=float, default=None, help="Per-attribute mutation probability (<0 => 1/n_features)")
    ga.add_argument("--init-prob", type=float, default=None, help="Initial probability an attribute is switched off")
    ga.add_argument("--min-features", type=int, default=None, help="Minimum number of selected attributes")
    ga.add_argument("--max-features", type=int, default=None, help="Maximum number of selected attributes")
    ga.add_argument("--exact-features", type=int, default=None, help="Exact number of selected attributes")
    ga.add_argument("--early-stopping", type=int, default=None, help="Stop after this many generations without improvement")
    ga.add_argument("--brute-force", action="store_true", help="Evaluate every admissible subset once")
    ga.add_argument("--checkpoint", type=str, default=None, help="Write best-ever weights to this JSON file during the run")
    ga.add_argument("--checkpoint-interval", type=int, default=None, help="Generations between checkpoint writes")

    gr = p.add_argument_group("greedy search (overrides --config)")
    gr.add_argument("--max-rounds", type=int, default=None, help="Maximum number of rounds")
    gr.add_argument("--stopping", type=str, default=None,
                    choices=["without_increase", "without_increase_of_at_least", "without_significant_increase"])
    gr.add_argument("--min-increase", type=float, default=None, help="Required increase (relative unless --absolute-increase)")
    gr.add_argument("--absolute-increase", action="store_true", help="Treat --min-increase as an absolute threshold")
    gr.add_argument("--significance-alpha", type=float, default=None, help="ANOVA significance level")
    gr.add_argument("--speculative-rounds", type=int, default=None, help="Rounds still attempted after the stop condition fires")

    p.add_argument("--n-procs", type=int, default=1, help="Worker processes for parallel evaluation (DEAP map)")
    p.add_argument("--output", type=str, default="selection_results", help="Directory to save outputs")
    p.add_argument("--log-level", type=str, default="WARNING", help="Logging level for the search library")
    return p.parse_args(argv)


def _override(target, values: Dict[str, Any]) -> None:
    for key, val in values.items():
        if val is not None:
            setattr(target, key, val)


def build_configs(args: argparse.Namespace) -> Tuple[EvolutionConfig, GreedyConfig]:
    if args.config:
        cfgs = load_config(args.config)
        evo, greedy = cfgs["evolution"], cfgs["greedy"]
    else:
        evo, greedy = EvolutionConfig(), GreedyConfig()
    _override(evo, {
        "population_size": args.pop_size,
        "max_generations": args.generations,
        "selection_scheme": args.selection,
        "tournament_fraction": args.tournament_fraction,
        "start_temperature": args.start_temperature,
        "dynamic_selection_pressure": False if args.static_pressure else None,
        "keep_best": True if args.keep_best else None,
        "crossover_type": args.crossover,
        "p_crossover": args.cxpb,
        "p_mutation": args.mutpb,
        "p_initialize": args.init_prob,
        "min_attributes": args.min_features,
        "max_attributes": args.max_features,
        "exact_attributes": args.exact_features,
        "brute_force": True if args.brute_force else None,
        "checkpoint_path": args.checkpoint,
        "checkpoint_interval": args.checkpoint_interval,
        "seed": args.seed,
    })
    if args.early_stopping is not None:
        evo.use_early_stopping = True
        evo.generations_without_improvement = args.early_stopping
    _override(greedy, {
        "max_rounds": args.max_rounds,
        "stopping_behavior": args.stopping,
        "alpha": args.significance_alpha,
        "speculative_rounds": args.speculative_rounds,
    })
    if args.min_increase is not None:
        greedy.stopping_behavior = args.stopping or "without_increase_of_at_least"
        if args.absolute_increase:
            greedy.use_relative_increase = False
            greedy.min_absolute_increase = args.min_increase
        else:
            greedy.use_relative_increase = True
            greedy.min_relative_increase = args.min_increase
    if args.method in ("forward", "backward"):
        greedy.direction = args.method
    return evo, greedy


def run_ga(oracle: CrossValidationOracle, feature_names: List[str], config: EvolutionConfig, n_procs: int = 1):
    toolbox = base.Toolbox()
    toolbox.register("evaluate", GuardedOracle(oracle))
    # Parallel mapping: default to built-in map; override with multiprocessing pool if n_procs > 1
    toolbox.register("map", map)
    pool = None
    if n_procs and int(n_procs) > 1:
        pool = mp.Pool(processes=int(n_procs), initializer=_init_eval_worker, initargs=(oracle.context(),))
        toolbox.unregister("map")
        toolbox.register("map", pool.map)
        # Use picklable evaluate bound to worker context
        toolbox.unregister("evaluate")
        toolbox.register("evaluate", GuardedOracle(_evaluate_mask_in_worker))
        print(f"[PARALLEL] Enabled with n_procs={n_procs}")
    try:
        loop = EvolutionaryLoop(oracle, feature_names, config, toolbox=toolbox)
        print(
            f"[GA] population={loop.config.population_size}, generations={loop.config.max_generations}, "
            f"selection={loop.config.selection_scheme}, crossover={loop.config.crossover_type}"
        )
        result = loop.run()
    finally:
        if pool is not None:
            pool.close()
            pool.join()
    return result


def run_greedy(oracle: CrossValidationOracle, feature_names: List[str], config: GreedyConfig):
    search = GreedySequentialSearch(oracle, feature_names, config)
    print(
        f"[GREEDY] direction={search.config.direction}, stopping={search.config.stopping_behavior}, "
        f"speculative_rounds={search.config.speculative_rounds}, max_rounds={search.max_rounds()}"
    )
    return search.run()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    data = load_dataset(args.csv, args.target_col, args.sklearn_dataset, args.openml_name, args.data_home)
    print(f"[DATA] Loaded X.shape={data.X.shape}, y.shape={data.y.shape}")

    oracle = CrossValidationOracle(
        data.X,
        data.y,
        classifier=args.classifier,
        scoring=args.scoring,
        cv=args.cv,
        seed=args.seed if args.seed is not None else 0,
        sparsity_penalty=args.alpha,
        feature_fraction=args.feature_fraction,
        n_jobs=args.eval_n_jobs,
    )

    try:
        evo_cfg, greedy_cfg = build_configs(args)
        if args.method == "ga":
            result = run_ga(oracle, data.feature_names, evo_cfg, args.n_procs)
        else:
            result = run_greedy(oracle, data.feature_names, greedy_cfg)
    except SubsetSearchError as e:
        print(f"[ERROR] {e}")
        return 2

    extra = {"scoring": args.scoring, "cv_folds": args.cv, "alpha": args.alpha, "classifier": args.classifier}
    save_results(args.output, result, data.feature_names, args.method, extra)
    if args.method == "ga":
        save_logbook(result.logbook, args.output)
        save_population_criteria(result.population, data.feature_names, args.output)
        plot_best_fitness(result.logbook, args.output)
    else:
        save_greedy_history(result.history, args.output)
        plot_greedy_rounds(result.history, args.output)

    print(f"Best fitness: {result.fitness:.4f} ({result.stop_reason})")
    print(f"Selected {len(result.selected)}/{len(data.feature_names)} features. Results saved to '{args.output}'.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
