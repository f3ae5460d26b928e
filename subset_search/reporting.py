from __future__ import annotations

import json
import math
import os
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from deap import tools

from .individual import Candidate


def _json_number(x: float) -> Optional[float]:
    # JSON has no NaN / Infinity
    return None if x is None or not math.isfinite(x) else float(x)


def save_results(
    output_dir: str,
    result,
    attribute_names: List[str],
    method: str,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    """Write best_solution.json for an evolutionary or greedy result; returns its path."""
    os.makedirs(output_dir, exist_ok=True)
    selected_idx = [i for i, name in enumerate(attribute_names) if result.weights.get(name, 0.0) > 0]
    payload: Dict[str, Any] = {
        "method": method,
        "best_fitness": _json_number(result.fitness),
        "selected_indices": selected_idx,
        "selected_features": [attribute_names[i] for i in selected_idx],
        "num_selected": len(selected_idx),
        "total_features": len(attribute_names),
        "weights": result.weights,
        "stop_reason": result.stop_reason,
        "evaluations": result.evaluations,
    }
    if result.performance is not None:
        perf = result.performance.to_dict()
        for c in perf["criteria"]:
            c["average"] = _json_number(c["average"])
            c["variance"] = _json_number(c["variance"])
        payload["performance"] = perf
    if extra:
        payload.update(extra)
    path = os.path.join(output_dir, "best_solution.json")
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)
    return path


def save_logbook(logbook: tools.Logbook, output_dir: str, filename: str = "evolution_log.csv") -> str:
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, filename)
    pd.DataFrame(logbook).to_csv(path, index=False)
    return path


def save_greedy_history(history: List[Dict[str, Any]], output_dir: str, filename: str = "greedy_log.csv") -> str:
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, filename)
    df = pd.DataFrame(history)
    if "rolled_back" in df.columns:
        df["rolled_back"] = df["rolled_back"].apply(lambda v: ";".join(v) if isinstance(v, list) else "")
    df.to_csv(path, index=False)
    return path


def population_criteria_frame(population: Sequence[Candidate], attribute_names: Sequence[str]) -> pd.DataFrame:
    """One row per candidate: subset, size and the average of every criterion."""
    rows = []
    for c in population:
        row: Dict[str, Any] = {
            "subset": "".join("1" if b else "0" for b in c.mask),
            "num_selected": c.used_count,
            "features": ";".join(name for name, b in zip(attribute_names, c.mask) if b),
        }
        if c.performance is not None:
            for crit in c.performance.criteria:
                row[crit.name] = crit.average
        rows.append(row)
    return pd.DataFrame(rows)


def save_population_criteria(
    population: Sequence[Candidate],
    attribute_names: Sequence[str],
    output_dir: str,
    filename: str = "population_criteria.csv",
) -> str:
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, filename)
    population_criteria_frame(population, attribute_names).to_csv(path, index=False)
    return path


def plot_best_fitness(logbook: tools.Logbook, output_dir: str) -> Optional[str]:
    """Line plot of the generation maximum and the best-ever fitness.
    Saves to <output_dir>/best_fitness.png; returns None when the log lacks the columns.
    """
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    df = pd.DataFrame(logbook)
    if not {"gen", "max"}.issubset(df.columns):
        return None
    os.makedirs(output_dir, exist_ok=True)
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(df["gen"], df["max"], marker="o", linewidth=1.8, label="generation max")
    if "best" in df.columns:
        ax.plot(df["gen"], df["best"], linestyle="--", linewidth=1.2, label="best ever")
    ax.set_xlabel("Generation")
    ax.set_ylabel("Fitness")
    ax.set_title("Best Fitness over Generations")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="lower right")
    out_path = os.path.join(output_dir, "best_fitness.png")
    fig.savefig(out_path, dpi=140)
    plt.close(fig)
    return out_path


def plot_greedy_rounds(history: List[Dict[str, Any]], output_dir: str) -> Optional[str]:
    """Fitness of the best move per greedy round; speculative rounds are marked."""
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    df = pd.DataFrame(history)
    if df.empty or not {"round", "fitness"}.issubset(df.columns):
        return None
    os.makedirs(output_dir, exist_ok=True)
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(df["round"], df["fitness"], marker="o", linewidth=1.8)
    if "stop_fired" in df.columns:
        fired = df[df["stop_fired"].astype(bool)]
        ax.scatter(fired["round"], fired["fitness"], color="#cc3333", zorder=3, label="stop condition met")
        if not fired.empty:
            ax.legend(loc="lower right")
    ax.set_xlabel("Round")
    ax.set_ylabel("Fitness")
    ax.set_title("Greedy Search Fitness per Round")
    ax.grid(True, alpha=0.3)
    out_path = os.path.join(output_dir, "best_fitness.png")
    fig.savefig(out_path, dpi=140)
    plt.close(fig)
    return out_path
