#!/usr/bin/env python3
"""
Run attribute selection several times with different seeds and aggregate the results.

Metrics reported (across repeats):
- Avg_fitness: mean of best_solution.json.best_fitness
- Selected_num: mean of best_solution.json.num_selected
- Avg_evaluations: mean number of oracle calls
- Avg_best_generation: (GA only) earliest generation where 'best' in evolution_log.csv reaches its run maximum
- Avg_diversity: (GA only) mean 'diversity' across generations, then across runs
- Best_Fitness: max best_fitness across runs
- Feature_frequency: how often each attribute was selected, written to feature_frequency.csv

Usage example:
  python scripts/run_repeats.py \
    --out-root results/repeats_demo \
    --repeats 5 \
    --seed 42 \
    --extra-arg=--sklearn-dataset=wine --extra-arg=--method=forward

Outputs each run to <out-root>/run_<i> and writes <out-root>/summary.csv.
"""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from collections import Counter
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def run_one(out_dir: str, seed: int, args: argparse.Namespace) -> int:
    cmd = [
        sys.executable, os.path.join(ROOT, "attribute_selection.py"),
        "--output", out_dir,
        "--seed", str(seed),
    ]
    if args.config:
        cmd += ["--config", args.config]
    for ea in (args.extra_arg or []):
        cmd.append(ea)
    print("[RUN]", " ".join(cmd))
    return subprocess.call(cmd)


def parse_best(best_path: str) -> Tuple[float, int, int, List[str]]:
    with open(best_path, "r") as f:
        data = json.load(f)
    fit = data.get("best_fitness")
    return (
        float(fit) if fit is not None else float("nan"),
        int(data.get("num_selected", 0)),
        int(data.get("evaluations", 0)),
        list(data.get("selected_features", [])),
    )


def parse_evolution(evo_csv: str) -> Tuple[float, float]:
    """Return (earliest generation reaching the run's best, average diversity)."""
    if not os.path.exists(evo_csv):
        return float("nan"), float("nan")
    df = pd.read_csv(evo_csv)
    if df.empty or "best" not in df.columns:
        return float("nan"), float("nan")
    best = df["best"].astype(float)
    run_max = best.max(skipna=True)
    earliest = float("nan")
    if np.isfinite(run_max):
        hits = df.loc[np.isclose(best, run_max, rtol=0.0, atol=1e-12), "gen"]
        if not hits.empty:
            earliest = float(hits.iloc[0])
    avg_div = float(df["diversity"].mean(skipna=True)) if "diversity" in df.columns else float("nan")
    return earliest, avg_div


def summarize(per_run: List[Dict[str, float]], failed: int) -> Dict[str, float]:
    df = pd.DataFrame(per_run)

    def _mean(key: str) -> float:
        if df.empty or key not in df.columns:
            return float("nan")
        return float(df[key].mean(skipna=True))

    return {
        "Avg_fitness": _mean("best_fitness"),
        "Selected_num": _mean("num_selected"),
        "Avg_evaluations": _mean("evaluations"),
        "Avg_best_generation": _mean("earliest_best_gen"),
        "Avg_diversity": _mean("avg_diversity"),
        "Best_Fitness": float(df["best_fitness"].max()) if not df.empty else float("nan"),
        "Repeats": len(per_run),
        "Failed": failed,
    }


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--out-root", type=str, required=True, help="Output root directory for repeats")
    ap.add_argument("--config", type=str, default=None, help="JSON configuration forwarded to every run")
    ap.add_argument("--repeats", type=int, default=3)
    ap.add_argument("--seed", type=int, default=42, help="Base seed; each repeat uses seed+i")
    ap.add_argument("--extra-arg", action="append", default=[], help="Extra arg forwarded to attribute_selection.py; can repeat")
    args = ap.parse_args(argv)

    os.makedirs(args.out_root, exist_ok=True)

    per_run: List[Dict[str, float]] = []
    frequency: Counter = Counter()
    failed = 0
    for i in range(args.repeats):
        out_dir = os.path.join(args.out_root, f"run_{i+1}")
        rc = run_one(out_dir, args.seed + i, args)
        if rc != 0:
            print(f"[WARN] repeat {i+1} exited with code {rc}")
            failed += 1
            continue
        best_path = os.path.join(out_dir, "best_solution.json")
        if not os.path.exists(best_path):
            print(f"[WARN] run_{i+1} produced no best_solution.json")
            failed += 1
            continue
        bf, sel, nevals, names = parse_best(best_path)
        earliest, avg_div = parse_evolution(os.path.join(out_dir, "evolution_log.csv"))
        frequency.update(names)
        per_run.append({
            "best_fitness": bf,
            "num_selected": float(sel),
            "evaluations": float(nevals),
            "earliest_best_gen": earliest,
            "avg_diversity": avg_div,
        })

    summary = summarize(per_run, failed)
    summary_csv = os.path.join(args.out_root, "summary.csv")
    pd.DataFrame([summary]).to_csv(summary_csv, index=False)
    if frequency:
        freq_df = pd.DataFrame(sorted(frequency.items(), key=lambda kv: (-kv[1], kv[0])), columns=["feature", "count"])
        freq_df.to_csv(os.path.join(args.out_root, "feature_frequency.csv"), index=False)

    print("[SUMMARY]")
    for k, v in summary.items():
        if isinstance(v, float):
            print(f"- {k}: {v:.6f}")
        else:
            print(f"- {k}: {v}")
    print(f"[OK] Wrote summary to {summary_csv}")


if __name__ == "__main__":
    main()
