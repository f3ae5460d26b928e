from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .selection import (
    BestSelection,
    BoltzmannSelection,
    CutSelection,
    NonDominatedSortingSelection,
    RankSelection,
    RouletteWheel,
    SelectionScheme,
    StochasticUniversalSampling,
    TournamentSelection,
    UniformSelection,
)


ParamSchema = Dict[str, Dict[str, Any]]


@dataclass(frozen=True)
class OperatorSpec:
    kind: str  # "selection" | "crossover"
    name: str
    aliases: Tuple[str, ...]
    description: str
    params_schema: ParamSchema
    # binder: given normalized params and context -> configured operator
    binder: Optional[Callable[[Dict[str, Any], Dict[str, Any]], Any]] = None


class OperatorRegistry:
    """Read-only table of selection schemes and crossover types.

    Each instance builds its own table; nothing is shared between registries.
    """

    def __init__(self, specs: Optional[List[OperatorSpec]] = None):
        specs = _mk_specs() if specs is None else specs
        by_kind: Dict[str, List[OperatorSpec]] = {"selection": [], "crossover": []}
        canon: Dict[Tuple[str, str], OperatorSpec] = {}
        aliases: Dict[Tuple[str, str], str] = {}
        for spec in specs:
            by_kind.setdefault(spec.kind, []).append(spec)
            canon[(spec.kind, spec.name.lower())] = spec
            for alias in spec.aliases:
                aliases[(spec.kind, str(alias).lower())] = spec.name.lower()
        self._specs_by_kind: Mapping[str, Tuple[OperatorSpec, ...]] = MappingProxyType(
            {k: tuple(v) for k, v in by_kind.items()}
        )
        self._canon_map: Mapping[Tuple[str, str], OperatorSpec] = MappingProxyType(canon)
        self._alias_map: Mapping[Tuple[str, str], str] = MappingProxyType(aliases)

    def list_specs(self, kind: str) -> List[OperatorSpec]:
        return list(self._specs_by_kind.get(kind, ()))

    def names(self, kind: str) -> List[str]:
        return [s.name for s in self.list_specs(kind)]

    def canonicalize(self, kind: str, name: Optional[str]) -> str:
        raw = (name or "").strip().lower().replace("-", "_").replace(" ", "_")
        if (kind, raw) in self._canon_map:
            return raw
        if (kind, raw) in self._alias_map:
            return self._alias_map[(kind, raw)]
        raise ConfigurationError(
            f"unknown {kind} operator {name!r}; choose one of {', '.join(self.names(kind))}",
            "selection_scheme" if kind == "selection" else "crossover_type",
        )

    def _coerce_value(self, pname: str, val: Any, spec: Dict[str, Any]) -> Any:
        t = (spec.get("type") or "").lower()
        try:
            if t == "int":
                v = int(val)
            elif t == "float":
                v = float(val)
            elif t == "bool":
                v = val if isinstance(val, bool) else str(val).strip().lower() in ("1", "true", "yes", "on")
            else:
                return val
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"parameter {pname!r} expects {t}, got {val!r}", pname) from e
        if "min" in spec and v < spec["min"]:
            raise ConfigurationError(f"parameter {pname!r} must be >= {spec['min']}, got {v}", pname)
        if "max" in spec and v > spec["max"]:
            raise ConfigurationError(f"parameter {pname!r} must be <= {spec['max']}, got {v}", pname)
        return v

    def normalize_params(self, kind: str, canon_name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        spec = self._canon_map.get((kind, canon_name))
        if not spec:
            return {}
        out: Dict[str, Any] = {}
        for p, ps in (spec.params_schema or {}).items():
            if p in params and params[p] is not None:
                out[p] = self._coerce_value(p, params[p], ps)
            else:
                out[p] = ps.get("default")
        return out

    def bind_selection(self, name: str, params: Dict[str, Any], context: Dict[str, Any]) -> SelectionScheme:
        """Build a selection scheme. ``context`` carries population_size and max_generations."""
        canon = self.canonicalize("selection", name)
        spec = self._canon_map[("selection", canon)]
        norm = self.normalize_params("selection", canon, params or {})
        return spec.binder(norm, context)

    def export_json(self) -> Dict[str, Any]:
        def dump_kind(kind: str) -> List[Dict[str, Any]]:
            return [
                {
                    "name": s.name,
                    "aliases": list(s.aliases),
                    "description": s.description,
                    "params_schema": s.params_schema or {},
                }
                for s in self.list_specs(kind)
            ]

        return {"selection": dump_kind("selection"), "crossover": dump_kind("crossover")}


def _size(ctx: Dict[str, Any]) -> int:
    return int(ctx["population_size"])


def _mk_specs() -> List[OperatorSpec]:
    keep_best = {"keep_best": {"type": "bool", "default": False}}
    specs: List[OperatorSpec] = [
        OperatorSpec(
            kind="selection",
            name="cut",
            aliases=("truncation", "cut_selection"),
            description="Keep the best population_size candidates.",
            params_schema={},
            binder=lambda p, ctx: CutSelection(_size(ctx)),
        ),
        OperatorSpec(
            kind="selection",
            name="uniform",
            aliases=("random", "uniform_selection"),
            description="Equal-probability sampling with replacement; no fitness pressure.",
            params_schema=dict(keep_best),
            binder=lambda p, ctx: UniformSelection(_size(ctx), p["keep_best"]),
        ),
        OperatorSpec(
            kind="selection",
            name="roulette_wheel",
            aliases=("roulette", "fitness_proportional"),
            description="Fitness-proportionate sampling, one draw per pick.",
            params_schema=dict(keep_best),
            binder=lambda p, ctx: RouletteWheel(_size(ctx), p["keep_best"]),
        ),
        OperatorSpec(
            kind="selection",
            name="stochastic_universal_sampling",
            aliases=("sus", "stochastic_universal"),
            description="Fitness-proportionate sampling with evenly spaced pointers.",
            params_schema=dict(keep_best),
            binder=lambda p, ctx: StochasticUniversalSampling(_size(ctx), p["keep_best"]),
        ),
        OperatorSpec(
            kind="selection",
            name="rank",
            aliases=("rank_selection", "linear_rank"),
            description="Sampling proportional to ascending rank position.",
            params_schema=dict(keep_best),
            binder=lambda p, ctx: RankSelection(_size(ctx), p["keep_best"]),
        ),
        OperatorSpec(
            kind="selection",
            name="boltzmann",
            aliases=("boltzmann_selection",),
            description="Sampling proportional to exp(fitness / T); T anneals when dynamic.",
            params_schema={
                "start_temperature": {"type": "float", "min": 0.0, "default": 1.0},
                "dynamic_selection_pressure": {"type": "bool", "default": True},
                **keep_best,
            },
            binder=lambda p, ctx: BoltzmannSelection(
                _size(ctx),
                start_temperature=p["start_temperature"],
                max_generations=int(ctx.get("max_generations", 50)),
                dynamic=p["dynamic_selection_pressure"],
                keep_best=p["keep_best"],
            ),
        ),
        OperatorSpec(
            kind="selection",
            name="tournament",
            aliases=("tournament_selection",),
            description="Tournaments of round(size * fraction) members; fraction grows when dynamic.",
            params_schema={
                "tournament_fraction": {"type": "float", "min": 0.0, "max": 1.0, "default": 0.25},
                "dynamic_selection_pressure": {"type": "bool", "default": True},
                **keep_best,
            },
            binder=lambda p, ctx: TournamentSelection(
                _size(ctx),
                fraction=p["tournament_fraction"],
                max_generations=int(ctx.get("max_generations", 50)),
                dynamic=p["dynamic_selection_pressure"],
                keep_best=p["keep_best"],
            ),
        ),
        OperatorSpec(
            kind="selection",
            name="non_dominated_sorting",
            aliases=("nsga2", "nsga_ii", "non_dominated_sorting_selection"),
            description="NSGA-II: Pareto fronts, overflowing front cut by crowding distance.",
            params_schema={},
            binder=lambda p, ctx: NonDominatedSortingSelection(_size(ctx)),
        ),
        OperatorSpec(
            kind="selection",
            name="best",
            aliases=("best_only", "best_selection"),
            description="Collapse the population to the best-ever candidate.",
            params_schema={},
            binder=lambda p, ctx: BestSelection(),
        ),
        OperatorSpec(
            kind="crossover",
            name="one_point",
            aliases=("onepoint", "one-point"),
            description="Swap the suffix after a random split index.",
            params_schema={},
        ),
        OperatorSpec(
            kind="crossover",
            name="uniform",
            aliases=("uniform_p",),
            description="Swap every position independently with probability 0.5.",
            params_schema={},
        ),
        OperatorSpec(
            kind="crossover",
            name="shuffle",
            aliases=("shuffle_crossover",),
            description="Swap k randomly chosen positions, k drawn from [1, length].",
            params_schema={},
        ),
    ]
    return specs
