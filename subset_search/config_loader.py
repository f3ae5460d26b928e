import json
import math
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from .checkpoint import check_checkpoint_path
from .errors import ConfigurationError
from .operators import OperatorRegistry
from .variation import CardinalityConstraint

STOPPING_BEHAVIORS = ("without_increase", "without_increase_of_at_least", "without_significant_increase")
DIRECTIONS = ("forward", "backward")

# Parameter schema per section: type plus optional bounds, as in the operator registry.
EVOLUTION_SCHEMA: Dict[str, Dict[str, Any]] = {
    "population_size": {"type": "int", "min": 1},
    "max_generations": {"type": "int", "min": 1},
    "use_early_stopping": {"type": "bool"},
    "generations_without_improvement": {"type": "int", "min": 1},
    "selection_scheme": {"type": "str"},
    "tournament_fraction": {"type": "float", "min": 0.0, "max": 1.0},
    "start_temperature": {"type": "float", "min": 0.0},
    "dynamic_selection_pressure": {"type": "bool"},
    "keep_best": {"type": "bool"},
    "p_initialize": {"type": "float", "min": 0.0, "max": 1.0},
    "p_mutation": {"type": "float", "max": 1.0},
    "p_crossover": {"type": "float", "min": 0.0, "max": 1.0},
    "crossover_type": {"type": "str"},
    "min_attributes": {"type": "int", "min": 0},
    "max_attributes": {"type": "int", "min": 0, "optional": True},
    "exact_attributes": {"type": "int", "min": 0, "optional": True},
    "maximal_fitness": {"type": "float"},
    "remove_redundant": {"type": "bool"},
    "brute_force": {"type": "bool"},
    "checkpoint_interval": {"type": "int", "min": 1},
    "checkpoint_path": {"type": "str", "optional": True},
    "seed": {"type": "int", "optional": True},
}

GREEDY_SCHEMA: Dict[str, Dict[str, Any]] = {
    "direction": {"type": "str"},
    "max_rounds": {"type": "int", "min": 1, "optional": True},
    "stopping_behavior": {"type": "str"},
    "use_relative_increase": {"type": "bool"},
    "min_relative_increase": {"type": "float", "min": 0.0},
    "min_absolute_increase": {"type": "float", "min": 0.0},
    "alpha": {"type": "float", "min": 0.0, "max": 1.0},
    "speculative_rounds": {"type": "int", "min": 0},
}


def _coerce(section: str, name: str, val: Any, spec: Dict[str, Any]) -> Any:
    if val is None:
        if spec.get("optional"):
            return None
        raise ConfigurationError(f"{section}.{name} may not be null", name)
    t = spec["type"]
    try:
        if t == "int":
            if isinstance(val, float) and not val.is_integer():
                raise ValueError("not an integer")
            v = int(val)
        elif t == "float":
            v = float(val)
        elif t == "bool":
            if isinstance(val, bool):
                v = val
            elif str(val).strip().lower() in ("1", "true", "yes", "on"):
                v = True
            elif str(val).strip().lower() in ("0", "false", "no", "off"):
                v = False
            else:
                raise ValueError("not a boolean")
        else:
            v = str(val)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{section}.{name} expects {t}, got {val!r}", name) from e
    if "min" in spec and v < spec["min"]:
        raise ConfigurationError(f"{section}.{name} must be >= {spec['min']}, got {v}", name)
    if "max" in spec and v > spec["max"]:
        raise ConfigurationError(f"{section}.{name} must be <= {spec['max']}, got {v}", name)
    return v


def _from_section(cls, section: str, schema: Dict[str, Dict[str, Any]], data: Optional[Dict[str, Any]]):
    data = dict(data or {})
    unknown = sorted(set(data) - set(schema))
    if unknown:
        raise ConfigurationError(f"unknown {section} option(s): {', '.join(unknown)}", unknown[0])
    kwargs = {k: _coerce(section, k, v, schema[k]) for k, v in data.items()}
    return cls(**kwargs)


@dataclass
class EvolutionConfig:
    population_size: int = 5
    max_generations: int = 30
    use_early_stopping: bool = False
    generations_without_improvement: int = 2
    selection_scheme: str = "tournament"
    tournament_fraction: float = 0.25
    start_temperature: float = 1.0
    dynamic_selection_pressure: bool = True
    keep_best: bool = False
    p_initialize: float = 0.5
    p_mutation: float = -1.0
    p_crossover: float = 0.5
    crossover_type: str = "uniform"
    min_attributes: int = 1
    max_attributes: Optional[int] = None
    exact_attributes: Optional[int] = None
    maximal_fitness: float = math.inf
    remove_redundant: bool = True
    brute_force: bool = False
    checkpoint_interval: int = 1
    checkpoint_path: Optional[str] = None
    seed: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EvolutionConfig":
        return _from_section(cls, "evolution", EVOLUTION_SCHEMA, data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def constraint(self) -> CardinalityConstraint:
        # 0 means "no bound" for max and exact
        return CardinalityConstraint(
            min_count=max(self.min_attributes, 1),
            max_count=self.max_attributes or None,
            exact=self.exact_attributes or None,
        )

    def selection_params(self) -> Dict[str, Any]:
        return {
            "tournament_fraction": self.tournament_fraction,
            "start_temperature": self.start_temperature,
            "dynamic_selection_pressure": self.dynamic_selection_pressure,
            "keep_best": self.keep_best,
        }

    def validate(self, n_attributes: int, registry: Optional[OperatorRegistry] = None) -> "EvolutionConfig":
        """Check option combinations against the attribute count; returns self with canonical operator names."""
        for f in fields(self):
            spec = EVOLUTION_SCHEMA[f.name]
            setattr(self, f.name, _coerce("evolution", f.name, getattr(self, f.name), spec))
        if n_attributes < 1:
            raise ConfigurationError("at least one attribute is required")
        registry = registry or OperatorRegistry()
        self.selection_scheme = registry.canonicalize("selection", self.selection_scheme)
        self.crossover_type = registry.canonicalize("crossover", self.crossover_type)
        constraint = self.constraint()
        if constraint.exact is not None and constraint.exact > n_attributes:
            raise ConfigurationError(
                f"exact_attributes ({constraint.exact}) exceeds the number of attributes ({n_attributes})",
                "exact_attributes",
            )
        if constraint.lower > n_attributes:
            raise ConfigurationError(
                f"min_attributes ({self.min_attributes}) exceeds the number of attributes ({n_attributes})",
                "min_attributes",
            )
        if self.checkpoint_path:
            check_checkpoint_path(self.checkpoint_path)
        return self


@dataclass
class GreedyConfig:
    direction: str = "forward"
    max_rounds: Optional[int] = None
    stopping_behavior: str = "without_increase"
    use_relative_increase: bool = True
    min_relative_increase: float = 0.0
    min_absolute_increase: float = 0.0
    alpha: float = 0.05
    speculative_rounds: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GreedyConfig":
        return _from_section(cls, "greedy", GREEDY_SCHEMA, data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self, n_attributes: int) -> "GreedyConfig":
        for f in fields(self):
            setattr(self, f.name, _coerce("greedy", f.name, getattr(self, f.name), GREEDY_SCHEMA[f.name]))
        if n_attributes < 1:
            raise ConfigurationError("at least one attribute is required")
        self.direction = self.direction.strip().lower()
        if self.direction not in DIRECTIONS:
            raise ConfigurationError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}", "direction")
        self.stopping_behavior = self.stopping_behavior.strip().lower().replace(" ", "_")
        if self.stopping_behavior not in STOPPING_BEHAVIORS:
            raise ConfigurationError(
                f"stopping_behavior must be one of {STOPPING_BEHAVIORS}, got {self.stopping_behavior!r}",
                "stopping_behavior",
            )
        if self.stopping_behavior == "without_significant_increase" and not 0.0 < self.alpha < 1.0:
            raise ConfigurationError(f"alpha must be in (0, 1), got {self.alpha}", "alpha")
        return self


def _load_json(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return json.load(f)


def load_config(path: str) -> Dict[str, Any]:
    """
    Load a JSON search configuration.
    Expected top-level sections (both optional):
      - "evolution": options of the genetic algorithm
      - "greedy": options of forward / backward search
    Returns a dict with keys: evolution (EvolutionConfig), greedy (GreedyConfig).
    """
    raw = _load_json(path)
    if not isinstance(raw, dict):
        raise ConfigurationError(f"configuration root in '{path}' must be a JSON object")
    unknown = sorted(set(raw) - {"evolution", "greedy"})
    if unknown:
        raise ConfigurationError(f"unknown configuration section(s) in '{path}': {', '.join(unknown)}")
    return {
        "evolution": EvolutionConfig.from_dict(raw.get("evolution")),
        "greedy": GreedyConfig.from_dict(raw.get("greedy")),
    }
