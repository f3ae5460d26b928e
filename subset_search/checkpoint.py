from __future__ import annotations

import json
import logging
import os
import random
from typing import Optional, Sequence

from .errors import CheckpointWriteError, ConfigurationError
from .individual import Population

logger = logging.getLogger(__name__)


def check_checkpoint_path(path: str) -> None:
    """Reject paths that can never be written: a directory, or a file in a missing directory."""
    if not path:
        raise ConfigurationError("checkpoint path is empty", "checkpoint_path")
    if os.path.isdir(path):
        raise ConfigurationError(f"checkpoint path '{path}' is a directory", "checkpoint_path")
    parent = os.path.dirname(os.path.abspath(path))
    if not os.path.isdir(parent):
        raise ConfigurationError(f"checkpoint directory '{parent}' does not exist", "checkpoint_path")


class SaveIntermediateWeights:
    """Post-evaluation operator writing the best-ever weights every ``interval`` generations."""

    def __init__(self, path: str, attribute_names: Sequence[str], interval: int = 1) -> None:
        if interval < 1:
            raise ConfigurationError(f"checkpoint interval must be >= 1, got {interval}", "checkpoint_interval")
        check_checkpoint_path(path)
        self.path = path
        self.attribute_names = list(attribute_names)
        self.interval = int(interval)
        self.writes = 0

    def operate(self, population: Population, rng: Optional[random.Random] = None) -> None:
        if population.generation % self.interval != 0:
            return
        best = population.best_ever
        if best is None:
            return
        if len(best) != len(self.attribute_names):
            raise ValueError(
                f"candidate has {len(best)} weights but {len(self.attribute_names)} attribute names were given"
            )
        payload = dict(zip(self.attribute_names, best.weights))
        try:
            with open(self.path, "w") as f:
                json.dump(payload, f, indent=2)
        except OSError as e:
            raise CheckpointWriteError(self.path, e) from e
        self.writes += 1
        logger.debug("wrote intermediate weights for generation %d to %s", population.generation, self.path)
