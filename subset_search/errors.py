from __future__ import annotations

from typing import Optional


class SubsetSearchError(Exception):
    """Base class for every error raised by the subset search engine."""


class ConfigurationError(SubsetSearchError, ValueError):
    """Invalid option values; raised before any search starts."""

    def __init__(self, message: str, option: Optional[str] = None) -> None:
        super().__init__(message)
        self.option = option


class OracleEvaluationError(SubsetSearchError):
    """The external evaluation oracle failed for a subset."""

    def __init__(self, mask, cause: Optional[BaseException] = None) -> None:
        used = sum(1 for b in mask if b)
        msg = f"evaluation oracle failed for a subset with {used}/{len(mask)} attributes"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.mask = tuple(mask)
        self.cause = cause

    def __reduce__(self):
        return (type(self), (self.mask, self.cause))


class SignificanceCalculationError(SubsetSearchError):
    """Degenerate statistics (zero variance, zero sample count) in a significance test."""


class CheckpointWriteError(SubsetSearchError):
    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(f"could not write intermediate weights to '{path}': {cause}")
        self.path = path
        self.cause = cause

    def __reduce__(self):
        return (type(self), (self.path, self.cause))
