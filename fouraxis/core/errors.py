"""
Exception types shared by the planning stages.

Stage code raises the narrow types below; the pipeline wraps whatever escapes
a stage in `StageError` so callers can tell which stage stopped the run.
"""

from __future__ import annotations


class FourAxisError(RuntimeError):
    pass


class ConfigurationError(FourAxisError):
    """Invalid parameters, or a requested backend that is not available."""


class OptimizationError(FourAxisError):
    """An optimization backend failed or produced no solution."""


class InputConsistencyError(FourAxisError):
    """Input meshes or derived structures violate a precondition."""


class NonManifoldInputError(InputConsistencyError):
    """A visibility probe hit fewer faces than a closed surface guarantees."""


class StageError(FourAxisError):
    def __init__(self, stage: str, message: str):
        super().__init__(f"Stage '{stage}' failed: {message}")
        self.stage = stage
