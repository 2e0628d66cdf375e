"""
Runtime defaults for CLI/batch planning.

Values can be overridden via environment variables to avoid hardcoded tuning
in multiple entrypoints.
"""

from __future__ import annotations

from dataclasses import dataclass
import os


ENV_N_ORIENTATIONS = "FOURAXIS_N_ORIENTATIONS"
ENV_N_DIRECTIONS = "FOURAXIS_N_DIRECTIONS"
ENV_HEIGHTFIELD_ANGLE_DEG = "FOURAXIS_HEIGHTFIELD_ANGLE_DEG"
ENV_FREQUENCY_ITERATIONS = "FOURAXIS_FREQUENCY_ITERATIONS"
ENV_RENDER_RESOLUTION = "FOURAXIS_RENDER_RESOLUTION"
ENV_CHECK_MODE = "FOURAXIS_CHECK_MODE"
ENV_WORKERS = "FOURAXIS_WORKERS"

CHECK_MODES = ("ray", "projection", "render")


@dataclass(frozen=True)
class RuntimeDefaults:
    n_orientations: int
    n_directions: int
    heightfield_angle_deg: float
    frequency_iterations: int
    render_resolution: int
    check_mode: str
    workers: int


def _read_int_env(
    env_name: str,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def _read_float_env(
    env_name: str,
    default: float,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if value != value:
        return default
    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def _read_choice_env(env_name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value not in choices:
        return default
    return value


def load_runtime_defaults() -> RuntimeDefaults:
    n_directions = _read_int_env(ENV_N_DIRECTIONS, 120, min_value=2, max_value=3600)
    if n_directions % 2 != 0:
        # Directions come in antipodal pairs.
        n_directions = 120

    return RuntimeDefaults(
        n_orientations=_read_int_env(ENV_N_ORIENTATIONS, 1000, min_value=1, max_value=1_000_000),
        n_directions=n_directions,
        heightfield_angle_deg=_read_float_env(
            ENV_HEIGHTFIELD_ANGLE_DEG, 80.0, min_value=0.0, max_value=90.0
        ),
        frequency_iterations=_read_int_env(ENV_FREQUENCY_ITERATIONS, 500, min_value=0, max_value=100_000),
        render_resolution=_read_int_env(ENV_RENDER_RESOLUTION, 1000, min_value=16, max_value=8192),
        check_mode=_read_choice_env(ENV_CHECK_MODE, "projection", CHECK_MODES),
        workers=_read_int_env(ENV_WORKERS, 4, min_value=1, max_value=256),
    )


DEFAULTS = load_runtime_defaults()
