"""
Output path helpers for pipeline results.

Centralizes naming conventions so the CLI and tests agree.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]

RESTORED_SUFFIX = ".restored.ply"
SESSION_SUFFIX = ".faf"
VIEW_SUFFIX = ".view.png"


def _as_path(value: PathLike) -> Path:
    return value if isinstance(value, Path) else Path(value)


def _resolve_output_path(input_path: PathLike, output_path: Optional[PathLike], suffix: str) -> Path:
    if output_path:
        return _as_path(output_path)
    return _as_path(input_path).with_suffix(suffix)


def restored_mesh_path(input_path: PathLike, output_path: Optional[PathLike] = None) -> Path:
    return _resolve_output_path(input_path, output_path, RESTORED_SUFFIX)


def session_path(input_path: PathLike, output_path: Optional[PathLike] = None) -> Path:
    return _resolve_output_path(input_path, output_path, SESSION_SUFFIX)


def view_image_path(input_path: PathLike, output_path: Optional[PathLike] = None) -> Path:
    return _resolve_output_path(input_path, output_path, VIEW_SUFFIX)
