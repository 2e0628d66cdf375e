"""
Selection of the flat end-caps at both ends of the milling axis.

End-cap faces are cut directly along X instead of being milled from a
rotated direction.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .mesh_loader import MeshData

# Angular tolerance (radians) between a face normal and -X/+X.
EXTREME_ANGLE_TOLERANCE = 1e-6


@dataclass
class ExtremeFaces:
    min_extremes: np.ndarray
    max_extremes: np.ndarray


def _walk(order: np.ndarray, normals: np.ndarray, axis: np.ndarray, limit: float) -> np.ndarray:
    taken = []
    for f_idx in order:
        if float(normals[f_idx] @ axis) < limit:
            break
        taken.append(int(f_idx))
    return np.asarray(taken, dtype=np.int64)


def select_extremes(mesh: MeshData, tolerance: float = EXTREME_ANGLE_TOLERANCE) -> ExtremeFaces:
    """
    Collect the end-cap faces at -X and +X.

    Faces are ordered by barycenter x; from each end the walk continues while
    the face normal lies within `tolerance` of the outward axis direction.
    Face normals must be current.
    """
    if mesh.n_faces == 0:
        empty = np.zeros((0,), dtype=np.int64)
        return ExtremeFaces(empty, empty.copy())

    mesh.compute_normals(compute_vertex_normals=False)
    normals = np.asarray(mesh.face_normals, dtype=np.float64)
    limit = float(np.cos(float(tolerance)))

    order = np.argsort(mesh.barycenters[:, 0], kind="stable")
    min_extremes = _walk(order, normals, np.array([-1.0, 0.0, 0.0]), limit)
    max_extremes = _walk(order[::-1], normals, np.array([1.0, 0.0, 0.0]), limit)
    return ExtremeFaces(min_extremes=min_extremes, max_extremes=max_extremes)
