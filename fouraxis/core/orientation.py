"""
Orientation normalization about the milling axis (+X).

The workpiece rotates about X on a four-axis machine, so the mesh is turned
to put as little surface as possible facing along X (those faces can only be
reached from the two end-caps), then laid out so X is its longest extent.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from .alignment_utils import (
    X_AXIS,
    Y_AXIS,
    Z_AXIS,
    rotation_matrix_align_vectors,
    rotation_matrix_axis_angle,
    sample_sphere_directions,
)
from .errors import ConfigurationError
from .mesh_loader import MeshData

_LOGGER = logging.getLogger(__name__)

OrientationSearch = Callable[[MeshData, int, bool], np.ndarray]


def axial_area_cost(mesh: MeshData, axis: np.ndarray) -> float:
    """Area-weighted alignment of face normals with `axis`."""
    mesh.compute_normals(compute_vertex_normals=False)
    normals = np.asarray(mesh.face_normals, dtype=np.float64)
    return float(np.sum(mesh.face_areas * np.abs(normals @ np.asarray(axis, dtype=np.float64))))


def global_optimal_rotation(mesh: MeshData, n_samples: int, deterministic: bool = True) -> np.ndarray:
    """
    Rotation taking the cheapest sampled milling axis onto +X.

    Args:
        mesh: input mesh (face normals are computed if missing)
        n_samples: number of candidate axes
        deterministic: Fibonacci-lattice candidates if True, random otherwise

    Returns:
        (3, 3) rotation matrix
    """
    if n_samples < 1:
        raise ConfigurationError("Orientation search needs at least one sample.")
    if mesh.n_faces == 0:
        return np.eye(3, dtype=np.float64)

    mesh.compute_normals(compute_vertex_normals=False)
    normals = np.asarray(mesh.face_normals, dtype=np.float64)
    areas = mesh.face_areas

    # An axis and its opposite cost the same; keep +X itself as a candidate.
    candidates = np.vstack([X_AXIS, sample_sphere_directions(n_samples, deterministic=deterministic)])
    costs = np.abs(normals @ candidates.T).T @ areas
    best = int(np.argmin(costs))
    _LOGGER.debug("Orientation search: best axis %s (cost %.6g of %d samples)",
                  candidates[best], float(costs[best]), len(candidates))
    return rotation_matrix_align_vectors(candidates[best], X_AXIS)


class OrientationNormalizer:
    """
    Rotates a mesh and its smoothed companion into the canonical milling layout.

    The orientation search is an injectable oracle with the signature
    `(mesh, n_samples, deterministic) -> (3, 3) rotation`.
    """

    def __init__(self, search: Optional[OrientationSearch] = None):
        self.search = search or global_optimal_rotation

    def normalize(self,
                  mesh: MeshData,
                  smoothed_mesh: MeshData,
                  n_orientations: int,
                  deterministic: bool = True) -> np.ndarray:
        """
        Apply the same rigid transform to both meshes, in place.

        Returns:
            (4, 4) homogeneous transform that was applied
        """
        smoothed_mesh.compute_normals(compute_vertex_normals=False)
        rot = np.asarray(self.search(smoothed_mesh, int(n_orientations), bool(deterministic)),
                         dtype=np.float64).reshape(3, 3)

        mesh.rotate(rot)
        smoothed_mesh.rotate(rot)

        ext = mesh.extents
        layout = np.eye(3, dtype=np.float64)
        if ext[1] > ext[0] and ext[1] > ext[2]:
            layout = rotation_matrix_axis_angle(Z_AXIS, np.pi / 2.0)
        elif ext[2] > ext[0] and ext[2] > ext[1]:
            layout = rotation_matrix_axis_angle(Y_AXIS, np.pi / 2.0)

        mesh.rotate(layout)
        smoothed_mesh.rotate(layout)

        offset = -mesh.bounds_center
        mesh.translate(offset)
        smoothed_mesh.translate(offset)

        transform = np.eye(4, dtype=np.float64)
        transform[:3, :3] = layout @ rot
        transform[:3, 3] = offset
        _LOGGER.info("Orientation normalized: extents %s", np.round(mesh.extents, 6).tolist())
        return transform
