"""
Frequency Restorer Module
Transfers the surface detail of an original mesh onto its smoothed version
without breaking machinability.

Detail is carried by differential coordinates (vertex minus 1-ring centroid)
of the original mesh. Each iteration moves every vertex of the working mesh
toward `centroid + differential coordinate`; a move is only committed when
every incident face stays within the heightfield angle of its assigned
direction. Rejected moves are halved toward the current position a bounded
number of times.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

import numpy as np
from scipy import sparse

from .adjacency import vertex_vertex_adjacency
from .errors import ConfigurationError, InputConsistencyError
from .mesh_loader import MeshData

_LOGGER = logging.getLogger(__name__)

# Step sizes tried per vertex (1, 1/2, ... 1/512) before it is left in place.
BINARY_SEARCH_ITERATIONS = 10


@dataclass
class RestorationResult:
    mesh: MeshData
    iterations: int
    moved_vertices: int
    rejected_moves: int


def neighbor_average_operator(neighbors: list[list[int]], n_vertices: int) -> sparse.csr_matrix:
    """Row-stochastic (N, N) matrix averaging each vertex's 1-ring; isolated rows are empty."""
    rows = []
    cols = []
    vals = []
    for v, ring in enumerate(neighbors):
        if not ring:
            continue
        w = 1.0 / len(ring)
        rows.extend([v] * len(ring))
        cols.extend(ring)
        vals.extend([w] * len(ring))
    return sparse.csr_matrix(
        (np.asarray(vals, dtype=np.float64), (np.asarray(rows, dtype=np.int64), np.asarray(cols, dtype=np.int64))),
        shape=(n_vertices, n_vertices),
    )


def differential_coordinates(mesh: MeshData, average: Optional[sparse.csr_matrix] = None) -> np.ndarray:
    """
    (N, 3) per-vertex detail vectors: position minus the 1-ring centroid.

    Vertices without neighbors get a zero vector.
    """
    if average is None:
        average = neighbor_average_operator(vertex_vertex_adjacency(mesh), mesh.n_vertices)
    has_ring = np.diff(average.indptr) > 0
    delta = mesh.vertices - average @ mesh.vertices
    delta[~has_ring] = 0.0
    return delta


def _face_normals(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    tri = vertices[faces]
    cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
    norms = np.linalg.norm(cross, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return cross / norms


def _corner_normals(positions: np.ndarray, faces: np.ndarray, trial: np.ndarray) -> np.ndarray:
    """
    (F, 3, 3) normal of face f with only corner c moved to its trial position.
    """
    out = np.empty((faces.shape[0], 3, 3), dtype=np.float64)
    base = positions[faces]
    for c in range(3):
        tri = base.copy()
        tri[:, c] = trial[faces[:, c]]
        cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        norms = np.linalg.norm(cross, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        out[:, c] = cross / norms
    return out


class FrequencyRestorer:
    """
    Damped detail transfer under a per-face heightfield constraint.

    Each iteration is order independent: candidates are computed from the
    positions frozen at the start of the iteration. A candidate is checked
    against its incident faces with the other corners frozen; faces that end
    up with several moved corners are re-checked and offending vertices fall
    back to their frozen position.
    """

    def __init__(self, iterations: int, heightfield_angle: float,
                 search_iterations: int = BINARY_SEARCH_ITERATIONS):
        if int(iterations) < 0:
            raise ConfigurationError(f"Iteration count must be >= 0, got {iterations!r}")
        if not 0.0 <= float(heightfield_angle) <= np.pi:
            raise ConfigurationError(f"Heightfield angle out of range: {heightfield_angle!r}")
        self.iterations = int(iterations)
        self.heightfield_angle = float(heightfield_angle)
        self.search_iterations = int(search_iterations)

    def restore(self,
                original: MeshData,
                smoothed: MeshData,
                directions: np.ndarray,
                association: np.ndarray) -> RestorationResult:
        """
        Args:
            original: detailed mesh
            smoothed: mesh with the same vertex count and faces
            directions: (R, 3) direction rows
            association: (F,) direction row per face

        Returns:
            RestorationResult holding a new mesh; the inputs are not modified
        """
        if not original.has_same_topology(smoothed):
            raise InputConsistencyError("Original and smoothed meshes do not share the same topology")
        assoc = np.asarray(association, dtype=np.int64)
        if assoc.shape != (smoothed.n_faces,):
            raise InputConsistencyError(
                f"Association has {assoc.size} entries for {smoothed.n_faces} faces"
            )
        dirs = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        if assoc.size and (assoc.min() < 0 or assoc.max() >= len(dirs)):
            raise InputConsistencyError("Association references an unknown direction")

        average = neighbor_average_operator(vertex_vertex_adjacency(original), original.n_vertices)
        delta = differential_coordinates(original, average)
        has_ring = np.diff(average.indptr) > 0

        faces = smoothed.faces
        face_dirs = dirs[assoc]
        cos_limit = float(np.cos(self.heightfield_angle))
        positions = smoothed.vertices.copy()

        moved_total = np.zeros(smoothed.n_vertices, dtype=bool)
        rejected = 0
        for it in range(self.iterations):
            positions, moved, n_rejected = self._iterate(
                positions, faces, face_dirs, cos_limit, average, delta, has_ring
            )
            moved_total |= moved
            rejected += n_rejected
            _LOGGER.debug("Restore iteration %d: moved %d, rejected %d", it, int(moved.sum()), n_rejected)

        restored = smoothed.copy()
        restored.vertices = positions
        restored.refresh()
        _LOGGER.info(
            "Frequencies restored: %d iterations, %d vertices moved, %d rejected moves",
            self.iterations, int(moved_total.sum()), rejected,
        )
        return RestorationResult(
            mesh=restored,
            iterations=self.iterations,
            moved_vertices=int(moved_total.sum()),
            rejected_moves=rejected,
        )

    def _iterate(self, positions, faces, face_dirs, cos_limit, average, delta, has_ring):
        n_vertices = positions.shape[0]
        step = (average @ positions + delta) - positions
        step[~has_ring] = 0.0

        pending = has_ring & (np.linalg.norm(step, axis=1) > 0.0)
        scale = np.zeros(n_vertices, dtype=np.float64)

        factor = 1.0
        for _ in range(self.search_iterations):
            if not pending.any():
                break
            trial = positions + step * factor
            normals = _corner_normals(positions, faces, trial)
            ok = np.einsum("fcj,fj->fc", normals, face_dirs) >= cos_limit
            bad = np.zeros(n_vertices, dtype=np.int64)
            np.add.at(bad, faces.ravel(), (~ok).ravel().astype(np.int64))
            accepted = pending & (bad == 0)
            scale[accepted] = factor
            pending &= ~accepted
            factor *= 0.5

        rejected = int(pending.sum())
        moved = scale > 0.0
        new_positions = positions + step * scale[:, None]

        # Faces with two or more moved corners were not checked as a whole.
        while True:
            n_moved = moved[faces].sum(axis=1)
            shared = np.flatnonzero(n_moved >= 2)
            if shared.size == 0:
                break
            normals = _face_normals(new_positions, faces[shared])
            invalid = np.einsum("fj,fj->f", normals, face_dirs[shared]) < cos_limit
            if not invalid.any():
                break
            revert = np.unique(faces[shared[invalid]].ravel())
            revert = revert[moved[revert]]
            moved[revert] = False
            new_positions[revert] = positions[revert]
            rejected += int(revert.size)

        return new_positions, moved, rejected
