"""
Direction Optimizer Module
Chooses the directions to mill from and assigns one of them to every face.

1. Target directions: every direction row, or a minimal covering subset.
2. Assignment: energy minimization over the face-adjacency graph, where a
   face pays a large penalty for a direction it is not visible from and each
   adjacent pair with different directions pays the compactness cost.
3. Machining regions: connected patches of faces sharing a direction.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import connected_components

from .energy import EnergySolver, potts_cost
from .errors import ConfigurationError, FourAxisError, InputConsistencyError, OptimizationError
from .extremes import ExtremeFaces
from .logging_utils import log_once
from .set_cover import CoverSolver

_LOGGER = logging.getLogger(__name__)

# Data cost of a direction the face cannot be milled from.
INFEASIBLE_COST = 100000

DEFAULT_COMPACTNESS = 2


@dataclass
class MachiningRegion:
    label: int
    direction: np.ndarray
    faces: np.ndarray

    @property
    def n_faces(self) -> int:
        return int(self.faces.size)


def target_directions(visibility: np.ndarray,
                      extremes: Optional[ExtremeFaces] = None,
                      *,
                      set_coverage: bool = False,
                      fix_extreme_association: bool = False,
                      cover_solver: Optional[CoverSolver] = None) -> np.ndarray:
    """
    Direction rows faces may be assigned to.

    Without covering this is every row. With covering the rows come from the
    cover solver; when no solver is available the full set is kept.
    """
    vis = np.asarray(visibility, dtype=bool)
    n_rows = int(vis.shape[0])
    all_rows = np.arange(n_rows, dtype=np.int64)
    if not set_coverage:
        return all_rows

    if cover_solver is None or not cover_solver.available():
        log_once(
            _LOGGER,
            "set-cover-unavailable",
            logging.WARNING,
            "Set cover solver unavailable; keeping all %d directions.",
            n_rows,
        )
        return all_rows

    required: list[int] = []
    if fix_extreme_association and extremes is not None:
        min_index, max_index = n_rows - 2, n_rows - 1
        if len(extremes.min_extremes):
            required.append(min_index)
        if len(extremes.max_extremes):
            required.append(max_index)

    rows = np.asarray(cover_solver.minimal_cover(vis, required_rows=required), dtype=np.int64)
    rows = np.unique(rows)
    _LOGGER.info("Set cover kept %d of %d directions", rows.size, n_rows)
    return rows


def assignment_costs(visibility: np.ndarray,
                     targets: np.ndarray,
                     extremes: Optional[ExtremeFaces] = None,
                     *,
                     fix_extreme_association: bool = False) -> np.ndarray:
    """(F, T) data cost: 0 where the face is visible from the target row."""
    vis = np.asarray(visibility, dtype=bool)
    targets = np.asarray(targets, dtype=np.int64)
    data_cost = np.where(vis[targets].T, 0, INFEASIBLE_COST).astype(np.int64)

    if fix_extreme_association and extremes is not None:
        n_rows = int(vis.shape[0])
        for row, faces in ((n_rows - 2, extremes.min_extremes), (n_rows - 1, extremes.max_extremes)):
            faces = np.asarray(faces, dtype=np.int64)
            if faces.size == 0:
                continue
            hits = np.flatnonzero(targets == row)
            if hits.size == 0:
                raise ConfigurationError(f"Extreme direction row {row} is not among the target directions")
            data_cost[faces, :] = INFEASIBLE_COST
            data_cost[faces, int(hits[0])] = 0
    return data_cost


def assign_directions(visibility: np.ndarray,
                      targets: np.ndarray,
                      face_edges: np.ndarray,
                      solver: EnergySolver,
                      *,
                      compactness: int = DEFAULT_COMPACTNESS,
                      extremes: Optional[ExtremeFaces] = None,
                      fix_extreme_association: bool = False) -> np.ndarray:
    """
    Assign a direction row to every face.

    Args:
        visibility: (D + 2, F) visibility matrix
        targets: direction rows that may be used as labels
        face_edges: (E, 2) adjacent face pairs
        solver: multi-label energy solver
        compactness: cost of an adjacent pair with different directions

    Returns:
        (F,) direction row per face
    """
    vis = np.asarray(visibility, dtype=bool)
    targets = np.asarray(targets, dtype=np.int64)
    n_faces = int(vis.shape[1])
    if targets.size == 0:
        raise ConfigurationError("No target directions to assign")
    if int(compactness) < 0:
        raise ConfigurationError(f"Compactness must be non-negative, got {compactness!r}")

    edges = np.asarray(face_edges, dtype=np.int64).reshape(-1, 2)
    if edges.size and int(edges.max()) >= n_faces:
        raise InputConsistencyError("Face adjacency does not match the visibility matrix")

    data_cost = assignment_costs(vis, targets, extremes, fix_extreme_association=fix_extreme_association)
    try:
        labels = solver.solve(n_faces, int(targets.size), data_cost, potts_cost(targets.size, compactness), edges)
    except FourAxisError:
        raise
    except Exception as e:
        raise OptimizationError(f"Energy solver {type(solver).__name__} failed: {e}") from e
    labels = np.asarray(labels, dtype=np.int64)
    if labels.shape != (n_faces,):
        raise InputConsistencyError(f"Energy solver returned {labels.shape} labels for {n_faces} faces")
    if labels.size and (labels.min() < 0 or labels.max() >= targets.size):
        raise OptimizationError("Energy solver returned labels outside the target directions")
    return targets[labels]


def invalid_assignments(visibility: np.ndarray, association: np.ndarray) -> np.ndarray:
    """Faces whose assigned row is False in the visibility matrix."""
    vis = np.asarray(visibility, dtype=bool)
    assoc = np.asarray(association, dtype=np.int64)
    return np.flatnonzero(~vis[assoc, np.arange(assoc.size)]).astype(np.int64)


def machining_regions(association: np.ndarray,
                      face_edges: np.ndarray,
                      directions: np.ndarray) -> list[MachiningRegion]:
    """Connected groups of adjacent faces sharing a direction, largest first."""
    assoc = np.asarray(association, dtype=np.int64)
    n_faces = int(assoc.size)
    if n_faces == 0:
        return []

    edges = np.asarray(face_edges, dtype=np.int64).reshape(-1, 2)
    same = assoc[edges[:, 0]] == assoc[edges[:, 1]] if edges.size else np.zeros(0, dtype=bool)
    kept = edges[same]
    graph = sparse.coo_matrix(
        (np.ones(len(kept), dtype=np.int8), (kept[:, 0], kept[:, 1])),
        shape=(n_faces, n_faces),
    ).tocsr()
    n_comp, comp = connected_components(graph, directed=False)

    regions: list[MachiningRegion] = []
    order = np.argsort(comp, kind="stable")
    splits = np.flatnonzero(np.diff(comp[order])) + 1
    for faces in np.split(order, splits):
        label = int(assoc[faces[0]])
        regions.append(MachiningRegion(
            label=label,
            direction=np.asarray(directions[label], dtype=np.float64).copy(),
            faces=faces.astype(np.int64),
        ))
    regions.sort(key=lambda r: (-r.n_faces, r.label, int(r.faces[0])))
    _LOGGER.debug("Machining regions: %d", n_comp)
    return regions
