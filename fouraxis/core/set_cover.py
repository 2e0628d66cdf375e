"""
Minimum set cover of faces by direction rows, as a 0/1 integer program.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol

import numpy as np
from scipy import optimize, sparse

from .errors import OptimizationError

_LOGGER = logging.getLogger(__name__)


class CoverSolver(Protocol):
    def available(self) -> bool: ...

    def minimal_cover(self, matrix: np.ndarray,
                      required_rows: Optional[Iterable[int]] = None) -> np.ndarray: ...


class MilpCoverSolver:
    """
    Set covering with `scipy.optimize.milp` (HiGHS).

    One binary variable per row, one `>= 1` constraint per coverable column,
    minimizing the number of selected rows.
    """

    def __init__(self, time_limit: Optional[float] = None):
        self.time_limit = time_limit

    def available(self) -> bool:
        return hasattr(optimize, "milp")

    def minimal_cover(self, matrix: np.ndarray,
                      required_rows: Optional[Iterable[int]] = None) -> np.ndarray:
        """
        Args:
            matrix: (R, C) boolean, True where row r covers column c
            required_rows: rows forced into the cover

        Returns:
            Sorted row indices of the cover. Columns no row covers are ignored.
        """
        mat = np.asarray(matrix, dtype=bool)
        if mat.ndim != 2:
            raise ValueError("Cover matrix must be 2D")
        n_rows = int(mat.shape[0])

        lower = np.zeros(n_rows, dtype=np.float64)
        if required_rows is not None:
            req = np.asarray(list(required_rows), dtype=np.int64)
            if req.size:
                lower[req] = 1.0

        coverable = mat.any(axis=0)
        if n_rows == 0 or not coverable.any():
            return np.flatnonzero(lower > 0.5).astype(np.int64)

        a_mat = sparse.csr_matrix(mat[:, coverable].T.astype(np.float64))
        constraint = optimize.LinearConstraint(a_mat, lb=1.0, ub=np.inf)
        options = {"disp": False}
        if self.time_limit is not None:
            options["time_limit"] = float(self.time_limit)

        res = optimize.milp(
            c=np.ones(n_rows, dtype=np.float64),
            constraints=[constraint],
            integrality=np.ones(n_rows, dtype=np.int64),
            bounds=optimize.Bounds(lower, np.ones(n_rows, dtype=np.float64)),
            options=options,
        )
        if not res.success or res.x is None:
            raise OptimizationError(f"Set cover solve failed: {res.message}")

        selected = np.flatnonzero(np.asarray(res.x) > 0.5).astype(np.int64)
        _LOGGER.debug("Set cover: %d of %d rows cover %d columns",
                      selected.size, n_rows, int(coverable.sum()))
        return selected
