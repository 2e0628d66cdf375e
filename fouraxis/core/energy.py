"""
Multi-label energy minimization on a graph (alpha-beta swap moves).

    E(L) = sum_p D[p, L_p] + sum_(p,q) V[L_p, L_q]

Each swap move solves a binary min-cut with `scipy.sparse.csgraph.maximum_flow`.
Costs are non-negative integers; V must be symmetric with a zero diagonal.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import breadth_first_order, maximum_flow

from .errors import ConfigurationError, OptimizationError

_LOGGER = logging.getLogger(__name__)

_INT32_MAX = np.iinfo(np.int32).max


class EnergySolver(Protocol):
    def solve(self, n_sites: int, n_labels: int, data_cost: np.ndarray,
              smooth_cost: np.ndarray, edges: np.ndarray) -> np.ndarray: ...


def labeling_energy(labels: np.ndarray, data_cost: np.ndarray,
                    smooth_cost: np.ndarray, edges: np.ndarray) -> int:
    labels = np.asarray(labels, dtype=np.int64)
    data = int(np.asarray(data_cost)[np.arange(labels.size), labels].sum())
    if edges.size == 0:
        return data
    smooth = int(np.asarray(smooth_cost)[labels[edges[:, 0]], labels[edges[:, 1]]].sum())
    return data + smooth


def potts_cost(n_labels: int, weight: int) -> np.ndarray:
    """0 on the diagonal, `weight` elsewhere."""
    cost = np.full((int(n_labels), int(n_labels)), int(weight), dtype=np.int64)
    np.fill_diagonal(cost, 0)
    return cost


class SwapMoveSolver:
    """
    Alpha-beta swap minimization.

    Every cycle tries a swap for each label pair that has at least one site;
    a move is kept only if it lowers the energy. Stops after a cycle without
    improvement, so it ends in a local optimum w.r.t. swap moves.
    """

    def __init__(self, max_cycles: int = 100):
        self.max_cycles = int(max_cycles)

    def solve(self, n_sites: int, n_labels: int, data_cost: np.ndarray,
              smooth_cost: np.ndarray, edges: np.ndarray,
              initial: Optional[np.ndarray] = None) -> np.ndarray:
        data, smooth, edges = self._check_inputs(n_sites, n_labels, data_cost, smooth_cost, edges)
        if n_sites == 0:
            return np.zeros((0,), dtype=np.int64)

        if initial is None:
            labels = np.argmin(data, axis=1).astype(np.int64)
        else:
            labels = np.asarray(initial, dtype=np.int64).copy()
            if labels.shape != (n_sites,) or labels.min() < 0 or labels.max() >= n_labels:
                raise ConfigurationError("Initial labeling does not match the problem size")

        energy = labeling_energy(labels, data, smooth, edges)
        _LOGGER.debug("Swap moves: %d sites, %d labels, %d edges, initial energy %d",
                      n_sites, n_labels, len(edges), energy)
        if n_labels < 2:
            return labels

        for cycle in range(self.max_cycles):
            improved = False
            for alpha in range(n_labels - 1):
                for beta in range(alpha + 1, n_labels):
                    in_pair = (labels == alpha) | (labels == beta)
                    if not in_pair.any():
                        continue
                    try:
                        proposal = self._swap(labels, in_pair, alpha, beta, data, smooth, edges)
                    except (ValueError, RuntimeError, MemoryError) as e:
                        raise OptimizationError(f"Swap move ({alpha}, {beta}) failed: {e}") from e
                    new_energy = labeling_energy(proposal, data, smooth, edges)
                    if new_energy < energy:
                        labels = proposal
                        energy = new_energy
                        improved = True
            _LOGGER.debug("Swap moves: cycle %d energy %d", cycle, energy)
            if not improved:
                break
        return labels

    @staticmethod
    def _check_inputs(n_sites, n_labels, data_cost, smooth_cost, edges):
        data = np.asarray(data_cost, dtype=np.int64)
        smooth = np.asarray(smooth_cost, dtype=np.int64)
        edge_arr = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        if data.shape != (int(n_sites), int(n_labels)):
            raise ConfigurationError(f"Data cost shape {data.shape} != ({n_sites}, {n_labels})")
        if smooth.shape != (int(n_labels), int(n_labels)):
            raise ConfigurationError(f"Smoothness cost shape {smooth.shape} != ({n_labels}, {n_labels})")
        if data.size and data.min() < 0 or smooth.size and smooth.min() < 0:
            raise ConfigurationError("Costs must be non-negative")
        if data.size and data.max() > _INT32_MAX or smooth.size and smooth.max() > _INT32_MAX:
            raise ConfigurationError("Costs must fit in 32-bit integers")
        if not np.array_equal(smooth, smooth.T) or np.any(np.diag(smooth) != 0):
            raise ConfigurationError("Smoothness cost must be symmetric with a zero diagonal")
        if edge_arr.size and (edge_arr.min() < 0 or edge_arr.max() >= int(n_sites)):
            raise ConfigurationError("Edge references a site outside the graph")
        return data, smooth, edge_arr

    @staticmethod
    def _swap(labels: np.ndarray, in_pair: np.ndarray, alpha: int, beta: int,
              data: np.ndarray, smooth: np.ndarray, edges: np.ndarray) -> np.ndarray:
        """Optimal relabeling of the alpha/beta sites to {alpha, beta}."""
        sites = np.flatnonzero(in_pair)
        k = int(sites.size)
        local = np.full(labels.size, -1, dtype=np.int64)
        local[sites] = np.arange(k)
        source, sink = k, k + 1

        # Cost of giving each site alpha / beta, including links to fixed neighbors.
        cost_alpha = data[sites, alpha].copy()
        cost_beta = data[sites, beta].copy()

        a_in = in_pair[edges[:, 0]]
        b_in = in_pair[edges[:, 1]]
        for inner, outer, mask in ((edges[:, 0], edges[:, 1], a_in & ~b_in),
                                   (edges[:, 1], edges[:, 0], b_in & ~a_in)):
            if mask.any():
                p = local[inner[mask]]
                other = labels[outer[mask]]
                np.add.at(cost_alpha, p, smooth[alpha, other])
                np.add.at(cost_beta, p, smooth[beta, other])

        # Only the difference between the two t-links matters.
        shift = np.minimum(cost_alpha, cost_beta)
        cost_alpha -= shift
        cost_beta -= shift

        # Source side = alpha: cutting p->sink pays alpha, source->p pays beta.
        rows = [np.full(k, source), np.arange(k)]
        cols = [np.arange(k), np.full(k, sink)]
        caps = [cost_beta, cost_alpha]

        both = a_in & b_in
        weight = int(smooth[alpha, beta])
        if both.any() and weight > 0:
            p = local[edges[both, 0]]
            q = local[edges[both, 1]]
            rows.extend([p, q])
            cols.extend([q, p])
            caps.extend([np.full(p.size, weight), np.full(q.size, weight)])

        row = np.concatenate(rows)
        col = np.concatenate(cols)
        cap = np.concatenate(caps)
        keep = cap > 0
        n_nodes = k + 2
        graph = sparse.csr_matrix(
            (cap[keep].astype(np.int32), (row[keep], col[keep])),
            shape=(n_nodes, n_nodes),
        )
        graph.sum_duplicates()

        result = maximum_flow(graph, source, sink)
        residual = (graph - result.flow).tocsr()
        residual.data = (residual.data > 0).astype(np.int32)
        residual.eliminate_zeros()

        reachable = breadth_first_order(residual, source, directed=True, return_predecessors=False)
        source_side = np.zeros(n_nodes, dtype=bool)
        source_side[reachable] = True

        proposal = labels.copy()
        proposal[sites] = np.where(source_side[:k], alpha, beta)
        return proposal
