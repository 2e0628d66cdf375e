"""
Visibility Module
Face x direction reachability under the heightfield (tool clearance) rule.

Directions are sampled around the milling axis (+X) in antipodal pairs:
row `i` and row `i + D/2` look along opposite directions, rows `D` and
`D + 1` are the -X / +X end-cap directions. A face is visible from a row
when it is unobstructed from that direction and its normal is within the
heightfield angle of it. Three interchangeable strategies decide the
"unobstructed" part:

- ray shooting: a probe through each face barycenter, nearest hit wins
- projection: painter's order with 2D triangle overlap tests
- rendering: a z-buffer face-id render per direction
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import Optional

import numpy as np
import shapely
from rtree import index as rtree_index
from trimesh.ray.ray_triangle import RayMeshIntersector

from .alignment_utils import X_AXIS, Z_AXIS, rotation_matrix_axis_angle, view_frame
from .errors import ConfigurationError, NonManifoldInputError
from .extremes import ExtremeFaces
from .mesh_loader import MeshData
from .runtime_defaults import CHECK_MODES
from .view_renderer import ViewRenderer

_LOGGER = logging.getLogger(__name__)

# A probe through a face of a closed surface enters and leaves it.
MIN_PROBE_HITS = 2

# A probe along a face with |n . d| below this lies in its plane and is not cast.
EDGE_ON_TOL = 1e-9

# Relative area below which two projected triangles only touch.
OVERLAP_AREA_TOL = 1e-9


@dataclass
class VisibilityResult:
    """
    Visibility matrix with its direction bookkeeping

    Attributes:
        directions: (D + 2, 3) unit directions, last two rows are -X and +X
        angles: (D,) rotation about +X (radians, from +Z) of the sampled rows
        visibility: (D + 2, F) boolean matrix
        non_visible_faces: faces with no visible row
    """
    directions: np.ndarray
    angles: np.ndarray
    visibility: np.ndarray
    non_visible_faces: np.ndarray

    @property
    def n_directions(self) -> int:
        return int(self.angles.shape[0])

    @property
    def min_index(self) -> int:
        return self.n_directions

    @property
    def max_index(self) -> int:
        return self.n_directions + 1


def sample_directions(n_directions: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Directions around +X in antipodal pairs, plus the -X/+X extremes.

    Returns:
        (directions (D + 2, 3), angles (D,))
    """
    n = int(n_directions)
    if n < 2 or n % 2 != 0:
        raise ConfigurationError(f"Number of directions must be even and >= 2, got {n_directions!r}")

    half = n // 2
    step = np.pi / half
    directions = np.zeros((n + 2, 3), dtype=np.float64)
    for i in range(half):
        d = rotation_matrix_axis_angle(X_AXIS, i * step) @ Z_AXIS
        # Snap tiny round-off so axis-aligned samples stay exact.
        d[np.abs(d) < 1e-15] = 0.0
        directions[i] = d
        directions[half + i] = -d
    directions[n] = -X_AXIS
    directions[n + 1] = X_AXIS
    angles = np.arange(n, dtype=np.float64) * step
    return directions, angles


def detect_non_visible_faces(visibility: np.ndarray) -> np.ndarray:
    """Faces (columns) without a single visible row."""
    vis = np.asarray(visibility, dtype=bool)
    if vis.ndim != 2:
        raise ValueError("Visibility must be a 2D matrix")
    return np.flatnonzero(~vis.any(axis=0)).astype(np.int64)


def angle_test(face_normals: np.ndarray, direction: np.ndarray, cos_limit: float) -> np.ndarray:
    return (np.asarray(face_normals, dtype=np.float64) @ np.asarray(direction, dtype=np.float64)) >= cos_limit


class VisibilityStrategy(ABC):
    """Decides which faces are reachable from a direction and from its antipode."""

    name = "base"

    @abstractmethod
    def visible_pair(self, mesh: MeshData, direction: np.ndarray,
                     cos_limit: float) -> tuple[np.ndarray, np.ndarray]:
        """
        Returns:
            (visible from `direction`, visible from `-direction`), (F,) bool each
        """


class RayShootingStrategy(VisibilityStrategy):
    """
    One bidirectional probe per face, through its barycenter. Faces seen
    edge-on are skipped.

    Among the faces hit by a probe that pass the angle test, the one nearest
    each end of the probe is marked visible for that end's direction.
    """

    name = "ray"

    def __init__(self, min_probe_hits: int = MIN_PROBE_HITS):
        self.min_probe_hits = int(min_probe_hits)

    def visible_pair(self, mesh, direction, cos_limit):
        n_faces = mesh.n_faces
        front = np.zeros(n_faces, dtype=bool)
        back = np.zeros(n_faces, dtype=bool)
        if n_faces == 0:
            return front, back

        d = np.asarray(direction, dtype=np.float64)
        normals = np.asarray(mesh.face_normals, dtype=np.float64)
        pass_front = angle_test(normals, d, cos_limit)
        pass_back = angle_test(normals, -d, cos_limit)

        probes = np.flatnonzero(np.abs(normals @ d) > EDGE_ON_TOL)
        if probes.size == 0:
            return front, back

        bary = mesh.barycenters
        heights = bary @ d
        span = float(np.linalg.norm(mesh.extents)) + 1.0
        origins = bary[probes] - heights[probes, None] * d + (float(heights.max()) + span) * d
        ray_dirs = np.tile(-d, (probes.size, 1))

        intersector = RayMeshIntersector(mesh.to_trimesh())
        hit_tri, hit_ray, hit_loc = intersector.intersects_id(
            ray_origins=origins,
            ray_directions=ray_dirs,
            multiple_hits=True,
            return_locations=True,
        )
        hit_tri = np.asarray(hit_tri, dtype=np.int64)
        hit_ray = np.asarray(hit_ray, dtype=np.int64)
        hit_height = np.asarray(hit_loc, dtype=np.float64).reshape(-1, 3) @ d

        counts = np.bincount(hit_ray, minlength=probes.size)
        short = np.flatnonzero(counts < self.min_probe_hits)
        if short.size:
            raise NonManifoldInputError(
                f"Probe through face {int(probes[short[0]])} hit {int(counts[short[0]])} face(s), "
                f"expected at least {self.min_probe_hits} ({short.size} probe(s) affected); "
                "the mesh is likely open or non-manifold"
            )

        front[self._nearest(hit_tri, hit_ray, hit_height, pass_front, largest=True)] = True
        back[self._nearest(hit_tri, hit_ray, hit_height, pass_back, largest=False)] = True
        return front, back

    @staticmethod
    def _nearest(hit_tri: np.ndarray, hit_ray: np.ndarray, hit_height: np.ndarray,
                 passes: np.ndarray, *, largest: bool) -> np.ndarray:
        keep = passes[hit_tri]
        tri = hit_tri[keep]
        ray = hit_ray[keep]
        if tri.size == 0:
            return tri
        key = -hit_height[keep] if largest else hit_height[keep]
        # Sort by ray, then by distance from the probe end, then by face id.
        order = np.lexsort((tri, key, ray))
        ray_sorted = ray[order]
        first = np.ones(ray_sorted.size, dtype=bool)
        first[1:] = ray_sorted[1:] != ray_sorted[:-1]
        return np.unique(tri[order][first])


class ProjectionStrategy(VisibilityStrategy):
    """
    Painter's algorithm on the plane perpendicular to the direction.

    Faces are visited nearest-first by barycenter height. A face passing the
    angle test is visible unless its projection overlaps a triangle that was
    already accepted; accepted triangles are added to an R-tree index.
    """

    name = "projection"

    def visible_pair(self, mesh, direction, cos_limit):
        d = np.asarray(direction, dtype=np.float64)
        frame = view_frame(d)
        projected = (mesh.vertices @ frame.T)[:, :2]
        heights = mesh.barycenters @ d
        normals = np.asarray(mesh.face_normals, dtype=np.float64)

        triangles = shapely.polygons(projected[mesh.faces])

        front_order = np.argsort(-heights, kind="stable")
        back_order = np.argsort(heights, kind="stable")
        front = self._sweep(triangles, front_order, angle_test(normals, d, cos_limit))
        back = self._sweep(triangles, back_order, angle_test(normals, -d, cos_limit))
        return front, back

    @staticmethod
    def _sweep(triangles: np.ndarray, order: np.ndarray, passes: np.ndarray) -> np.ndarray:
        visible = np.zeros(passes.shape[0], dtype=bool)
        props = rtree_index.Property()
        props.dimension = 2
        accepted = rtree_index.Index(properties=props)

        for f_idx in order:
            f_idx = int(f_idx)
            if not passes[f_idx]:
                continue
            tri = triangles[f_idx]
            bbox = shapely.bounds(tri)
            candidates = list(accepted.intersection(tuple(bbox)))
            if candidates:
                overlap = shapely.area(shapely.intersection(tri, triangles[candidates]))
                limit = OVERLAP_AREA_TOL * max(float(shapely.area(tri)), 1e-300)
                if bool(np.any(overlap > limit)):
                    continue
            visible[f_idx] = True
            accepted.insert(f_idx, tuple(bbox))
        return visible


class RenderingStrategy(VisibilityStrategy):
    """Occlusion from a z-buffer render of the whole mesh per direction."""

    name = "render"

    def __init__(self, renderer: ViewRenderer, resolution: Optional[int] = None):
        self.renderer = renderer
        self.resolution = resolution

    def visible_pair(self, mesh, direction, cos_limit):
        d = np.asarray(direction, dtype=np.float64)
        normals = np.asarray(mesh.face_normals, dtype=np.float64)
        front = self.renderer.render_visibility(mesh, d, self.resolution)
        back = self.renderer.render_visibility(mesh, -d, self.resolution)
        front = np.asarray(front, dtype=bool) & angle_test(normals, d, cos_limit)
        back = np.asarray(back, dtype=bool) & angle_test(normals, -d, cos_limit)
        return front, back


def make_strategy(mode: str,
                  *,
                  renderer: Optional[ViewRenderer] = None,
                  resolution: Optional[int] = None,
                  min_probe_hits: int = MIN_PROBE_HITS) -> VisibilityStrategy:
    m = str(mode or "").strip().lower()
    if m in {"ray", "rayshooting", "ray_shooting"}:
        return RayShootingStrategy(min_probe_hits=min_probe_hits)
    if m in {"projection", "project"}:
        return ProjectionStrategy()
    if m in {"render", "rendering", "gl", "opengl"}:
        if renderer is None:
            raise ConfigurationError("Rendering visibility requested but no renderer is available")
        return RenderingStrategy(renderer, resolution=resolution)
    raise ConfigurationError(f"Unknown visibility check mode: {mode!r} (expected one of {CHECK_MODES})")


class VisibilityEngine:
    """
    Builds the visibility matrix of a mesh.

    Direction pairs are independent; with `workers > 1` they run on a thread
    pool and each task fills only its own two rows.
    """

    def __init__(self, strategy: VisibilityStrategy, *, workers: int = 1):
        self.strategy = strategy
        self.workers = max(1, int(workers))

    def compute(self,
                mesh: MeshData,
                n_directions: int,
                heightfield_angle: float,
                *,
                include_x_directions: bool = False,
                extremes: Optional[ExtremeFaces] = None) -> VisibilityResult:
        """
        Args:
            mesh: mesh with current normals
            n_directions: even number of sampled directions D
            heightfield_angle: max angle (radians) between normal and direction
            include_x_directions: compute the -X/+X rows geometrically instead
                of copying the extreme face sets
            extremes: end-cap faces, used when include_x_directions is False
        """
        if not 0.0 <= float(heightfield_angle) <= np.pi:
            raise ConfigurationError(f"Heightfield angle out of range: {heightfield_angle!r}")

        directions, angles = sample_directions(n_directions)
        half = int(n_directions) // 2
        min_index = int(n_directions)
        max_index = min_index + 1

        mesh.compute_normals(compute_vertex_normals=False)
        normals = np.asarray(mesh.face_normals, dtype=np.float64)
        cos_limit = float(np.cos(float(heightfield_angle)))

        visibility = np.zeros((int(n_directions) + 2, mesh.n_faces), dtype=bool)

        # (front row, back row, view direction)
        jobs = [(i, half + i, directions[i]) for i in range(half)]
        if include_x_directions:
            jobs.append((min_index, max_index, directions[min_index]))

        def _run(job):
            front_row, back_row, d = job
            front, back = self.strategy.visible_pair(mesh, d, cos_limit)
            return front_row, back_row, front, back

        if self.workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                results = list(executor.map(_run, jobs))
        else:
            results = [_run(job) for job in jobs]

        for front_row, back_row, front, back in results:
            visibility[front_row] = front
            visibility[back_row] = back

        if not include_x_directions and extremes is not None:
            visibility[min_index, np.asarray(extremes.min_extremes, dtype=np.int64)] = True
            visibility[max_index, np.asarray(extremes.max_extremes, dtype=np.int64)] = True

        # The angle test is necessary for every row, whatever the strategy.
        visibility &= (directions @ normals.T) >= cos_limit

        non_visible = detect_non_visible_faces(visibility)
        _LOGGER.info(
            "Visibility (%s): %d directions, %d faces, %d non-visible",
            self.strategy.name, int(n_directions), mesh.n_faces, int(non_visible.size),
        )
        return VisibilityResult(
            directions=directions,
            angles=angles,
            visibility=visibility,
            non_visible_faces=non_visible,
        )
