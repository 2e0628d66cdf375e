"""
Fabrication Pipeline Module
Runs the planning stages over one session state.

    orientation -> extremes -> labels -> visibility -> non-visible
        -> target directions -> assignment -> frequency restoration

Each stage reads what the previous stages stored on `FabricationData` and
fills its own fields. A failing stage raises `StageError` naming the stage;
nothing after it runs.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
import logging
import math
from typing import Any, Iterator, Optional

import numpy as np

from .adjacency import face_adjacency_pairs
from .association import (
    DEFAULT_COMPACTNESS,
    MachiningRegion,
    assign_directions,
    invalid_assignments,
    machining_regions,
    target_directions,
)
from .energy import EnergySolver, SwapMoveSolver
from .errors import ConfigurationError, FourAxisError, StageError
from .extremes import ExtremeFaces, select_extremes
from .frequencies import FrequencyRestorer
from .mesh_loader import MeshData
from .orientation import OrientationNormalizer, OrientationSearch
from .runtime_defaults import CHECK_MODES, DEFAULTS
from .set_cover import CoverSolver, MilpCoverSolver
from .view_renderer import ViewRenderer
from .visibility import VisibilityEngine, detect_non_visible_faces, make_strategy

_LOGGER = logging.getLogger(__name__)

STAGES = (
    "orientation",
    "extremes",
    "labels",
    "visibility",
    "non_visible",
    "target_directions",
    "assignment",
    "frequencies",
)


@dataclass(frozen=True)
class FabricationParameters:
    n_orientations: int = DEFAULTS.n_orientations
    deterministic: bool = True
    n_directions: int = DEFAULTS.n_directions
    fix_extreme_association: bool = True
    include_x_directions: bool = False
    set_coverage: bool = False
    compactness: int = DEFAULT_COMPACTNESS
    heightfield_angle: float = math.radians(DEFAULTS.heightfield_angle_deg)
    frequency_iterations: int = DEFAULTS.frequency_iterations
    check_mode: str = DEFAULTS.check_mode
    resolution: int = DEFAULTS.render_resolution
    workers: int = DEFAULTS.workers
    recheck_after_restore: bool = False

    def validate(self) -> "FabricationParameters":
        if int(self.n_orientations) < 1:
            raise ConfigurationError(f"n_orientations must be >= 1, got {self.n_orientations!r}")
        if int(self.n_directions) < 2 or int(self.n_directions) % 2 != 0:
            raise ConfigurationError(f"n_directions must be even and >= 2, got {self.n_directions!r}")
        if int(self.compactness) < 0:
            raise ConfigurationError(f"compactness must be >= 0, got {self.compactness!r}")
        angle = float(self.heightfield_angle)
        if not math.isfinite(angle) or not 0.0 <= angle <= math.pi:
            raise ConfigurationError(f"heightfield_angle must be in [0, pi] radians, got {self.heightfield_angle!r}")
        if int(self.frequency_iterations) < 0:
            raise ConfigurationError(f"frequency_iterations must be >= 0, got {self.frequency_iterations!r}")
        if str(self.check_mode) not in CHECK_MODES:
            raise ConfigurationError(f"check_mode must be one of {CHECK_MODES}, got {self.check_mode!r}")
        if int(self.resolution) < 1:
            raise ConfigurationError(f"resolution must be >= 1, got {self.resolution!r}")
        if int(self.workers) < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers!r}")
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "n_orientations": int(self.n_orientations),
            "deterministic": bool(self.deterministic),
            "n_directions": int(self.n_directions),
            "fix_extreme_association": bool(self.fix_extreme_association),
            "include_x_directions": bool(self.include_x_directions),
            "set_coverage": bool(self.set_coverage),
            "compactness": int(self.compactness),
            "heightfield_angle": float(self.heightfield_angle),
            "frequency_iterations": int(self.frequency_iterations),
            "check_mode": str(self.check_mode),
            "resolution": int(self.resolution),
            "workers": int(self.workers),
            "recheck_after_restore": bool(self.recheck_after_restore),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FabricationParameters":
        known = set(cls.__dataclass_fields__)
        return replace(cls(), **{k: v for k, v in dict(data).items() if k in known})


@dataclass
class Collaborators:
    """Optional backends; None means the capability is absent."""
    cover_solver: Optional[CoverSolver] = None
    energy_solver: Optional[EnergySolver] = None
    renderer: Optional[ViewRenderer] = None
    orientation_search: Optional[OrientationSearch] = None

    @classmethod
    def default(cls, resolution: int = DEFAULTS.render_resolution) -> "Collaborators":
        return cls(
            cover_solver=MilpCoverSolver(),
            energy_solver=SwapMoveSolver(),
            renderer=ViewRenderer(resolution=resolution),
        )


@dataclass
class FabricationData:
    """
    Session state of one planning job.

    Stages fill fields in order; a stage never clears fields of earlier ones.
    """
    mesh: MeshData
    smoothed_mesh: MeshData
    parameters: FabricationParameters = field(default_factory=FabricationParameters)

    transform: Optional[np.ndarray] = None
    extremes: Optional[ExtremeFaces] = None
    min_index: Optional[int] = None
    max_index: Optional[int] = None
    directions: Optional[np.ndarray] = None
    angles: Optional[np.ndarray] = None
    visibility: Optional[np.ndarray] = None
    non_visible_faces: Optional[np.ndarray] = None
    target_directions: Optional[np.ndarray] = None
    association: Optional[np.ndarray] = None
    regions: list[MachiningRegion] = field(default_factory=list)
    restored_mesh: Optional[MeshData] = None
    restored_association: Optional[np.ndarray] = None
    restored_visibility: Optional[np.ndarray] = None
    invalid_after_restore: Optional[np.ndarray] = None
    regression_count: Optional[int] = None
    completed_stages: list[str] = field(default_factory=list)

    @property
    def n_faces(self) -> int:
        return self.mesh.n_faces


class FabricationPipeline:
    """Stage runner for `FabricationData`."""

    def __init__(self, collaborators: Optional[Collaborators] = None):
        self.collaborators = collaborators if collaborators is not None else Collaborators.default()

    @contextmanager
    def _stage(self, data: FabricationData, name: str) -> Iterator[None]:
        _LOGGER.info("Stage %s: start", name)
        try:
            yield
        except StageError:
            raise
        except (FourAxisError, ValueError, MemoryError) as e:
            _LOGGER.error("Stage %s failed: %s", name, e, exc_info=True)
            raise StageError(name, str(e)) from e
        data.completed_stages.append(name)
        _LOGGER.info("Stage %s: done", name)

    @staticmethod
    def _require(data: FabricationData, stage: str, *names: str) -> None:
        missing = [n for n in names if getattr(data, n) is None]
        if missing:
            raise StageError(stage, f"requires {', '.join(missing)} from an earlier stage")

    def create_session(self, mesh: MeshData, smoothed_mesh: Optional[MeshData] = None,
                       parameters: Optional[FabricationParameters] = None) -> FabricationData:
        params = (parameters or FabricationParameters()).validate()
        if mesh.n_faces == 0:
            raise StageError("session", "mesh has no faces")
        smoothed = smoothed_mesh if smoothed_mesh is not None else mesh.copy()
        if not mesh.has_same_topology(smoothed):
            raise StageError("session", "mesh and smoothed mesh do not share the same topology")
        return FabricationData(mesh=mesh, smoothed_mesh=smoothed, parameters=params)

    def normalize_orientation(self, data: FabricationData) -> None:
        with self._stage(data, "orientation"):
            normalizer = OrientationNormalizer(search=self.collaborators.orientation_search)
            data.transform = normalizer.normalize(
                data.mesh,
                data.smoothed_mesh,
                data.parameters.n_orientations,
                data.parameters.deterministic,
            )
            data.mesh.refresh()
            data.smoothed_mesh.refresh()

    def select_extremes(self, data: FabricationData) -> None:
        with self._stage(data, "extremes"):
            data.extremes = select_extremes(data.smoothed_mesh)
            _LOGGER.info("Extremes: %d at -X, %d at +X",
                         len(data.extremes.min_extremes), len(data.extremes.max_extremes))

    def initialize_labels(self, data: FabricationData) -> None:
        self._require(data, "labels", "extremes")
        with self._stage(data, "labels"):
            n = int(data.parameters.n_directions)
            data.min_index = n
            data.max_index = n + 1
            data.association = np.full(data.smoothed_mesh.n_faces, -1, dtype=np.int64)
            if data.parameters.fix_extreme_association:
                data.association[data.extremes.min_extremes] = data.min_index
                data.association[data.extremes.max_extremes] = data.max_index

    def compute_visibility(self, data: FabricationData) -> None:
        self._require(data, "visibility", "extremes", "min_index")
        with self._stage(data, "visibility"):
            params = data.parameters
            strategy = make_strategy(
                params.check_mode,
                renderer=self.collaborators.renderer,
                resolution=params.resolution,
            )
            engine = VisibilityEngine(strategy, workers=params.workers)
            result = engine.compute(
                data.smoothed_mesh,
                params.n_directions,
                params.heightfield_angle,
                include_x_directions=params.include_x_directions,
                extremes=data.extremes,
            )
            data.directions = result.directions
            data.angles = result.angles
            data.visibility = result.visibility

    def detect_non_visible(self, data: FabricationData) -> None:
        self._require(data, "non_visible", "visibility")
        with self._stage(data, "non_visible"):
            data.non_visible_faces = detect_non_visible_faces(data.visibility)
            if data.non_visible_faces.size:
                _LOGGER.warning("%d face(s) are not visible from any direction", data.non_visible_faces.size)

    def compute_target_directions(self, data: FabricationData) -> None:
        self._require(data, "target_directions", "visibility", "non_visible_faces")
        with self._stage(data, "target_directions"):
            data.target_directions = target_directions(
                data.visibility,
                data.extremes,
                set_coverage=data.parameters.set_coverage,
                fix_extreme_association=data.parameters.fix_extreme_association,
                cover_solver=self.collaborators.cover_solver,
            )

    def assign(self, data: FabricationData) -> None:
        self._require(data, "assignment", "visibility", "target_directions")
        with self._stage(data, "assignment"):
            solver = self.collaborators.energy_solver
            if solver is None:
                raise ConfigurationError("No energy solver configured for direction assignment")
            edges = face_adjacency_pairs(data.smoothed_mesh)
            data.association = assign_directions(
                data.visibility,
                data.target_directions,
                edges,
                solver,
                compactness=data.parameters.compactness,
                extremes=data.extremes,
                fix_extreme_association=data.parameters.fix_extreme_association,
            )
            data.regions = machining_regions(data.association, edges, data.directions)
            _LOGGER.info("Assignment: %d directions used, %d regions",
                         np.unique(data.association).size, len(data.regions))

    def restore_frequencies(self, data: FabricationData) -> None:
        self._require(data, "frequencies", "association", "directions")
        with self._stage(data, "frequencies"):
            params = data.parameters
            restorer = FrequencyRestorer(params.frequency_iterations, params.heightfield_angle)
            result = restorer.restore(data.mesh, data.smoothed_mesh, data.directions, data.association)
            data.restored_mesh = result.mesh
            data.restored_association = data.association.copy()

            if params.recheck_after_restore:
                self._recheck(data)

    def _recheck(self, data: FabricationData) -> None:
        params = data.parameters
        strategy = make_strategy(
            params.check_mode,
            renderer=self.collaborators.renderer,
            resolution=params.resolution,
        )
        result = VisibilityEngine(strategy, workers=params.workers).compute(
            data.restored_mesh,
            params.n_directions,
            params.heightfield_angle,
            include_x_directions=params.include_x_directions,
            extremes=data.extremes,
        )
        data.restored_visibility = result.visibility
        invalid = invalid_assignments(result.visibility, data.restored_association)
        data.invalid_after_restore = invalid
        already = np.asarray(data.non_visible_faces if data.non_visible_faces is not None else [], dtype=np.int64)
        data.regression_count = int(np.setdiff1d(invalid, already).size)
        _LOGGER.info("Recheck after restore: %d invalid faces, %d regressions",
                     invalid.size, data.regression_count)

    def run(self, mesh: MeshData, smoothed_mesh: Optional[MeshData] = None,
            parameters: Optional[FabricationParameters] = None) -> FabricationData:
        data = self.create_session(mesh, smoothed_mesh, parameters)
        self.normalize_orientation(data)
        self.select_extremes(data)
        self.initialize_labels(data)
        self.compute_visibility(data)
        self.detect_non_visible(data)
        self.compute_target_directions(data)
        self.assign(data)
        self.restore_frequencies(data)
        return data
