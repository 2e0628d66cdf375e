import math
import tempfile
import unittest
from pathlib import Path

import numpy as np
import pytest

from fouraxis.core.energy import SwapMoveSolver
from fouraxis.core.errors import ConfigurationError, OptimizationError, StageError
from fouraxis.core.pipeline import (
    STAGES,
    Collaborators,
    FabricationParameters,
    FabricationPipeline,
)
from fouraxis.core.session_file import (
    SESSION_FORMAT,
    SessionFormatError,
    load_session,
    save_session,
)
from fouraxis.core.set_cover import MilpCoverSolver
from tests.test_mesh_loader import _make_box, _make_box_with_tetrahedron, _make_bumpy_sphere


def _identity_search(mesh, n_samples, deterministic):
    return np.eye(3)


def _pipeline(**kwargs) -> FabricationPipeline:
    collaborators = Collaborators(
        cover_solver=MilpCoverSolver(),
        energy_solver=SwapMoveSolver(),
        orientation_search=_identity_search,
    )
    for key, value in kwargs.items():
        setattr(collaborators, key, value)
    return FabricationPipeline(collaborators)


class _FailingEnergySolver:
    def solve(self, n_sites, n_labels, data_cost, smooth_cost, edges):
        raise OptimizationError("graph cut did not converge")


class _BackendErrorEnergySolver:
    def solve(self, n_sites, n_labels, data_cost, smooth_cost, edges):
        raise RuntimeError("gco: internal error")


class TestFabricationParameters(unittest.TestCase):
    def test_defaults_are_valid(self):
        params = FabricationParameters().validate()
        self.assertEqual(params.n_directions % 2, 0)

    def test_invalid_values(self):
        for kwargs in (
            {"n_directions": 7},
            {"n_directions": 0},
            {"heightfield_angle": -0.1},
            {"heightfield_angle": float("nan")},
            {"check_mode": "voxel"},
            {"frequency_iterations": -1},
            {"workers": 0},
            {"compactness": -2},
        ):
            with self.subTest(**kwargs):
                with self.assertRaises(ConfigurationError):
                    FabricationParameters(**kwargs).validate()

    def test_dict_roundtrip(self):
        params = FabricationParameters(n_directions=8, check_mode="ray", set_coverage=True)
        self.assertEqual(FabricationParameters.from_dict(params.to_dict()), params)


class TestFabricationPipeline(unittest.TestCase):
    def test_full_run_on_bumpy_sphere(self):
        original, smoothed = _make_bumpy_sphere(subdivisions=2)
        params = FabricationParameters(
            n_directions=8,
            heightfield_angle=math.radians(60.0),
            include_x_directions=True,
            set_coverage=True,
            frequency_iterations=3,
            workers=2,
            recheck_after_restore=True,
        )
        data = _pipeline().run(original, smoothed, params)

        self.assertEqual(data.completed_stages, list(STAGES))
        self.assertEqual(data.visibility.shape, (10, smoothed.n_faces))
        self.assertEqual(data.non_visible_faces.size, 0)
        self.assertTrue(set(data.target_directions.tolist()) <= set(range(10)))
        self.assertTrue(set(np.unique(data.association).tolist()) <= set(data.target_directions.tolist()))
        # Every face got a direction it is visible from
        faces = np.arange(smoothed.n_faces)
        self.assertTrue(np.all(data.visibility[data.association, faces]))
        self.assertEqual(sum(r.n_faces for r in data.regions), smoothed.n_faces)

        self.assertTrue(data.restored_mesh.has_same_topology(smoothed))
        np.testing.assert_array_equal(data.restored_association, data.association)
        self.assertIsNotNone(data.regression_count)
        self.assertGreaterEqual(data.regression_count, 0)

    def test_disconnected_non_visible_component_does_not_stop_run(self):
        mesh, n_box = _make_box_with_tetrahedron()
        params = FabricationParameters(
            n_directions=4,
            heightfield_angle=math.radians(1.0),
            frequency_iterations=2,
            check_mode="ray",
            workers=1,
        )
        data = _pipeline().run(mesh, None, params)

        np.testing.assert_array_equal(data.non_visible_faces, np.arange(n_box, mesh.n_faces))
        self.assertEqual(data.completed_stages, list(STAGES))
        self.assertEqual(data.association.shape, (mesh.n_faces,))

    def test_box_scenario_through_pipeline(self):
        mesh = _make_box((2.0, 1.0, 1.0))
        params = FabricationParameters(
            n_directions=4,
            heightfield_angle=math.radians(1.0),
            frequency_iterations=1,
            set_coverage=True,
        )
        data = _pipeline().run(mesh, None, params)

        self.assertEqual(data.min_index, 4)
        self.assertEqual(data.max_index, 5)
        np.testing.assert_array_equal(data.target_directions, np.arange(6))
        expected = np.argmax(data.smoothed_mesh.face_normals @ data.directions.T, axis=1)
        np.testing.assert_array_equal(data.association, expected)

    def test_energy_failure_reports_stage(self):
        mesh = _make_box()
        params = FabricationParameters(n_directions=4, heightfield_angle=math.radians(1.0))
        pipeline = _pipeline(energy_solver=_FailingEnergySolver())

        with self.assertRaises(StageError) as ctx:
            pipeline.run(mesh, None, params)
        self.assertEqual(ctx.exception.stage, "assignment")
        self.assertIsInstance(ctx.exception.__cause__, OptimizationError)

    def test_backend_error_becomes_optimization_failure(self):
        mesh = _make_box()
        params = FabricationParameters(n_directions=4, heightfield_angle=math.radians(1.0))
        pipeline = _pipeline(energy_solver=_BackendErrorEnergySolver())

        with self.assertRaises(StageError) as ctx:
            pipeline.run(mesh, None, params)
        self.assertEqual(ctx.exception.stage, "assignment")
        cause = ctx.exception.__cause__
        self.assertIsInstance(cause, OptimizationError)
        self.assertIsInstance(cause.__cause__, RuntimeError)
        self.assertIn("gco: internal error", str(cause))

    def test_render_mode_without_renderer(self):
        mesh = _make_box()
        params = FabricationParameters(n_directions=4, check_mode="render")
        with self.assertRaises(StageError) as ctx:
            _pipeline(renderer=None).run(mesh, None, params)
        self.assertEqual(ctx.exception.stage, "visibility")
        self.assertIsInstance(ctx.exception.__cause__, ConfigurationError)

    def test_stages_must_run_in_order(self):
        pipeline = _pipeline()
        data = pipeline.create_session(_make_box(), None, FabricationParameters(n_directions=4))
        with self.assertRaises(StageError) as ctx:
            pipeline.compute_visibility(data)
        self.assertEqual(ctx.exception.stage, "visibility")

    def test_topology_mismatch_rejected(self):
        original, _ = _make_bumpy_sphere(subdivisions=1)
        with self.assertRaises(StageError):
            _pipeline().create_session(original, _make_box())


def test_session_file_roundtrip():
    mesh = _make_box((2.0, 1.0, 1.0))
    params = FabricationParameters(n_directions=4, heightfield_angle=math.radians(1.0), frequency_iterations=1)
    data = _pipeline().run(mesh, None, params)

    with tempfile.TemporaryDirectory() as td:
        path = Path(td) / "box.faf"
        save_session(path, data, meta={"app": "FourAxis"})
        doc = load_session(path)

    state = doc["state"]
    assert doc["format"] == SESSION_FORMAT
    assert doc["meta"] == {"app": "FourAxis"}
    assert state["association"] == data.association.tolist()
    assert state["target_directions"] == data.target_directions.tolist()
    assert state["completed_stages"] == list(STAGES)
    assert FabricationParameters.from_dict(state["parameters"]) == params
    np.testing.assert_allclose(state["directions"], data.directions)
    assert len(state["regions"]) == len(data.regions)


def test_session_file_rejects_other_documents(tmp_path):
    import zipfile

    plain = tmp_path / "plain.faf"
    plain.write_text("{}", encoding="utf-8")
    with pytest.raises(SessionFormatError):
        load_session(plain)

    wrong = tmp_path / "wrong.faf"
    with zipfile.ZipFile(wrong, "w") as zf:
        zf.writestr("session.json", '{"format": "other", "version": 1, "state": {}}')
    with pytest.raises(SessionFormatError):
        load_session(wrong)

    missing = tmp_path / "missing.faf"
    with zipfile.ZipFile(missing, "w") as zf:
        zf.writestr("other.json", "{}")
    with pytest.raises(SessionFormatError):
        load_session(missing)

    with pytest.raises(FileNotFoundError):
        load_session(tmp_path / "absent.faf")
