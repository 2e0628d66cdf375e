import unittest

import numpy as np
import pytest
import trimesh

from fouraxis.core.errors import ConfigurationError, NonManifoldInputError
from fouraxis.core.extremes import select_extremes
from fouraxis.core.mesh_loader import MeshData
from fouraxis.core.view_renderer import ViewRenderer
from fouraxis.core.visibility import (
    ProjectionStrategy,
    RayShootingStrategy,
    RenderingStrategy,
    VisibilityEngine,
    detect_non_visible_faces,
    make_strategy,
    sample_directions,
)
from tests.test_mesh_loader import _make_box, _make_box_with_tetrahedron, _make_sphere, _mesh_from_trimesh


def _strategies():
    return [
        RayShootingStrategy(),
        ProjectionStrategy(),
        RenderingStrategy(ViewRenderer(resolution=128)),
    ]


class TestDirections(unittest.TestCase):
    def test_four_directions_about_x(self):
        directions, angles = sample_directions(4)

        np.testing.assert_allclose(
            directions,
            [[0, 0, 1], [0, -1, 0], [0, 0, -1], [0, 1, 0], [-1, 0, 0], [1, 0, 0]],
            atol=1e-15,
        )
        np.testing.assert_allclose(np.rad2deg(angles), [0, 90, 180, 270])

    def test_antipodal_pairs(self):
        directions, angles = sample_directions(24)
        self.assertEqual(directions.shape, (26, 3))
        self.assertEqual(angles.shape, (24,))
        np.testing.assert_allclose(directions[:12], -directions[12:24], atol=1e-15)
        np.testing.assert_allclose(directions[:24, 0], 0.0, atol=1e-15)
        np.testing.assert_allclose(np.linalg.norm(directions, axis=1), 1.0, atol=1e-12)

    def test_invalid_direction_count(self):
        for n in (0, 3, 7):
            with self.assertRaises(ConfigurationError):
                sample_directions(n)


class TestBoxScenario(unittest.TestCase):
    def test_box_faces_visible_from_matching_direction_only(self):
        for strategy in _strategies():
            with self.subTest(strategy=strategy.name):
                mesh = _make_box()
                extremes = select_extremes(mesh)
                result = VisibilityEngine(strategy).compute(
                    mesh, 4, np.deg2rad(1.0), include_x_directions=False, extremes=extremes
                )

                self.assertEqual(result.visibility.shape, (6, 12))
                for f in range(mesh.n_faces):
                    expected = int(np.argmax(result.directions @ mesh.face_normals[f]))
                    rows = np.flatnonzero(result.visibility[:, f])
                    np.testing.assert_array_equal(rows, [expected])
                self.assertEqual(result.non_visible_faces.size, 0)

    def test_end_caps_only_through_extreme_rows(self):
        mesh = _make_box()
        extremes = select_extremes(mesh)
        result = VisibilityEngine(ProjectionStrategy()).compute(
            mesh, 4, np.deg2rad(1.0), extremes=extremes
        )

        caps = np.concatenate([extremes.min_extremes, extremes.max_extremes])
        self.assertFalse(result.visibility[:4, caps].any())
        self.assertTrue(result.visibility[result.min_index, extremes.min_extremes].all())
        self.assertTrue(result.visibility[result.max_index, extremes.max_extremes].all())

    def test_end_caps_without_extremes_are_non_visible(self):
        mesh = _make_box()
        result = VisibilityEngine(ProjectionStrategy()).compute(mesh, 4, np.deg2rad(1.0))

        np.testing.assert_array_equal(
            result.non_visible_faces,
            np.flatnonzero(np.abs(mesh.face_normals[:, 0]) > 0.5),
        )


class TestVisibilityProperties(unittest.TestCase):
    def test_convex_sphere_has_no_non_visible_faces(self):
        for strategy in _strategies():
            with self.subTest(strategy=strategy.name):
                mesh = _make_sphere(2)
                result = VisibilityEngine(strategy).compute(
                    mesh, 8, np.deg2rad(60.0), include_x_directions=True
                )
                self.assertEqual(result.non_visible_faces.size, 0)

    def test_angle_test_is_necessary(self):
        angle = np.deg2rad(50.0)
        for strategy in _strategies():
            with self.subTest(strategy=strategy.name):
                mesh = _make_sphere(2)
                result = VisibilityEngine(strategy).compute(mesh, 12, angle, include_x_directions=True)
                dots = result.directions @ mesh.face_normals.T
                self.assertTrue(np.all(dots[result.visibility] >= np.cos(angle)))

    def test_occluded_faces_are_hidden(self):
        # A small box hovering over a large one shadows part of its top.
        big = _make_box((4.0, 4.0, 1.0))
        small = _make_box((1.0, 1.0, 1.0))
        small.translate([0.0, 0.0, 3.0])
        mesh = MeshData(
            vertices=np.vstack([big.vertices, small.vertices]),
            faces=np.vstack([big.faces, small.faces + big.n_vertices]),
        )
        mesh.compute_normals()

        for strategy in (RayShootingStrategy(), ProjectionStrategy()):
            with self.subTest(strategy=strategy.name):
                result = VisibilityEngine(strategy).compute(mesh, 4, np.deg2rad(1.0))
                big_bottom = np.flatnonzero(mesh.face_normals[:12, 2] < -0.5)
                small_top = 12 + np.flatnonzero(mesh.face_normals[12:, 2] > 0.5)
                small_bottom = 12 + np.flatnonzero(mesh.face_normals[12:, 2] < -0.5)
                self.assertTrue(result.visibility[0, small_top].all())
                self.assertTrue(result.visibility[2, big_bottom].all())
                # Seen from below the small box is hidden by the large one.
                self.assertFalse(result.visibility[2, small_bottom].any())

    def test_idempotent(self):
        for strategy in _strategies():
            with self.subTest(strategy=strategy.name):
                mesh = _make_sphere(1)
                engine = VisibilityEngine(strategy)
                first = engine.compute(mesh, 8, np.deg2rad(70.0), include_x_directions=True)
                second = engine.compute(mesh, 8, np.deg2rad(70.0), include_x_directions=True)
                np.testing.assert_array_equal(first.visibility, second.visibility)

    def test_thread_pool_matches_serial(self):
        mesh = _make_sphere(2)
        serial = VisibilityEngine(ProjectionStrategy(), workers=1).compute(
            mesh, 16, np.deg2rad(60.0), include_x_directions=True
        )
        pooled = VisibilityEngine(ProjectionStrategy(), workers=4).compute(
            mesh, 16, np.deg2rad(60.0), include_x_directions=True
        )
        np.testing.assert_array_equal(serial.visibility, pooled.visibility)

    def test_disconnected_component_without_valid_direction(self):
        mesh, n_box = _make_box_with_tetrahedron()
        extremes = select_extremes(mesh)
        for strategy in _strategies():
            with self.subTest(strategy=strategy.name):
                result = VisibilityEngine(strategy).compute(
                    mesh, 4, np.deg2rad(1.0), extremes=extremes
                )
                np.testing.assert_array_equal(
                    result.non_visible_faces,
                    np.arange(n_box, mesh.n_faces),
                )

    def test_detect_non_visible_faces(self):
        vis = np.array([[True, False, False], [False, False, True]])
        np.testing.assert_array_equal(detect_non_visible_faces(vis), [1])


def test_ray_probe_on_open_mesh_raises():
    mesh = MeshData(
        vertices=np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]),
        faces=np.array([[0, 1, 2]]),
    )
    mesh.compute_normals()
    with pytest.raises(NonManifoldInputError):
        VisibilityEngine(RayShootingStrategy()).compute(mesh, 2, np.deg2rad(10.0))

    # The same patch is fine when one hit per probe is allowed
    result = VisibilityEngine(RayShootingStrategy(min_probe_hits=1)).compute(mesh, 2, np.deg2rad(10.0))
    assert result.visibility[0, 0]


def test_ray_steep_faces_expose_partly_shadowed_face():
    # A prism whose top triangle is partly covered by a floating frustum.
    # The frustum top hides the triangle's barycenter; its steep sides fail
    # the angle test but their probes reach the uncovered part of the top.
    top = np.array([[-6.0, -6.0], [6.0, -6.0], [0.0, 6.0]])
    prism = trimesh.convex.convex_hull(np.vstack([
        np.column_stack([top, np.zeros(3)]),
        np.column_stack([top, np.full(3, -1.0)]),
    ]))
    cx, cy = 0.2, -2.1
    square = np.array([[-1.0, -1.0], [1.0, -1.0], [1.0, 1.0], [-1.0, 1.0]])
    frustum = trimesh.convex.convex_hull(np.vstack([
        np.column_stack([0.5 * square + [cx, cy], np.full(4, 2.0)]),
        np.column_stack([1.5 * square + [cx, cy], np.full(4, 1.0)]),
    ]))
    mesh = _mesh_from_trimesh(trimesh.util.concatenate([prism, frustum]))

    normals = mesh.face_normals
    bary = mesh.barycenters
    prism_top = np.flatnonzero((normals[:, 2] > 0.99) & (np.abs(bary[:, 2]) < 1e-9))
    frustum_top = np.flatnonzero((normals[:, 2] > 0.99) & (bary[:, 2] > 1.5))
    steep = np.flatnonzero(np.abs(normals[:, 2] - np.sqrt(0.5)) < 1e-9)
    assert prism_top.size == 1
    assert steep.size == 8

    cos_limit = float(np.cos(np.deg2rad(30.0)))
    front, _ = RayShootingStrategy().visible_pair(mesh, [0.0, 0.0, 1.0], cos_limit)

    assert front[prism_top].all()
    assert front[frustum_top].all()
    assert not front[steep].any()


def test_make_strategy():
    assert isinstance(make_strategy("ray"), RayShootingStrategy)
    assert isinstance(make_strategy("projection"), ProjectionStrategy)
    assert isinstance(make_strategy("render", renderer=ViewRenderer(64)), RenderingStrategy)

    with pytest.raises(ConfigurationError):
        make_strategy("render", renderer=None)
    with pytest.raises(ConfigurationError):
        make_strategy("voxel")


def test_heightfield_angle_out_of_range():
    with pytest.raises(ConfigurationError):
        VisibilityEngine(ProjectionStrategy()).compute(_make_box(), 4, -0.1)
