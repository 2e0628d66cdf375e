import unittest

import numpy as np

from fouraxis.core.alignment_utils import (
    X_AXIS,
    rotation_matrix_align_vectors,
    rotation_matrix_axis_angle,
    sample_sphere_directions,
    view_frame,
)


class TestAlignmentUtils(unittest.TestCase):
    def test_rotation_matrix_align_vectors_antiparallel(self):
        src = np.array([0.0, 0.0, -1.0], dtype=np.float64)
        dst = np.array([0.0, 0.0, 1.0], dtype=np.float64)

        rot = rotation_matrix_align_vectors(src, dst)
        out = rot @ src

        np.testing.assert_allclose(out, dst, atol=1e-8, rtol=0.0)

    def test_rotation_matrix_align_vectors_general(self):
        src = np.array([1.0, 2.0, 3.0], dtype=np.float64)
        dst = np.array([-4.0, 5.0, 2.0], dtype=np.float64)
        src_u = src / np.linalg.norm(src)
        dst_u = dst / np.linalg.norm(dst)

        rot = rotation_matrix_align_vectors(src_u, dst_u)
        out = rot @ src_u

        np.testing.assert_allclose(out, dst_u, atol=1e-8, rtol=0.0)
        np.testing.assert_allclose(rot.T @ rot, np.eye(3), atol=1e-10, rtol=0.0)
        self.assertAlmostEqual(float(np.linalg.det(rot)), 1.0, places=10)

    def test_axis_angle_about_x_is_right_handed(self):
        rot = rotation_matrix_axis_angle(X_AXIS, np.pi / 2.0)
        np.testing.assert_allclose(rot @ np.array([0.0, 0.0, 1.0]), [0.0, -1.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(rot @ np.array([0.0, 1.0, 0.0]), [0.0, 0.0, 1.0], atol=1e-12)

    def test_view_frame_is_orthonormal(self):
        for d in ([0.0, 0.0, 1.0], [1.0, 0.0, 0.0], [0.3, -0.4, 0.5]):
            frame = view_frame(d)
            np.testing.assert_allclose(frame @ frame.T, np.eye(3), atol=1e-12)
            np.testing.assert_allclose(frame[2], np.asarray(d) / np.linalg.norm(d), atol=1e-12)
            self.assertAlmostEqual(float(np.linalg.det(frame)), 1.0, places=10)

        with self.assertRaises(ValueError):
            view_frame([0.0, 0.0, 0.0])

    def test_sphere_samples(self):
        pts = sample_sphere_directions(500)
        self.assertEqual(pts.shape, (500, 3))
        np.testing.assert_allclose(np.linalg.norm(pts, axis=1), 1.0, atol=1e-12)
        # Fibonacci lattice is balanced
        self.assertLess(float(np.linalg.norm(pts.mean(axis=0))), 0.01)
        np.testing.assert_array_equal(pts, sample_sphere_directions(500))

        rnd = sample_sphere_directions(64, deterministic=False, seed=3)
        np.testing.assert_allclose(np.linalg.norm(rnd, axis=1), 1.0, atol=1e-12)
        np.testing.assert_array_equal(rnd, sample_sphere_directions(64, deterministic=False, seed=3))


if __name__ == "__main__":
    unittest.main()
