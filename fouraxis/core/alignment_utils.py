"""
Geometry helpers for rotations about the milling axis and view frames.
"""

from __future__ import annotations

import numpy as np

X_AXIS = np.array([1.0, 0.0, 0.0], dtype=np.float64)
Y_AXIS = np.array([0.0, 1.0, 0.0], dtype=np.float64)
Z_AXIS = np.array([0.0, 0.0, 1.0], dtype=np.float64)


def _as_vec3(value: np.ndarray | list[float] | tuple[float, ...]) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.size < 3:
        raise ValueError("Expected at least 3 values for a 3D vector.")
    return arr[:3]


def normalize_vector(
    value: np.ndarray | list[float] | tuple[float, ...],
    *,
    eps: float = 1e-12,
) -> np.ndarray | None:
    """Return normalized 3D vector or None when magnitude is near zero."""
    vec = _as_vec3(value)
    nrm = float(np.linalg.norm(vec))
    if (not np.isfinite(nrm)) or nrm <= float(eps):
        return None
    return vec / nrm


def rotation_matrix_axis_angle(axis: np.ndarray | list[float], angle_rad: float) -> np.ndarray:
    """Right-handed rotation of `angle_rad` about `axis` (Rodrigues form)."""
    axis_n = normalize_vector(axis)
    if axis_n is None:
        return np.eye(3, dtype=np.float64)

    x, y, z = float(axis_n[0]), float(axis_n[1]), float(axis_n[2])
    c = float(np.cos(float(angle_rad)))
    s = float(np.sin(float(angle_rad)))
    cc = 1.0 - c
    return np.array(
        [
            [c + x * x * cc, x * y * cc - z * s, x * z * cc + y * s],
            [y * x * cc + z * s, c + y * y * cc, y * z * cc - x * s],
            [z * x * cc - y * s, z * y * cc + x * s, c + z * z * cc],
        ],
        dtype=np.float64,
    )


def rotation_matrix_align_vectors(
    source: np.ndarray | list[float] | tuple[float, ...],
    target: np.ndarray | list[float] | tuple[float, ...],
    *,
    eps: float = 1e-10,
) -> np.ndarray:
    """
    Rotation matrix R such that R @ source ~= target.

    Handles anti-parallel vectors (180-degree case) robustly.
    """
    src = normalize_vector(source, eps=eps)
    dst = normalize_vector(target, eps=eps)
    if src is None or dst is None:
        return np.eye(3, dtype=np.float64)

    dot = float(np.clip(np.dot(src, dst), -1.0, 1.0))
    if dot >= 1.0 - eps:
        return np.eye(3, dtype=np.float64)

    if dot <= -1.0 + eps:
        # Build a stable orthogonal axis for 180-degree rotation.
        axis = np.cross(src, X_AXIS)
        if float(np.linalg.norm(axis)) <= eps:
            axis = np.cross(src, Y_AXIS)
        if float(np.linalg.norm(axis)) <= eps:
            axis = np.cross(src, Z_AXIS)
        return rotation_matrix_axis_angle(axis, np.pi)

    axis = np.cross(src, dst)
    axis_n = float(np.linalg.norm(axis))
    if axis_n <= eps:
        return np.eye(3, dtype=np.float64)

    axis /= axis_n
    angle = float(np.arccos(dot))
    return rotation_matrix_axis_angle(axis, angle)


def view_frame(direction: np.ndarray | list[float]) -> np.ndarray:
    """
    Orthonormal frame whose third row is `direction`.

    `points @ frame.T` expresses points in view coordinates: the first two
    columns span the image plane, the third is the height along the view
    direction (larger means closer to a viewer looking back along it).
    """
    d = normalize_vector(direction)
    if d is None:
        raise ValueError("View direction must be non-zero.")

    helper = X_AXIS if abs(float(d[0])) < 0.9 else Y_AXIS
    u = np.cross(helper, d)
    u /= float(np.linalg.norm(u))
    v = np.cross(d, u)
    return np.vstack([u, v, d])


def sample_sphere_directions(n: int, *, deterministic: bool = True, seed: int | None = None) -> np.ndarray:
    """
    `n` unit vectors spread over the sphere.

    Deterministic sampling uses a Fibonacci lattice; otherwise points are drawn
    uniformly at random (normalized Gaussian samples).
    """
    count = max(1, int(n))
    if deterministic:
        i = np.arange(count, dtype=np.float64) + 0.5
        z = 1.0 - 2.0 * i / float(count)
        r = np.sqrt(np.clip(1.0 - z * z, 0.0, 1.0))
        golden = np.pi * (3.0 - np.sqrt(5.0))
        phi = golden * i
        return np.stack([r * np.cos(phi), r * np.sin(phi), z], axis=1)

    rng = np.random.default_rng(seed)
    pts = rng.normal(size=(count, 3))
    norms = np.linalg.norm(pts, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return pts / norms
