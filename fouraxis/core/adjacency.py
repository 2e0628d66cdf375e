"""
Mesh adjacency queries backed by trimesh.

All functions work on the mesh as indexed (no vertex merging), so two faces
are adjacent only if they share an edge by vertex index.
"""

from __future__ import annotations

import numpy as np

from .errors import InputConsistencyError
from .mesh_loader import MeshData


def face_adjacency_pairs(mesh: MeshData) -> np.ndarray:
    """(E, 2) pairs of face indices sharing an edge, each pair listed once."""
    if mesh.n_faces == 0:
        return np.zeros((0, 2), dtype=np.int64)
    pairs = np.asarray(mesh.to_trimesh().face_adjacency, dtype=np.int64).reshape(-1, 2)
    if pairs.size and int(pairs.max()) >= mesh.n_faces:
        raise InputConsistencyError("Face adjacency references a face outside the mesh.")
    return pairs


def face_face_adjacency(mesh: MeshData) -> list[list[int]]:
    """For each face, the faces sharing one of its edges (at most 3 on a manifold)."""
    neighbors: list[list[int]] = [[] for _ in range(mesh.n_faces)]
    for a, b in face_adjacency_pairs(mesh):
        neighbors[int(a)].append(int(b))
        neighbors[int(b)].append(int(a))
    return neighbors


def vertex_vertex_adjacency(mesh: MeshData) -> list[list[int]]:
    """1-ring vertex neighbors of every vertex."""
    tm = mesh.to_trimesh()
    neighbors = [list(map(int, n)) for n in tm.vertex_neighbors]
    if len(neighbors) != mesh.n_vertices:
        raise InputConsistencyError(
            f"Vertex-vertex adjacency has {len(neighbors)} entries for {mesh.n_vertices} vertices."
        )
    return neighbors


def vertex_face_adjacency(mesh: MeshData) -> list[list[int]]:
    """Faces incident to every vertex."""
    incident: list[list[int]] = [[] for _ in range(mesh.n_vertices)]
    for f_idx, face in enumerate(mesh.faces):
        for v in face:
            incident[int(v)].append(int(f_idx))
    return incident
