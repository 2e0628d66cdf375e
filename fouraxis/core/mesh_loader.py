"""
Mesh Loader Module
Mesh file loading and the in-memory triangle mesh container.

Supports: OBJ, PLY, STL, OFF formats
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union
import numpy as np

try:
    import trimesh
except ImportError:
    raise ImportError("trimesh is required. Install with: pip install trimesh")


@dataclass
class MeshData:
    """
    Triangle mesh container

    Attributes:
        vertices: (N, 3) vertex coordinates
        faces: (M, 3) vertex index triples
        normals: (N, 3) vertex normals (optional, see compute_normals)
        face_normals: (M, 3) unit face normals (optional, see compute_normals)
        unit: coordinate unit ('mm', 'cm', 'm')
        filepath: source file path
    """
    vertices: np.ndarray
    faces: np.ndarray
    normals: Optional[np.ndarray] = None
    face_normals: Optional[np.ndarray] = None
    unit: str = 'mm'
    filepath: Optional[Path] = None

    # Computed properties cache
    _bounds: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate and convert array types"""
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.faces = np.asarray(self.faces, dtype=np.int64).reshape(-1, 3)

        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64)
        if self.face_normals is not None:
            self.face_normals = np.asarray(self.face_normals, dtype=np.float64)

    @property
    def n_vertices(self) -> int:
        return len(self.vertices)

    @property
    def n_faces(self) -> int:
        return len(self.faces)

    @property
    def bounds(self) -> np.ndarray:
        """Bounding box [[min_x, min_y, min_z], [max_x, max_y, max_z]]"""
        if self._bounds is None:
            if self.n_vertices == 0:
                self._bounds = np.zeros((2, 3), dtype=np.float64)
            else:
                self._bounds = np.array([
                    self.vertices.min(axis=0),
                    self.vertices.max(axis=0)
                ])
        return self._bounds

    @property
    def extents(self) -> np.ndarray:
        """Bounding box size [x, y, z]"""
        return self.bounds[1] - self.bounds[0]

    @property
    def bounds_center(self) -> np.ndarray:
        return 0.5 * (self.bounds[0] + self.bounds[1])

    @property
    def barycenters(self) -> np.ndarray:
        """(M, 3) face barycenters"""
        return self.vertices[self.faces].mean(axis=1)

    @property
    def face_areas(self) -> np.ndarray:
        tri = self.vertices[self.faces]
        cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        return 0.5 * np.linalg.norm(cross, axis=1)

    @property
    def surface_area(self) -> float:
        return float(self.face_areas.sum())

    def compute_normals(self, *, compute_vertex_normals: bool = True, force: bool = False) -> None:
        """Compute face (and vertex) normals when missing, or always with force=True"""
        if force:
            self.face_normals = None
            self.normals = None

        if self.face_normals is None:
            v0 = self.vertices[self.faces[:, 0]]
            v1 = self.vertices[self.faces[:, 1]]
            v2 = self.vertices[self.faces[:, 2]]

            cross = np.cross(v1 - v0, v2 - v0)
            norms = np.linalg.norm(cross, axis=1, keepdims=True)
            norms[norms == 0] = 1  # degenerate faces keep a zero normal
            self.face_normals = cross / norms

        if compute_vertex_normals and self.normals is None:
            # Vertex normal = normalized sum of incident face normals
            self.normals = np.zeros_like(self.vertices, dtype=np.float64)
            faces = self.faces
            face_normals = np.asarray(self.face_normals, dtype=np.float64)
            np.add.at(self.normals, faces[:, 0], face_normals)
            np.add.at(self.normals, faces[:, 1], face_normals)
            np.add.at(self.normals, faces[:, 2], face_normals)

            norms = np.linalg.norm(self.normals, axis=1, keepdims=True)
            norms[norms == 0] = 1
            self.normals = self.normals / norms

    def refresh(self) -> None:
        """Recompute normals and bounding box after vertices moved."""
        self._bounds = None
        self.compute_normals(force=True)

    def rotate(self, rotation: np.ndarray) -> None:
        """Apply a 3x3 rotation in place (about the origin)."""
        rot = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
        self.vertices = self.vertices @ rot.T
        if self.face_normals is not None:
            self.face_normals = self.face_normals @ rot.T
        if self.normals is not None:
            self.normals = self.normals @ rot.T
        self._bounds = None

    def translate(self, offset: np.ndarray) -> None:
        """Translate all vertices in place."""
        self.vertices = self.vertices + np.asarray(offset, dtype=np.float64).reshape(1, 3)
        self._bounds = None

    def set_vertex(self, index: int, position: np.ndarray) -> None:
        """Move one vertex. Normals and bounds are stale until refresh()."""
        self.vertices[int(index)] = np.asarray(position, dtype=np.float64).reshape(3)
        self._bounds = None

    def copy(self) -> 'MeshData':
        return MeshData(
            vertices=self.vertices.copy(),
            faces=self.faces.copy(),
            normals=self.normals.copy() if self.normals is not None else None,
            face_normals=self.face_normals.copy() if self.face_normals is not None else None,
            unit=self.unit,
            filepath=self.filepath
        )

    def has_same_topology(self, other: 'MeshData') -> bool:
        return (
            self.n_vertices == other.n_vertices
            and self.faces.shape == other.faces.shape
            and bool(np.array_equal(self.faces, other.faces))
        )

    def to_trimesh(self) -> 'trimesh.Trimesh':
        """Convert to a trimesh object (vertex order preserved)"""
        mesh = trimesh.Trimesh(
            vertices=self.vertices,
            faces=self.faces,
            process=False
        )
        return mesh

    @classmethod
    def from_trimesh(cls, mesh: 'trimesh.Trimesh',
                     filepath: Optional[Path] = None,
                     unit: str = 'mm') -> 'MeshData':
        return cls(
            vertices=np.asarray(mesh.vertices),
            faces=np.asarray(mesh.faces),
            normals=None,
            face_normals=None,
            unit=unit,
            filepath=filepath
        )


class MeshLoader:
    """
    Mesh file loader for common 3D formats

    Supported formats:
        - OBJ (Wavefront)
        - PLY (Polygon File Format)
        - STL (Stereolithography)
        - OFF (Object File Format)
    """

    SUPPORTED_FORMATS = {
        '.obj': 'Wavefront OBJ',
        '.ply': 'Polygon File Format',
        '.stl': 'Stereolithography',
        '.off': 'Object File Format',
    }

    def __init__(self, default_unit: str = 'mm'):
        """
        Args:
            default_unit: default coordinate unit ('mm', 'cm', 'm')
        """
        self.default_unit = default_unit

    @classmethod
    def get_supported_formats(cls) -> dict:
        return cls.SUPPORTED_FORMATS.copy()

    def _load_trimesh(self, filepath: Path) -> 'trimesh.Trimesh':
        # Keep vertex order: the original and smoothed meshes are matched by index.
        mesh = trimesh.load(str(filepath), force='mesh', process=False, maintain_order=True)

        # Merge scenes into a single mesh
        if isinstance(mesh, trimesh.Scene):
            meshes = [g for g in mesh.geometry.values() if isinstance(g, trimesh.Trimesh)]
            if len(meshes) == 0:
                raise ValueError(f"No valid mesh found in: {filepath}")
            mesh = trimesh.util.concatenate(meshes)

        if not isinstance(mesh, trimesh.Trimesh):
            raise TypeError(f"Expected trimesh.Trimesh, got {type(mesh).__name__}")
        return mesh

    def load(self, filepath: Union[str, Path], unit: Optional[str] = None) -> MeshData:
        """
        Load a mesh file

        Args:
            filepath: mesh file path
            unit: coordinate unit (default_unit when None)

        Returns:
            MeshData: loaded mesh with face normals computed

        Raises:
            FileNotFoundError: the file does not exist
            ValueError: unsupported format
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        ext = filepath.suffix.lower()
        if ext not in self.SUPPORTED_FORMATS:
            raise ValueError(
                f"Unsupported format: {ext}\n"
                f"Supported formats: {list(self.SUPPORTED_FORMATS.keys())}"
            )

        mesh = self._load_trimesh(filepath)
        mesh_data = MeshData.from_trimesh(mesh, filepath=filepath, unit=unit or self.default_unit)
        mesh_data.compute_normals(compute_vertex_normals=False)
        return mesh_data

    def get_file_info(self, filepath: Union[str, Path]) -> dict:
        """
        File summary (name, format, size, vertex/face counts, closedness)
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        ext = filepath.suffix.lower()
        file_size = filepath.stat().st_size

        info = {
            'filename': filepath.name,
            'format': self.SUPPORTED_FORMATS.get(ext, 'Unknown'),
            'extension': ext,
            'file_size_mb': round(file_size / (1024 * 1024), 2),
        }

        try:
            mesh = self._load_trimesh(filepath)
        except (ValueError, TypeError) as e:
            info['error'] = str(e)
            return info

        info['n_vertices'] = int(mesh.vertices.shape[0])
        info['n_faces'] = int(mesh.faces.shape[0])
        info['watertight'] = bool(mesh.is_watertight)
        return info


class MeshProcessor:
    """Mesh saving utility"""

    def save_mesh(self, mesh_data: Union[MeshData, 'trimesh.Trimesh'], filepath: Union[str, Path]):
        """
        Save a mesh to disk; the format follows the file extension.
        """
        filepath = str(filepath)

        if isinstance(mesh_data, MeshData):
            mesh = mesh_data.to_trimesh()
        else:
            mesh = mesh_data

        mesh.export(filepath)
