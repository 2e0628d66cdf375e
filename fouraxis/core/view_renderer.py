"""
View Renderer Module
Software z-buffer that reports which faces are seen from a direction.

Each face is rasterized into an orthographic image perpendicular to the view
direction; a face counts as visible when it owns at least one pixel of the
final depth buffer.
"""

from dataclasses import dataclass
from typing import Optional
import numpy as np
from PIL import Image

from .alignment_utils import view_frame
from .mesh_loader import MeshData


@dataclass
class FaceIdImage:
    """
    Rasterization result

    Attributes:
        face_ids: (H, W) index of the nearest face per pixel, -1 for background
        depth: (H, W) height along the view direction, -inf for background
        scale: world units per pixel
    """
    face_ids: np.ndarray
    depth: np.ndarray
    scale: float = 1.0

    def visible_faces(self, n_faces: int) -> np.ndarray:
        flags = np.zeros(int(n_faces), dtype=bool)
        ids = self.face_ids[self.face_ids >= 0]
        if ids.size:
            flags[np.unique(ids)] = True
        return flags

    def to_pil_image(self) -> Image.Image:
        """Depth map as 8-bit grayscale (near = bright, background = black)"""
        img = np.zeros(self.depth.shape, dtype=np.uint8)
        covered = np.isfinite(self.depth)
        if covered.any():
            d = self.depth[covered]
            span = float(d.max() - d.min())
            img[covered] = (32 + (d - d.min()) / (span + 1e-10) * 223).astype(np.uint8)
        # Row 0 is the bottom of the view
        return Image.fromarray(np.ascontiguousarray(img[::-1]))

    def save(self, filepath: str, dpi: int = 300) -> None:
        img = self.to_pil_image()
        img.save(filepath, dpi=(dpi, dpi))


class ViewRenderer:
    """
    Orthographic face-id renderer.

    The image covers the projected bounding box of the mesh; `resolution` is
    the pixel count of the longer side.
    """

    def __init__(self, resolution: int = 1000):
        self.resolution = int(resolution)

    def render(self, mesh: MeshData, direction: np.ndarray,
               resolution: Optional[int] = None) -> FaceIdImage:
        resolution = int(resolution or self.resolution)

        frame = view_frame(direction)
        coords = mesh.vertices @ frame.T
        x_coords = coords[:, 0]
        y_coords = coords[:, 1]
        z_coords = coords[:, 2]

        if mesh.n_vertices == 0:
            empty = np.full((1, 1), -1, dtype=np.int64)
            return FaceIdImage(face_ids=empty, depth=np.full((1, 1), -np.inf))

        x_min, x_max = float(x_coords.min()), float(x_coords.max())
        y_min, y_max = float(y_coords.min()), float(y_coords.max())

        width = max(x_max - x_min, 1e-12)
        height = max(y_max - y_min, 1e-12)

        # Aspect-preserving image size
        if width > height:
            img_width = resolution
            img_height = int(resolution * height / width)
        else:
            img_height = resolution
            img_width = int(resolution * width / height)

        img_height = max(img_height, 1)
        img_width = max(img_width, 1)

        scale = max(width / img_width, height / img_height)

        depth_buffer = np.full((img_height, img_width), -np.inf)
        id_buffer = np.full((img_height, img_width), -1, dtype=np.int64)

        sx_all = (x_coords - x_min) / width * (img_width - 1)
        sy_all = (y_coords - y_min) / height * (img_height - 1)

        for f_idx, face in enumerate(mesh.faces):
            self._rasterize_triangle(
                int(f_idx),
                sx_all[face], sy_all[face], z_coords[face],
                img_width, img_height,
                depth_buffer, id_buffer
            )

        return FaceIdImage(face_ids=id_buffer, depth=depth_buffer, scale=float(scale))

    def render_visibility(self, mesh: MeshData, direction: np.ndarray,
                          resolution: Optional[int] = None) -> np.ndarray:
        """Per-face visibility flags from `direction`."""
        image = self.render(mesh, direction, resolution)
        return image.visible_faces(mesh.n_faces)

    def _rasterize_triangle(self, face_id: int,
                            sx: np.ndarray, sy: np.ndarray, z: np.ndarray,
                            img_width: int, img_height: int,
                            depth_buffer: np.ndarray,
                            id_buffer: np.ndarray) -> None:
        """Triangle rasterization (z-buffer, nearest = largest height)"""
        min_x = max(0, int(np.floor(sx.min())))
        max_x = min(img_width - 1, int(np.ceil(sx.max())))
        min_y = max(0, int(np.floor(sy.min())))
        max_y = min(img_height - 1, int(np.ceil(sy.max())))
        if min_x > max_x or min_y > max_y:
            return

        area = (sx[2] - sx[0]) * (sy[1] - sy[0]) - (sy[2] - sy[0]) * (sx[1] - sx[0])
        if abs(area) < 1e-10:
            # Seen edge-on
            return

        px, py = np.meshgrid(
            np.arange(min_x, max_x + 1, dtype=np.float64),
            np.arange(min_y, max_y + 1, dtype=np.float64),
            indexing="xy",
        )

        # Edge functions
        w0 = (px - sx[1]) * (sy[2] - sy[1]) - (py - sy[1]) * (sx[2] - sx[1])
        w1 = (px - sx[2]) * (sy[0] - sy[2]) - (py - sy[2]) * (sx[0] - sx[2])
        w2 = (px - sx[0]) * (sy[1] - sy[0]) - (py - sy[0]) * (sx[1] - sx[0])

        inside = ((w0 >= 0) & (w1 >= 0) & (w2 >= 0)) | ((w0 <= 0) & (w1 <= 0) & (w2 <= 0))
        if not inside.any():
            return

        total = w0 + w1 + w2
        total[total == 0] = 1.0
        depth = (w0 * z[0] + w1 * z[1] + w2 * z[2]) / total

        rows = py[inside].astype(np.int64)
        cols = px[inside].astype(np.int64)
        cand = depth[inside]

        closer = cand > depth_buffer[rows, cols]
        rows = rows[closer]
        cols = cols[closer]
        depth_buffer[rows, cols] = cand[closer]
        id_buffer[rows, cols] = face_id
