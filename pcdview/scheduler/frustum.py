"""
View frustum from a combined view-projection matrix

Planes are extracted with the Gribb-Hartmann method from a column-vector
(OpenGL style) 4x4 matrix: clip = M @ [x, y, z, 1]. A plane (n, d) keeps
points with dot(n, p) + d >= 0.
"""

import numpy as np
from dataclasses import dataclass
import logging

from ..core.bounds import Bounds

logger = logging.getLogger(__name__)

PLANE_NAMES = ('left', 'right', 'bottom', 'top', 'near', 'far')


@dataclass(frozen=True)
class Frustum:
    planes: np.ndarray  # (6, 4) normalized [nx, ny, nz, d]
    is_degenerate: bool = False

    @classmethod
    def from_matrix(cls, view_projection) -> 'Frustum':
        m = np.asarray(view_projection, dtype=np.float64)
        if m.shape != (4, 4) or not np.all(np.isfinite(m)):
            logger.debug("Non-finite or malformed view-projection matrix, frustum is degenerate")
            return cls.degenerate()

        r0, r1, r2, r3 = m
        planes = np.stack([
            r3 + r0,  # left
            r3 - r0,  # right
            r3 + r1,  # bottom
            r3 - r1,  # top
            r3 + r2,  # near
            r3 - r2,  # far
        ])

        norms = np.linalg.norm(planes[:, :3], axis=1)
        if not np.all(np.isfinite(norms)) or np.any(norms < 1e-12):
            logger.debug("Zero-normal frustum plane, frustum is degenerate")
            return cls.degenerate()

        return cls(planes=planes / norms[:, None])

    @classmethod
    def degenerate(cls) -> 'Frustum':
        return cls(planes=np.zeros((6, 4)), is_degenerate=True)

    def intersects_box(self, bounds: Bounds) -> bool:
        """
        Conservative box test

        For each plane the box corner furthest along the normal (positive
        vertex) is checked; the box is outside if that corner is behind any
        plane. A degenerate frustum intersects nothing.
        """
        if self.is_degenerate:
            return False

        normals = self.planes[:, :3]
        p_vertex = np.where(normals >= 0, bounds.max, bounds.min)
        distances = np.einsum('ij,ij->i', normals, p_vertex) + self.planes[:, 3]
        return bool(np.all(distances >= 0))

    def contains_point(self, point) -> bool:
        if self.is_degenerate:
            return False
        p = np.append(np.asarray(point, dtype=np.float64), 1.0)
        return bool(np.all(self.planes @ p >= 0))
