"""
Perspective camera producing view and projection matrices

Right-handed, camera looks down -Z in view space, OpenGL clip conventions.
"""

import numpy as np
from dataclasses import dataclass, field
import logging

from ..config import RENDER
from ..core.bounds import Bounds

logger = logging.getLogger(__name__)


@dataclass
class PerspectiveCamera:
    fov: float = RENDER.FIELD_OF_VIEW  # vertical, degrees
    aspect: float = 1.0
    near: float = RENDER.NEAR
    far: float = RENDER.FAR
    position: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 10.0]))
    target: np.ndarray = field(default_factory=lambda: np.zeros(3))
    up: np.ndarray = field(default_factory=lambda: np.array([0.0, 1.0, 0.0]))

    def look_at(self, target, position=None):
        if position is not None:
            self.position = np.asarray(position, dtype=np.float64)
        self.target = np.asarray(target, dtype=np.float64)

    def view_matrix(self) -> np.ndarray:
        eye = np.asarray(self.position, dtype=np.float64)
        forward = np.asarray(self.target, dtype=np.float64) - eye
        norm = np.linalg.norm(forward)
        if norm == 0:
            return np.eye(4)
        forward /= norm

        up = np.asarray(self.up, dtype=np.float64)
        side = np.cross(forward, up)
        if np.linalg.norm(side) < 1e-12:
            # looking along up, pick any perpendicular axis
            side = np.cross(forward, np.array([0.0, 0.0, 1.0]))
            if np.linalg.norm(side) < 1e-12:
                side = np.cross(forward, np.array([1.0, 0.0, 0.0]))
        side /= np.linalg.norm(side)
        true_up = np.cross(side, forward)

        view = np.eye(4)
        view[0, :3] = side
        view[1, :3] = true_up
        view[2, :3] = -forward
        view[:3, 3] = -view[:3, :3] @ eye
        return view

    def projection_matrix(self) -> np.ndarray:
        f = 1.0 / np.tan(np.radians(self.fov) / 2)
        near, far = self.near, self.far
        proj = np.zeros((4, 4))
        proj[0, 0] = f / self.aspect
        proj[1, 1] = f
        proj[2, 2] = (far + near) / (near - far)
        proj[2, 3] = 2 * far * near / (near - far)
        proj[3, 2] = -1.0
        return proj

    def view_projection(self) -> np.ndarray:
        return self.projection_matrix() @ self.view_matrix()

    def fit_to_bounds(self, bounds: Bounds):
        """Place the camera in front of the cloud at 1.5x its largest extent"""
        center = bounds.center
        distance = bounds.size * 1.5
        if distance <= 0:
            distance = 1.0
        self.look_at(center, position=center + np.array([0.0, 0.0, distance]))
        # keep the whole cloud inside the depth range
        self.far = max(self.far, distance * 4)
        logger.debug(f"Camera fitted: distance {distance:.2f}, target {center}")
