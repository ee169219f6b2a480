"""
Axis-aligned bounds and the decoded dataset container
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bounds:
    """
    Axis-aligned bounding box

    The center is always derived from min and max, never stored.
    """
    min: np.ndarray  # (3,)
    max: np.ndarray  # (3,)

    def __post_init__(self):
        object.__setattr__(self, 'min', np.asarray(self.min, dtype=np.float64).reshape(3))
        object.__setattr__(self, 'max', np.asarray(self.max, dtype=np.float64).reshape(3))

    @classmethod
    def from_points(cls, points: np.ndarray) -> 'Bounds':
        """Exact min/max over all points (all zeros for an empty set)"""
        if points is None or len(points) == 0:
            return cls.empty()
        pts = np.asarray(points)
        return cls(min=pts.min(axis=0), max=pts.max(axis=0))

    @classmethod
    def empty(cls) -> 'Bounds':
        return cls(min=np.zeros(3), max=np.zeros(3))

    @property
    def center(self) -> np.ndarray:
        return (self.min + self.max) / 2

    @property
    def dimensions(self) -> np.ndarray:
        return self.max - self.min

    @property
    def size(self) -> float:
        """Largest extent"""
        return float(self.dimensions.max())

    @property
    def volume(self) -> float:
        return float(np.prod(self.dimensions))

    def octant(self, index: int) -> 'Bounds':
        """
        Bounds of one of the 8 children

        Args:
            index: 3-bit index, bit0 = upper x half, bit1 = upper y, bit2 = upper z
        """
        center = self.center
        upper = np.array([(index >> axis) & 1 for axis in range(3)], dtype=bool)
        child_min = np.where(upper, center, self.min)
        child_max = np.where(upper, self.max, center)
        return Bounds(min=child_min, max=child_max)

    def contains_point(self, point, tolerance: float = 0.0) -> bool:
        p = np.asarray(point, dtype=np.float64)
        return bool(np.all(p >= self.min - tolerance) and np.all(p <= self.max + tolerance))

    def intersects(self, other: 'Bounds') -> bool:
        return bool(np.all(self.min <= other.max) and np.all(other.min <= self.max))

    def to_dict(self) -> Dict[str, Tuple[float, float, float]]:
        return {
            'min': tuple(float(v) for v in self.min),
            'max': tuple(float(v) for v in self.max),
            'center': tuple(float(v) for v in self.center),
        }

    def __repr__(self):
        lo = ", ".join(f"{v:.3f}" for v in self.min)
        hi = ", ".join(f"{v:.3f}" for v in self.max)
        return f"Bounds(min=({lo}), max=({hi}))"


@dataclass
class PointCloudDataset:
    """
    Column-oriented decoder output

    Attributes:
        points: (N, 3) float32 XYZ
        colors: (N, 4) float32 RGBA in [0, 1], or None when the file had no color field
        bounds: exact bounds of the accepted points
        skipped_count: points dropped for invalid coordinates
        header: the parsed PCD header (None for derived datasets)
    """
    points: np.ndarray
    colors: Optional[np.ndarray]
    bounds: Bounds
    skipped_count: int = 0
    header: Optional[object] = field(default=None, repr=False)

    def __post_init__(self):
        if self.colors is not None and len(self.colors) != len(self.points):
            raise ValueError(
                f"colors length {len(self.colors)} != points length {len(self.points)}"
            )

    @classmethod
    def from_arrays(cls, points: np.ndarray, colors: Optional[np.ndarray] = None,
                    skipped_count: int = 0, header=None) -> 'PointCloudDataset':
        points = np.ascontiguousarray(points, dtype=np.float32).reshape(-1, 3)
        if colors is not None:
            colors = np.ascontiguousarray(colors, dtype=np.float32).reshape(-1, 4)
        return cls(points=points, colors=colors, bounds=Bounds.from_points(points),
                   skipped_count=skipped_count, header=header)

    @property
    def count(self) -> int:
        return len(self.points)

    @property
    def has_colors(self) -> bool:
        return self.colors is not None

    def __repr__(self):
        return (f"PointCloudDataset(points={self.count:,}, colors={self.has_colors}, "
                f"skipped={self.skipped_count:,})")
