"""
Voxel-grid and uniform downsampling

voxel_downsample(): one averaged point per occupied cell, used for coarser
LOD tiers and as the safety downsample of oversized datasets.
uniform_downsample(): every step-th point, fallback when the voxel grid
is degenerate.
"""

import numpy as np
from typing import Optional, Tuple
import logging

from ..config import LOD
from .bounds import PointCloudDataset

logger = logging.getLogger(__name__)


def voxel_keys(points: np.ndarray, voxel_size: float) -> np.ndarray:
    """(N, 3) int64 cell index floor(coord / voxel_size)"""
    return np.floor(np.asarray(points, dtype=np.float64) / voxel_size).astype(np.int64)


def voxel_downsample(points: np.ndarray,
                     colors: Optional[np.ndarray],
                     voxel_size: float) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Average points and colors per voxel cell

    Args:
        points: (N, 3) XYZ
        colors: (N, C) colors or None
        voxel_size: cell edge length, must be positive and finite

    Returns:
        (points, colors) with one row per occupied cell, in order of the
        first point that fell into each cell
    """
    if not np.isfinite(voxel_size) or voxel_size <= 0:
        raise ValueError(f"Invalid voxel_size: {voxel_size}. Must be a positive number.")

    points = np.asarray(points).reshape(-1, 3)
    if len(points) == 0:
        return points.astype(np.float32), None if colors is None else np.asarray(colors, dtype=np.float32)

    keys = voxel_keys(points, voxel_size)
    _, first_index, inverse, counts = np.unique(
        keys, axis=0, return_index=True, return_inverse=True, return_counts=True
    )
    inverse = inverse.reshape(-1)
    n_cells = len(counts)

    sums = np.zeros((n_cells, 3), dtype=np.float64)
    np.add.at(sums, inverse, points.astype(np.float64))
    means = sums / counts[:, None]

    # np.unique sorts cells; restore first-occurrence order
    order = np.argsort(first_index, kind='stable')
    out_points = means[order].astype(np.float32)

    out_colors = None
    if colors is not None:
        colors = np.asarray(colors)
        color_sums = np.zeros((n_cells, colors.shape[1]), dtype=np.float64)
        np.add.at(color_sums, inverse, colors.astype(np.float64))
        out_colors = (color_sums / counts[:, None])[order].astype(np.float32)

    logger.debug(f"Voxel downsample ({voxel_size:.4f}): {len(points):,} -> {n_cells:,}")
    return out_points, out_colors


def uniform_downsample(points: np.ndarray,
                       colors: Optional[np.ndarray],
                       target_points: int) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """Keep every step-th point, step = ceil(N / target) so at most target remain"""
    n = len(points)
    if n <= target_points or target_points <= 0:
        return points, colors

    step = -(-n // target_points)
    logger.debug(f"Uniform downsample: {n:,} -> ~{n // step:,} (step {step})")
    return points[::step], (colors[::step] if colors is not None else None)


def downsample_dataset(dataset: PointCloudDataset,
                       target_points: int = LOD.DEFAULT_DOWNSAMPLE_TARGET,
                       method: str = 'uniform') -> PointCloudDataset:
    """
    Reduce a dataset towards target_points

    Args:
        dataset: decoded cloud
        target_points: desired upper bound of points
        method: 'uniform' or 'voxel'; voxel falls back to uniform on a
            degenerate volume or an empty result

    Returns:
        A new PointCloudDataset (or the input when already small enough)
    """
    n = dataset.count
    if n == 0 or n <= target_points:
        return dataset

    if method not in ('uniform', 'voxel'):
        raise ValueError(f"Unknown downsample method: {method}")

    if method == 'voxel':
        volume = dataset.bounds.volume
        if volume > 0 and np.isfinite(volume):
            voxel_size = np.cbrt(volume / target_points) * 1.2
            if np.isfinite(voxel_size) and voxel_size > 0:
                points, colors = voxel_downsample(dataset.points, dataset.colors, voxel_size)
                if len(points):
                    logger.info(f"Voxel downsample {n:,} -> {len(points):,} (voxel {voxel_size:.4f})")
                    return PointCloudDataset.from_arrays(points, colors,
                                                         skipped_count=dataset.skipped_count)
        logger.warning("Invalid bounds for voxel downsample, falling back to uniform")

    points, colors = uniform_downsample(dataset.points, dataset.colors, target_points)
    logger.info(f"Uniform downsample {n:,} -> {len(points):,}")
    return PointCloudDataset.from_arrays(points, colors, skipped_count=dataset.skipped_count)
