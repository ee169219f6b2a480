"""
Fixed-size chunking and LOD tier generation

A chunk is the unit of visibility toggling and GPU buffer allocation:
a contiguous slice of a flat point buffer tagged with its LOD level
(0 = finest). Coarser tiers are voxel downsampled before chunking.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from ..config import LOD, OCTREE
from .bounds import Bounds, PointCloudDataset
from .octree import OctreeNode, collect_points, iter_leaves
from .voxel import uniform_downsample, voxel_downsample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Chunk:
    """Immutable slice of a point cloud at one LOD tier"""
    chunk_id: str
    points: np.ndarray  # (count, 3) float32
    colors: Optional[np.ndarray]  # (count, 4) float32 or None
    count: int
    bounds: Bounds
    lod: int

    def __repr__(self):
        return f"Chunk(id={self.chunk_id}, lod={self.lod}, points={self.count:,})"


def split_into_chunks(points: np.ndarray,
                      colors: Optional[np.ndarray],
                      chunk_size: int,
                      lod: int) -> List[Chunk]:
    """
    Slice a flat buffer into contiguous chunks of chunk_size points

    Every chunk gets the tight bounds of its own slice.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    total = len(points)
    n_chunks = int(np.ceil(total / chunk_size))
    chunks = []

    for i in range(n_chunks):
        start = i * chunk_size
        end = min(start + chunk_size, total)
        chunk_points = points[start:end]
        chunks.append(Chunk(
            chunk_id=f"chunk_{lod}_{i}",
            points=chunk_points,
            colors=colors[start:end] if colors is not None else None,
            count=end - start,
            bounds=Bounds.from_points(chunk_points),
            lod=lod,
        ))

    return chunks


def calculate_lod_voxel_size(bounds: Bounds, lod_ratio: float,
                             scale: float = LOD.VOXEL_SCALE) -> float:
    """
    Voxel size for a LOD tier, inversely related to its target ratio

    voxel = max_dimension * (1 - lod_ratio) * scale
    """
    return float(bounds.size * (1.0 - lod_ratio) * scale)


def generate_lod_chunks(dataset: PointCloudDataset,
                        lod_levels: Sequence[float] = LOD.LOD_LEVELS,
                        chunk_size: int = LOD.CHUNK_SIZE,
                        voxel_scale: float = LOD.VOXEL_SCALE,
                        progress_callback=None) -> List[Chunk]:
    """
    Build all LOD tiers of a dataset and chunk them

    Args:
        dataset: decoded cloud
        lod_levels: target ratio per tier, tier 0 first (e.g. 1, 0.5, 0.1)
        chunk_size: points per chunk
        voxel_scale: k in the tier voxel size formula
        progress_callback: optional fn(tier_index, n_tiers, message)

    Returns:
        Chunks of every tier, finest tier first
    """
    chunks: List[Chunk] = []
    n_tiers = len(lod_levels)

    for lod_index, lod_ratio in enumerate(lod_levels):
        if progress_callback:
            progress_callback(lod_index, n_tiers, f"Generating LOD {lod_index + 1}/{n_tiers}")

        points, colors = dataset.points, dataset.colors
        if lod_index > 0:
            voxel_size = calculate_lod_voxel_size(dataset.bounds, lod_ratio, voxel_scale)
            if voxel_size > 0:
                points, colors = voxel_downsample(points, colors, voxel_size)
            else:
                logger.warning(f"LOD {lod_index}: voxel size {voxel_size} not positive, using full data")

        tier = split_into_chunks(points, colors, chunk_size, lod_index)
        chunks.extend(tier)
        logger.info(f"LOD {lod_index} (ratio {lod_ratio}): {len(points):,} points in {len(tier)} chunks")

    return chunks


def node_chunk(node: OctreeNode, sample_size: int = OCTREE.MAX_POINTS_PER_NODE) -> Chunk:
    """
    Chunk standing in for an octree node

    A leaf gives its own points. An internal node gives a uniform sample
    of at most sample_size points from its subtree, so a distant node is
    drawn coarsely.
    """
    if node.is_leaf:
        points, colors = node.points, node.colors
    else:
        points, colors = collect_points(node)
        points, colors = uniform_downsample(points, colors, sample_size)
    return Chunk(
        chunk_id=f"octree_{node.node_id}",
        points=points,
        colors=colors,
        count=len(points),
        bounds=Bounds.from_points(points),
        lod=0,
    )


def chunks_from_octree(root: OctreeNode) -> List[Chunk]:
    """One level-0 chunk per non-empty octree leaf"""
    chunks = [node_chunk(leaf) for leaf in iter_leaves(root) if leaf.point_count > 0]
    logger.info(f"Octree leaves -> {len(chunks)} chunks")
    return chunks
