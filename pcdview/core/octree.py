"""
Sparse octree for adaptive level of detail

Built top-down in a single recursive pass. A node is a leaf holding its
points verbatim when it is small enough, deep enough or spatially tiny;
otherwise its points are split into the 8 octants around the node center
and empty octants are omitted. Children are stored by value in a list,
so the tree is a strict ownership hierarchy.
"""

import numpy as np
from dataclasses import dataclass, field
from collections import deque
from typing import Dict, Iterator, List, Optional, Tuple
import logging

from ..config import OCTREE
from .bounds import Bounds

logger = logging.getLogger(__name__)


@dataclass
class OctreeNode:
    """
    One octree node

    A leaf carries points/colors and no children; an internal node carries
    children and no points. point_count is the number of points below the node.
    node_id encodes the path from the root and is unique within a tree.
    """
    bounds: Bounds
    level: int
    point_count: int
    points: Optional[np.ndarray] = None
    colors: Optional[np.ndarray] = None
    children: List['OctreeNode'] = field(default_factory=list)
    node_id: str = "r"  # root "r", children append their octant digit

    def __post_init__(self):
        if self.children and self.points is not None:
            raise ValueError(f"Octree node at level {self.level} has both points and children")
        if self.children and sum(c.point_count for c in self.children) != self.point_count:
            raise ValueError(f"Octree node at level {self.level}: child counts do not sum to {self.point_count}")

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def __repr__(self):
        kind = "leaf" if self.is_leaf else f"{len(self.children)} children"
        return f"OctreeNode(level={self.level}, points={self.point_count:,}, {kind})"


def octant_indices(points: np.ndarray, center: np.ndarray) -> np.ndarray:
    """
    3-bit child index per point: bit0 x >= cx, bit1 y >= cy, bit2 z >= cz

    Compared in float64, the precision of Bounds.octant, so a point always
    lands in the child whose bounds contain it.
    """
    ge = np.asarray(points, dtype=np.float64) >= np.asarray(center, dtype=np.float64)
    return (ge[:, 0].astype(np.uint8)
            | (ge[:, 1].astype(np.uint8) << 1)
            | (ge[:, 2].astype(np.uint8) << 2))


def _build(bounds: Bounds, points: np.ndarray, colors: Optional[np.ndarray], level: int,
           max_points_per_node: int, max_depth: int, min_node_size: float,
           node_id: str = "r") -> OctreeNode:
    count = len(points)

    if count <= max_points_per_node or level >= max_depth or bounds.size < min_node_size:
        return OctreeNode(bounds=bounds, level=level, point_count=count,
                          points=points, colors=colors, node_id=node_id)

    index = octant_indices(points, bounds.center)
    children = []
    for octant in range(8):
        mask = index == octant
        if not mask.any():
            continue
        children.append(_build(
            bounds.octant(octant),
            points[mask],
            colors[mask] if colors is not None else None,
            level + 1,
            max_points_per_node,
            max_depth,
            min_node_size,
            f"{node_id}{octant}",
        ))

    return OctreeNode(bounds=bounds, level=level, point_count=count, children=children,
                      node_id=node_id)


def build_octree(points: np.ndarray,
                 colors: Optional[np.ndarray] = None,
                 max_points_per_node: int = OCTREE.MAX_POINTS_PER_NODE,
                 max_depth: int = OCTREE.MAX_DEPTH,
                 min_node_size: float = OCTREE.MIN_NODE_SIZE) -> OctreeNode:
    """
    Build an octree over a point set

    Args:
        points: (N, 3) XYZ
        colors: (N, 4) RGBA or None
        max_points_per_node: a node with at most this many points is a leaf
        max_depth: nodes at this level are leaves
        min_node_size: nodes whose largest extent is below this are leaves

    Returns:
        Root OctreeNode spanning the bounds of the points
    """
    if max_points_per_node < 1:
        raise ValueError(f"max_points_per_node must be >= 1, got {max_points_per_node}")
    if max_depth < 0:
        raise ValueError(f"max_depth must be >= 0, got {max_depth}")

    points = np.asarray(points).reshape(-1, 3)
    if colors is not None and len(colors) != len(points):
        raise ValueError(f"colors length {len(colors)} != points length {len(points)}")

    root = _build(Bounds.from_points(points), points, colors, 0,
                  max_points_per_node, max_depth, min_node_size)

    stats = octree_stats(root)
    logger.info(f"Octree: {len(points):,} points, {stats['nodes']:,} nodes, "
                f"{stats['leaves']:,} leaves, depth {stats['depth']}")
    return root


def iter_leaves(node: OctreeNode) -> Iterator[OctreeNode]:
    """Leaves in depth-first child order"""
    if node.is_leaf:
        yield node
        return
    for child in node.children:
        yield from iter_leaves(child)


def iter_nodes(node: OctreeNode) -> Iterator[OctreeNode]:
    yield node
    for child in node.children:
        yield from iter_nodes(child)


def collect_points(root: OctreeNode) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """Concatenate all leaf payloads"""
    leaves = [leaf for leaf in iter_leaves(root) if leaf.points is not None and len(leaf.points)]
    if not leaves:
        return np.zeros((0, 3), dtype=np.float32), None
    points = np.concatenate([leaf.points for leaf in leaves])
    colors = None
    if all(leaf.colors is not None for leaf in leaves):
        colors = np.concatenate([leaf.colors for leaf in leaves])
    return points, colors


def octree_stats(root: OctreeNode) -> Dict:
    nodes = 0
    leaves = 0
    depth = 0
    largest_leaf = 0
    for node in iter_nodes(root):
        nodes += 1
        depth = max(depth, node.level)
        if node.is_leaf:
            leaves += 1
            largest_leaf = max(largest_leaf, node.point_count)
    return {
        'nodes': nodes,
        'leaves': leaves,
        'depth': depth,
        'total_points': root.point_count,
        'largest_leaf': largest_leaf,
    }


def select_lod_nodes(root: OctreeNode,
                     camera_position,
                     max_distance: float = OCTREE.LOD_MAX_DISTANCE,
                     max_nodes: int = OCTREE.LOD_MAX_NODES) -> List[OctreeNode]:
    """
    Pick the nodes to draw for a camera position, breadth first

    A node is used as a whole when it is a leaf or when its center is
    farther than twice its size from the camera; otherwise its children
    within max_distance of the camera are queued. Stops after max_nodes
    selections.

    Args:
        root: octree root
        camera_position: (3,) camera position in world space
        max_distance: children whose center is farther than this are skipped
        max_nodes: upper bound on the number of selected nodes

    Returns:
        Selected nodes, coarse ones first
    """
    camera = np.asarray(camera_position, dtype=np.float64).reshape(3)
    selected: List[OctreeNode] = []
    queue = deque([root])

    while queue and len(selected) < max_nodes:
        node = queue.popleft()
        distance = float(np.linalg.norm(camera - node.bounds.center))

        if node.is_leaf or distance > node.bounds.size * 2:
            selected.append(node)
            continue

        for child in node.children:
            if np.linalg.norm(camera - child.bounds.center) <= max_distance:
                queue.append(child)

    logger.debug(f"LOD selection: {len(selected)} nodes, "
                 f"{sum(n.point_count for n in selected):,} points represented")
    return selected
