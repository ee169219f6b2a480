"""
Frame loop glue: working set + scheduler + renderer resources + stats

Two kinds of dataset can be loaded. LOD chunks are added once and the
scheduler picks tiers per frame. An octree is resolved per frame: nodes
are selected by camera distance and the working set is swapped to the
chunks standing in for those nodes before scheduling.
"""

import time
from typing import Dict, Iterable, Optional
import logging

from ..config import OCTREE, RENDER
from ..core.chunking import Chunk, node_chunk
from ..core.octree import OctreeNode, select_lod_nodes
from ..scheduler.camera import PerspectiveCamera
from ..scheduler.chunk_scheduler import ChunkScheduler, FrameResult, SchedulerOptions
from ..scheduler.context import ViewerContext
from ..scheduler.render_stats import FrameStats, RenderStatsTracker
from .backend import RenderBackend
from .registry import BufferRegistry

logger = logging.getLogger(__name__)


class PointCloudViewer:
    """
    Drives one dataset through the per-frame pipeline

    Example:
        viewer = PointCloudViewer(HeadlessBackend())
        viewer.load(chunks)               # or viewer.load_octree(root)
        camera.fit_to_bounds(dataset.bounds)
        stats = viewer.render_frame(camera)
    """

    def __init__(self, backend: RenderBackend,
                 options: Optional[SchedulerOptions] = None,
                 batch_size: int = RENDER.HANDOFF_BATCH_SIZE,
                 batches_per_frame: Optional[int] = None):
        self.backend = backend
        self.context = ViewerContext()
        self.scheduler = ChunkScheduler(options)
        self.registry = BufferRegistry(backend, batch_size, batches_per_frame)
        self.stats = RenderStatsTracker()
        self.last_frame: Optional[FrameResult] = None

        self.octree: Optional[OctreeNode] = None
        self.sample_size = OCTREE.MAX_POINTS_PER_NODE
        self.lod_max_distance = OCTREE.LOD_MAX_DISTANCE
        self.lod_max_nodes = OCTREE.LOD_MAX_NODES
        self._node_chunks: Dict[str, Chunk] = {}

    def load(self, chunks: Iterable[Chunk]):
        """Replace the current dataset, releasing its renderer resources first"""
        self.unload()
        self.context.add_chunks(chunks)
        logger.info(f"Viewer loaded {len(self.context)} chunks, {self.context.total_points:,} points")

    def load_octree(self, root: OctreeNode,
                    sample_size: int = OCTREE.MAX_POINTS_PER_NODE,
                    max_distance: float = OCTREE.LOD_MAX_DISTANCE,
                    max_nodes: int = OCTREE.LOD_MAX_NODES):
        """
        Replace the current dataset with an octree resolved per frame

        Args:
            root: octree root
            sample_size: points drawn for a node selected above leaf level
            max_distance: passed to select_lod_nodes
            max_nodes: passed to select_lod_nodes
        """
        self.unload()
        self.octree = root
        self.sample_size = sample_size
        self.lod_max_distance = max_distance
        self.lod_max_nodes = max_nodes
        logger.info(f"Viewer loaded octree with {root.point_count:,} points")

    def remove_chunk(self, chunk_id: str):
        self.registry.release(chunk_id)
        self.context.remove_chunk(chunk_id)

    def _select_octree_nodes(self, camera: PerspectiveCamera):
        """Swap the working set to the chunks of the nodes selected for this camera"""
        selected = select_lod_nodes(self.octree, camera.position,
                                    self.lod_max_distance, self.lod_max_nodes)
        wanted = set()
        for node in selected:
            if node.point_count == 0:
                continue
            chunk = self._node_chunks.get(node.node_id)
            if chunk is None:
                chunk = node_chunk(node, self.sample_size)
                self._node_chunks[node.node_id] = chunk
            wanted.add(chunk.chunk_id)
            if chunk.chunk_id not in self.context.chunks:
                self.context.add_chunk(chunk)

        for chunk_id in list(self.context.chunks):
            if chunk_id not in wanted:
                self.remove_chunk(chunk_id)

    def render_frame(self, camera: PerspectiveCamera) -> FrameStats:
        start = time.perf_counter()
        view_projection = camera.view_projection()

        if self.octree is not None:
            self._select_octree_nodes(camera)

        self.last_frame = self.scheduler.update_visibility(self.context, view_projection)
        handles = self.registry.sync(self.context)
        self.backend.draw(view_projection, handles)

        stats = FrameStats(
            rendered_points=self.last_frame.rendered_points,
            total_points=self.context.total_points,
            visible_chunks=self.last_frame.visible_chunks,
            frame_time_ms=(time.perf_counter() - start) * 1000,
        )
        self.stats.record(stats)
        return stats

    def unload(self):
        if len(self.context) or len(self.registry):
            logger.debug(f"Viewer unloading {len(self.context)} chunks")
        self.registry.release_all()
        self.context.reset()
        self.stats.reset()
        self.last_frame = None
        self.octree = None
        self._node_chunks.clear()
