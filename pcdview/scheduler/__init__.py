"""
Per-frame chunk scheduling: frustum, camera, working set and statistics
"""

from .frustum import Frustum
from .camera import PerspectiveCamera
from .context import ViewerContext
from .chunk_scheduler import ChunkScheduler, FrameResult, SchedulerOptions
from .render_stats import FrameStats, RenderStatsTracker

__all__ = [
    'Frustum',
    'PerspectiveCamera',
    'ViewerContext',
    'ChunkScheduler',
    'FrameResult',
    'SchedulerOptions',
    'FrameStats',
    'RenderStatsTracker',
]
