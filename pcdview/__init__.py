"""
pcdview - PCD point cloud ingestion and level-of-detail pipeline

Modules:
- core: header/field layout, LZF, PCD decoder, octree, voxel grid, chunking
- scheduler: frustum culling and per-frame point budget scheduling
- render: renderer hand-off buffers, backend interface, viewer loop
- pipeline: off-thread decode, content-hash cache, loader
- export: LAS writer and load reports
"""

from .config import APP
from .errors import (
    DecodeError,
    EmptyPointCloud,
    InvalidBackReference,
    InvalidCompressionHeader,
    MalformedHeader,
    SizeMismatch,
    TruncatedBinaryData,
)
from .core import Bounds, PCDDecoder, PointCloudDataset, decode_pcd
from .pipeline import LoadOptions, PointCloudLoader
from .scheduler import ChunkScheduler, PerspectiveCamera, SchedulerOptions, ViewerContext

__version__ = APP.VERSION

__all__ = [
    'DecodeError',
    'EmptyPointCloud',
    'InvalidBackReference',
    'InvalidCompressionHeader',
    'MalformedHeader',
    'SizeMismatch',
    'TruncatedBinaryData',
    'Bounds',
    'PCDDecoder',
    'PointCloudDataset',
    'decode_pcd',
    'LoadOptions',
    'PointCloudLoader',
    'ChunkScheduler',
    'PerspectiveCamera',
    'SchedulerOptions',
    'ViewerContext',
]
