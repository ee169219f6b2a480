"""
Central configuration of pcdview

All constants and tunables in one place. Component option objects
(DecoderConfig, LoadOptions, SchedulerOptions) take their defaults from
the singletons below.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple


@dataclass(frozen=True)
class AppConfig:
    """Application metadata"""
    TITLE: str = "pcdview | PCD point cloud LOD pipeline"
    VERSION: str = "1.0.0"


@dataclass(frozen=True)
class DecoderDefaults:
    """PCD decoder limits"""
    MAX_COORDINATE: float = 1e8  # |coord| above this is treated as a corrupt decode
    MAX_UNCOMPRESSED_SIZE: int = 1_000_000_000  # bytes
    LZF_SHORTFALL_TOLERANCE: float = 0.01  # 1% zero padding accepted
    PACKED_RGB_MODE: str = "numeric"  # "numeric" | "bitcast"


@dataclass(frozen=True)
class OctreeDefaults:
    """Octree build termination policy"""
    MAX_POINTS_PER_NODE: int = 50_000
    MAX_DEPTH: int = 8
    MIN_NODE_SIZE: float = 0.1
    LOD_MAX_DISTANCE: float = 1000.0  # children farther than this from the camera are skipped
    LOD_MAX_NODES: int = 100  # nodes selected per frame


@dataclass(frozen=True)
class LODDefaults:
    """Chunking and LOD tier generation"""
    CHUNK_SIZE: int = 100_000
    LOD_LEVELS: Tuple[float, ...] = (1.0, 0.5, 0.1)
    VOXEL_SCALE: float = 0.01  # k in max_dim * (1 - ratio) * k
    MAX_POINTS: int = 10_000_000  # safety downsample above this
    DEFAULT_DOWNSAMPLE_TARGET: int = 1_000_000


@dataclass(frozen=True)
class SchedulerDefaults:
    """Per-frame visibility scheduling"""
    MAX_POINT_COUNT: int = 2_000_000  # hard cap per frame
    POINT_BUDGET: int = 1_000_000  # soft budget, stops finer tiers
    ENABLE_FRUSTUM_CULLING: bool = True
    ENABLE_LOD: bool = True


@dataclass(frozen=True)
class CacheDefaults:
    """On-disk dataset cache"""
    CACHE_DIR: Path = Path(".pcdview_cache")
    MAX_CACHE_SIZE: int = 5 * 1024 * 1024 * 1024  # 5GB
    KEY_PREFIX: str = "pcd"


@dataclass(frozen=True)
class RenderDefaults:
    """Renderer hand-off and statistics"""
    HANDOFF_BATCH_SIZE: int = 100_000
    BYTES_PER_POINT: int = 15  # 12 position + 3 color
    MAX_FPS_HISTORY: int = 60
    MAX_RENDER_TIME_HISTORY: int = 100
    STATS_LOG_INTERVAL: float = 2.0  # seconds
    FIELD_OF_VIEW: float = 60.0
    NEAR: float = 0.1
    FAR: float = 10_000.0


@dataclass(frozen=True)
class WorkerDefaults:
    """Off-thread decode service"""
    MAX_WORKERS: int = 2
    PROGRESS_POLL_INTERVAL: float = 0.2  # seconds
    SIMULATED_PROGRESS_STEP: float = 2.0
    SIMULATED_PROGRESS_CAP: float = 45.0


# Singleton instances
APP = AppConfig()
DECODER = DecoderDefaults()
OCTREE = OctreeDefaults()
LOD = LODDefaults()
SCHEDULER = SchedulerDefaults()
CACHE = CacheDefaults()
RENDER = RenderDefaults()
WORKER = WorkerDefaults()
