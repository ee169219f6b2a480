"""
Point cloud loading pipeline

hash -> cache lookup -> off-thread decode -> safety downsample -> LOD
tiers -> cache write. Progress is reported as (percent, message).
Decode progress cannot cross the worker boundary, so the loader polls the
pending decode and advances an approximate percentage between 10 and 45.
"""

import dataclasses
import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union
import logging
import time

import numpy as np

from ..config import CACHE, LOD, OCTREE, WORKER
from ..core.bounds import PointCloudDataset
from ..core.chunking import Chunk, chunks_from_octree, generate_lod_chunks
from ..core.field_layout import parse_header
from ..core.octree import OctreeNode, build_octree
from ..core.pcd_decoder import DecoderConfig
from ..core.voxel import downsample_dataset
from .cache import DatasetCache, content_hash, options_fingerprint
from .worker import DecodeRequest, DecodeService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

PARTITION_MODES = ('lod', 'octree')


@dataclass
class LoadOptions:
    max_points: int = LOD.MAX_POINTS
    chunk_size: int = LOD.CHUNK_SIZE
    lod_levels: Sequence[float] = LOD.LOD_LEVELS
    voxel_scale: float = LOD.VOXEL_SCALE
    enable_cache: bool = True
    cache_dir: Union[str, Path] = CACHE.CACHE_DIR
    on_progress: Optional[ProgressCallback] = None
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    partition: str = 'lod'  # 'lod' | 'octree'
    max_points_per_node: int = OCTREE.MAX_POINTS_PER_NODE
    max_depth: int = OCTREE.MAX_DEPTH
    min_node_size: float = OCTREE.MIN_NODE_SIZE

    def __post_init__(self):
        if self.partition not in PARTITION_MODES:
            raise ValueError(f"Unknown partition mode: {self.partition}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if not self.lod_levels:
            raise ValueError("lod_levels must not be empty")

    def fingerprint(self) -> str:
        """Digest of every option that changes the cached tiers"""
        return options_fingerprint({
            'decoder': dataclasses.asdict(self.decoder),
            'lod_levels': [float(r) for r in self.lod_levels],
            'max_points': self.max_points,
            'voxel_scale': self.voxel_scale,
        })


@dataclass
class LoadResult:
    chunks: List[Chunk]
    dataset: PointCloudDataset
    from_cache: bool = False
    content_hash: str = ""
    elapsed: float = 0.0
    # set for octree partitioning; the viewer resolves nodes per frame
    octree: Optional[OctreeNode] = None

    @property
    def total_points(self) -> int:
        return sum(c.count for c in self.chunks)

    @property
    def lod_count(self) -> int:
        return len({c.lod for c in self.chunks})


@dataclass
class LoadTicket:
    """Handle for a background load; only the newest ticket is current"""
    ticket_id: int
    future: 'Future[LoadResult]'

    def result(self, timeout: Optional[float] = None) -> LoadResult:
        return self.future.result(timeout)

    def done(self) -> bool:
        return self.future.done()


class PointCloudLoader:
    """
    Usage:
        loader = PointCloudLoader(LoadOptions(on_progress=print_progress))
        result = loader.load(Path("scan.pcd").read_bytes())

        # background, newest wins
        ticket = loader.submit(data)
        result = ticket.result()
        if loader.is_current(ticket):
            viewer.load(result.chunks)

        # octree partitioning: nodes are picked per frame by camera distance
        result = PointCloudLoader(LoadOptions(partition='octree')).load(data)
        viewer.load_octree(result.octree)
    """

    def __init__(self, options: Optional[LoadOptions] = None,
                 service: Optional[DecodeService] = None):
        self.options = options or LoadOptions()
        self._owns_service = service is None
        self.service = service or DecodeService()
        self.cache = DatasetCache(self.options.cache_dir) if self.options.enable_cache else None
        self._background = ThreadPoolExecutor(max_workers=WORKER.MAX_WORKERS,
                                              thread_name_prefix="pcd-load")
        self._tickets = itertools.count(1)
        self._latest = 0
        self._lock = threading.Lock()

    def _report(self, percent: float, message: str):
        logger.debug(f"[{percent:5.1f}%] {message}")
        if self.options.on_progress:
            self.options.on_progress(percent, message)

    def _decode(self, data: bytes) -> PointCloudDataset:
        future = self.service.submit(DecodeRequest(data, self.options.decoder))
        progress = 10.0
        self._report(progress, "Decoding point cloud")
        while True:
            done, _ = wait([future], timeout=WORKER.PROGRESS_POLL_INTERVAL)
            if done:
                break
            progress = min(WORKER.SIMULATED_PROGRESS_CAP, progress + WORKER.SIMULATED_PROGRESS_STEP)
            self._report(progress, "Decoding point cloud")
        return future.result().unwrap()

    def _partition(self, dataset: PointCloudDataset) -> Tuple[List[Chunk], Optional[OctreeNode]]:
        opts = self.options
        if opts.partition == 'octree':
            self._report(50, "Building octree")
            root = build_octree(dataset.points, dataset.colors,
                                opts.max_points_per_node, opts.max_depth, opts.min_node_size)
            return chunks_from_octree(root), root

        n_levels = len(opts.lod_levels)

        def on_tier(index, total, message):
            self._report(50 + 40 * index / max(n_levels, 1), message)

        chunks = generate_lod_chunks(dataset, opts.lod_levels, opts.chunk_size,
                                     voxel_scale=opts.voxel_scale, progress_callback=on_tier)
        return chunks, None

    def _from_cache(self, cache_id: str) -> Optional[Tuple[List[Chunk], PointCloudDataset]]:
        chunks = self.cache.get_chunks(cache_id)
        if chunks is None:
            return None
        header_text, skipped = self.cache.get_metadata(cache_id)
        header = parse_header(header_text) if header_text else None
        tier0 = [c for c in chunks if c.lod == 0]
        points, colors = _concat_tier(tier0)
        dataset = PointCloudDataset.from_arrays(points, colors, skipped_count=skipped, header=header)
        return chunks, dataset

    def load(self, data: bytes) -> LoadResult:
        """
        Run the whole pipeline for one file

        Cached tiers are keyed by the content hash plus a fingerprint of the
        options that shape them, so changing the decoder or LOD settings
        never serves tiers built under other settings.

        Raises:
            DecodeError: when the file cannot be decoded
        """
        opts = self.options
        start = time.perf_counter()
        data = bytes(data)

        self._report(0, "Hashing file")
        digest = content_hash(data)
        cache_id = f"{digest}_{opts.fingerprint()}"
        use_cache = self.cache is not None and opts.partition == 'lod'

        if use_cache:
            self._report(5, "Checking cache")
            cached = self._from_cache(cache_id)
            if cached is not None:
                chunks, dataset = cached
                self._report(100, "Loaded from cache")
                return LoadResult(chunks, dataset, from_cache=True, content_hash=digest,
                                  elapsed=time.perf_counter() - start)

        dataset = self._decode(data)
        header, skipped = dataset.header, dataset.skipped_count
        self._report(45, f"Decoded {dataset.count:,} points")

        if dataset.count > opts.max_points:
            logger.warning(f"{dataset.count:,} points exceed limit {opts.max_points:,}, downsampling")
            dataset = downsample_dataset(dataset, opts.max_points, method='voxel')
            if dataset.count > opts.max_points:
                dataset = downsample_dataset(dataset, opts.max_points, method='uniform')
            dataset.header = header

        chunks, root = self._partition(dataset)
        self._report(90, f"Generated {len(chunks)} chunks")

        if use_cache:
            self._report(95, "Writing cache")
            try:
                self.cache.put_chunks(cache_id, chunks, opts.chunk_size,
                                      header_text=header.to_text() if header else None,
                                      skipped_count=skipped)
            except OSError as e:
                logger.warning(f"Cache write failed: {e}")

        elapsed = time.perf_counter() - start
        self._report(100, "Done")
        logger.info(f"Loaded {dataset.count:,} points into {len(chunks)} chunks in {elapsed:.2f}s")
        return LoadResult(chunks, dataset, from_cache=False, content_hash=digest,
                          elapsed=elapsed, octree=root)

    def load_file(self, file_path: Union[str, Path]) -> LoadResult:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"PCD file not found: {file_path}")
        return self.load(path.read_bytes())

    def submit(self, data: bytes) -> LoadTicket:
        """Start a background load; it supersedes every earlier submission"""
        with self._lock:
            ticket_id = next(self._tickets)
            self._latest = ticket_id
        future = self._background.submit(self.load, data)
        return LoadTicket(ticket_id, future)

    def is_current(self, ticket: LoadTicket) -> bool:
        with self._lock:
            return ticket.ticket_id == self._latest

    def close(self):
        self._background.shutdown(wait=True)
        if self._owns_service:
            self.service.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def _concat_tier(chunks: List[Chunk]):
    points = np.concatenate([c.points for c in chunks])
    colors = None
    if all(c.colors is not None for c in chunks):
        colors = np.concatenate([c.colors for c in chunks])
    return points, colors
