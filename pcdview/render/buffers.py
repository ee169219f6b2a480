"""
Renderer-facing buffers built from chunks

positions: float32 flat (N*3), colors: uint8 flat (N*3). Conversion runs
in batches so a frame loop can spread a large hand-off over several frames.
"""

import numpy as np
from dataclasses import dataclass
from typing import Iterator, Tuple
import logging

from ..config import RENDER
from ..core.chunking import Chunk

logger = logging.getLogger(__name__)


@dataclass
class RenderBuffers:
    positions: np.ndarray  # float32 (N*3,)
    colors: np.ndarray  # uint8 (N*3,)
    count: int

    @classmethod
    def allocate(cls, count: int) -> 'RenderBuffers':
        return cls(
            positions=np.zeros(count * 3, dtype=np.float32),
            colors=np.full(count * 3, 255, dtype=np.uint8),
            count=count,
        )

    @property
    def nbytes(self) -> int:
        return self.positions.nbytes + self.colors.nbytes


def _to_uint8_rgb(colors: np.ndarray) -> np.ndarray:
    rgb = np.asarray(colors, dtype=np.float32)[:, :3]
    return np.clip(np.rint(rgb * 255), 0, 255).astype(np.uint8)


def iter_buffer_batches(chunk: Chunk,
                        batch_size: int = RENDER.HANDOFF_BATCH_SIZE) -> Iterator[Tuple[RenderBuffers, int]]:
    """
    Fill render buffers for a chunk batch by batch

    Yields (buffers, filled) after every batch; the same buffers object is
    yielded each time and is complete when filled == buffers.count.
    Chunks without colors are white.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    buffers = RenderBuffers.allocate(chunk.count)
    if chunk.count == 0:
        yield buffers, 0
        return

    positions = buffers.positions.reshape(-1, 3)
    colors = buffers.colors.reshape(-1, 3)

    for start in range(0, chunk.count, batch_size):
        end = min(start + batch_size, chunk.count)
        positions[start:end] = chunk.points[start:end]
        if chunk.colors is not None:
            colors[start:end] = _to_uint8_rgb(chunk.colors[start:end])
        yield buffers, end


def build_render_buffers(chunk: Chunk,
                         batch_size: int = RENDER.HANDOFF_BATCH_SIZE) -> RenderBuffers:
    """Run the batched hand-off to completion"""
    buffers = None
    for buffers, _ in iter_buffer_batches(chunk, batch_size):
        pass
    return buffers
