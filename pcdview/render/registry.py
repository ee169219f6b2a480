"""
Ownership of renderer resources per chunk

A buffer is created the first time its chunk becomes visible, kept while
the chunk is hidden, and released when the chunk or dataset is removed.
Uploads of large chunks can be spread over frames: with batches_per_frame
set, each sync() advances a pending upload by at most that many batches.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging

from ..config import RENDER
from ..scheduler.context import ViewerContext
from .backend import RenderBackend
from .buffers import RenderBuffers, iter_buffer_batches

logger = logging.getLogger(__name__)


class BufferRegistry:
    def __init__(self, backend: RenderBackend,
                 batch_size: int = RENDER.HANDOFF_BATCH_SIZE,
                 batches_per_frame: Optional[int] = None):
        self.backend = backend
        self.batch_size = batch_size
        self.batches_per_frame = batches_per_frame
        self.handles: Dict[str, Any] = {}
        self._pending: Dict[str, Iterator[Tuple[RenderBuffers, int]]] = {}

    def _advance(self, chunk_id: str) -> Optional[Any]:
        """Run a pending upload for one frame's worth of batches"""
        batches = self._pending[chunk_id]
        limit = self.batches_per_frame
        steps = 0
        for buffers, filled in batches:
            steps += 1
            if filled >= buffers.count:
                del self._pending[chunk_id]
                handle = self.backend.create_buffer(chunk_id, buffers)
                self.handles[chunk_id] = handle
                return handle
            if limit is not None and steps >= limit:
                return None
        return None

    def sync(self, context: ViewerContext) -> List[Any]:
        """
        Apply the context's visibility flags to renderer resources

        Returns:
            Handles that should be drawn this frame
        """
        drawable = []
        for chunk_id, shown in context.visibility.items():
            handle = self.handles.get(chunk_id)
            if handle is None and shown:
                if chunk_id not in self._pending:
                    self._pending[chunk_id] = iter_buffer_batches(context.chunks[chunk_id],
                                                                  self.batch_size)
                handle = self._advance(chunk_id)
            if handle is None:
                continue
            self.backend.set_visible(handle, shown)
            if shown:
                drawable.append(handle)
        return drawable

    def release(self, chunk_id: str):
        self._pending.pop(chunk_id, None)
        handle = self.handles.pop(chunk_id, None)
        if handle is not None:
            self.backend.release(handle)

    def release_all(self):
        for chunk_id in list(self.handles):
            self.release(chunk_id)
        self._pending.clear()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def __len__(self):
        return len(self.handles)
