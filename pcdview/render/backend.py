"""
Renderer interface consumed by the viewer

A backend owns GPU-side resources. Handles are opaque to the viewer.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable
import logging

import numpy as np

from .buffers import RenderBuffers

logger = logging.getLogger(__name__)


class RenderBackend(ABC):

    @abstractmethod
    def create_buffer(self, chunk_id: str, buffers: RenderBuffers) -> Any:
        """Upload buffers and return a handle"""

    @abstractmethod
    def set_visible(self, handle: Any, visible: bool):
        """Toggle drawing without destroying the resource"""

    @abstractmethod
    def release(self, handle: Any):
        """Destroy the resource behind handle"""

    @abstractmethod
    def draw(self, view_projection: np.ndarray, handles: Iterable[Any]):
        """Issue draw calls for the given visible handles"""


class HeadlessBackend(RenderBackend):
    """
    In-memory backend without a display

    Keeps uploaded buffers in a dict and counts draw calls. Used by the CLI
    and benchmarks to drive full frames without a GPU.
    """

    def __init__(self):
        self._next_handle = 0
        self.buffers: Dict[int, RenderBuffers] = {}
        self.visible: Dict[int, bool] = {}
        self.chunk_ids: Dict[int, str] = {}
        self.draw_calls = 0
        self.points_drawn = 0

    def create_buffer(self, chunk_id: str, buffers: RenderBuffers) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self.buffers[handle] = buffers
        self.visible[handle] = False
        self.chunk_ids[handle] = chunk_id
        return handle

    def set_visible(self, handle: int, visible: bool):
        if handle in self.visible:
            self.visible[handle] = visible

    def release(self, handle: int):
        self.buffers.pop(handle, None)
        self.visible.pop(handle, None)
        self.chunk_ids.pop(handle, None)

    def draw(self, view_projection: np.ndarray, handles: Iterable[int]):
        self.points_drawn = 0
        for handle in handles:
            if not self.visible.get(handle, False):
                continue
            self.draw_calls += 1
            self.points_drawn += self.buffers[handle].count

    @property
    def allocated_bytes(self) -> int:
        return sum(b.nbytes for b in self.buffers.values())
