"""
Renderer hand-off: buffers, backend interface, resource registry, viewer
"""

from .buffers import RenderBuffers, build_render_buffers, iter_buffer_batches
from .backend import HeadlessBackend, RenderBackend
from .registry import BufferRegistry
from .viewer import PointCloudViewer

__all__ = [
    'RenderBuffers',
    'build_render_buffers',
    'iter_buffer_batches',
    'HeadlessBackend',
    'RenderBackend',
    'BufferRegistry',
    'PointCloudViewer',
]
