"""
Loading pipeline: off-thread decode, content-hash cache, LOD loader
"""

from .worker import DecodeRequest, DecodeResponse, DecodeService
from .cache import DatasetCache, content_hash, options_fingerprint
from .loader import LoadOptions, LoadResult, LoadTicket, PointCloudLoader

__all__ = [
    'DecodeRequest',
    'DecodeResponse',
    'DecodeService',
    'DatasetCache',
    'content_hash',
    'options_fingerprint',
    'LoadOptions',
    'LoadResult',
    'LoadTicket',
    'PointCloudLoader',
]
