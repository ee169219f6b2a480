"""
Core ingestion and level-of-detail modules

- FieldLayout / PCDHeader: header parsing and record layout
- LZFCodec: LZF decompressor for binary_compressed bodies
- PCDDecoder: ASCII, binary and binary_compressed PCD reader
- build_octree / select_lod_nodes: sparse octree and camera-distance node selection
- voxel_downsample / downsample_dataset: voxel-grid and uniform reduction
- split_into_chunks / generate_lod_chunks: fixed-size chunks per LOD tier
"""

from .bounds import Bounds, PointCloudDataset
from .field_layout import FieldLayout, PCDHeader, parse_header
from .lzf import LZFCodec, decompress
from .pcd_decoder import DecoderConfig, PCDDecoder, decode_pcd
from .octree import OctreeNode, build_octree, collect_points, iter_leaves, octree_stats, select_lod_nodes
from .voxel import downsample_dataset, uniform_downsample, voxel_downsample
from .chunking import (
    Chunk,
    calculate_lod_voxel_size,
    chunks_from_octree,
    generate_lod_chunks,
    node_chunk,
    split_into_chunks,
)

__all__ = [
    'Bounds',
    'PointCloudDataset',
    'FieldLayout',
    'PCDHeader',
    'parse_header',
    'LZFCodec',
    'decompress',
    'DecoderConfig',
    'PCDDecoder',
    'decode_pcd',
    'OctreeNode',
    'build_octree',
    'collect_points',
    'iter_leaves',
    'octree_stats',
    'select_lod_nodes',
    'downsample_dataset',
    'uniform_downsample',
    'voxel_downsample',
    'Chunk',
    'calculate_lod_voxel_size',
    'chunks_from_octree',
    'generate_lod_chunks',
    'node_chunk',
    'split_into_chunks',
]
