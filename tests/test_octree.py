"""
Tests for octree build, voxel downsampling and LOD chunking
"""

import logging

import numpy as np
import pytest

from pcdview.core.bounds import Bounds, PointCloudDataset
from pcdview.core.chunking import (
    calculate_lod_voxel_size,
    chunks_from_octree,
    node_chunk,
    generate_lod_chunks,
    split_into_chunks,
)
from pcdview.core.octree import (
    OctreeNode,
    build_octree,
    collect_points,
    iter_leaves,
    iter_nodes,
    octree_stats,
    select_lod_nodes,
)
from pcdview.core.voxel import downsample_dataset, uniform_downsample, voxel_downsample

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def clustered_points(n=5000, seed=0):
    """Uneven cloud: a dense cluster plus sparse background"""
    rng = np.random.default_rng(seed)
    dense = rng.normal(10, 0.5, size=(n // 2, 3))
    sparse = rng.uniform(0, 100, size=(n - n // 2, 3))
    return np.vstack([dense, sparse]).astype(np.float32)


def rgba(n, seed=1):
    rng = np.random.default_rng(seed)
    colors = rng.uniform(0, 1, size=(n, 4)).astype(np.float32)
    colors[:, 3] = 1.0
    return colors


# Octree

def test_octree_leaf_rule_and_child_sums():
    logger.info("Testing octree invariants...")

    points = clustered_points()
    max_points, max_depth, min_size = 200, 6, 0.5
    root = build_octree(points, rgba(len(points)), max_points, max_depth, min_size)

    for node in iter_nodes(root):
        if node.is_leaf:
            assert (node.point_count <= max_points or node.level == max_depth
                    or node.bounds.size < min_size), f"Leaf violates termination rule: {node}"
            assert len(node.points) == node.point_count
        else:
            assert node.points is None, "Internal node must not carry points"
            assert 1 <= len(node.children) <= 8
            assert sum(c.point_count for c in node.children) == node.point_count

    assert root.point_count == len(points)
    logger.info("✅ Octree invariants passed")


def test_octree_leaves_partition_input():
    """Union of leaf points equals the input, no duplicates or omissions"""
    points = clustered_points(3000, seed=2)
    root = build_octree(points, None, max_points_per_node=100, max_depth=8, min_node_size=0.01)

    collected, colors = collect_points(root)
    assert colors is None
    assert len(collected) == len(points)

    def as_sorted(a):
        return a[np.lexsort(a.T[::-1])]

    np.testing.assert_array_equal(as_sorted(collected), as_sorted(points))


def test_octree_children_lie_in_their_octant():
    points = clustered_points(2000, seed=3)
    root = build_octree(points, None, max_points_per_node=50, max_depth=5, min_node_size=0.0)
    for leaf in iter_leaves(root):
        assert np.all(leaf.points >= leaf.bounds.min.astype(np.float32) - 1e-4)
        assert np.all(leaf.points <= leaf.bounds.max.astype(np.float32) + 1e-4)


def test_octree_small_input_is_single_leaf():
    points = np.array([[0, 0, 0], [1, 1, 1]], dtype=np.float32)
    root = build_octree(points, max_points_per_node=10)
    assert root.is_leaf and root.level == 0 and root.point_count == 2


def test_octree_max_depth_zero():
    points = clustered_points(1000)
    root = build_octree(points, max_points_per_node=1, max_depth=0)
    assert root.is_leaf, "max_depth 0 keeps everything in the root"


def test_octree_duplicate_points_stop_at_min_size():
    """Identical points cannot be split; the size rule ends recursion"""
    points = np.ones((500, 3), dtype=np.float32)
    root = build_octree(points, max_points_per_node=10, max_depth=20, min_node_size=0.1)
    stats = octree_stats(root)
    assert stats['leaves'] == 1 and stats['total_points'] == 500


def test_octree_stats():
    points = clustered_points(4000, seed=4)
    root = build_octree(points, max_points_per_node=300, max_depth=6, min_node_size=0.1)
    stats = octree_stats(root)
    assert stats['nodes'] >= stats['leaves'] >= 1
    assert stats['depth'] <= 6
    assert stats['largest_leaf'] >= 1


def test_octree_node_rejects_inconsistent_state():
    child = OctreeNode(bounds=Bounds.empty(), level=1, point_count=3,
                       points=np.zeros((3, 3), dtype=np.float32))
    with pytest.raises(ValueError):
        OctreeNode(bounds=Bounds.empty(), level=0, point_count=4, children=[child])
    with pytest.raises(ValueError):
        OctreeNode(bounds=Bounds.empty(), level=0, point_count=3,
                   points=np.zeros((3, 3), dtype=np.float32), children=[child])


def test_build_octree_validates_arguments():
    points = clustered_points(10)
    with pytest.raises(ValueError):
        build_octree(points, max_points_per_node=0)
    with pytest.raises(ValueError):
        build_octree(points, rgba(5))


def test_chunks_from_octree():
    points = clustered_points(3000, seed=5)
    root = build_octree(points, rgba(3000), max_points_per_node=250, max_depth=6, min_node_size=0.1)
    chunks = chunks_from_octree(root)
    assert sum(c.count for c in chunks) == 3000
    assert all(c.lod == 0 for c in chunks)
    assert len({c.chunk_id for c in chunks}) == len(chunks), "Chunk ids must be unique"


def test_octree_split_matches_child_bounds_at_float32_edge():
    """A float32 point equal to the float64 split plane's rounded value stays in the lower child"""
    points = np.array([[1.0, 0.0, 0.0], [1.0 + 2.0 ** -23, 0.0, 0.0]], dtype=np.float32)
    root = build_octree(points, max_points_per_node=1, max_depth=4, min_node_size=0.0)

    assert not root.is_leaf
    for leaf in iter_leaves(root):
        for point in leaf.points:
            assert leaf.bounds.contains_point(point), f"{point} outside {leaf.bounds}"


def test_octree_node_ids_follow_the_path():
    root = build_octree(uniform_cube(), max_points_per_node=100, max_depth=6)
    assert root.node_id == "r"
    ids = [node.node_id for node in iter_nodes(root)]
    assert len(set(ids)) == len(ids)
    for node in iter_nodes(root):
        for child in node.children:
            assert child.node_id[:-1] == node.node_id
            assert len(child.node_id) == child.level + 1


# LOD node selection

def uniform_cube(n=20000, seed=11):
    rng = np.random.default_rng(seed)
    return rng.uniform(0, 100, size=(n, 3)).astype(np.float32)


def test_select_lod_nodes_far_camera_takes_root():
    root = build_octree(uniform_cube(), max_points_per_node=100, max_depth=6)
    camera = root.bounds.center + np.array([0.0, 0.0, 1000.0])

    selected = select_lod_nodes(root, camera, max_distance=5000, max_nodes=100)
    assert selected == [root]


def test_select_lod_nodes_near_camera_refines():
    root = build_octree(uniform_cube(), max_points_per_node=100, max_depth=6)

    selected = select_lod_nodes(root, root.bounds.center, max_distance=1000, max_nodes=1000)
    assert len(selected) > 8
    assert root not in selected
    assert all(node.level >= 2 for node in selected)
    # nothing is selected twice, and no selected node contains another
    ids = [node.node_id for node in selected]
    assert len(set(ids)) == len(ids)
    for a in ids:
        assert not any(b != a and b.startswith(a) for b in ids)


def test_select_lod_nodes_respects_max_nodes():
    root = build_octree(uniform_cube(), max_points_per_node=100, max_depth=6)
    for cap in (1, 3, 10):
        selected = select_lod_nodes(root, root.bounds.center, max_distance=1000, max_nodes=cap)
        assert 1 <= len(selected) <= cap


def test_select_lod_nodes_skips_children_beyond_max_distance():
    root = build_octree(uniform_cube(), max_points_per_node=100, max_depth=6)
    camera = np.array([25.0, 25.0, 25.0])

    selected = select_lod_nodes(root, camera, max_distance=30, max_nodes=1000)
    assert selected
    assert all(node.node_id.startswith("r0") for node in selected), \
        "Only the octant holding the camera is within reach"


def test_node_chunk_samples_internal_nodes():
    root = build_octree(uniform_cube(), rgba(20000), max_points_per_node=100, max_depth=6)
    chunk = node_chunk(root, sample_size=500)
    assert chunk.chunk_id == "octree_r"
    assert 0 < chunk.count <= 500
    assert chunk.colors is not None and len(chunk.colors) == chunk.count
    assert root.bounds.contains_point(chunk.bounds.min)
    assert root.bounds.contains_point(chunk.bounds.max)

    leaf = next(leaf for leaf in iter_leaves(root) if leaf.point_count > 0)
    assert node_chunk(leaf, sample_size=1).count == leaf.point_count


# Voxel downsampling

def test_voxel_downsample_count_and_cell_containment():
    logger.info("Testing voxel downsample...")

    points = clustered_points(4000, seed=6)
    colors = rgba(4000)
    voxel = 2.0
    out_points, out_colors = voxel_downsample(points, colors, voxel)

    assert len(out_points) <= len(points)
    assert len(out_colors) == len(out_points)

    # every averaged point lies in the cell of the points that produced it
    keys = np.floor(points.astype(np.float64) / voxel).astype(np.int64)
    cells = {tuple(k) for k in keys}
    assert len(out_points) == len(cells), "One output point per occupied cell"
    out_keys = np.floor(out_points.astype(np.float64) / voxel + 1e-6).astype(np.int64)
    out_keys_low = np.floor(out_points.astype(np.float64) / voxel - 1e-6).astype(np.int64)
    for hi, lo in zip(map(tuple, out_keys), map(tuple, out_keys_low)):
        assert hi in cells or lo in cells, "Averaged point left its voxel cell"

    logger.info("✅ Voxel downsample passed")


def test_voxel_downsample_means_in_first_occurrence_order():
    points = np.array([[5.1, 0, 0], [0.2, 0, 0], [5.3, 0, 0], [0.4, 0, 0]], dtype=np.float32)
    colors = np.array([[1, 0, 0, 1], [0, 1, 0, 1], [0, 0, 0, 1], [0, 0, 1, 1]], dtype=np.float32)
    out_points, out_colors = voxel_downsample(points, colors, 1.0)
    np.testing.assert_allclose(out_points, [[5.2, 0, 0], [0.3, 0, 0]], atol=1e-5)
    np.testing.assert_allclose(out_colors, [[0.5, 0, 0, 1], [0, 0.5, 0.5, 1]], atol=1e-6)


@pytest.mark.parametrize("voxel_size", [0, -1.0, float('nan'), float('inf')])
def test_voxel_downsample_rejects_invalid_size(voxel_size):
    with pytest.raises(ValueError):
        voxel_downsample(clustered_points(10), None, voxel_size)


def test_voxel_downsample_empty_input():
    out_points, out_colors = voxel_downsample(np.zeros((0, 3)), None, 1.0)
    assert out_points.shape == (0, 3) and out_colors is None


def test_uniform_downsample_respects_target():
    points = clustered_points(1500)
    out, _ = uniform_downsample(points, None, 1000)
    assert len(out) <= 1000, f"Expected at most 1000 points, got {len(out)}"
    np.testing.assert_array_equal(out[:2], points[[0, 2]])


def test_downsample_dataset_methods():
    points = clustered_points(20000, seed=7)
    dataset = PointCloudDataset.from_arrays(points, rgba(20000), skipped_count=4)

    voxel = downsample_dataset(dataset, 2000, method='voxel')
    assert 0 < voxel.count < dataset.count
    assert voxel.skipped_count == 4

    uniform = downsample_dataset(dataset, 2000, method='uniform')
    assert uniform.count <= 2000

    assert downsample_dataset(dataset, 50000) is dataset, "Small datasets are returned unchanged"
    with pytest.raises(ValueError):
        downsample_dataset(dataset, 10, method='random')


def test_downsample_dataset_flat_cloud_falls_back_to_uniform():
    points = clustered_points(5000)
    points[:, 2] = 0  # zero volume
    dataset = PointCloudDataset.from_arrays(points)
    reduced = downsample_dataset(dataset, 1000, method='voxel')
    assert reduced.count <= 1000


# Chunking

def test_split_into_chunks():
    points = clustered_points(2500)
    chunks = split_into_chunks(points, rgba(2500), 1000, lod=2)
    assert [c.count for c in chunks] == [1000, 1000, 500]
    assert [c.chunk_id for c in chunks] == ['chunk_2_0', 'chunk_2_1', 'chunk_2_2']
    for chunk in chunks:
        np.testing.assert_allclose(chunk.bounds.min, chunk.points.min(axis=0))
        np.testing.assert_allclose(chunk.bounds.max, chunk.points.max(axis=0))
        assert chunk.lod == 2


def test_split_into_chunks_rejects_bad_size():
    with pytest.raises(ValueError):
        split_into_chunks(clustered_points(10), None, 0, lod=0)


def test_calculate_lod_voxel_size():
    bounds = Bounds(min=[0, 0, 0], max=[200, 50, 10])
    assert calculate_lod_voxel_size(bounds, 1.0) == 0.0
    assert calculate_lod_voxel_size(bounds, 0.5) == pytest.approx(1.0)
    assert calculate_lod_voxel_size(bounds, 0.1) == pytest.approx(1.8)


def test_generate_lod_chunks_tiers():
    logger.info("Testing LOD generation...")

    rng = np.random.default_rng(8)
    points = rng.uniform(0, 100, size=(30000, 3)).astype(np.float32)
    points[:, 2] /= 100  # thin slab so coarse voxels merge many points
    dataset = PointCloudDataset.from_arrays(points)
    chunks = generate_lod_chunks(dataset, lod_levels=(1.0, 0.5, 0.1), chunk_size=10000)

    per_lod = {}
    for chunk in chunks:
        per_lod[chunk.lod] = per_lod.get(chunk.lod, 0) + chunk.count

    assert per_lod[0] == 30000, "Tier 0 holds the full data"
    assert per_lod[0] >= per_lod[1] >= per_lod[2], f"Tiers must get coarser: {per_lod}"
    assert per_lod[2] < 30000
    assert all(c.count <= 10000 for c in chunks)

    logger.info("✅ LOD generation passed")


def test_generate_lod_chunks_reports_progress():
    dataset = PointCloudDataset.from_arrays(clustered_points(1000))
    calls = []
    generate_lod_chunks(dataset, (1.0, 0.5), 500,
                        progress_callback=lambda i, n, msg: calls.append((i, n)))
    assert calls == [(0, 2), (1, 2)]
