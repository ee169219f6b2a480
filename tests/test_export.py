"""
Tests for LAS export and the load report
"""

import json
import logging

import laspy
import numpy as np
import pandas as pd

from pcdview.core.bounds import PointCloudDataset
from pcdview.core.chunking import generate_lod_chunks
from pcdview.export import LASWriter, LoadReporter
from pcdview.pipeline.loader import LoadResult
from pcdview.scheduler import ChunkScheduler, SchedulerOptions, ViewerContext

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def sample_dataset(n=2000, colors=True, seed=0):
    rng = np.random.default_rng(seed)
    points = rng.uniform(100, 200, size=(n, 3)).astype(np.float32)
    rgba = None
    if colors:
        rgba = rng.uniform(0, 1, size=(n, 4)).astype(np.float32)
        rgba[:, 3] = 1.0
    return PointCloudDataset.from_arrays(points, rgba)


def test_las_writer_round_trip(tmp_path):
    logger.info("Testing LAS export...")

    dataset = sample_dataset()
    stats = LASWriter(tmp_path / "out.las").write(dataset)

    assert stats['point_count'] == dataset.count
    assert stats['point_format'] == 2 and stats['has_color']

    las = laspy.read(stats['output_path'])
    assert len(las.points) == dataset.count
    np.testing.assert_allclose(las.x, dataset.points[:, 0], atol=1e-3)
    np.testing.assert_allclose(las.z, dataset.points[:, 2], atol=1e-3)
    expected_red = (dataset.colors[:, 0] * 65535).astype(np.uint16)
    np.testing.assert_array_equal(np.asarray(las.red), expected_red)

    logger.info(f"✅ LAS export passed ({stats['file_size_mb']:.3f} MB)")


def test_las_writer_without_colors_and_suffix(tmp_path):
    writer = LASWriter(tmp_path / "nested" / "cloud.pcd")
    assert writer.output_path.suffix == '.las'

    stats = writer.write(sample_dataset(300, colors=False))
    assert stats['point_format'] == 0 and not stats['has_color']
    assert laspy.read(stats['output_path']).header.point_count == 300


def make_result_and_frame():
    dataset = sample_dataset(6000, seed=1)
    chunks = generate_lod_chunks(dataset, (1.0, 0.5), 2500)
    result = LoadResult(chunks, dataset, content_hash="abc123", elapsed=0.5)

    context = ViewerContext()
    context.add_chunks(chunks)
    frame = ChunkScheduler(SchedulerOptions(point_budget=10**6)).update_visibility(context)
    return result, frame


def test_report_tables():
    logger.info("Testing load report...")

    result, frame = make_result_and_frame()
    reporter = LoadReporter()
    report = reporter.generate_report(result, frame=frame, processing_stats={'decode_s': 0.1})

    assert report['summary']['points'] == 6000
    assert report['summary']['lod_tiers'] == 2
    assert report['frame']['visible_chunks'] == len(result.chunks)

    per_lod = report['per_lod_stats']
    assert isinstance(per_lod, pd.DataFrame)
    assert list(per_lod['lod']) == [0, 1]
    assert per_lod['points'].iloc[0] == 6000
    assert per_lod['percentage'].iloc[0] == 100.0

    chunks = report['chunks']
    assert len(chunks) == len(result.chunks)
    assert chunks['visible'].all()

    logger.info("✅ Load report passed")


def test_report_exports(tmp_path):
    result, frame = make_result_and_frame()
    reporter = LoadReporter()
    report = reporter.generate_report(result, frame=frame)

    json_path = tmp_path / "report.json"
    reporter.export_to_json(report, json_path)
    with open(json_path, encoding='utf-8') as f:
        loaded = json.load(f)
    assert loaded['summary']['content_hash'] == "abc123"
    assert len(loaded['chunks']) == len(result.chunks)

    csv_path = tmp_path / "chunks.csv"
    reporter.export_to_csv(report, csv_path)
    assert len(pd.read_csv(csv_path)) == len(result.chunks)

    markdown = reporter.export_to_markdown(report)
    assert "# Point Cloud Load Report" in markdown
    assert "## Frame" in markdown


def test_report_empty_chunks():
    dataset = sample_dataset(10)
    report = LoadReporter().generate_report(LoadResult([], dataset))
    assert report['per_lod_stats'].empty
    assert report['chunks'].empty
