"""
Integration tests for the complete loading and viewing pipeline

Tests the full workflow:
1. Decode a PCD file (ascii, binary, binary_compressed)
2. Build LOD chunks
3. Cache the tiers
4. Schedule a frame under budget and cap
5. Hand buffers to the renderer
6. Export LAS and a load report
"""

import numpy as np
import pytest
from pathlib import Path
import tempfile
import logging

from pcd_fixtures import write_pcd, xyz_columns

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def test_ascii_three_points():
    """Minimal ASCII file decodes with exact bounds"""
    logger.info("Testing ASCII decode...")

    from pcdview.core.pcd_decoder import decode_pcd

    raw = (b"VERSION 0.7\nFIELDS x y z\nSIZE 4 4 4\nTYPE F F F\nCOUNT 1 1 1\n"
           b"WIDTH 3\nHEIGHT 1\nPOINTS 3\nDATA ascii\n"
           b"0 0 0\n1 1 1\n2 2 2\n")
    dataset = decode_pcd(raw)

    assert dataset.count == 3, f"Expected 3 points, got {dataset.count}"
    np.testing.assert_allclose(dataset.bounds.min, [0, 0, 0])
    np.testing.assert_allclose(dataset.bounds.max, [2, 2, 2])
    np.testing.assert_allclose(dataset.bounds.center, [1, 1, 1])
    assert dataset.colors is None, "File without color fields must have no colors"

    logger.info("✅ ASCII decode test passed")


def test_compressed_half_size_fails():
    """A stream that yields half the declared size is a SizeMismatch"""
    logger.info("Testing compressed size mismatch...")

    from pcdview.core.pcd_decoder import decode_pcd
    from pcdview.errors import SizeMismatch

    points = np.random.default_rng(0).uniform(0, 10, size=(100, 3)).astype(np.float32)
    raw = write_pcd(xyz_columns(points), data='binary_compressed')

    marker = b"DATA binary_compressed\n"
    base = raw.index(marker) + len(marker)
    compressed_size, uncompressed_size = np.frombuffer(raw[base:base + 8], dtype='<u4')
    patched = (raw[:base]
               + np.array([compressed_size, uncompressed_size * 2], dtype='<u4').tobytes()
               + raw[base + 8:])

    with pytest.raises(SizeMismatch):
        decode_pcd(patched)

    logger.info("✅ Compressed size mismatch test passed")


@pytest.mark.parametrize("encoding", ["ascii", "binary", "binary_compressed"])
def test_encodings_agree(encoding):
    """All three encodings of the same cloud decode to the same points"""
    from pcdview.core.pcd_decoder import decode_pcd

    points = np.random.default_rng(1).uniform(-50, 50, size=(200, 3)).astype(np.float32)
    dataset = decode_pcd(write_pcd(xyz_columns(points), data=encoding))
    np.testing.assert_allclose(dataset.points, points, rtol=1e-6)


def test_load_and_schedule():
    """Decode, tier, cache and schedule a frame end to end"""
    logger.info("Testing load and schedule...")

    from pcdview.pipeline import LoadOptions, PointCloudLoader
    from pcdview.render import HeadlessBackend, PointCloudViewer
    from pcdview.scheduler import PerspectiveCamera, SchedulerOptions

    rng = np.random.default_rng(2)
    points = rng.uniform(0, 100, size=(20000, 3)).astype(np.float32)
    raw = write_pcd(xyz_columns(points), data='binary_compressed')

    with tempfile.TemporaryDirectory() as tmpdir:
        options = LoadOptions(chunk_size=4000, lod_levels=(1.0, 0.5, 0.1), cache_dir=tmpdir)
        with PointCloudLoader(options) as loader:
            result = loader.load(raw)
            cached = loader.load(raw)

    assert result.dataset.count == 20000, "Decode lost points"
    assert result.lod_count == 3, "Expected 3 LOD tiers"
    assert cached.from_cache, "Second load should come from cache"

    backend = HeadlessBackend()
    viewer = PointCloudViewer(backend, SchedulerOptions(point_budget=15000, max_point_count=30000))
    viewer.load(result.chunks)
    camera = PerspectiveCamera()
    camera.fit_to_bounds(result.dataset.bounds)
    stats = viewer.render_frame(camera)

    assert 0 < stats.rendered_points <= 30000, "Frame must respect the cap"
    assert viewer.last_frame.budget_reached, "Budget should stop finer tiers"
    assert backend.points_drawn == stats.rendered_points

    logger.info(f"Frame: {stats.visible_chunks} chunks, {stats.rendered_points:,} points")
    logger.info("✅ Load and schedule test passed")


def test_export_las_and_report():
    """LAS export and JSON report of a loaded cloud"""
    logger.info("Testing LAS export and report...")

    import laspy
    from pcdview.export import LASWriter, LoadReporter
    from pcdview.pipeline import LoadOptions, PointCloudLoader

    rng = np.random.default_rng(3)
    points = rng.uniform(0, 10, size=(1000, 3)).astype(np.float32)
    raw = write_pcd(xyz_columns(points), data='binary')

    with tempfile.TemporaryDirectory() as tmpdir:
        with PointCloudLoader(LoadOptions(enable_cache=False, chunk_size=500)) as loader:
            result = loader.load(raw)

        stats = LASWriter(f"{tmpdir}/cloud.las").write(result.dataset)
        assert Path(stats['output_path']).exists(), "Export failed"
        assert len(laspy.read(stats['output_path']).points) == 1000

        reporter = LoadReporter()
        report = reporter.generate_report(result)
        reporter.export_to_json(report, f"{tmpdir}/report.json")
        assert Path(f"{tmpdir}/report.json").exists(), "Report export failed"

    logger.info("✅ LAS export and report test passed")


def test_cli_smoke():
    """CLI runs the whole flow and exits cleanly"""
    logger.info("Testing CLI...")

    import cli

    points = np.random.default_rng(4).uniform(0, 10, size=(500, 3)).astype(np.float32)

    with tempfile.TemporaryDirectory() as tmpdir:
        input_path = Path(tmpdir) / "scan.pcd"
        input_path.write_bytes(write_pcd(xyz_columns(points)))
        argv = [str(input_path), "--no-cache", "--chunk-size", "200",
                "--las", f"{tmpdir}/scan.las", "--report", f"{tmpdir}/report.json"]

        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)
        assert exc_info.value.code == 0, f"CLI exited with {exc_info.value.code}"
        assert Path(f"{tmpdir}/scan.las").exists()
        assert Path(f"{tmpdir}/report.json").exists()

        bad_path = Path(tmpdir) / "bad.pcd"
        bad_path.write_bytes(b"not a point cloud")
        with pytest.raises(SystemExit) as exc_info:
            cli.main([str(bad_path), "--no-cache", "-q"])
        assert exc_info.value.code == 1, "Decode failure must exit with 1"

    logger.info("✅ CLI test passed")


def run_all_tests():
    """Run all integration tests"""
    logger.info("=" * 60)
    logger.info("Running pcdview Integration Tests")
    logger.info("=" * 60)

    tests = [
        ("ASCII Decode", test_ascii_three_points),
        ("Compressed Size Mismatch", test_compressed_half_size_fails),
        ("Load and Schedule", test_load_and_schedule),
        ("LAS Export and Report", test_export_las_and_report),
        ("CLI", test_cli_smoke),
    ]

    results = []
    for test_name, test_func in tests:
        logger.info(f"\n{'─' * 60}")
        logger.info(f"Running: {test_name}")
        logger.info(f"{'─' * 60}")

        try:
            test_func()
            results.append((test_name, "PASSED", None))
        except Exception as e:
            logger.error(f"❌ Test failed: {e}", exc_info=True)
            results.append((test_name, "FAILED", str(e)))

    # Print summary
    logger.info(f"\n{'=' * 60}")
    logger.info("Test Summary")
    logger.info(f"{'=' * 60}")

    passed = sum(1 for _, status, _ in results if status == "PASSED")
    failed = sum(1 for _, status, _ in results if status == "FAILED")

    for test_name, status, error in results:
        symbol = "✅" if status == "PASSED" else "❌"
        logger.info(f"{symbol} {test_name}: {status}")
        if error:
            logger.info(f"   Error: {error}")

    logger.info(f"\n{'=' * 60}")
    logger.info(f"Total: {len(results)} tests | Passed: {passed} | Failed: {failed}")
    logger.info(f"{'=' * 60}")

    if failed == 0:
        logger.info("\n🎉 All tests passed!")
        return True
    else:
        logger.error(f"\n💥 {failed} test(s) failed")
        return False


if __name__ == "__main__":
    import sys
    success = run_all_tests()
    sys.exit(0 if success else 1)
