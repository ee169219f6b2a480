#!/usr/bin/env python3
"""
pcdview Benchmark - decode, partition and scheduling performance

Run:
    python benchmark.py                    # Auto-benchmark on files in data/
    python benchmark.py --quick            # Synthetic 100k point cloud
    python benchmark.py --full             # All files in data/
    python benchmark.py input.pcd          # A specific file
"""

import argparse
import sys
import time
import json
from pathlib import Path
from datetime import datetime
from dataclasses import dataclass, asdict
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).parent))

import numpy as np
import psutil

from pcdview.core import PCDDecoder, build_octree, generate_lod_chunks
from pcdview.render import HeadlessBackend, PointCloudViewer
from pcdview.scheduler import PerspectiveCamera


@dataclass
class BenchmarkResult:
    """Result of a single run"""
    file_name: str
    n_points: int
    encoding: str
    decode_time: float
    partition_time: float
    octree_time: float
    frame_time_ms: float
    points_per_second: float
    n_chunks: int
    visible_points: int
    memory_mb: float


def get_memory_mb() -> float:
    """Resident memory of this process in MB"""
    return psutil.Process().memory_info().rss / (1024 * 1024)


def make_synthetic_pcd(n_points: int, seed: int = 42) -> bytes:
    """Binary PCD with XYZ + packed rgb, points spread on a noisy plane"""
    rng = np.random.default_rng(seed)
    xyz = np.empty((n_points, 3), dtype=np.float32)
    xyz[:, :2] = rng.uniform(0, 500, size=(n_points, 2))
    xyz[:, 2] = np.sin(xyz[:, 0] / 40) * 5 + rng.normal(0, 0.2, n_points)
    rgb = rng.integers(0, 1 << 24, size=n_points).astype(np.float32)

    records = np.empty(n_points, dtype=[('x', '<f4'), ('y', '<f4'), ('z', '<f4'), ('rgb', '<f4')])
    records['x'], records['y'], records['z'] = xyz.T
    records['rgb'] = rgb

    header = (
        "# .PCD v0.7 - Point Cloud Data file format\n"
        "VERSION 0.7\n"
        "FIELDS x y z rgb\n"
        "SIZE 4 4 4 4\n"
        "TYPE F F F F\n"
        "COUNT 1 1 1 1\n"
        f"WIDTH {n_points}\n"
        "HEIGHT 1\n"
        "VIEWPOINT 0 0 0 1 0 0 0\n"
        f"POINTS {n_points}\n"
        "DATA binary\n"
    )
    return header.encode('ascii') + records.tobytes()


def run_benchmark(name: str, data: bytes, frames: int = 60) -> BenchmarkResult:
    """
    Time decode, LOD partitioning, octree build and frame scheduling

    Args:
        name: label for the result
        data: raw PCD bytes
        frames: frames rendered with an orbiting camera

    Returns:
        BenchmarkResult
    """
    mem_before = get_memory_mb()

    start = time.perf_counter()
    dataset = PCDDecoder().decode(data)
    decode_time = time.perf_counter() - start

    start = time.perf_counter()
    chunks = generate_lod_chunks(dataset)
    partition_time = time.perf_counter() - start

    start = time.perf_counter()
    build_octree(dataset.points, dataset.colors)
    octree_time = time.perf_counter() - start

    viewer = PointCloudViewer(HeadlessBackend())
    viewer.load(chunks)
    camera = PerspectiveCamera()
    camera.fit_to_bounds(dataset.bounds)
    center = dataset.bounds.center
    radius = np.linalg.norm(camera.position - center)

    frame_times = []
    visible_points = 0
    for i in range(frames):
        angle = 2 * np.pi * i / max(frames, 1)
        camera.look_at(center, position=center + radius * np.array([np.sin(angle), 0.3, np.cos(angle)]))
        stats = viewer.render_frame(camera)
        frame_times.append(stats.frame_time_ms)
        visible_points = max(visible_points, stats.rendered_points)
    viewer.unload()

    mem_after = get_memory_mb()
    header = dataset.header

    return BenchmarkResult(
        file_name=name,
        n_points=dataset.count,
        encoding=getattr(header, 'data', 'unknown'),
        decode_time=decode_time,
        partition_time=partition_time,
        octree_time=octree_time,
        # first frame includes buffer uploads
        frame_time_ms=float(np.median(frame_times)) if frame_times else 0.0,
        points_per_second=dataset.count / decode_time if decode_time > 0 else 0.0,
        n_chunks=len(chunks),
        visible_points=visible_points,
        memory_mb=max(0, mem_after - mem_before),
    )


def find_test_files() -> List[Path]:
    """PCD files in data/, smallest first"""
    data_dir = Path(__file__).parent / "data"
    files = []
    if data_dir.exists():
        for ext in ['*.pcd', '*.PCD']:
            files.extend(data_dir.glob(ext))
    return sorted(files, key=lambda x: x.stat().st_size)


def print_result(result: BenchmarkResult, idx: int = 0):
    print(f"\n{'='*60}")
    print(f"Test #{idx+1}: {result.file_name}")
    print(f"{'='*60}")
    print(f"  Points:           {result.n_points:,} ({result.encoding})")
    print(f"  Decode:           {result.decode_time:.2f} s ({result.points_per_second:,.0f} pts/s)")
    print(f"  LOD chunks:       {result.partition_time:.2f} s ({result.n_chunks} chunks)")
    print(f"  Octree:           {result.octree_time:.2f} s")
    print(f"  Frame (median):   {result.frame_time_ms:.2f} ms")
    print(f"  Visible points:   {result.visible_points:,}")
    print(f"  Memory:           {result.memory_mb:.0f} MB")


def print_summary(results: List[BenchmarkResult]):
    if not results:
        return

    total_points = sum(r.n_points for r in results)
    total_decode = sum(r.decode_time for r in results)
    avg_speed = total_points / total_decode if total_decode > 0 else 0
    worst_frame = max(r.frame_time_ms for r in results)

    print("\n" + "="*60)
    print("BENCHMARK SUMMARY")
    print("="*60)
    print(f"  Runs:             {len(results)}")
    print(f"  Total points:     {total_points:,}")
    print(f"  Decode time:      {total_decode:.2f} s")
    print(f"  Decode speed:     {avg_speed:,.0f} pts/s")
    print(f"  Worst frame:      {worst_frame:.2f} ms")
    print("="*60)

    # 16.7 ms is one frame at 60 FPS
    if worst_frame < 4:
        rating, emoji = "EXCELLENT", "🚀"
    elif worst_frame < 16.7:
        rating, emoji = "GOOD", "✅"
    else:
        rating, emoji = "NEEDS OPTIMIZATION", "⚠️"

    print(f"\n{emoji} Scheduling rating: {rating}")


def main():
    parser = argparse.ArgumentParser(
        description="pcdview Benchmark - decode and scheduling performance"
    )

    parser.add_argument(
        "input",
        type=str,
        nargs='?',
        default=None,
        help="PCD file to benchmark (optional)"
    )

    parser.add_argument(
        "--quick", "-q",
        action="store_true",
        help="Synthetic 100k point cloud"
    )

    parser.add_argument(
        "--full", "-f",
        action="store_true",
        help="All files in data/"
    )

    parser.add_argument(
        "--synthetic",
        type=int,
        default=None,
        help="Benchmark a synthetic cloud with this many points"
    )

    parser.add_argument(
        "--frames",
        type=int,
        default=60,
        help="Frames to schedule per run (default: 60)"
    )

    parser.add_argument(
        "--json", "-j",
        type=str,
        default=None,
        help="Save results to JSON"
    )

    args = parser.parse_args()

    import logging
    logging.basicConfig(level=logging.WARNING)

    print("="*60)
    print("🔷 PCDVIEW BENCHMARK")
    print("="*60)
    print(f"Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    results: List[BenchmarkResult] = []

    try:
        synthetic: Optional[int] = args.synthetic or (100_000 if args.quick else None)

        if synthetic:
            print(f"\n🔄 Synthetic: {synthetic:,} points")
            result = run_benchmark(f"synthetic_{synthetic}", make_synthetic_pcd(synthetic), args.frames)
            results.append(result)
            print_result(result, 0)

        elif args.input:
            input_path = Path(args.input)
            if not input_path.exists():
                print(f"\n❌ File does not exist: {input_path}")
                sys.exit(1)

            print(f"\n🔄 Testing: {input_path.name}")
            result = run_benchmark(input_path.name, input_path.read_bytes(), args.frames)
            results.append(result)
            print_result(result, 0)

        else:
            test_files = find_test_files()

            if not test_files:
                print("\n⚠️ No PCD files in data/")
                print("   Put PCD files into data/ or use --quick")
                sys.exit(1)

            print(f"\nFound {len(test_files)} test files")

            if not args.full:
                test_files = test_files[:1]
                print("(use --full for all)")

            for i, file_path in enumerate(test_files):
                print(f"\n🔄 Test {i+1}/{len(test_files)}: {file_path.name}")
                try:
                    result = run_benchmark(file_path.name, file_path.read_bytes(), args.frames)
                    results.append(result)
                    print_result(result, i)
                except Exception as e:
                    print(f"   ❌ Error: {e}")

        print_summary(results)

        if args.json and results:
            json_path = Path(args.json)
            json_path.parent.mkdir(parents=True, exist_ok=True)

            output = {
                "timestamp": datetime.now().isoformat(),
                "results": [asdict(r) for r in results]
            }

            with open(json_path, 'w') as f:
                json.dump(output, f, indent=2)

            print(f"\n📊 Results saved: {json_path}")

        sys.exit(0)

    except KeyboardInterrupt:
        print("\n\n⚠️ Interrupted by user")
        if results:
            print_summary(results)
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
