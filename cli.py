#!/usr/bin/env python3
"""
pcdview - Command Line Interface

Decodes a PCD file, builds LOD chunks (or an octree), schedules one frame
from a camera fitted to the cloud and prints a summary.

Usage:
    python cli.py scan.pcd
    python cli.py scan.pcd --las scan.las --report report.json
    python cli.py scan.pcd --octree --budget 500000

Examples:
    # Basic load and frame summary
    python cli.py data/scan.pcd

    # Export to LAS with a JSON report
    python cli.py data/scan.pcd --las output/scan.las --report output/report.json

    # Custom LOD tiers without cache
    python cli.py data/scan.pcd --lod-levels 1 0.25 0.05 --no-cache
"""

import argparse
import sys
import time
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent))

from pcdview.config import APP, CACHE, LOD, SCHEDULER
from pcdview.core.pcd_decoder import DecoderConfig
from pcdview.errors import DecodeError
from pcdview.export import LASWriter, LoadReporter
from pcdview.pipeline import LoadOptions, PointCloudLoader
from pcdview.render import HeadlessBackend, PointCloudViewer
from pcdview.scheduler import PerspectiveCamera, SchedulerOptions


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description=f"{APP.TITLE} (v{APP.VERSION})",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py scan.pcd
  python cli.py scan.pcd --las scan.las --report report.json --octree
        """
    )

    # Required arguments
    parser.add_argument(
        "input",
        type=str,
        help="Path to input PCD file"
    )

    # Outputs
    parser.add_argument(
        "--las",
        type=str,
        default=None,
        help="Write decoded points to this LAS file (optional)"
    )
    parser.add_argument(
        "--report", "-r",
        type=str,
        default=None,
        help="Path to JSON report (optional)"
    )
    parser.add_argument(
        "--chunks-csv",
        type=str,
        default=None,
        help="Path to CSV chunk table (optional)"
    )

    # Partitioning
    parser.add_argument(
        "--octree",
        action="store_true",
        help="Partition with an octree instead of fixed-size LOD chunks"
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=LOD.CHUNK_SIZE,
        help=f"Points per chunk (default {LOD.CHUNK_SIZE:,})"
    )
    parser.add_argument(
        "--lod-levels",
        type=float,
        nargs="+",
        default=list(LOD.LOD_LEVELS),
        help="Target ratio per LOD tier, finest first (default 1 0.5 0.1)"
    )
    parser.add_argument(
        "--max-points",
        type=int,
        default=LOD.MAX_POINTS,
        help=f"Downsample datasets above this many points (default {LOD.MAX_POINTS:,})"
    )
    parser.add_argument(
        "--bitcast-rgb",
        action="store_true",
        help="Decode packed rgb fields by reinterpreting the float bits"
    )

    # Scheduling
    parser.add_argument(
        "--budget",
        type=int,
        default=SCHEDULER.POINT_BUDGET,
        help=f"Soft point budget per frame (default {SCHEDULER.POINT_BUDGET:,})"
    )
    parser.add_argument(
        "--max-frame-points",
        type=int,
        default=SCHEDULER.MAX_POINT_COUNT,
        help=f"Hard point cap per frame (default {SCHEDULER.MAX_POINT_COUNT:,})"
    )

    # Cache
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable the on-disk cache"
    )
    parser.add_argument(
        "--cache-dir",
        type=str,
        default=str(CACHE.CACHE_DIR),
        help=f"Cache directory (default {CACHE.CACHE_DIR})"
    )

    # Verbosity
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (errors only)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )

    return parser.parse_args(argv)


def print_progress(pct: float, msg: str, quiet: bool = False):
    """Print progress to terminal"""
    if quiet:
        return

    bar_width = 30
    filled = int(bar_width * pct / 100)
    bar = "█" * filled + "░" * (bar_width - filled)

    print(f"\r[{bar}] {pct:5.1f}% | {msg:<40}", end="", flush=True)

    if pct >= 100:
        print()


def main(argv=None):
    """Main CLI entry point"""
    args = parse_args(argv)

    # Setup logging
    import logging
    if args.quiet:
        logging.basicConfig(level=logging.ERROR)
    elif args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(levelname)s - %(message)s'
        )

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"❌ Error: input file does not exist: {input_path}", file=sys.stderr)
        sys.exit(1)

    if input_path.suffix.lower() != '.pcd':
        print(f"❌ Error: unsupported file format: {input_path.suffix}", file=sys.stderr)
        sys.exit(1)

    if not args.quiet:
        print("=" * 60)
        print(f"🔷 {APP.TITLE.upper()}")
        print("=" * 60)
        print(f"📥 Input:  {input_path}")
        if args.las:
            print(f"📤 LAS:    {args.las}")
        if args.report:
            print(f"📊 Report: {args.report}")
        print("-" * 60)

    start_time = time.time()

    try:
        options = LoadOptions(
            max_points=args.max_points,
            chunk_size=args.chunk_size,
            lod_levels=tuple(args.lod_levels),
            enable_cache=not args.no_cache,
            cache_dir=args.cache_dir,
            on_progress=lambda pct, msg: print_progress(pct, msg, args.quiet),
            decoder=DecoderConfig(packed_rgb_mode='bitcast' if args.bitcast_rgb else 'numeric'),
            partition='octree' if args.octree else 'lod',
        )

        with PointCloudLoader(options) as loader:
            result = loader.load_file(input_path)

        dataset = result.dataset
        scheduler_options = SchedulerOptions(
            max_point_count=args.max_frame_points,
            point_budget=args.budget,
        )

        viewer = PointCloudViewer(HeadlessBackend(), scheduler_options)
        if result.octree is not None:
            viewer.load_octree(result.octree)
        else:
            viewer.load(result.chunks)
        camera = PerspectiveCamera()
        camera.fit_to_bounds(dataset.bounds)
        frame_stats = viewer.render_frame(camera)
        frame = viewer.last_frame

        if args.las:
            LASWriter(args.las).write(dataset)
            if not args.quiet:
                print(f"   ✅ LAS: {args.las}")

        if args.report or args.chunks_csv:
            reporter = LoadReporter()
            report = reporter.generate_report(
                result, frame=frame, frame_stats=frame_stats,
                processing_stats={
                    'input_file': str(input_path),
                    'partition': options.partition,
                    'point_budget': args.budget,
                    'max_frame_points': args.max_frame_points,
                },
            )
            if args.report:
                reporter.export_to_json(report, args.report)
                if not args.quiet:
                    print(f"   ✅ JSON report: {args.report}")
            if args.chunks_csv:
                reporter.export_to_csv(report, args.chunks_csv)
                if not args.quiet:
                    print(f"   ✅ Chunk table: {args.chunks_csv}")

        viewer.unload()
        elapsed = time.time() - start_time

        if not args.quiet:
            bounds = dataset.bounds
            print("\n" + "=" * 60)
            print("✅ LOAD COMPLETE")
            print("=" * 60)
            print(f"⏱️  Total time: {elapsed:.1f}s{' (from cache)' if result.from_cache else ''}")
            print(f"📦 Points: {dataset.count:,} (skipped {dataset.skipped_count:,} invalid)")
            print(f"🎨 Colors: {'yes' if dataset.has_colors else 'no'}")
            print(f"📐 Bounds: min {tuple(round(v, 3) for v in bounds.min)}, "
                  f"max {tuple(round(v, 3) for v in bounds.max)}")
            print(f"🧩 Chunks: {len(result.chunks)} in {result.lod_count} LOD tier(s)")
            print(f"👁️  Frame: {frame.visible_chunks} visible chunks, "
                  f"{frame.rendered_points:,} points"
                  f"{' (budget reached)' if frame.budget_reached else ''}")
            print("=" * 60)

        sys.exit(0)

    except Exception as e:
        reason = e.reason if isinstance(e, DecodeError) else str(e)
        print(f"\n❌ Error: {reason}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
