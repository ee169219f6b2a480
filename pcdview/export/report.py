"""
Load and frame report

Summarizes a load (decode stats, LOD tiers, chunk table) and optionally
one scheduled frame. Per-tier and per-chunk tables are pandas DataFrames;
exports go to JSON, CSV and Markdown.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

import numpy as np
import pandas as pd

from ..config import APP, RENDER
from ..core.chunking import Chunk
from ..pipeline.loader import LoadResult
from ..scheduler.chunk_scheduler import FrameResult
from ..scheduler.render_stats import FrameStats

logger = logging.getLogger(__name__)


class LoadReporter:
    """
    Usage:
        reporter = LoadReporter()
        report = reporter.generate_report(result, frame=frame_result)
        reporter.export_to_json(report, "report.json")
    """

    def generate_report(self,
                        result: LoadResult,
                        frame: Optional[FrameResult] = None,
                        frame_stats: Optional[FrameStats] = None,
                        processing_stats: Optional[Dict] = None) -> Dict:
        logger.info(f"Generating report for {len(result.chunks)} chunks...")

        report = {
            'metadata': self._generate_metadata(),
            'summary': self._generate_summary(result),
            'per_lod_stats': self.per_lod_stats(result.chunks),
            'chunks': self.chunk_table(result.chunks, frame),
        }

        if frame is not None:
            report['frame'] = {
                'visible_chunks': frame.visible_chunks,
                'hidden_chunks': len(frame.hidden_ids),
                'rendered_points': frame.rendered_points,
                'budget_reached': frame.budget_reached,
                'frame_data_mb': frame.rendered_points * RENDER.BYTES_PER_POINT / 1024 / 1024,
            }
        if frame_stats is not None:
            report['frame_stats'] = frame_stats.to_dict()
        if processing_stats is not None:
            report['processing_stats'] = processing_stats

        return report

    def _generate_metadata(self) -> Dict:
        return {
            'generated_at': datetime.now().isoformat(),
            'report_version': '1.0',
            'tool': APP.TITLE,
            'tool_version': APP.VERSION,
        }

    def _generate_summary(self, result: LoadResult) -> Dict:
        dataset = result.dataset
        header = dataset.header
        return {
            'points': int(dataset.count),
            'skipped_points': int(dataset.skipped_count),
            'has_colors': dataset.has_colors,
            'bounds': dataset.bounds.to_dict(),
            'encoding': getattr(header, 'data', None),
            'fields': list(getattr(header, 'fields', []) or []),
            'lod_tiers': result.lod_count,
            'chunks': len(result.chunks),
            'chunk_points': int(result.total_points),
            'from_cache': result.from_cache,
            'content_hash': result.content_hash,
            'load_time_s': round(result.elapsed, 3),
        }

    def per_lod_stats(self, chunks: List[Chunk]) -> pd.DataFrame:
        df = self.chunk_table(chunks)
        if df.empty:
            return pd.DataFrame(columns=['lod', 'chunks', 'points', 'percentage'])
        stats = df.groupby('lod').agg(chunks=('chunk_id', 'count'), points=('points', 'sum')).reset_index()
        stats['percentage'] = stats['points'] / stats['points'].iloc[0] * 100
        return stats

    def chunk_table(self, chunks: List[Chunk], frame: Optional[FrameResult] = None) -> pd.DataFrame:
        visible = set(frame.visible_ids) if frame is not None else set()
        rows = []
        for chunk in chunks:
            row = {
                'chunk_id': chunk.chunk_id,
                'lod': chunk.lod,
                'points': chunk.count,
                'min_x': float(chunk.bounds.min[0]),
                'min_y': float(chunk.bounds.min[1]),
                'min_z': float(chunk.bounds.min[2]),
                'max_x': float(chunk.bounds.max[0]),
                'max_y': float(chunk.bounds.max[1]),
                'max_z': float(chunk.bounds.max[2]),
            }
            if frame is not None:
                row['visible'] = chunk.chunk_id in visible
            rows.append(row)
        return pd.DataFrame(rows, columns=None if rows else ['chunk_id', 'lod', 'points'])

    def export_to_json(self, report: Dict, output_path: Union[str, Path]):
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        serializable = {
            key: value.to_dict(orient='records') if isinstance(value, pd.DataFrame) else value
            for key, value in report.items()
        }
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(serializable, f, indent=2, ensure_ascii=False, default=_to_builtin)
        logger.info(f"Exported report to {path}")

    def export_to_csv(self, report: Dict, output_path: Union[str, Path]):
        """Export the chunk table to CSV"""
        report['chunks'].to_csv(output_path, index=False)
        logger.info(f"Exported chunk table to {output_path}")

    def export_to_markdown(self, report: Dict) -> str:
        summary = report['summary']
        md = ["# Point Cloud Load Report"]
        md.append(f"\nGenerated: {report['metadata']['generated_at']}")
        md.append("\n## Summary")
        md.append(f"- **Points**: {summary['points']:,} (skipped {summary['skipped_points']:,})")
        md.append(f"- **Encoding**: {summary['encoding']}")
        md.append(f"- **LOD tiers**: {summary['lod_tiers']}, **chunks**: {summary['chunks']}")
        md.append(f"- **From cache**: {summary['from_cache']}")

        md.append("\n## LOD tiers")
        md.append("")
        md.append(report['per_lod_stats'].to_string(index=False))

        if 'frame' in report:
            frame = report['frame']
            md.append("\n## Frame")
            md.append(f"- **Visible chunks**: {frame['visible_chunks']}")
            md.append(f"- **Rendered points**: {frame['rendered_points']:,}")
            md.append(f"- **Budget reached**: {frame['budget_reached']}")

        return "\n".join(md)


def _to_builtin(value):
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
