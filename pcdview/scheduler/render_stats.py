"""
Frame statistics: per-frame counters and rolling performance history
"""

import time
from collections import deque
from dataclasses import dataclass, asdict
from typing import Dict, Optional
import logging

from ..config import RENDER

logger = logging.getLogger(__name__)


@dataclass
class FrameStats:
    rendered_points: int = 0
    total_points: int = 0
    visible_chunks: int = 0
    frame_time_ms: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


class RenderStatsTracker:
    """
    Rolling FPS and render time history

    fps is derived from wall-clock intervals between recorded frames,
    render time from the frame_time_ms each frame reports.
    """

    def __init__(self,
                 max_fps_history: int = RENDER.MAX_FPS_HISTORY,
                 max_render_time_history: int = RENDER.MAX_RENDER_TIME_HISTORY,
                 bytes_per_point: int = RENDER.BYTES_PER_POINT,
                 log_interval: float = RENDER.STATS_LOG_INTERVAL):
        self.bytes_per_point = bytes_per_point
        self.log_interval = log_interval
        self._fps_history = deque(maxlen=max_fps_history)
        self._render_times = deque(maxlen=max_render_time_history)
        self._last_frame_at: Optional[float] = None
        self._last_log_at: Optional[float] = None
        self.frame_count = 0
        self.last: FrameStats = FrameStats()

    def record(self, stats: FrameStats, now: Optional[float] = None):
        now = time.perf_counter() if now is None else now
        if self._last_frame_at is not None:
            delta = now - self._last_frame_at
            if delta > 0:
                self._fps_history.append(1.0 / delta)
        self._last_frame_at = now

        self._render_times.append(stats.frame_time_ms)
        self.frame_count += 1
        self.last = stats

        if self._last_log_at is None:
            self._last_log_at = now
        elif now - self._last_log_at >= self.log_interval:
            self._last_log_at = now
            self.log_summary()

    @property
    def fps(self) -> float:
        return self._fps_history[-1] if self._fps_history else 0.0

    @property
    def average_fps(self) -> float:
        if not self._fps_history:
            return 0.0
        return sum(self._fps_history) / len(self._fps_history)

    @property
    def average_render_time(self) -> float:
        if not self._render_times:
            return 0.0
        return sum(self._render_times) / len(self._render_times)

    @property
    def min_render_time(self) -> float:
        return min(self._render_times) if self._render_times else 0.0

    @property
    def max_render_time(self) -> float:
        return max(self._render_times) if self._render_times else 0.0

    @property
    def frame_data_bytes(self) -> int:
        return self.last.rendered_points * self.bytes_per_point

    @property
    def total_data_bytes(self) -> int:
        return self.last.total_points * self.bytes_per_point

    def summary(self) -> Dict:
        return {
            'frames': self.frame_count,
            'fps': round(self.fps, 1),
            'average_fps': round(self.average_fps, 1),
            'average_render_time_ms': round(self.average_render_time, 3),
            'min_render_time_ms': round(self.min_render_time, 3),
            'max_render_time_ms': round(self.max_render_time, 3),
            'rendered_points': self.last.rendered_points,
            'total_points': self.last.total_points,
            'visible_chunks': self.last.visible_chunks,
            'frame_data_mb': self.frame_data_bytes / 1024 / 1024,
            'total_data_mb': self.total_data_bytes / 1024 / 1024,
        }

    def log_summary(self):
        s = self.summary()
        logger.info(f"FPS {s['fps']} (avg {s['average_fps']}) | "
                    f"render {s['average_render_time_ms']:.2f} ms | "
                    f"{s['rendered_points']:,}/{s['total_points']:,} points | "
                    f"{s['visible_chunks']} chunks | {s['frame_data_mb']:.1f} MB")

    def reset(self):
        self._fps_history.clear()
        self._render_times.clear()
        self._last_frame_at = None
        self._last_log_at = None
        self.frame_count = 0
        self.last = FrameStats()
