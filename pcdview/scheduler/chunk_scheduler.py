"""
Per-frame chunk visibility scheduling

Each frame:
1. rebuild the frustum from the camera
2. walk LOD tiers from coarsest to finest
3. per chunk: hide if outside the frustum (free), hide if it would exceed
   the hard per-frame cap, otherwise show and charge its points
4. once the running total reaches the point budget, hide everything left
   in the current tier and all finer tiers and stop
5. write flags into the context

Steady-state conditions (empty working set, degenerate camera) produce an
empty frame, never an exception.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

import numpy as np

from ..config import SCHEDULER
from .context import ViewerContext
from .frustum import Frustum

logger = logging.getLogger(__name__)


@dataclass
class SchedulerOptions:
    max_point_count: int = SCHEDULER.MAX_POINT_COUNT
    point_budget: int = SCHEDULER.POINT_BUDGET
    enable_frustum_culling: bool = SCHEDULER.ENABLE_FRUSTUM_CULLING
    enable_lod: bool = SCHEDULER.ENABLE_LOD

    def __post_init__(self):
        if self.max_point_count < 0:
            raise ValueError(f"max_point_count must be >= 0, got {self.max_point_count}")
        if self.point_budget < 0:
            raise ValueError(f"point_budget must be >= 0, got {self.point_budget}")


@dataclass
class FrameResult:
    visible_ids: List[str] = field(default_factory=list)
    hidden_ids: List[str] = field(default_factory=list)
    rendered_points: int = 0
    budget_reached: bool = False

    @property
    def visible_chunks(self) -> int:
        return len(self.visible_ids)


class ChunkScheduler:
    """Decides which chunks are drawn in a frame"""

    def __init__(self, options: Optional[SchedulerOptions] = None):
        self.options = options or SchedulerOptions()

    def _tier_order(self, context: ViewerContext) -> List[int]:
        levels = context.lod_levels()
        if not levels:
            return []
        if not self.options.enable_lod:
            return [levels[0]]
        return list(reversed(levels))

    def update_visibility(self, context: ViewerContext,
                          view_projection: Optional[np.ndarray] = None) -> FrameResult:
        """
        Recompute visibility flags for every chunk in the context

        Args:
            context: working set, flags are written in place
            view_projection: 4x4 camera matrix; None disables culling

        Returns:
            FrameResult with visible/hidden ids and the rendered point total
        """
        result = FrameResult()
        if len(context) == 0:
            return result

        opts = self.options
        frustum = None
        if opts.enable_frustum_culling and view_projection is not None:
            frustum = Frustum.from_matrix(view_projection)

        visible = set()
        total = 0
        budget_reached = False

        for lod in self._tier_order(context):
            for chunk in context.chunks_at_lod(lod):
                if budget_reached:
                    break
                if frustum is not None and not frustum.intersects_box(chunk.bounds):
                    continue
                if total + chunk.count > opts.max_point_count:
                    continue
                visible.add(chunk.chunk_id)
                total += chunk.count
                if total >= opts.point_budget:
                    budget_reached = True
            if budget_reached:
                break

        for chunk_id in context.chunks:
            shown = chunk_id in visible
            context.visibility[chunk_id] = shown
            if shown:
                result.visible_ids.append(chunk_id)
            else:
                result.hidden_ids.append(chunk_id)

        result.rendered_points = total
        result.budget_reached = budget_reached
        logger.debug(f"Frame: {result.visible_chunks} visible chunks, {total:,} points"
                     f"{' (budget reached)' if budget_reached else ''}")
        return result
