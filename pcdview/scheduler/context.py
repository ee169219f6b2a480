"""
Viewer working set

Holds the loaded chunks and their per-frame visibility flags. Created once
when the viewer starts and reset when a new dataset is loaded.
"""

from typing import Dict, Iterable, List, Optional
import logging

from ..core.chunking import Chunk

logger = logging.getLogger(__name__)


class ViewerContext:
    def __init__(self):
        self.chunks: Dict[str, Chunk] = {}
        self.visibility: Dict[str, bool] = {}
        self._by_lod: Dict[int, List[str]] = {}

    def add_chunk(self, chunk: Chunk):
        if chunk.chunk_id in self.chunks:
            self.remove_chunk(chunk.chunk_id)
        self.chunks[chunk.chunk_id] = chunk
        self.visibility[chunk.chunk_id] = False
        self._by_lod.setdefault(chunk.lod, []).append(chunk.chunk_id)

    def add_chunks(self, chunks: Iterable[Chunk]):
        for chunk in chunks:
            self.add_chunk(chunk)
        logger.debug(f"Context: {len(self.chunks)} chunks, {self.total_points:,} points")

    def remove_chunk(self, chunk_id: str) -> Optional[Chunk]:
        chunk = self.chunks.pop(chunk_id, None)
        if chunk is None:
            return None
        self.visibility.pop(chunk_id, None)
        ids = self._by_lod.get(chunk.lod, [])
        if chunk_id in ids:
            ids.remove(chunk_id)
        if not ids:
            self._by_lod.pop(chunk.lod, None)
        return chunk

    def reset(self):
        self.chunks.clear()
        self.visibility.clear()
        self._by_lod.clear()

    def lod_levels(self) -> List[int]:
        """LOD levels present, finest (0) first"""
        return sorted(self._by_lod)

    def chunks_at_lod(self, lod: int) -> List[Chunk]:
        return [self.chunks[cid] for cid in self._by_lod.get(lod, [])]

    def chunks_by_lod(self) -> Dict[int, List[Chunk]]:
        return {lod: self.chunks_at_lod(lod) for lod in self.lod_levels()}

    def is_visible(self, chunk_id: str) -> bool:
        return self.visibility.get(chunk_id, False)

    def visible_chunks(self) -> List[Chunk]:
        return [self.chunks[cid] for cid, shown in self.visibility.items() if shown]

    @property
    def total_points(self) -> int:
        return sum(chunk.count for chunk in self.chunks.values())

    def __len__(self):
        return len(self.chunks)
