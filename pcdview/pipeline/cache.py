"""
On-disk cache of decoded data keyed by content hash

Entries are numpy .npz files named <prefix>_<sha256>_<options>_lod<i>.npz,
where <options> fingerprints the settings that shape the cached tiers. When
the total size exceeds the cap, the least recently written entries are
evicted first.
"""

import hashlib
import json
import os
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

import numpy as np

from ..config import CACHE
from ..core.chunking import Chunk, split_into_chunks

logger = logging.getLogger(__name__)

SUFFIX = ".npz"


def content_hash(data: bytes) -> str:
    """Hex sha256 of the raw file bytes"""
    return hashlib.sha256(data).hexdigest()


def lod_key(digest: str, lod: int, prefix: str = CACHE.KEY_PREFIX) -> str:
    return f"{prefix}_{digest}_lod{lod}"


def options_fingerprint(settings: Dict[str, Any], length: int = 16) -> str:
    """Short hex digest of the settings a cached entry was produced with"""
    payload = json.dumps(settings, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:length]


class DatasetCache:
    """
    Usage:
        cache = DatasetCache(Path(".pcdview_cache"))
        digest = content_hash(data)
        chunks = cache.get_chunks(digest)
        if chunks is None:
            ...
            cache.put_chunks(digest, chunks, chunk_size)
    """

    def __init__(self, cache_dir: Union[str, Path] = CACHE.CACHE_DIR,
                 max_size: int = CACHE.MAX_CACHE_SIZE):
        self.cache_dir = Path(cache_dir)
        self.max_size = max_size
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}{SUFFIX}"

    def has(self, key: str) -> bool:
        return self._path(key).exists()

    def get(self, key: str) -> Optional[Dict[str, np.ndarray]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with np.load(path, allow_pickle=False) as npz:
                return {name: npz[name] for name in npz.files}
        except (OSError, ValueError) as e:
            logger.warning(f"Corrupt cache entry {key}, removing: {e}")
            self.delete(key)
            return None

    def put(self, key: str, arrays: Dict[str, np.ndarray]):
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, 'wb') as f:
            np.savez(f, **arrays)
        os.replace(tmp, path)
        logger.debug(f"Cached {key} ({path.stat().st_size / 1024 / 1024:.1f} MB)")
        self._evict()

    def delete(self, key: str):
        path = self._path(key)
        if path.exists():
            path.unlink()

    def clear(self):
        for path in self._entries():
            path.unlink()
        logger.info(f"Cache cleared: {self.cache_dir}")

    def keys(self) -> List[str]:
        return [p.name[:-len(SUFFIX)] for p in self._entries()]

    def size_bytes(self) -> int:
        return sum(p.stat().st_size for p in self._entries())

    def _entries(self) -> List[Path]:
        return [p for p in self.cache_dir.glob(f"*{SUFFIX}") if p.is_file()]

    def _evict(self):
        entries = sorted(self._entries(), key=lambda p: p.stat().st_mtime)
        total = sum(p.stat().st_size for p in entries)
        while total > self.max_size and entries:
            oldest = entries.pop(0)
            total -= oldest.stat().st_size
            oldest.unlink()
            logger.info(f"Cache evicted {oldest.name}")

    # LOD tiers

    def put_chunks(self, cache_id: str, chunks: List[Chunk], chunk_size: int,
                   header_text: Optional[str] = None, skipped_count: int = 0):
        """
        Store each LOD tier as one flat entry

        Tier 0 also carries the source header text and the skipped point
        count so a cache hit can rebuild the full dataset.
        """
        tiers = defaultdict(list)
        for chunk in chunks:
            tiers[chunk.lod].append(chunk)

        for lod, tier in sorted(tiers.items()):
            arrays = {
                'points': np.concatenate([c.points for c in tier]),
                'chunk_size': np.array(chunk_size),
            }
            if all(c.colors is not None for c in tier):
                arrays['colors'] = np.concatenate([c.colors for c in tier])
            if lod == 0:
                arrays['skipped_count'] = np.array(skipped_count, dtype=np.int64)
                if header_text is not None:
                    arrays['header'] = np.array(header_text)
            self.put(lod_key(cache_id, lod), arrays)

    def get_chunks(self, cache_id: str) -> Optional[List[Chunk]]:
        """Rebuild cached tiers; None when tier 0 is missing"""
        chunks = []
        lod = 0
        while True:
            entry = self.get(lod_key(cache_id, lod))
            if entry is None:
                break
            chunks.extend(split_into_chunks(entry['points'], entry.get('colors'),
                                            int(entry['chunk_size']), lod))
            lod += 1

        if not chunks:
            return None
        logger.info(f"Cache hit {cache_id[:12]}: {lod} LOD tiers, {len(chunks)} chunks")
        return chunks

    def get_metadata(self, cache_id: str) -> Tuple[Optional[str], int]:
        """(header text, skipped count) stored with tier 0; (None, 0) when absent"""
        entry = self.get(lod_key(cache_id, 0))
        if entry is None:
            return None, 0
        header_text = str(entry['header']) if 'header' in entry else None
        skipped = int(entry['skipped_count']) if 'skipped_count' in entry else 0
        return header_text, skipped
