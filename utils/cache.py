from pathlib import Path
import hashlib
import pickle
import logging
from typing import Any, Dict, Hashable, Optional, Tuple


class AnalysisCache:
    """
    Memoizes request results keyed by their inputs.

    Entries live in memory; when a cache directory is given they are also
    pickled to disk so a later process can reuse them.
    """

    def __init__(self, cache_dir: Optional[Path] = None):
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._entries: Dict[Hashable, Any] = {}
        self.hits = 0
        self.misses = 0
        self.logger = logging.getLogger('cache_manager')

    @staticmethod
    def make_key(*parts: Hashable) -> Tuple:
        """Build a cache key; parts must be hashable (tuples, ModelSpec, dates, ...)"""
        return tuple(parts)

    def _cache_file(self, key: Tuple) -> Path:
        digest = hashlib.sha256(repr(key).encode('utf-8')).hexdigest()[:32]
        return self.cache_dir / f"analysis_{digest}.pkl"

    def get(self, key: Tuple) -> Optional[Any]:
        """Return the cached value or None"""
        if key in self._entries:
            self.hits += 1
            return self._entries[key]

        if self.cache_dir is not None:
            cache_file = self._cache_file(key)
            if cache_file.exists():
                with open(cache_file, 'rb') as f:
                    stored_key, value = pickle.load(f)
                if stored_key == key:
                    self._entries[key] = value
                    self.hits += 1
                    return value

        self.misses += 1
        return None

    def set(self, key: Tuple, value: Any):
        """Store a value"""
        self._entries[key] = value
        if self.cache_dir is not None:
            with open(self._cache_file(key), 'wb') as f:
                pickle.dump((key, value), f)

    def clear(self):
        """Drop in-memory entries and any files on disk"""
        self._entries.clear()
        if self.cache_dir is not None:
            for cache_file in self.cache_dir.glob("analysis_*.pkl"):
                cache_file.unlink()
        self.logger.info("Cache cleared")

    def __contains__(self, key: Tuple) -> bool:
        return key in self._entries or (
            self.cache_dir is not None and self._cache_file(key).exists()
        )

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        return {'hits': self.hits, 'misses': self.misses, 'size': len(self._entries)}
