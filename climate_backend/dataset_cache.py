"""
climate_backend.dataset_cache — Dataset loading with an opt-in parse cache.

DatasetLoader is the only way the metrics layer reaches the filesystem.
By default every load re-reads and re-parses the CSV file. When a
DatasetCache is attached (DATASET_CACHE=1), parsed DataSet objects are
reused across requests.

Cache key design:
    (resolved path, st_mtime_ns, st_size) → DataSet

    A file rewritten on disk produces a new key, so a stale parse is never
    served. Old keys for the same path are dropped on insert.

Design contract:
    - Bounded LRU (max_entries, default from DATASET_CACHE_SIZE).
    - Thread-safe via threading.Lock; the lock is never held during I/O.
    - Cached values are immutable DataSet instances.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any

from climate_backend.config import DashboardConfig
from climate_backend.csv_reader import DataSet, read_dataset
from climate_backend.errors import DatasetUnavailableError

logger = logging.getLogger("dashboard.cache")

CacheKey = tuple[str, int, int]


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------

def _dataset_path(dataset_dir: Path, filename: str) -> Path:
    """Map a dataset filename to its path inside ``dataset_dir``.

    Raises ValueError if the resolved path escapes the dataset directory
    (path traversal guard).
    """
    resolved = (dataset_dir / filename).resolve()
    try:
        resolved.relative_to(dataset_dir.resolve())
    except ValueError:
        raise ValueError(
            f"Path traversal detected: dataset '{filename}' resolves outside "
            f"{dataset_dir.resolve()}."
        )
    return resolved


# ---------------------------------------------------------------------------
# DatasetCache
# ---------------------------------------------------------------------------

class DatasetCache:
    """Thread-safe, bounded, LRU cache of parsed datasets.

    Usage::

        cache = DatasetCache(max_entries=4)
        dataset = cache.get(Path("dataset/historical_emissions.csv"))
    """

    def __init__(self, max_entries: int = 8) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries!r}")
        self._max = max_entries
        self._lock = threading.Lock()
        self._entries: OrderedDict[CacheKey, DataSet] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, path: Path) -> DataSet:
        """Return the parsed dataset at ``path``, parsing it on a miss.

        Two threads missing on the same key may both parse the file; the
        results are identical and the last insert wins.
        """
        stat = path.stat()
        key: CacheKey = (str(path), stat.st_mtime_ns, stat.st_size)

        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self._hits += 1
                return self._entries[key]
            self._misses += 1

        dataset = read_dataset(path)

        with self._lock:
            # Drop superseded versions of the same file
            for stale in [k for k in self._entries if k[0] == key[0] and k != key]:
                del self._entries[stale]
            self._entries[key] = dataset
            self._entries.move_to_end(key)
            while len(self._entries) > self._max:
                evicted, _ = self._entries.popitem(last=False)
                logger.info(json.dumps({
                    "event": "cache_eviction",
                    "dataset": Path(evicted[0]).name,
                    "max_entries": self._max,
                }))

        return dataset

    def invalidate(self) -> int:
        """Drop every cached dataset. Returns the number dropped."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    @property
    def entry_count(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def stats(self) -> dict[str, Any]:
        """Cache statistics for diagnostics."""
        with self._lock:
            return {
                "max_entries": self._max,
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "datasets": [Path(k[0]).name for k in self._entries],
            }


# ---------------------------------------------------------------------------
# DatasetLoader
# ---------------------------------------------------------------------------

class DatasetLoader:
    """Loads datasets from ``config.dataset_dir``, optionally through a cache."""

    def __init__(self, config: DashboardConfig, cache: DatasetCache | None = None) -> None:
        self.config = config
        self.cache = cache

    def load(self, filename: str) -> DataSet:
        """Load one dataset.

        Raises:
            DatasetUnavailableError: if the file is missing, unreadable, or
                cannot be decoded as UTF-8.
        """
        try:
            path = _dataset_path(self.config.dataset_dir, filename)
        except ValueError as exc:
            raise DatasetUnavailableError(filename, str(exc)) from exc

        if not path.is_file():
            raise DatasetUnavailableError(filename, "file not found")

        try:
            if self.cache is not None:
                return self.cache.get(path)
            return read_dataset(path)
        except (OSError, UnicodeDecodeError) as exc:
            raise DatasetUnavailableError(filename, f"{type(exc).__name__}: {exc}") from exc
