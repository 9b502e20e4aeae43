"""Process-lifetime, read-through cache of rainfall series keyed by location.

No eviction. Reads and writes are lock-guarded, but identical misses running
at the same time are not merged: each one loads and the last write wins.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from dashboard.backend.framing import YearCount
from dashboard.backend.stream_decoder import RainfallSeries

log = logging.getLogger('pipeline.rainfall.cache')


@dataclass(frozen=True)
class CachedRainfall:
    points: List[YearCount]
    error: Optional[str] = None


def location_key(lat: float, lon: float) -> str:
    return f"{lat},{lon}"


class RainfallCache:
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, CachedRainfall] = {}

    def get(self, lat: float, lon: float) -> Optional[CachedRainfall]:
        with self._lock:
            return self._entries.get(location_key(lat, lon))

    def put(self, lat: float, lon: float, entry: CachedRainfall) -> None:
        with self._lock:
            self._entries[location_key(lat, lon)] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_or_load(self, lat: float, lon: float, loader: Callable[[float, float], RainfallSeries]) -> CachedRainfall:
        key = location_key(lat, lon)
        hit = self.get(lat, lon)
        if hit is not None:
            log.info('[CACHE] memory hit key=%s', key)
            return hit
        series = loader(lat, lon)
        if series.cancelled:
            log.info('[CACHE] skip store for cancelled load key=%s', key)
            return CachedRainfall(points=series.points())
        if series.error is not None:
            # failed loads are remembered with no data
            entry = CachedRainfall(points=[], error=series.error)
        elif not len(series):
            entry = CachedRainfall(points=[], error='No rainfall data was found for this location.')
        else:
            entry = CachedRainfall(points=series.points())
        self.put(lat, lon, entry)
        log.info('[CACHE] stored key=%s years=%d error=%s', key, len(entry.points), entry.error)
        return entry
