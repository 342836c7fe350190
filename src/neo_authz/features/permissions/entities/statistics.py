"""Process-local hit/miss statistics for the permission cache."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict


@dataclass(frozen=True)
class CacheStatistics:
    """Snapshot of cache statistics."""

    hit_count: int
    miss_count: int
    key_counts: Dict[str, int] = field(default_factory=dict)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_requests(self) -> int:
        return self.hit_count + self.miss_count

    @property
    def hit_ratio(self) -> float:
        return self.hit_count / self.total_requests if self.total_requests > 0 else 0.0

    @property
    def total_keys(self) -> int:
        return sum(self.key_counts.values())

    def to_dict(self) -> Dict[str, object]:
        return {
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "hit_ratio": self.hit_ratio,
            "key_counts": dict(self.key_counts),
            "total_keys": self.total_keys,
            "last_updated": self.last_updated.isoformat(),
        }


class CacheStatisticsCollector:
    """Hit/miss counters owned by a single cache service instance.

    Counts are best-effort and never drive correctness decisions.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def record_hit(self) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._hits += 1

    def record_miss(self) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._misses += 1

    def reset(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0

    @property
    def hit_count(self) -> int:
        return self._hits

    @property
    def miss_count(self) -> int:
        return self._misses

    def snapshot(self, key_counts: Dict[str, int]) -> CacheStatistics:
        with self._lock:
            return CacheStatistics(
                hit_count=self._hits,
                miss_count=self._misses,
                key_counts=key_counts,
            )
