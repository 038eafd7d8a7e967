"""
Service-level counters with an exponentially smoothed response time.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import core.config as config


class ServiceMetrics:
    def __init__(self, alpha: Optional[float] = None):
        self.alpha = config.STATS_SMOOTHING_ALPHA if alpha is None else alpha
        self.total_queries = 0
        self.average_response_time = 0.0
        self.cache_hits = 0
        self.instance_lookups = 0
        self.memory_instance_count = 0
        self.pattern_discoveries = 0
        self.last_activity: Optional[datetime] = None

    def record_request(self, response_time_ms: float) -> None:
        self.total_queries += 1
        self.average_response_time = (
            self.alpha * response_time_ms + (1 - self.alpha) * self.average_response_time
        )
        self.last_activity = datetime.utcnow()

    def record_instance_lookup(self, hit: bool) -> None:
        # registry reuse counts as a cache hit
        self.instance_lookups += 1
        if hit:
            self.cache_hits += 1

    def record_pattern_discoveries(self, count: int) -> None:
        self.pattern_discoveries += count

    def set_instance_count(self, count: int) -> None:
        self.memory_instance_count = count

    @property
    def cache_hit_rate(self) -> float:
        if self.instance_lookups == 0:
            return 0.0
        return self.cache_hits / self.instance_lookups

    def snapshot(self) -> dict:
        return {
            "total_queries": self.total_queries,
            "average_response_time": round(self.average_response_time, 3),
            "cache_hit_rate": round(self.cache_hit_rate, 4),
            "memory_instance_count": self.memory_instance_count,
            "pattern_discoveries": self.pattern_discoveries,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }
