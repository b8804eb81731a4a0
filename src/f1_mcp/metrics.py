"""Metrics collection module for the F1 MCP server.

Tracks tool call counts and latencies, cache performance, and upstream API
usage. One collector is created per server process and shared by the
fetch gateway and the tool registry.
"""
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class ToolMetrics:
    """Metrics for a single tool."""

    call_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_latency_ms: float = 0
    min_latency_ms: float = float("inf")
    max_latency_ms: float = 0
    latencies: List[float] = field(default_factory=list)

    @property
    def avg_latency_ms(self) -> float:
        """Calculate average latency in milliseconds."""
        return self.total_latency_ms / self.call_count if self.call_count > 0 else 0

    def percentile(self, fraction: float) -> float:
        """Latency at the given fraction (0-1) of the recorded history."""
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        idx = int(len(sorted_latencies) * fraction)
        return sorted_latencies[min(idx, len(sorted_latencies) - 1)]

    @property
    def p95_latency_ms(self) -> float:
        return self.percentile(0.95)

    @property
    def p99_latency_ms(self) -> float:
        return self.percentile(0.99)


class MetricsCollector:
    """Collects and reports metrics for the MCP server."""

    def __init__(self, enabled: bool = True, max_latencies: int = 1000):
        """
        Initialize the metrics collector.

        Args:
            enabled: When False, all record_* calls are no-ops
            max_latencies: Latency history kept per tool
        """
        self._metrics: Dict[str, ToolMetrics] = defaultdict(ToolMetrics)
        self._cache_hits = 0
        self._cache_misses = 0
        self._api_calls = 0
        self._api_errors = 0
        self._start_time = datetime.now()
        self._enabled = enabled
        self._max_latencies = max_latencies

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record_call(self, tool_name: str, latency_ms: float, success: bool):
        """Record a tool call."""
        if not self._enabled:
            return

        metrics = self._metrics[tool_name]
        metrics.call_count += 1
        if success:
            metrics.success_count += 1
        else:
            metrics.error_count += 1
        metrics.total_latency_ms += latency_ms
        metrics.min_latency_ms = min(metrics.min_latency_ms, latency_ms)
        metrics.max_latency_ms = max(metrics.max_latency_ms, latency_ms)

        if len(metrics.latencies) >= self._max_latencies:
            metrics.latencies.pop(0)
        metrics.latencies.append(latency_ms)

    def record_cache_hit(self):
        if self._enabled:
            self._cache_hits += 1

    def record_cache_miss(self):
        if self._enabled:
            self._cache_misses += 1

    def record_api_call(self, success: bool = True):
        """Record an upstream HTTP request."""
        if self._enabled:
            self._api_calls += 1
            if not success:
                self._api_errors += 1

    def get_summary(self) -> Dict:
        """Get metrics summary."""
        uptime = (datetime.now() - self._start_time).total_seconds()
        cache_total = self._cache_hits + self._cache_misses

        return {
            "uptime_seconds": round(uptime, 2),
            "upstream": {
                "calls": self._api_calls,
                "errors": self._api_errors,
            },
            "cache": {
                "hits": self._cache_hits,
                "misses": self._cache_misses,
                "hit_rate": round(self._cache_hits / cache_total, 4) if cache_total > 0 else 0,
            },
            "tools": {
                name: {
                    "calls": m.call_count,
                    "successes": m.success_count,
                    "errors": m.error_count,
                    "success_rate": round(m.success_count / m.call_count, 4) if m.call_count > 0 else 0,
                    "latency_ms": {
                        "avg": round(m.avg_latency_ms, 2),
                        "min": round(m.min_latency_ms, 2)
                        if m.min_latency_ms != float("inf")
                        else 0,
                        "max": round(m.max_latency_ms, 2),
                        "p95": round(m.p95_latency_ms, 2),
                        "p99": round(m.p99_latency_ms, 2),
                    },
                }
                for name, m in self._metrics.items()
            },
        }

    def reset(self):
        """Reset all metrics."""
        self._metrics.clear()
        self._cache_hits = 0
        self._cache_misses = 0
        self._api_calls = 0
        self._api_errors = 0
        self._start_time = datetime.now()


class TimedOperation:
    """Context manager for timing tool calls."""

    def __init__(self, collector: MetricsCollector, tool_name: str):
        self.collector = collector
        self.tool_name = tool_name
        self.start_time: Optional[float] = None
        self.success = True

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        latency_ms = (time.perf_counter() - self.start_time) * 1000
        self.success = exc_type is None
        self.collector.record_call(self.tool_name, latency_ms, self.success)
        return False  # Don't suppress exceptions
