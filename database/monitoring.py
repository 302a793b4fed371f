"""
Query timing for repository calls.

Usage:
    from database.monitoring import async_timed_query, get_db_metrics

    @async_timed_query("officers.search")
    async def search(self, term): ...
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class MonitoringConfig:
    """Configuration for query monitoring."""
    slow_query_threshold_ms: float = 500.0
    enable_logging: bool = True


_config = MonitoringConfig()


def configure_monitoring(
    slow_query_threshold_ms: float = 500.0,
    enable_logging: bool = True
) -> None:
    """Set the slow-query threshold (ms) and whether slow calls are logged."""
    global _config
    _config = MonitoringConfig(
        slow_query_threshold_ms=slow_query_threshold_ms,
        enable_logging=enable_logging
    )


@dataclass
class QueryStats:
    """Statistics for a single operation."""
    operation: str
    count: int = 0
    total_time_ms: float = 0.0
    max_time_ms: float = 0.0
    errors: int = 0
    slow_queries: int = 0
    last_executed: Optional[datetime] = None

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.count if self.count > 0 else 0.0

    def record(self, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        self.count += 1
        self.total_time_ms += duration_ms
        self.max_time_ms = max(self.max_time_ms, duration_ms)
        self.last_executed = datetime.now()
        if error:
            self.errors += 1
        if slow:
            self.slow_queries += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'avg_time_ms': round(self.avg_time_ms, 2),
            'max_time_ms': round(self.max_time_ms, 2),
            'errors': self.errors,
            'slow_queries': self.slow_queries,
            'last_executed': self.last_executed.isoformat() if self.last_executed else None
        }


class QueryStatsCollector:
    """Thread-safe collector for query statistics."""

    def __init__(self):
        self._stats: Dict[str, QueryStats] = {}
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        with self._lock:
            if operation not in self._stats:
                self._stats[operation] = QueryStats(operation=operation)
            self._stats[operation].record(duration_ms, error, slow)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {op: stats.to_dict() for op, stats in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


_stats_collector = QueryStatsCollector()


def get_db_metrics() -> Dict[str, Any]:
    """Per-operation call counts and timings."""
    return _stats_collector.get_stats()


def reset_metrics() -> None:
    """Reset all collected metrics."""
    _stats_collector.reset()


def async_timed_query(operation: str):
    """
    Decorator to time and monitor async repository methods.

    Args:
        operation: Name of the operation
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            error_occurred = False

            try:
                return await func(*args, **kwargs)
            except Exception:
                error_occurred = True
                raise
            finally:
                duration_ms = (time.perf_counter() - start_time) * 1000
                is_slow = duration_ms > _config.slow_query_threshold_ms

                _stats_collector.record(
                    operation=operation,
                    duration_ms=duration_ms,
                    error=error_occurred,
                    slow=is_slow
                )

                if is_slow and _config.enable_logging:
                    logger.warning(
                        "SLOW QUERY: %s took %.2fms (threshold: %.0fms)",
                        operation, duration_ms, _config.slow_query_threshold_ms
                    )
        return wrapper
    return decorator
