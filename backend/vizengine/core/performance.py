"""
Performance monitoring for engine operations and requests.
"""
import time
import inspect
import logging
import threading
from collections import defaultdict, deque
from functools import wraps
from typing import Any, Deque, Dict, Optional

logger = logging.getLogger(__name__)

# Keep only the most recent samples per metric
MAX_SAMPLES = 1000

_metrics_lock = threading.Lock()
_metrics: Dict[str, Deque[Dict[str, Any]]] = defaultdict(lambda: deque(maxlen=MAX_SAMPLES))


def _percentile(ordered, fraction: float) -> float:
    index = min(int(len(ordered) * fraction), len(ordered) - 1)
    return ordered[index]


class PerformanceMonitor:
    """Thread-safe store of timing samples."""

    @staticmethod
    def record_metric(name: str, value: float, metadata: Optional[Dict[str, Any]] = None):
        """
        Record a performance metric.

        Args:
            name: Metric name (e.g., 'classify_column', 'request_duration')
            value: Metric value, usually a duration in seconds
            metadata: Optional metadata (correlation_id, status, ...)
        """
        with _metrics_lock:
            _metrics[name].append({
                'value': value,
                'timestamp': time.time(),
                'metadata': metadata or {}
            })

    @staticmethod
    def _stats(samples) -> Optional[Dict[str, float]]:
        if not samples:
            return None
        values = sorted(s['value'] for s in samples)
        errors = sum(1 for s in samples if s['metadata'].get('status') == 'error')
        return {
            'count': len(values),
            'errors': errors,
            'min': values[0],
            'max': values[-1],
            'mean': sum(values) / len(values),
            'p50': _percentile(values, 0.5),
            'p95': _percentile(values, 0.95),
            'p99': _percentile(values, 0.99),
        }

    @staticmethod
    def get_stats(metric_name: str) -> Optional[Dict[str, float]]:
        """Statistics for one metric, or None if it has no samples."""
        with _metrics_lock:
            samples = list(_metrics.get(metric_name, ()))
        return PerformanceMonitor._stats(samples)

    @staticmethod
    def get_all_metrics() -> Dict[str, Dict[str, float]]:
        with _metrics_lock:
            snapshot = {name: list(samples) for name, samples in _metrics.items()}
        return {name: PerformanceMonitor._stats(samples) for name, samples in snapshot.items()}

    @staticmethod
    def clear_metrics():
        """Clear all metrics (useful for testing)."""
        with _metrics_lock:
            _metrics.clear()


def _finish(metric_name: str, start_time: float, error: Optional[Exception] = None):
    duration = time.perf_counter() - start_time
    if error is None:
        PerformanceMonitor.record_metric(metric_name, duration, {'status': 'success'})
        logger.debug(
            f"{metric_name} completed in {duration:.3f}s",
            extra={'metric': metric_name, 'duration': duration}
        )
    else:
        PerformanceMonitor.record_metric(
            metric_name, duration, {'status': 'error', 'error': type(error).__name__}
        )
        logger.warning(
            f"{metric_name} failed after {duration:.3f}s: {error}",
            extra={'metric': metric_name, 'duration': duration}
        )


def track_performance(metric_name: str):
    """
    Decorator to time a function and record the result under metric_name.

    Usage:
        @track_performance("suggest_chart")
        def suggest_chart(...):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _finish(metric_name, start_time, e)
                raise
            _finish(metric_name, start_time)
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _finish(metric_name, start_time, e)
                raise
            _finish(metric_name, start_time)
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
