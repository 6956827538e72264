"""
Logging and metrics for the EmarkNews feed backend.

Logs are JSON lines on stderr so they can be shipped as-is; metrics are kept
in memory and exposed through /api/metrics.
"""
import sys
import json
import logging
import threading
from datetime import datetime, timezone
from collections import defaultdict
from typing import Dict, List

# Extra attributes copied from log records into the JSON payload
EXTRA_FIELDS = ('section', 'source', 'duration_ms', 'article_count', 'error_type', 'key')


class StructuredFormatter(logging.Formatter):
    """JSON-structured logging formatter for observability."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def configure_logging(level: str = 'INFO') -> logging.Logger:
    """Send the 'newsfeed' logger tree to stderr with the structured format."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger('newsfeed')
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False
    return root


class Metrics:
    """Thread-safe metrics collector for observability."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._histograms: Dict[str, List[float]] = defaultdict(list)
        self._start_time = datetime.now(timezone.utc)

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def record_duration(self, name: str, duration_ms: float) -> None:
        with self._lock:
            self._histograms[name].append(duration_ms)
            # Keep only last 1000 samples
            if len(self._histograms[name]) > 1000:
                self._histograms[name] = self._histograms[name][-1000:]

    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._start_time).total_seconds()

    def get_stats(self) -> Dict:
        with self._lock:
            stats = {
                'uptime_seconds': self.uptime_seconds(),
                'counters': dict(self._counters),
                'histograms': {}
            }
            for name, values in self._histograms.items():
                if values:
                    sorted_vals = sorted(values)
                    stats['histograms'][name] = {
                        'count': len(values),
                        'min': min(values),
                        'max': max(values),
                        'avg': sum(values) / len(values),
                        'p50': sorted_vals[len(sorted_vals) // 2],
                        'p95': sorted_vals[int(len(sorted_vals) * 0.95)] if len(sorted_vals) > 20 else sorted_vals[-1],
                        'p99': sorted_vals[int(len(sorted_vals) * 0.99)] if len(sorted_vals) > 100 else sorted_vals[-1],
                    }
            return stats
