"""
Run monitoring for batch document processing.

Tracks wall-clock duration, throughput and process memory for a single run.
Memory is sampled at progress ticks rather than on a background thread, so
the single-worker run stays free of concurrent state.
"""

import logging
import time

from dataclasses import dataclass
from typing import Any, Dict, Optional

import psutil


@dataclass
class RunMetrics:
    """Container for run metrics."""
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    records_scanned: int = 0
    peak_memory_mb: float = 0.0
    memory_samples: int = 0


class RunMonitor:
    """Throughput and resource monitor for one run."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._metrics = RunMetrics()
        self._process = None

    def start(self) -> None:
        """Start monitoring; resets any previous run."""
        self._metrics = RunMetrics(start_time=time.time())
        try:
            self._process = psutil.Process()
        except psutil.Error as e:
            self.logger.warning(f"Memory sampling unavailable: {e}")
            self._process = None
        self.sample(0)

    def sample(self, records_scanned: int) -> None:
        """Record progress and take a memory sample."""
        self._metrics.records_scanned = records_scanned
        memory_mb = self._current_memory_mb()
        self._metrics.memory_samples += 1
        if memory_mb > self._metrics.peak_memory_mb:
            self._metrics.peak_memory_mb = memory_mb

    def stop(self, records_scanned: int) -> Dict[str, Any]:
        """Stop monitoring and return the run summary."""
        self.sample(records_scanned)
        self._metrics.end_time = time.time()
        summary = self.summary()
        self.logger.info(
            f"Run monitoring stopped. Scanned {records_scanned} records in "
            f"{summary['duration_seconds']:.2f} seconds ({summary['records_per_minute']:.1f} records/min)")
        return summary

    def summary(self) -> Dict[str, Any]:
        """Current metrics snapshot."""
        end = self._metrics.end_time or time.time()
        duration = (end - self._metrics.start_time) if self._metrics.start_time else 0.0
        rate = (self._metrics.records_scanned / duration * 60) if duration > 0 else 0.0
        return {
            'duration_seconds': duration,
            'records_scanned': self._metrics.records_scanned,
            'records_per_minute': rate,
            'peak_memory_mb': round(self._metrics.peak_memory_mb, 1),
            'memory_samples': self._metrics.memory_samples,
        }

    def _current_memory_mb(self) -> float:
        """Resident memory of this process in MB (0 when unavailable)."""
        if self._process is None:
            return 0.0
        try:
            return self._process.memory_info().rss / 1024 / 1024
        except psutil.Error:
            return 0.0
