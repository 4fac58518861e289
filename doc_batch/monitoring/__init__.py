"""
Monitoring module for batch document runs.

Provides throughput and memory metrics for a single run.
"""

from .run_monitor import RunMetrics, RunMonitor

__all__ = [
    'RunMetrics',
    'RunMonitor'
]
