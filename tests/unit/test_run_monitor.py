"""Unit tests for RunMonitor."""

from unittest.mock import patch

import psutil

from doc_batch.monitoring.run_monitor import RunMonitor


class TestRunMonitor:

    def test_summary_after_run(self):
        monitor = RunMonitor()
        monitor.start()
        monitor.sample(50)

        summary = monitor.stop(100)

        assert summary['records_scanned'] == 100
        assert summary['duration_seconds'] >= 0
        assert summary['memory_samples'] == 3
        assert summary['peak_memory_mb'] > 0

    def test_memory_sampling_unavailable(self):
        with patch('doc_batch.monitoring.run_monitor.psutil.Process', side_effect=psutil.Error("denied")):
            monitor = RunMonitor()
            monitor.start()
        summary = monitor.stop(5)
        assert summary['peak_memory_mb'] == 0.0
        assert summary['records_scanned'] == 5

    def test_summary_before_start(self):
        summary = RunMonitor().summary()
        assert summary['duration_seconds'] == 0.0
        assert summary['records_per_minute'] == 0.0
