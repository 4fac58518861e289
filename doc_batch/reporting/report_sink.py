"""
Report Sink - Run Outcome Rendering

Emits per-document violations as they happen, renders the final tally in a
fixed order and writes the optional JSON failure report (overwrite, never
append).
"""

import json
import logging
import sys

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from ..models import FailureRecord, RuleMode, RunTally
from ..utils import DocumentUtils


class ReportSink:
    """
    Collects failures and renders the outcome of one run.

    Normalization runs label the second and third counters Updated/Skipped;
    validation runs label them Updated/Passed, since a document with no
    errors lands in the skipped bucket.
    """

    def __init__(self, entity: str = "Record", mode: RuleMode = RuleMode.NORMALIZE,
                 stream: Optional[TextIO] = None, collect_failures: bool = True):
        """
        Initialize the report sink.

        Args:
            entity: Label used when tagging messages with a document id
            mode: Mode of the rule set being reported on
            stream: Output stream for the console summary (defaults to stdout)
            collect_failures: Keep FailureRecords for the JSON report
        """
        self.logger = logging.getLogger(__name__)
        self.entity = entity
        self.mode = mode
        self.stream = stream
        self.collect_failures = collect_failures
        self.failures: List[FailureRecord] = []
        self.violation_count = 0

    def record_violation(self, record_id: Any, message: str) -> None:
        """Emit one violation tagged with its document id."""
        self.violation_count += 1
        self.logger.error(f"{self.entity} {record_id}: {message}")

    def record_failure(self, failure: FailureRecord) -> None:
        """Keep a failure for the audit artifact."""
        if self.collect_failures:
            self.failures.append(failure)

    def summary_lines(self, tally: RunTally, dry_run: bool = False) -> List[str]:
        """Four tally lines in fixed order: scanned, updated, skipped/passed, failed."""
        updated_label = "Updated (dry run)" if dry_run else "Updated"
        skipped_label = "Passed" if self.mode is RuleMode.VALIDATE else "Skipped"
        return [
            f"Scanned: {tally.scanned}",
            f"{updated_label}: {tally.updated}",
            f"{skipped_label}: {tally.skipped}",
            f"Failed: {tally.failed}",
        ]

    def render_summary(self, tally: RunTally, title: str, dry_run: bool = False,
                       metrics: Optional[Dict[str, Any]] = None) -> None:
        """Print the run summary banner."""
        out = self.stream or sys.stdout
        print("=" * 82, file=out)
        print(f" {title}", file=out)
        print("=" * 82, file=out)
        for line in self.summary_lines(tally, dry_run=dry_run):
            print(f"  {line}", file=out)
        if metrics:
            duration = metrics.get("duration_seconds")
            rate = metrics.get("records_per_minute")
            if duration is not None:
                print(f"  Duration: {duration:.1f}s", file=out)
            if rate:
                print(f"  Rate: {rate:.1f} records/minute", file=out)
        if not tally.is_balanced():
            print(f"  Unresolved: {tally.pending}", file=out)
        out.flush()

        self.logger.info(" | ".join(self.summary_lines(tally, dry_run=dry_run)))

    def write_report(self, path, rule_set: str, tally: RunTally,
                     failures: Optional[List[FailureRecord]] = None,
                     metrics: Optional[Dict[str, Any]] = None) -> Path:
        """
        Write the failure audit artifact as JSON, replacing any previous file.

        Returns:
            Path of the written report
        """
        report_path = Path(path)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        failures = self.failures if failures is None else failures

        report = {
            "rule_set": rule_set,
            "mode": self.mode.value,
            "generated_at": datetime.now().isoformat(),
            "tally": tally.to_dict(),
            "failures": [failure.to_dict() for failure in failures],
        }
        if metrics:
            report["metrics"] = metrics

        with open(report_path, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, default=DocumentUtils.json_default)
        self.logger.info(f"Failure report written to: {report_path} ({len(failures)} failures)")
        return report_path

    def write_metrics(self, report_path, rule_set: str, tally: RunTally,
                      metrics: Dict[str, Any]) -> Optional[Path]:
        """
        Save run metrics to ``<report stem>_metrics.json`` beside the report.

        A failed write is logged, not raised.
        """
        report_path = Path(report_path)
        metrics_file = report_path.with_name(f"{report_path.stem}_metrics.json")
        try:
            metrics_file.parent.mkdir(parents=True, exist_ok=True)
            consolidated_metrics = {
                'run_timestamp': datetime.now().isoformat(),
                'rule_set': rule_set,
                'mode': self.mode.value,
                'tally': tally.to_dict(),
                **metrics,
            }
            with open(metrics_file, 'w', encoding='utf-8') as f:
                json.dump(consolidated_metrics, f, indent=2, default=DocumentUtils.json_default)
        except OSError as e:
            self.logger.error(f"Failed to save metrics: {e}")
            return None
        self.logger.info(f"Metrics saved to: {metrics_file}")
        return metrics_file
