"""
Run Coordinator - One Complete Rule-Set Run

Owns the store lifecycle for a run: connect, confirm, prepare, stream,
report, optional follow-up pass, close. The confirmation gate is the only
interactive step and is injected as a callable so runs can be scripted.
"""

import logging
import sys
import threading

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO, Union

from ..exceptions import StreamFailure
from ..interfaces import ConfirmCallable, DocumentStoreInterface
from ..models import ProcessingConfig, RuleMode, RunResult, RunStatus
from ..monitoring.run_monitor import RunMonitor
from ..reporting.report_sink import ReportSink
from ..rules import get_rule_set
from ..validation.rule_set import RuleContext, RuleSet
from .lookup_cache import LookupCache
from .stream_processor import StreamProcessor


class RunCoordinator:
    """
    Coordinates a single run of a rule set against a document store.

    A declined confirmation ends the run before any document is read.
    A normalization rule set with a follow-up (payments-migrate recomputing
    invoice caches) chains into it without asking again, unless the first
    pass was cancelled or follow-ups are disabled.
    """

    def __init__(self,
                 store: DocumentStoreInterface,
                 config: Optional[ProcessingConfig] = None,
                 confirm: Optional[ConfirmCallable] = None,
                 stop_event: Optional[threading.Event] = None,
                 stream: Optional[TextIO] = None):
        """
        Initialize the coordinator.

        Args:
            store: Document store for this run
            config: Processing configuration (defaults apply when omitted)
            confirm: Confirmation callable; None skips the gate
            stop_event: Cooperative cancellation signal shared with the processor
            stream: Console output stream (defaults to stdout)
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.config = config or ProcessingConfig()
        self.confirm = confirm
        self.stop_event = stop_event
        self.stream = stream

    def _print(self, message: str) -> None:
        print(message, file=self.stream or sys.stdout)

    def run(self, rule_set: Union[RuleSet, str]) -> RunResult:
        """
        Run a rule set (and its follow-up) end to end.

        Raises:
            ConfigurationError: For an unknown rule set name
            DatabaseConnectionError: If the store cannot be opened
            StreamFailure: If the document stream fails mid-run
        """
        rule_set = self._resolve(rule_set)

        self.store.connect()
        try:
            self.logger.info(f"Connected to database: {self.store.name}")
            self._print(f"Connected to database: {self.store.name}")

            if self.confirm is not None and not self.confirm(self._prompt(rule_set)):
                self._print("Migration aborted." if rule_set.mode is RuleMode.NORMALIZE
                            else "Validation aborted.")
                self.logger.info(f"Run of '{rule_set.name}' declined")
                return RunResult(rule_set=rule_set.name, status=RunStatus.DECLINED)

            result = self._execute(rule_set, self.config.report_path)

            if (result.status is RunStatus.COMPLETED and rule_set.follow_up
                    and self.config.run_follow_up):
                follow_up = self._resolve(rule_set.follow_up)
                self.logger.info(f"Running follow-up rule set '{follow_up.name}'")
                result.follow_up = self._execute(follow_up, self._follow_up_report_path(follow_up))
            return result
        finally:
            self.store.close()

    def _execute(self, rule_set: RuleSet, report_path: Optional[str]) -> RunResult:
        context = RuleContext(self.store, LookupCache(), now=datetime.now(timezone.utc))
        rule_set.prepare(context)

        sink = ReportSink(entity=rule_set.entity, mode=rule_set.mode, stream=self.stream)
        processor = StreamProcessor(
            store=self.store,
            rule_set=rule_set,
            context=context,
            report_sink=sink,
            config=self.config,
            stop_event=self.stop_event,
            monitor=RunMonitor(),
        )

        dry_run = self.config.dry_run and rule_set.mode is RuleMode.NORMALIZE
        try:
            tally = processor.run()
        except StreamFailure as e:
            sink.render_summary(e.tally, f"{rule_set.name}: run failed", dry_run=dry_run,
                                metrics=processor.metrics)
            self._write_outputs(sink, report_path, rule_set, e.tally, processor.metrics)
            raise

        if processor.cancelled:
            status = RunStatus.CANCELLED
            title = f"{rule_set.name}: Run cancelled"
        else:
            status = RunStatus.COMPLETED
            title = (f"{rule_set.name}: Migration complete." if rule_set.mode is RuleMode.NORMALIZE
                     else f"{rule_set.name}: Validation complete.")

        sink.render_summary(tally, title, dry_run=dry_run, metrics=processor.metrics)
        self._write_outputs(sink, report_path, rule_set, tally, processor.metrics)

        return RunResult(
            rule_set=rule_set.name,
            status=status,
            tally=tally,
            failures=list(sink.failures),
            metrics=processor.metrics,
        )

    @staticmethod
    def _write_outputs(sink: ReportSink, report_path: Optional[str], rule_set: RuleSet,
                       tally, metrics) -> None:
        if not report_path:
            return
        sink.write_report(report_path, rule_set.name, tally, metrics=metrics)
        if metrics:
            sink.write_metrics(report_path, rule_set.name, tally, metrics)

    def _follow_up_report_path(self, follow_up: RuleSet) -> Optional[str]:
        if not self.config.report_path:
            return None
        path = Path(self.config.report_path)
        return str(path.with_name(f"{path.stem}_{follow_up.name}{path.suffix}"))

    @staticmethod
    def _prompt(rule_set: RuleSet) -> str:
        action = "migration" if rule_set.mode is RuleMode.NORMALIZE else "validation"
        return f"Continue {action} of '{rule_set.collection}' with {rule_set.name}? (y/n) "

    @staticmethod
    def _resolve(rule_set: Union[RuleSet, str]) -> RuleSet:
        if isinstance(rule_set, RuleSet):
            return rule_set
        return get_rule_set(rule_set)
