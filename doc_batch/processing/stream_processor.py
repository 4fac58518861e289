"""
Stream Processor - Cursor-Driven Rule Evaluation

Drives one run: pulls documents lazily from the store, evaluates each through
the rule set, routes the outcome to the tally, the report sink or the batch
accumulator, and drains the last partial batch once the cursor is exhausted.

STATE MACHINE:
    IDLE -> STREAMING -> DRAINING -> DONE

    The tally balances (scanned == updated + skipped + failed) only in DONE.
    While STREAMING, queued updates are pending until their batch flushes.

ERROR CONTAINMENT:
    - Invalid documents and evaluation errors are counted as failed per record
    - Bulk-mutation failures are contained by the BatchAccumulator
    - Cursor errors and lost connections abort the stream; the pending window
      is still drained, then StreamFailure carries the partial tally
"""

import logging
import threading

from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import DatabaseConnectionError, RuleContractError, StreamFailure
from ..interfaces import DocumentStoreInterface
from ..models import FailureRecord, Invalid, NoAction, ProcessingConfig, RunTally, Update, Violation
from ..monitoring.run_monitor import RunMonitor
from ..reporting.report_sink import ReportSink
from ..validation.rule_set import RuleContext, RuleSet
from .batch_accumulator import BatchAccumulator


class ProcessorState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DRAINING = "draining"
    DONE = "done"


class StreamProcessor:
    """
    Single-worker processor for one rule set over one collection.

    Documents are handled strictly in cursor order, one at a time, with at
    most one batch in flight. A cooperative stop signal is checked between
    documents; on cancellation the pending batch is flushed, not discarded.
    """

    def __init__(self,
                 store: DocumentStoreInterface,
                 rule_set: RuleSet,
                 context: RuleContext,
                 report_sink: ReportSink,
                 config: Optional[ProcessingConfig] = None,
                 stop_event: Optional[threading.Event] = None,
                 monitor: Optional[RunMonitor] = None):
        """
        Initialize the stream processor.

        Args:
            store: Store collaborator providing stream() and bulk_mutate()
            rule_set: Rules applied to every document
            context: Rule context (lookup cache, prepared data)
            report_sink: Receives violations and failure records
            config: Batch/chunk sizes, dry-run flag and progress interval
            stop_event: Optional cooperative cancellation signal
            monitor: Optional run monitor (a fresh one is created when omitted)
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.rule_set = rule_set
        self.context = context
        self.report_sink = report_sink
        self.config = config or ProcessingConfig()
        self.stop_event = stop_event
        self.monitor = monitor or RunMonitor()

        self.tally = RunTally()
        self.state = ProcessorState.IDLE
        self.cancelled = False
        self.metrics: Dict[str, Any] = {}

        self.accumulator = BatchAccumulator(
            store=store,
            collection=rule_set.collection,
            tally=self.tally,
            capacity=self.config.batch_size,
            dry_run=self.config.dry_run,
            touch_field=rule_set.touch_field,
            failures=report_sink.failures if report_sink.collect_failures else None,
        )

    def run(self) -> RunTally:
        """
        Stream the collection to completion (or cancellation).

        Returns:
            The final, balanced RunTally

        Raises:
            StreamFailure: If the cursor or the store connection fails mid-run
        """
        if self.state is not ProcessorState.IDLE:
            raise RuntimeError("StreamProcessor instances are single-use")

        self.monitor.start()
        self.state = ProcessorState.STREAMING
        self.logger.info(
            f"Streaming '{self.rule_set.collection}' with rule set '{self.rule_set.name}' "
            f"(batch_size={self.config.batch_size}, chunk_size={self.config.chunk_size}, "
            f"dry_run={self.config.dry_run})")

        stream_error: Optional[BaseException] = None
        records = None
        try:
            records = iter(self.store.stream(self.rule_set.collection, self.rule_set.filter,
                                             self.config.chunk_size))
            while True:
                if self._stop_requested():
                    self.cancelled = True
                    self.logger.warning(f"Stop requested after {self.tally.scanned} records; draining")
                    break
                try:
                    record = next(records)
                except StopIteration:
                    break
                self._process_record(record)
                self._report_progress()
        except Exception as e:
            stream_error = e
            self.logger.error(f"Document stream failed after {self.tally.scanned} records: {e}")
        finally:
            close = getattr(records, 'close', None)
            if close is not None:
                try:
                    close()
                except Exception as e:
                    self.logger.debug(f"Ignoring error while closing cursor: {e}")

        self.state = ProcessorState.DRAINING
        self.accumulator.flush()
        self.state = ProcessorState.DONE
        self.metrics = self.monitor.stop(self.tally.scanned)
        self.metrics['batches_flushed'] = self.accumulator.batches_flushed
        self.metrics['batches_failed'] = self.accumulator.batches_failed
        self.metrics['lookup_cache'] = self.context.lookup_cache.stats()

        if stream_error is not None:
            raise StreamFailure(f"Document stream failed: {stream_error}", tally=self.tally) from stream_error
        return self.tally

    def _process_record(self, record: Dict[str, Any]) -> None:
        """Evaluate one document and route its outcome."""
        record_id = record.get('_id')
        self.tally.scanned += 1

        try:
            outcome = self.rule_set.apply(record, self.context)
        except DatabaseConnectionError as e:
            # the scanned record must land in a bucket before the stream aborts
            self._fail(record_id, [Violation('', f"connection lost during evaluation: {e}")])
            raise
        except RuleContractError as e:
            self._fail(record_id, [Violation('', str(e))])
            return
        except Exception as e:
            self.logger.debug(f"Evaluation of {record_id} raised", exc_info=True)
            self._fail(record_id, [Violation('', f"evaluation error: {e}")])
            return

        if isinstance(outcome, NoAction):
            self.tally.skipped += 1
        elif isinstance(outcome, Invalid):
            self._fail(record_id, outcome.violations)
        elif isinstance(outcome, Update):
            try:
                self.accumulator.add(outcome.intent)
            except ValueError as e:
                self._fail(record_id, [Violation('', str(e))])

    def _fail(self, record_id: Any, violations: List[Violation]) -> None:
        self.tally.failed += 1
        for violation in violations:
            self.report_sink.record_violation(record_id, violation.message)
        self.report_sink.record_failure(FailureRecord(record_id, [v.message for v in violations]))

    def _stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def _report_progress(self) -> None:
        interval = self.config.progress_interval
        if not interval or self.tally.scanned % interval:
            return
        self.monitor.sample(self.tally.scanned)
        self.logger.info(
            f"Progress: scanned={self.tally.scanned} updated={self.tally.updated} "
            f"skipped={self.tally.skipped} failed={self.tally.failed} pending={self.tally.pending}")
