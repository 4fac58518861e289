"""
Batch Accumulator - Windowed Bulk Mutation

Collects mutation intents into a size-bounded window and flushes each full
window through the store's bulk-mutation interface. Flush accounting is
strict: only documents the store reports as actually modified count as
updated; every other intent in the window counts as failed.
"""

import logging

from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..interfaces import DocumentStoreInterface
from ..models import BatchResult, FailureRecord, MutationIntent, RunTally


class BatchAccumulator:
    """
    Size-bounded window of pending mutation intents.

    The window is cleared on every flush attempt, whatever the outcome, so an
    intent is never carried into the next batch. A failed bulk call counts
    the entire window as failed and the run continues.
    """

    def __init__(self,
                 store: DocumentStoreInterface,
                 collection: str,
                 tally: RunTally,
                 capacity: int = 200,
                 dry_run: bool = False,
                 touch_field: Optional[str] = None,
                 failures: Optional[List[FailureRecord]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the accumulator.

        Args:
            store: Store collaborator receiving bulk-mutation calls
            collection: Collection the intents target
            tally: Run tally updated on every flush
            capacity: Window size that triggers an implicit flush
            dry_run: Count intents as updated without calling the store
            touch_field: Field stamped with the flush time on every intent
            failures: Optional list receiving FailureRecords for failed batch calls
            clock: Time source for touch_field (defaults to UTC now)
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.collection = collection
        self.tally = tally
        self.capacity = capacity
        self.dry_run = dry_run
        self.touch_field = touch_field
        self.failures = failures
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._window: List[MutationIntent] = []
        self.batches_flushed = 0
        self.batches_failed = 0

    def __len__(self) -> int:
        return len(self._window)

    @property
    def pending(self) -> int:
        return len(self._window)

    def add(self, intent: MutationIntent) -> Optional[BatchResult]:
        """
        Queue an intent, flushing synchronously once the window is full.

        Returns:
            The BatchResult when the add triggered a flush, otherwise None

        Raises:
            ValueError: If the window already holds an intent for the same document
        """
        if any(queued.id == intent.id for queued in self._window):
            raise ValueError(f"Document {intent.id} already has a pending mutation")
        self._window.append(intent)
        if len(self._window) >= self.capacity:
            return self.flush()
        return None

    def flush(self) -> BatchResult:
        """
        Submit the whole window as one unordered bulk-mutation call.

        Returns:
            BatchResult with the updated/failed split for this window
        """
        if not self._window:
            return BatchResult()

        window, self._window = self._window, []
        submitted = len(window)
        self.batches_flushed += 1

        if self.dry_run:
            self.tally.updated += submitted
            self.logger.info(f"[dry run] Batch {self.batches_flushed}: {submitted} updates not written")
            return BatchResult(submitted=submitted, updated=submitted)

        if self.touch_field:
            stamp = self.clock()
            window = [intent.with_fields({self.touch_field: stamp}) for intent in window]

        try:
            result = self.store.bulk_mutate(self.collection, window)
        except Exception as e:
            self.batches_failed += 1
            self.tally.failed += submitted
            self.logger.error(f"Batch update failed: {e}")
            if self.failures is not None:
                self.failures.extend(FailureRecord(intent.id, [str(e)]) for intent in window)
            return BatchResult(submitted=submitted, failed=submitted, error=str(e))

        updated = min(max(result.modified_count, 0), submitted)
        failed = submitted - updated
        self.tally.updated += updated
        self.tally.failed += failed

        for error in result.errors:
            self.logger.warning(f"Batch {self.batches_flushed}: {error}")
        if failed:
            self.logger.warning(
                f"Batch {self.batches_flushed}: {updated} of {submitted} updates applied, {failed} counted as failed")
        else:
            self.logger.debug(f"Batch {self.batches_flushed}: {updated} updates applied")

        return BatchResult(submitted=submitted, updated=updated, failed=failed)
