"""
Rule set contract.

A rule set maps one document to an outcome: NoAction, Update or Invalid.
It never performs I/O itself; cross-document references go through
RuleContext.resolve, which is backed by the run's LookupCache.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..exceptions import RecordValidationFailure, RuleContractError
from ..interfaces import DocumentStoreInterface
from ..models import Invalid, MutationIntent, NoAction, Presence, RuleMode, Update, Violation
from ..processing.lookup_cache import ABSENT, LookupCache
from ..utils import DocumentUtils
from .primitives import identifier_key


Outcome = Union[NoAction, Update, Invalid]


class RuleContext:
    """
    Read-only services available to a rule set during one run.

    Attributes:
        store: Document store, used only through resolve() and prepare()
        lookup_cache: Run-scoped cache of auxiliary documents
        now: Run start time, fixed so evaluation stays deterministic
        data: Values computed once by RuleSet.prepare
    """

    def __init__(self, store: DocumentStoreInterface, lookup_cache: Optional[LookupCache] = None,
                 now: Optional[datetime] = None):
        self.store = store
        self.lookup_cache = lookup_cache if lookup_cache is not None else LookupCache()
        self.now = now or datetime.now(timezone.utc)
        self.data: Dict[str, Any] = {}

    def resolve(self, collection: str, reference: Any,
                fields: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
        """
        Resolve a referenced document through the lookup cache.

        Returns None when the reference is malformed or the document is missing.
        """
        key = identifier_key(reference)
        if key is None:
            return None
        value = self.lookup_cache.get_or_fetch(
            (collection, key),
            lambda: self.store.fetch_one(collection, key, tuple(fields)),
        )
        return None if value is ABSENT else value


class RuleSet(ABC):
    """
    Base class for pluggable per-collection rules.

    Subclasses declare the collection they stream, their mode, the entity
    label used in log lines, an optional field stamped at flush time and an
    optional follow-up rule set to run after a normalization pass.
    """

    name: str = ""
    description: str = ""
    collection: str = ""
    entity: str = "Record"
    mode: RuleMode = RuleMode.VALIDATE
    filter: Optional[Dict[str, Any]] = None
    touch_field: Optional[str] = None
    follow_up: Optional[str] = None

    def prepare(self, context: RuleContext) -> None:
        """Compute run-wide data before streaming starts. Default: nothing."""
        pass

    @abstractmethod
    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        """Decide the outcome for one document."""
        pass

    def apply(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        """
        Evaluate a document and enforce the rule set's mode.

        Raises:
            RuleContractError: If the outcome is not allowed in this mode
        """
        if DocumentUtils.DECODE_ERROR_FIELD in record:
            return Invalid([Violation('', f"document is not valid JSON: {record[DocumentUtils.DECODE_ERROR_FIELD]}")])
        try:
            outcome = self.evaluate(record, context)
        except RecordValidationFailure as e:
            outcome = Invalid(e.violations)

        if not isinstance(outcome, (NoAction, Update, Invalid)):
            raise RuleContractError(
                f"Rule set '{self.name}' returned {type(outcome).__name__}",
                record_id=record.get('_id'))
        if isinstance(outcome, Update) and self.mode is RuleMode.VALIDATE:
            raise RuleContractError(
                f"Rule set '{self.name}' is validate-only and cannot emit updates",
                record_id=record.get('_id'))
        return outcome

    @staticmethod
    def verdict(violations: Iterable[Violation]) -> Outcome:
        """Invalid when any violation was collected, NoAction otherwise."""
        violations = list(violations)
        return Invalid(violations) if violations else NoAction()

    @staticmethod
    def build_update(record: Dict[str, Any], set_fields: Dict[str, Any],
                     unset: Iterable[str] = ()) -> Outcome:
        """
        Merge the proposed changes into a single intent, or NoAction when
        every proposed value already matches and nothing needs stripping.

        Only fields that currently hold a value are stripped.
        """
        to_unset: List[str] = [
            f for f in unset if DocumentUtils.presence(record, f) is Presence.PRESENT
        ]
        changed = bool(to_unset) or any(
            not DocumentUtils.values_equal(DocumentUtils.get(record, key), value)
            or DocumentUtils.presence(record, key) is Presence.ABSENT
            for key, value in set_fields.items()
        )
        if not changed:
            return NoAction()
        return Update(MutationIntent(id=record.get('_id'), fields=dict(set_fields), unset=tuple(to_unset)))
