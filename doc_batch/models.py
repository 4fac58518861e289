"""
Core data models for the batch document processing system.

This module defines the primary data structures used throughout the system:
rule outcomes, mutation intents, run tallies and processing parameters.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class RuleMode(Enum):
    """A rule set either fixes records or reports on them, never both."""
    NORMALIZE = "normalize"
    VALIDATE = "validate"


class Presence(Enum):
    """Three-state presence of a field inside a document."""
    PRESENT = "present"
    ABSENT = "absent"
    NULL = "null"


class RunStatus(Enum):
    """Terminal state of a run."""
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class Violation:
    """
    A single failed check on one document.

    Attributes:
        field_path: Dotted path of the offending field
        message: Human-readable description, reported verbatim
    """
    field_path: str
    message: str


@dataclass(frozen=True)
class MutationIntent:
    """
    Point-update for one document: fields to set and fields to strip.

    Attributes:
        id: Identifier of the document to update
        fields: Mapping of field name to new value ($set)
        unset: Names of fields to remove ($unset)
    """
    id: Any
    fields: Dict[str, Any] = field(default_factory=dict)
    unset: Tuple[str, ...] = ()

    def __post_init__(self):
        """Validate the intent and normalize unset to a tuple."""
        if self.id is None:
            raise ValueError("MutationIntent requires a document id")
        object.__setattr__(self, "unset", tuple(self.unset))
        if not self.fields and not self.unset:
            raise ValueError("MutationIntent must set or unset at least one field")
        overlap = set(self.fields).intersection(self.unset)
        if overlap:
            raise ValueError(f"Fields cannot be both set and unset: {sorted(overlap)}")

    def with_fields(self, extra: Dict[str, Any]) -> "MutationIntent":
        """Return a copy with additional fields merged into the $set."""
        merged = dict(self.fields)
        merged.update(extra)
        return replace(self, fields=merged)


@dataclass(frozen=True)
class NoAction:
    """The document already conforms."""


@dataclass(frozen=True)
class Update:
    """The document is fixable through a single mutation intent."""
    intent: MutationIntent


@dataclass(frozen=True)
class Invalid:
    """The document fails one or more checks; no mutation is attempted."""
    violations: Tuple[Violation, ...]

    def __post_init__(self):
        object.__setattr__(self, "violations", tuple(self.violations))
        if not self.violations:
            raise ValueError("Invalid outcome requires at least one violation")

    @property
    def messages(self) -> List[str]:
        return [v.message for v in self.violations]


@dataclass
class FailureRecord:
    """
    Audit entry for a document that could not be processed.

    Attributes:
        id: Identifier of the failing document
        errors: Ordered error messages
    """
    id: Any
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "errors": list(self.errors)}


@dataclass
class RunTally:
    """
    Counters for one run.

    A scanned document ends in exactly one of updated, skipped or failed once
    the run is drained; mid-stream, queued updates are still pending.
    """
    scanned: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def resolved(self) -> int:
        return self.updated + self.skipped + self.failed

    @property
    def pending(self) -> int:
        """Documents queued for mutation whose batch has not flushed yet."""
        return self.scanned - self.resolved

    def is_balanced(self) -> bool:
        return self.scanned == self.resolved

    def __add__(self, other: "RunTally") -> "RunTally":
        if not isinstance(other, RunTally):
            return NotImplemented
        return RunTally(
            scanned=self.scanned + other.scanned,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "scanned": self.scanned,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass
class BulkMutationResult:
    """
    Result of one bulk-mutation call.

    Attributes:
        matched_count: Point-updates whose target document exists
        modified_count: Point-updates that actually changed a document
        errors: Per-operation error messages (operation did not apply)
    """
    matched_count: int = 0
    modified_count: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class BatchResult:
    """Accounting for one flush of the batch window."""
    submitted: int = 0
    updated: int = 0
    failed: int = 0
    error: Optional[str] = None


@dataclass
class ProcessingConfig:
    """
    Configuration parameters for one run.

    Attributes:
        batch_size: Mutation intents per bulk-mutation call
        chunk_size: Documents fetched per server round trip
        dry_run: Report the impact of a normalization run without writing
        progress_interval: Log progress every N scanned documents (0 disables)
        report_path: Optional path of the JSON failure report
        run_follow_up: Run the rule set's follow-up pass after a normalization run
    """
    batch_size: int = 200
    chunk_size: int = 200
    dry_run: bool = False
    progress_interval: int = 1000
    report_path: Optional[str] = None
    run_follow_up: bool = True

    def __post_init__(self):
        """Validate processing configuration."""
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.progress_interval < 0:
            raise ValueError("progress_interval cannot be negative")


@dataclass
class RunResult:
    """Outcome of a coordinated run."""
    rule_set: str
    status: RunStatus
    tally: RunTally = field(default_factory=RunTally)
    failures: List[FailureRecord] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    follow_up: Optional["RunResult"] = None
