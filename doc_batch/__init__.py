"""
Batch Document Processing System

Streams schema-less documents through pluggable rule sets that either
normalize them in place (bulk updates in bounded windows) or validate them,
with an exact per-run tally and a JSON failure report.
"""

__version__ = "1.0.0"

# Import core models and interfaces for easy access
from .models import (
    RuleMode,
    Presence,
    RunStatus,
    Violation,
    MutationIntent,
    NoAction,
    Update,
    Invalid,
    FailureRecord,
    RunTally,
    BulkMutationResult,
    ProcessingConfig,
    RunResult
)

from .interfaces import DocumentStoreInterface

from .exceptions import (
    BatchProcessingError,
    ConfigurationError,
    DatabaseConnectionError,
    StoreError,
    RecordValidationFailure,
    BatchMutationFailure,
    StreamFailure,
    RuleContractError
)

__all__ = [
    # Core models
    "RuleMode",
    "Presence",
    "RunStatus",
    "Violation",
    "MutationIntent",
    "NoAction",
    "Update",
    "Invalid",
    "FailureRecord",
    "RunTally",
    "BulkMutationResult",
    "ProcessingConfig",
    "RunResult",

    # Interfaces
    "DocumentStoreInterface",

    # Exceptions
    "BatchProcessingError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "StoreError",
    "RecordValidationFailure",
    "BatchMutationFailure",
    "StreamFailure",
    "RuleContractError"
]
