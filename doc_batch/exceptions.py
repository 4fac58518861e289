"""
Custom exceptions for the batch document processing system.

This module defines specific exception types for the error conditions that
can occur while streaming, evaluating and mutating documents. Per-record and
per-batch errors are contained by the stream processor; configuration and
cursor-level errors propagate and abort the run.
"""


class BatchProcessingError(Exception):
    """Base exception for all batch processing related errors."""

    def __init__(self, message: str, record_id: str = None):
        """
        Initialize batch processing error.

        Args:
            message: Error description
            record_id: Optional identifier of the document that caused the error
        """
        super().__init__(message)
        self.record_id = record_id


class ConfigurationError(BatchProcessingError):
    """Exception raised when configuration is invalid or missing."""
    pass


class DatabaseConnectionError(BatchProcessingError):
    """Exception raised when the document store connection fails."""
    pass


class StoreError(BatchProcessingError):
    """Exception raised when the document store rejects an operation."""
    pass


class RecordValidationFailure(BatchProcessingError):
    """
    Exception a rule set may raise instead of returning an Invalid outcome.

    The stream processor converts it into an Invalid outcome; it never
    escapes the per-record boundary.
    """

    def __init__(self, violations, record_id: str = None):
        """
        Initialize record validation failure.

        Args:
            violations: Non-empty sequence of Violation objects
            record_id: Optional identifier of the failing document
        """
        violations = tuple(violations)
        if not violations:
            raise ValueError("RecordValidationFailure requires at least one violation")
        message = "; ".join(v.message for v in violations)
        super().__init__(message, record_id)
        self.violations = violations


class RuleContractError(BatchProcessingError):
    """Exception raised when a rule set returns an outcome its mode does not allow."""
    pass


class BatchMutationFailure(BatchProcessingError):
    """Exception raised when a bulk-mutation call fails as a whole."""

    def __init__(self, message: str, batch_size: int = 0):
        """
        Initialize batch mutation failure.

        Args:
            message: Error description
            batch_size: Number of point-updates in the failed call
        """
        super().__init__(message)
        self.batch_size = batch_size


class StreamFailure(BatchProcessingError):
    """Exception raised when the document cursor fails mid-iteration."""

    def __init__(self, message: str, tally=None):
        """
        Initialize stream failure.

        Args:
            message: Error description
            tally: Partial RunTally, drained before the failure was raised
        """
        super().__init__(message)
        self.tally = tally
