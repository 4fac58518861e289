"""
Centralized configuration defaults for batch document processing.

These are processing infrastructure settings shared by every rule set.
Environment variables override them and CLI arguments override both.
"""


class ProcessingDefaults:
    """
    Centralized operational configuration for batch runs.

    All values can be overridden via CLI arguments:
    - doc-batch run payments-migrate --batch-size 500 --chunk-size 1000
    - doc-batch run users-validate --log-level DEBUG
    """

    # Batch processing
    BATCH_SIZE = 200  # Mutation intents per bulk write
    CHUNK_SIZE = 200  # Documents fetched per cursor round trip

    # Progress
    PROGRESS_INTERVAL = 1000  # Log progress every N scanned documents

    # Database
    CONNECTION_TIMEOUT = 30  # Connection timeout in seconds
    SCHEMA = "dbo"  # Schema holding the collection tables

    # Output
    REPORT_DIR = "reports"  # Failure reports and metrics
    LOG_DIR = "logs"
    ENV_FILE = ".env"

    # Logging
    LOG_LEVEL = "INFO"  # CRITICAL, ERROR, WARNING, INFO, DEBUG

    @classmethod
    def to_dict(cls) -> dict:
        """Export all defaults as a dictionary."""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if not key.startswith('_') and key.isupper()
        }

    @classmethod
    def log_summary(cls, logger=None):
        """
        Log a summary of all operational defaults.

        Args:
            logger: Optional logger instance. If None, prints to stdout.
        """
        config_dict = cls.to_dict()
        summary = "\n".join([f"  {key}: {value}" for key, value in sorted(config_dict.items())])
        message = f"Processing Configuration Defaults:\n{summary}"

        if logger:
            logger.info(message)
        else:
            print(message)
