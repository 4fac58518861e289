"""
Command-line interface for the batch document processing system.

    doc-batch list
    doc-batch run <rule_set> [--dry-run] [--yes] [--report PATH] ...

Exit codes: 0 completed or declined, 1 fatal error or cancelled run,
130 interrupted before the run started.
"""

import argparse
import logging
import signal
import sys
import threading

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .config.config_manager import get_config_manager
from .config.processing_defaults import ProcessingDefaults
from .database.memory_store import InMemoryDocumentStore
from .database.sql_document_store import SqlDocumentStore
from .exceptions import BatchProcessingError, ConfigurationError, StreamFailure
from .models import RuleMode, RunResult, RunStatus
from .processing.run_coordinator import RunCoordinator
from .rules import get_rule_set, list_rule_sets


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def prompt_confirm(prompt: str, input_func: Optional[Callable[[str], str]] = None) -> bool:
    """Ask for confirmation on stdin; only "y" (any case, trimmed) is affirmative."""
    try:
        answer = (input_func or input)(prompt)
    except EOFError:
        return False
    return answer.strip().lower() == 'y'


def setup_logging(log_level: str, log_file: Optional[Path] = None) -> Optional[Path]:
    """
    Configure logging once for the process.

    A console handler is added only when the root logger has none. An
    optional log file receives the same records.
    """
    root_logger = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    return log_file


class InterruptHandler:
    """
    SIGINT handler for a run.

    Before the run is confirmed an interrupt aborts immediately; afterwards
    it only sets the cooperative stop signal so the pending batch drains.
    """

    def __init__(self, stop_event: threading.Event):
        self.logger = logging.getLogger(__name__)
        self.stop_event = stop_event
        self.armed = False

    def __call__(self, signum, frame):
        if not self.armed:
            raise KeyboardInterrupt
        if not self.stop_event.is_set():
            self.logger.warning("Interrupt received; stopping after the current document")
        self.stop_event.set()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doc-batch",
        description="Batch normalization and validation of document collections")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    subparsers.add_parser("list", help="List available rule sets")

    run = subparsers.add_parser("run", help="Run a rule set over its collection")
    run.add_argument("rule_set", help="Rule set name (see 'doc-batch list')")
    run.add_argument("--dry-run", action="store_true",
                     help="Report what a normalization run would change without writing")
    run.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")
    run.add_argument("--report", help="Path of the JSON failure report "
                                      "(default: <report dir>/<rule_set>_failures.json)")
    run.add_argument("--batch-size", type=int,
                     help=f"Updates per bulk write (default: {ProcessingDefaults.BATCH_SIZE})")
    run.add_argument("--chunk-size", type=int,
                     help=f"Documents per cursor round trip (default: {ProcessingDefaults.CHUNK_SIZE})")
    run.add_argument("--source-file",
                     help="Run offline against a JSON export instead of the database")
    run.add_argument("--env-file", default=ProcessingDefaults.ENV_FILE,
                     help=f"Environment file to load (default: {ProcessingDefaults.ENV_FILE})")
    run.add_argument("--log-level", default=ProcessingDefaults.LOG_LEVEL,
                     choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
                     help=f"Logging level (default: {ProcessingDefaults.LOG_LEVEL})")
    run.add_argument("--log-file", action="store_true",
                     help=f"Also log to {ProcessingDefaults.LOG_DIR}/<rule_set>_<session>.log")
    run.add_argument("--no-follow-up", action="store_true",
                     help="Do not chain into the rule set's follow-up pass")
    return parser


def _list_rule_sets() -> int:
    rule_sets = list_rule_sets()
    width = max(len(rs.name) for rs in rule_sets)
    for rs in rule_sets:
        print(f"{rs.name:<{width}}  {rs.mode.value:<9}  {rs.collection:<9}  {rs.description}")
    return EXIT_OK


def _final_status(result: RunResult) -> RunStatus:
    if result.follow_up is not None and result.follow_up.status is RunStatus.CANCELLED:
        return RunStatus.CANCELLED
    return result.status


def _run(args: argparse.Namespace) -> int:
    session_id = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_file = Path(ProcessingDefaults.LOG_DIR) / f"{args.rule_set}_{session_id}.log" if args.log_file else None
    setup_logging(args.log_level, log_file)
    logger = logging.getLogger(__name__)

    try:
        config_manager = get_config_manager(args.env_file)
        rule_set = get_rule_set(args.rule_set)
        report_path = args.report or str(
            Path(config_manager.processing_params.report_dir) / f"{rule_set.name}_failures.json")
        config = config_manager.get_processing_config(
            batch_size=args.batch_size,
            chunk_size=args.chunk_size,
            dry_run=args.dry_run,
            report_path=report_path,
            run_follow_up=not args.no_follow_up,
        )

        if args.source_file:
            store = InMemoryDocumentStore.from_file(args.source_file)
        else:
            config_manager.validate_configuration()
            database_config = config_manager.database_config
            logger.info(f"Database target: {database_config.describe()}")
            store = SqlDocumentStore(
                config_manager.get_database_connection_string(),
                schema=database_config.schema,
                connection_timeout=database_config.connection_timeout,
            )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f" Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    stop_event = threading.Event()
    interrupt_handler = InterruptHandler(stop_event)

    def confirm(prompt: str) -> bool:
        confirmed = args.yes or prompt_confirm(prompt)
        interrupt_handler.armed = confirmed
        return confirmed

    try:
        previous_handler = signal.signal(signal.SIGINT, interrupt_handler)
    except ValueError:
        # Not on the main thread
        previous_handler = None

    try:
        result = RunCoordinator(store, config, confirm=confirm, stop_event=stop_event).run(rule_set)
    except KeyboardInterrupt:
        print("\n Run interrupted before start")
        return EXIT_INTERRUPTED
    except StreamFailure as e:
        logger.error(f"Run failed: {e}")
        print(f" Run failed: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except BatchProcessingError as e:
        logger.error(f"Run failed: {e}")
        print(f" Run failed: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    if result.status is RunStatus.DECLINED:
        return EXIT_OK

    if args.source_file and rule_set.mode is RuleMode.NORMALIZE and not args.dry_run:
        store.dump(args.source_file)

    if _final_status(result) is RunStatus.CANCELLED:
        print(" Run cancelled")
        return EXIT_FAILURE
    return EXIT_OK


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI application.

    Args:
        args: Optional command line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    if args is None:
        args = sys.argv[1:]

    parsed = build_parser().parse_args(args)
    if parsed.command == "list":
        return _list_rule_sets()
    return _run(parsed)


if __name__ == '__main__':
    sys.exit(main())
