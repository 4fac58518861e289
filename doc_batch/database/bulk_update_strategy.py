"""
Bulk Update Strategy - Independent Point Updates

Encapsulates how a window of mutation intents is applied to JSON documents
stored in SQL Server. Every intent runs as its own read-modify-write on an
autocommit connection, so one failing operation never blocks the others.
Connection-class errors abort the whole call.
"""

import json
import logging

from typing import List

import pyodbc

from ..exceptions import BatchMutationFailure
from ..models import BulkMutationResult, MutationIntent
from ..utils import DocumentUtils


_CONNECTION_ERROR_MARKERS = [
    'connection', 'login', 'server', 'network', 'timeout', 'cannot open database',
    'communication link', 'tcp provider',
]
_DATA_ERROR_MARKERS = [
    'primary key', 'foreign key', 'check constraint', 'duplicate key',
    'cast specification', 'converting', 'null constraint', 'json',
]


def is_connection_error(error: Exception) -> bool:
    """True when a driver error means the connection itself is unusable."""
    error_str = str(error).lower()
    return any(marker in error_str for marker in _CONNECTION_ERROR_MARKERS) and not any(
        marker in error_str for marker in _DATA_ERROR_MARKERS
    )


class BulkUpdateStrategy:
    """
    Applies mutation intents one by one, collecting per-operation errors.

    An intent counts as modified only when its guarded UPDATE reports one
    affected row. Intents whose document is missing, already conforms, or
    changed between read and write are not modified.
    """

    def __init__(self, id_column: str = "doc_id", document_column: str = "document",
                 logger: logging.Logger = None):
        """
        Initialize bulk update strategy.

        Args:
            id_column: Name of the identifier column
            document_column: Name of the JSON document column
            logger: Optional logger instance
        """
        self.id_column = id_column
        self.document_column = document_column
        self.logger = logger or logging.getLogger(__name__)

    def apply(self, cursor, qualified_table_name: str, intents: List[MutationIntent],
              keys: List[str]) -> BulkMutationResult:
        """
        Apply intents against a table.

        Args:
            cursor: Active cursor on an autocommit connection
            qualified_table_name: Schema-qualified table name ([schema].[table])
            intents: Intents to apply
            keys: Storage keys matching intents one to one

        Returns:
            BulkMutationResult with matched/modified counts and per-operation errors

        Raises:
            BatchMutationFailure: On connection-class driver errors
        """
        select_sql = (f"SELECT [{self.document_column}] FROM {qualified_table_name} "
                      f"WHERE [{self.id_column}] = ?")
        update_sql = (f"UPDATE {qualified_table_name} SET [{self.document_column}] = ? "
                      f"WHERE [{self.id_column}] = ? AND [{self.document_column}] = ?")

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"SQL: {update_sql} ({len(intents)} operations)")

        result = BulkMutationResult()
        for intent, key in zip(intents, keys):
            try:
                cursor.execute(select_sql, key)
                row = cursor.fetchone()
                if row is None:
                    continue
                result.matched_count += 1

                current_text = row[0]
                current = json.loads(current_text)
                updated = DocumentUtils.apply_mutation(current, intent.fields, intent.unset)
                updated.pop('_id', None)
                new_text = DocumentUtils.to_json(updated)
                if new_text == DocumentUtils.to_json(current):
                    continue

                cursor.execute(update_sql, new_text, key, current_text)
                if cursor.rowcount == 1:
                    result.modified_count += 1
                else:
                    result.errors.append(f"Update of {intent.id} skipped: document changed during the batch")
            except pyodbc.Error as e:
                if is_connection_error(e):
                    self.logger.error(f"Bulk update aborted on connection error: {e}")
                    raise BatchMutationFailure(f"Bulk update aborted: {e}", batch_size=len(intents))
                result.errors.append(f"Update of {intent.id} failed: {e}")
            except (TypeError, ValueError) as e:
                result.errors.append(f"Update of {intent.id} failed: {e}")

        return result
