"""
SQL Server document store.

Each collection is a table ``[schema].[collection]`` with two columns:
``doc_id NVARCHAR(64)`` (primary key) and ``document NVARCHAR(MAX)`` holding
the JSON body. The store keeps one connection for the read cursor and a
separate autocommit connection for lookups and writes, so writes never
disturb the open stream.
"""

import json
import logging
import re

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pyodbc

from ..exceptions import BatchMutationFailure, ConfigurationError, DatabaseConnectionError, StoreError
from ..interfaces import DocumentStoreInterface
from ..models import BulkMutationResult, MutationIntent
from ..utils import DocumentUtils
from .bulk_update_strategy import BulkUpdateStrategy, is_connection_error
from .memory_store import document_key


_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_FIELD_PATH = re.compile(r'^[A-Za-z_$][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*$')


def _check_identifier(value: str, kind: str) -> str:
    if not isinstance(value, str) or not _IDENTIFIER.match(value):
        raise ConfigurationError(f"Invalid {kind} name: {value!r}")
    return value


def _json_path(field: str) -> str:
    if not isinstance(field, str) or not _FIELD_PATH.match(field):
        raise ConfigurationError(f"Invalid field path: {field!r}")
    return '$.' + '.'.join(
        f'[{part}]' if part.isdigit() else f'"{part}"' for part in field.split('.')
    ).replace('.[', '[')


class SqlDocumentStore(DocumentStoreInterface):
    """
    JSON-document store over SQL Server via pyodbc.

    Connection-class driver errors surface as DatabaseConnectionError (on
    reads) or BatchMutationFailure (on writes); anything else raised by the
    driver while reading becomes StoreError.
    """

    def __init__(self, connection_string: str, schema: str = "dbo", connection_timeout: int = 30,
                 bulk_strategy: Optional[BulkUpdateStrategy] = None):
        """
        Initialize the store.

        Args:
            connection_string: ODBC connection string
            schema: Schema holding the collection tables
            connection_timeout: Login timeout in seconds
            bulk_strategy: Optional update strategy (defaults to BulkUpdateStrategy)
        """
        self.logger = logging.getLogger(__name__)
        self.connection_string = connection_string
        self.schema = _check_identifier(schema, "schema")
        self.connection_timeout = connection_timeout
        self.bulk_strategy = bulk_strategy or BulkUpdateStrategy(logger=self.logger)

        self._read_conn = None
        self._write_conn = None
        self._name = "sqlserver"

    @property
    def name(self) -> str:
        return self._name

    def _qualified(self, collection: str) -> str:
        return f"[{self.schema}].[{_check_identifier(collection, 'collection')}]"

    def _open(self):
        try:
            conn = pyodbc.connect(self.connection_string, autocommit=True, timeout=self.connection_timeout)
            conn.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            conn.setdecoding(pyodbc.SQL_WCHAR, encoding='utf-8')
            conn.setencoding(encoding='utf-8')
            return conn
        except pyodbc.Error as e:
            error_msg = str(e).lower()
            if 'login' in error_msg:
                raise DatabaseConnectionError(f"Database login failed: {e}")
            if 'server' in error_msg or 'network' in error_msg:
                raise DatabaseConnectionError(f"Database server unreachable: {e}")
            if 'timeout' in error_msg:
                raise DatabaseConnectionError(f"Database connection timed out: {e}")
            raise DatabaseConnectionError(f"Failed to connect to database: {e}")

    def connect(self) -> None:
        """
        Open the read and write connections.

        Raises:
            DatabaseConnectionError: If either connection cannot be established
        """
        if self._read_conn is not None:
            return
        self._read_conn = self._open()
        try:
            self._write_conn = self._open()
            cursor = self._write_conn.cursor()
            cursor.execute("SELECT DB_NAME()")
            row = cursor.fetchone()
            if row and row[0]:
                self._name = row[0]
        except (DatabaseConnectionError, pyodbc.Error) as e:
            self.close()
            if isinstance(e, DatabaseConnectionError):
                raise
            raise DatabaseConnectionError(f"Failed to connect to database: {e}")
        self.logger.debug(f"Opened read and write connections to {self._name}")

    def close(self) -> None:
        for attr in ('_read_conn', '_write_conn'):
            conn = getattr(self, attr)
            if conn is not None:
                try:
                    conn.close()
                except pyodbc.Error as e:
                    self.logger.debug(f"Ignoring error while closing connection: {e}")
                setattr(self, attr, None)

    @contextmanager
    def _cursor(self, conn):
        if conn is None:
            raise DatabaseConnectionError("Store is not connected")
        cursor = conn.cursor()
        try:
            yield cursor
        finally:
            try:
                cursor.close()
            except pyodbc.Error:
                pass

    def _read_error(self, error: Exception, action: str) -> Exception:
        if is_connection_error(error):
            return DatabaseConnectionError(f"Connection lost while {action}: {error}")
        return StoreError(f"Error while {action}: {error}")

    def _decode(self, doc_id: str, text: str) -> Dict[str, Any]:
        try:
            document = json.loads(text) if text else {}
            if not isinstance(document, dict):
                raise ValueError("document is not a JSON object")
        except ValueError as e:
            self.logger.warning(f"Document {doc_id} is not valid JSON: {e}")
            return {'_id': doc_id, DocumentUtils.DECODE_ERROR_FIELD: str(e)}
        document['_id'] = doc_id
        return document

    def stream(self, collection: str, filter: Optional[Dict[str, Any]] = None,
               chunk_size: int = 200) -> Iterator[Dict[str, Any]]:
        """
        Yield documents in the table's natural order, fetching ``chunk_size`` rows per round trip.

        Equality filters compare JSON_VALUE of the field against the value's text form.
        """
        sql = f"SELECT [doc_id], [document] FROM {self._qualified(collection)}"
        params: List[Any] = []
        if filter:
            clauses = []
            for field, value in filter.items():
                clauses.append(f"JSON_VALUE([document], '{_json_path(field)}') = ?")
                params.append(value if isinstance(value, str) else json.dumps(value))
            sql += " WHERE " + " AND ".join(clauses)

        with self._cursor(self._read_conn) as cursor:
            cursor.arraysize = chunk_size
            try:
                cursor.execute(sql, *params)
            except pyodbc.Error as e:
                raise self._read_error(e, f"opening cursor on {collection}")

            while True:
                try:
                    rows = cursor.fetchmany(chunk_size)
                except pyodbc.Error as e:
                    raise self._read_error(e, f"reading {collection}")
                if not rows:
                    break
                for row in rows:
                    yield self._decode(row[0], row[1])

    def fetch_one(self, collection: str, id: Any,
                  projected_fields: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
        sql = f"SELECT [doc_id], [document] FROM {self._qualified(collection)} WHERE [doc_id] = ?"
        with self._cursor(self._write_conn) as cursor:
            try:
                cursor.execute(sql, document_key(id))
                row = cursor.fetchone()
            except pyodbc.Error as e:
                raise self._read_error(e, f"looking up {collection} {id}")
        if row is None:
            return None
        return DocumentUtils.project(self._decode(row[0], row[1]), projected_fields)

    def bulk_mutate(self, collection: str, intents: List[MutationIntent]) -> BulkMutationResult:
        """
        Apply a window of intents as independent point updates.

        Raises:
            BatchMutationFailure: If the write connection is unusable
        """
        if self._write_conn is None:
            raise BatchMutationFailure("Store is not connected", batch_size=len(intents))
        keys = [document_key(intent.id) for intent in intents]
        try:
            cursor = self._write_conn.cursor()
        except pyodbc.Error as e:
            raise BatchMutationFailure(f"Could not open write cursor: {e}", batch_size=len(intents))
        try:
            return self.bulk_strategy.apply(cursor, self._qualified(collection), intents, keys)
        finally:
            try:
                cursor.close()
            except pyodbc.Error:
                pass

    def sum_by(self, collection: str, group_field: str, value_field: str) -> Dict[str, int]:
        """Sum an integer field grouped by a reference field (plain or ``{"$oid"}``)."""
        group_path = _json_path(group_field)
        oid_path = _json_path(group_field) + '."$oid"'
        value_path = _json_path(value_field)
        group_expr = (f"COALESCE(JSON_VALUE([document], '{group_path}'), "
                      f"JSON_VALUE([document], '{oid_path}'))")
        sql = (f"SELECT {group_expr} AS grp, "
               f"SUM(COALESCE(TRY_CAST(JSON_VALUE([document], '{value_path}') AS BIGINT), 0)) "
               f"FROM {self._qualified(collection)} "
               f"WHERE {group_expr} IS NOT NULL GROUP BY {group_expr}")
        with self._cursor(self._write_conn) as cursor:
            try:
                cursor.execute(sql)
                rows = cursor.fetchall()
            except pyodbc.Error as e:
                raise self._read_error(e, f"aggregating {collection}")
        return {document_key(row[0]): int(row[1] or 0) for row in rows}
