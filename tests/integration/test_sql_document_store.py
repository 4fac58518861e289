"""
Integration Tests for SqlDocumentStore

pyodbc.connect is patched with MagicMock connections; pyodbc.Error stays
real so error classification is exercised as in production.
"""

import pytest
import pyodbc

from unittest.mock import MagicMock, patch

from doc_batch.database.sql_document_store import SqlDocumentStore
from doc_batch.exceptions import (
    BatchMutationFailure, ConfigurationError, DatabaseConnectionError, StoreError,
)
from doc_batch.models import MutationIntent
from doc_batch.utils import DocumentUtils


CONNECTION_STRING = "DRIVER={ODBC Driver 17 for SQL Server};SERVER=localhost;DATABASE=Docs;"


def make_connection():
    conn = MagicMock()
    cursor = MagicMock()
    cursor.fetchone.return_value = ("DocsDb",)
    conn.cursor.return_value = cursor
    return conn, cursor


@pytest.fixture
def connections():
    read_conn, read_cursor = make_connection()
    write_conn, write_cursor = make_connection()
    with patch('doc_batch.database.sql_document_store.pyodbc.connect',
               side_effect=[read_conn, write_conn]) as mock_connect:
        yield {
            'connect': mock_connect,
            'read': read_conn, 'read_cursor': read_cursor,
            'write': write_conn, 'write_cursor': write_cursor,
        }


@pytest.fixture
def store(connections):
    store = SqlDocumentStore(CONNECTION_STRING)
    store.connect()
    return store


class TestConnectionLifecycle:

    def test_connect_opens_two_autocommit_connections(self, store, connections):
        assert connections['connect'].call_count == 2
        for c in connections['connect'].call_args_list:
            assert c.kwargs['autocommit'] is True
            assert c.kwargs['timeout'] == 30
        assert store.name == "DocsDb"

    def test_login_failure(self):
        error = pyodbc.Error("Login failed for user 'svc'")
        with patch('doc_batch.database.sql_document_store.pyodbc.connect', side_effect=error):
            with pytest.raises(DatabaseConnectionError) as exc_info:
                SqlDocumentStore(CONNECTION_STRING).connect()
        assert "login failed" in str(exc_info.value).lower()

    def test_second_connection_failure_closes_first(self):
        read_conn, _ = make_connection()
        error = pyodbc.Error("Named Pipes Provider: server was not found")
        with patch('doc_batch.database.sql_document_store.pyodbc.connect',
                   side_effect=[read_conn, error]):
            with pytest.raises(DatabaseConnectionError):
                SqlDocumentStore(CONNECTION_STRING).connect()
        read_conn.close.assert_called_once()

    def test_close_ignores_driver_errors(self, store, connections):
        connections['read'].close.side_effect = pyodbc.Error("already closed")
        store.close()
        connections['write'].close.assert_called_once()

    def test_invalid_schema_rejected(self):
        with pytest.raises(ConfigurationError):
            SqlDocumentStore(CONNECTION_STRING, schema="dbo; DROP TABLE x")


class TestStream:

    def test_rows_decoded_in_chunks(self, store, connections):
        cursor = connections['read_cursor']
        cursor.fetchmany.side_effect = [
            [("a", '{"name": "Ada"}'), ("b", "not json")],
            [("c", '{"name": "Cy"}')],
            [],
        ]

        documents = list(store.stream("users", chunk_size=2))

        assert documents[0] == {"name": "Ada", "_id": "a"}
        assert documents[1]["_id"] == "b"
        assert DocumentUtils.DECODE_ERROR_FIELD in documents[1]
        assert documents[2]["_id"] == "c"
        cursor.fetchmany.assert_called_with(2)
        sql = cursor.execute.call_args.args[0]
        assert sql == "SELECT [doc_id], [document] FROM [dbo].[users]"

    def test_filter_uses_json_value(self, store, connections):
        cursor = connections['read_cursor']
        cursor.fetchmany.return_value = []

        list(store.stream("invoices", filter={"status": "Issued", "isAdmin": True}))

        args = cursor.execute.call_args.args
        assert "JSON_VALUE([document], '$.\"status\"') = ?" in args[0]
        assert "JSON_VALUE([document], '$.\"isAdmin\"') = ?" in args[0]
        assert args[1:] == ("Issued", "true")

    def test_connection_loss_mid_stream(self, store, connections):
        cursor = connections['read_cursor']
        cursor.fetchmany.side_effect = [
            [("a", "{}")],
            pyodbc.Error("[08S01] Communication link failure"),
        ]

        stream = store.stream("users")
        assert next(stream)["_id"] == "a"
        with pytest.raises(DatabaseConnectionError):
            next(stream)

    def test_other_driver_errors_are_store_errors(self, store, connections):
        connections['read_cursor'].execute.side_effect = pyodbc.Error("Invalid object name 'dbo.users'")
        with pytest.raises(StoreError):
            list(store.stream("users"))

    def test_invalid_collection_name(self, store):
        with pytest.raises(ConfigurationError):
            list(store.stream("users]; DROP TABLE x; --"))


class TestLookupsAndWrites:

    def test_fetch_one_projects_fields(self, store, connections):
        cursor = connections['write_cursor']
        cursor.fetchone.return_value = ("65a1f0c2b3d4e5f6a7b8c901",
                                        '{"user": "u", "status": "Issued", "notes": "x"}')

        invoice = store.fetch_one("invoices", {"$oid": "65A1F0C2B3D4E5F6A7B8C901"}, ("user", "status"))

        assert invoice == {"_id": "65a1f0c2b3d4e5f6a7b8c901", "user": "u", "status": "Issued"}
        assert cursor.execute.call_args.args[1] == "65a1f0c2b3d4e5f6a7b8c901"

    def test_fetch_one_missing(self, store, connections):
        connections['write_cursor'].fetchone.return_value = None
        assert store.fetch_one("invoices", "missing") is None

    def test_bulk_mutate_delegates_to_strategy(self, connections):
        strategy = MagicMock()
        store = SqlDocumentStore(CONNECTION_STRING, bulk_strategy=strategy)
        store.connect()

        store.bulk_mutate("users", [MutationIntent(id={"$oid": "65A1F0C2B3D4E5F6A7B8C901"},
                                                   fields={"a": 1})])

        cursor, table, sent, keys = strategy.apply.call_args.args
        assert table == "[dbo].[users]"
        assert keys == ["65a1f0c2b3d4e5f6a7b8c901"]

    def test_bulk_mutate_requires_connection(self):
        store = SqlDocumentStore(CONNECTION_STRING)
        with pytest.raises(BatchMutationFailure):
            store.bulk_mutate("users", [MutationIntent(id="a", fields={"a": 1})])

    def test_sum_by_groups_plain_and_wrapped_references(self, store, connections):
        cursor = connections['write_cursor']
        cursor.fetchall.return_value = [("65A1F0C2B3D4E5F6A7B8C901", 500), ("65a1f0c2b3d4e5f6a7b8c902", None)]

        totals = store.sum_by("payments", "invoice", "amountMinor")

        assert totals == {"65a1f0c2b3d4e5f6a7b8c901": 500, "65a1f0c2b3d4e5f6a7b8c902": 0}
        sql = cursor.execute.call_args.args[0]
        assert "JSON_VALUE([document], '$.\"invoice\".\"$oid\"')" in sql
        assert "GROUP BY" in sql
