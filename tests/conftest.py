"""Shared fixtures for doc_batch tests."""

from datetime import datetime, timezone

import pytest

from doc_batch.database.memory_store import InMemoryDocumentStore
from doc_batch.processing.lookup_cache import LookupCache
from doc_batch.validation.rule_set import RuleContext


FIXED_NOW = datetime(2024, 3, 5, 12, 0, 0, tzinfo=timezone.utc)


def make_oid(n: int) -> str:
    """Deterministic 24-hex-digit identifier."""
    return f"{n:024x}"


@pytest.fixture
def oid():
    return make_oid


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def context(store):
    return RuleContext(store, LookupCache(), now=FIXED_NOW)
