"""
In-memory document store.

Implements the same contract as SqlDocumentStore over plain dictionaries.
Used for offline runs against a JSON export (``{"<collection>": [docs]}``)
and as the store double in tests.
"""

import copy
import json
import logging

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..exceptions import ConfigurationError
from ..interfaces import DocumentStoreInterface
from ..models import BulkMutationResult, MutationIntent
from ..utils import DocumentUtils
from ..validation.primitives import identifier_key


def document_key(value: Any) -> str:
    """Canonical storage key for a document id."""
    key = identifier_key(value)
    return key if key is not None else str(value)


class InMemoryDocumentStore(DocumentStoreInterface):
    """
    Dictionary-backed document store.

    Documents keep insertion order, which is the store's natural order.
    Every read returns a deep copy so callers never alias stored state.
    """

    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None,
                 name: str = "memory"):
        self.logger = logging.getLogger(__name__)
        self._name = name
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.connected = False
        self.fetch_count = 0
        self.bulk_calls = 0
        for collection, documents in (collections or {}).items():
            self.insert_many(collection, documents)

    @classmethod
    def from_file(cls, path) -> 'InMemoryDocumentStore':
        """
        Load a JSON export file.

        Raises:
            ConfigurationError: If the file is missing or not a collection mapping
        """
        source = Path(path)
        if not source.exists():
            raise ConfigurationError(f"Source file not found: {source}")
        try:
            with open(source, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse source file {source}: {e}")
        if not isinstance(data, dict) or not all(isinstance(v, list) for v in data.values()):
            raise ConfigurationError(f"Source file {source} must map collection names to document lists")
        return cls(data, name=source.stem)

    def dump(self, path) -> Path:
        """Write every collection back to a JSON file (overwrite)."""
        target = Path(path)
        data = {name: list(docs.values()) for name, docs in self._collections.items()}
        with open(target, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=DocumentUtils.json_default)
        self.logger.info(f"Wrote {sum(len(d) for d in data.values())} documents to {target}")
        return target

    @property
    def name(self) -> str:
        return self._name

    def connect(self) -> None:
        self.connected = True

    def close(self) -> None:
        self.connected = False

    def insert_many(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        """Insert documents; each must carry an ``_id``."""
        target = self._collections.setdefault(collection, {})
        for document in documents:
            if '_id' not in document:
                raise ValueError(f"Document in '{collection}' has no _id")
            stored = copy.deepcopy(document)
            key = document_key(stored['_id'])
            stored['_id'] = key
            target[key] = stored

    def documents(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(d) for d in self._collections.get(collection, {}).values()]

    def get(self, collection: str, id: Any) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(document_key(id))
        return copy.deepcopy(document) if document is not None else None

    def stream(self, collection: str, filter: Optional[Dict[str, Any]] = None,
               chunk_size: int = 200) -> Iterator[Dict[str, Any]]:
        documents = self._collections.get(collection, {})
        for key in list(documents):
            document = documents.get(key)
            if document is None:
                continue
            if filter and not all(
                DocumentUtils.values_equal(DocumentUtils.get(document, field), value)
                for field, value in filter.items()
            ):
                continue
            yield copy.deepcopy(document)

    def fetch_one(self, collection: str, id: Any,
                  projected_fields: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
        self.fetch_count += 1
        document = self._collections.get(collection, {}).get(document_key(id))
        if document is None:
            return None
        return copy.deepcopy(DocumentUtils.project(document, projected_fields))

    def bulk_mutate(self, collection: str, intents: List[MutationIntent]) -> BulkMutationResult:
        self.bulk_calls += 1
        documents = self._collections.setdefault(collection, {})
        result = BulkMutationResult()
        for intent in intents:
            try:
                key = document_key(intent.id)
                current = documents.get(key)
                if current is None:
                    continue
                result.matched_count += 1
                updated = DocumentUtils.apply_mutation(current, intent.fields, intent.unset)
                if DocumentUtils.to_json(updated) != DocumentUtils.to_json(current):
                    documents[key] = updated
                    result.modified_count += 1
            except (TypeError, ValueError) as e:
                result.errors.append(f"Update of {intent.id} failed: {e}")
        return result

    def sum_by(self, collection: str, group_field: str, value_field: str) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for document in self._collections.get(collection, {}).values():
            group = DocumentUtils.get(document, group_field)
            if group is None:
                continue
            value = DocumentUtils.get(document, value_field)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                value = 0
            key = document_key(group)
            totals[key] = totals.get(key, 0) + value
        return totals
