"""
Duplicate detection across a whole collection.

Several rule sets need to know, before streaming starts, which documents
share a reference that should be unique (two invoices for one order, two
orders claiming one invoice). The collection is read once and grouped by
that reference; within a group the earliest document by ``createdAt`` (then
by id) is the one kept.
"""

import logging

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..interfaces import DocumentStoreInterface
from ..utils import DateUtils
from ..validation.primitives import identifier_key


logger = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    """Documents sharing one reference: the survivor and the rest."""
    keep_id: str
    drop_ids: List[str] = field(default_factory=list)

    def is_dropped(self, record_id: Any) -> bool:
        return reference_key(record_id) != self.keep_id


def reference_key(value: Any) -> Optional[str]:
    """Canonical text of a reference, or None when the value is null."""
    if value is None:
        return None
    key = identifier_key(value)
    return key if key is not None else str(value)


def _creation_order(document: Dict[str, Any]) -> Tuple[int, str, str]:
    # missing or unparseable createdAt sorts first
    created = DateUtils.normalize(document.get('createdAt'))
    return (0 if created is None else 1, created or '', reference_key(document.get('_id')) or '')


def find_duplicates(store: DocumentStoreInterface, collection: str, group_field: str,
                    chunk_size: int = 200) -> Dict[str, DuplicateGroup]:
    """
    Group a collection by a reference field and keep only groups of two or more.

    Args:
        store: Connected document store
        collection: Collection to scan
        group_field: Reference field the documents are grouped by
        chunk_size: Documents fetched per server round trip

    Returns:
        Mapping of reference key to DuplicateGroup
    """
    grouped: Dict[str, List[Tuple[Tuple[int, str, str], str]]] = {}
    for document in store.stream(collection, None, chunk_size):
        key = reference_key(document.get(group_field))
        if key is None:
            continue
        order = _creation_order(document)
        grouped.setdefault(key, []).append((order, order[2]))

    duplicates = {}
    for key, members in grouped.items():
        if len(members) < 2:
            continue
        ids = [record_id for _, record_id in sorted(members)]
        duplicates[key] = DuplicateGroup(keep_id=ids[0], drop_ids=ids[1:])

    logger.debug(f"Found {len(duplicates)} duplicate {group_field} groups in {collection}")
    return duplicates
