"""
Abstract interfaces for the batch document processing system.

This module defines the contracts the processing core needs from its
collaborators, so the SQL-backed store, the in-memory store and test
doubles are interchangeable.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from .models import BulkMutationResult, MutationIntent


# Interactive human gate: returns True only on an affirmative answer.
ConfirmCallable = Callable[[str], bool]


class DocumentStoreInterface(ABC):
    """Abstract interface for document store adapters."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of the connected database."""
        pass

    @abstractmethod
    def connect(self) -> None:
        """
        Open the store connection.

        Raises:
            DatabaseConnectionError: If the connection cannot be established
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the store connection. Safe to call more than once."""
        pass

    @abstractmethod
    def stream(self, collection: str, filter: Optional[Dict[str, Any]] = None,
               chunk_size: int = 200) -> Iterator[Dict[str, Any]]:
        """
        Lazily produce the documents of a collection that match a filter.

        Args:
            collection: Collection name
            filter: Equality filter on top-level fields (None matches all)
            chunk_size: Documents fetched per server round trip

        Returns:
            Finite, non-restartable iterator of documents carrying an ``_id``
        """
        pass

    @abstractmethod
    def fetch_one(self, collection: str, id: Any,
                  projected_fields: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
        """
        Point lookup of a single document.

        Args:
            collection: Collection name
            id: Document identifier
            projected_fields: Fields to return besides ``_id`` (empty returns all)

        Returns:
            The (projected) document, or None when it does not exist
        """
        pass

    @abstractmethod
    def bulk_mutate(self, collection: str, intents: List[MutationIntent]) -> BulkMutationResult:
        """
        Apply independent point-updates.

        One operation's failure never prevents the others from applying.

        Args:
            collection: Collection name
            intents: Point-updates to apply

        Returns:
            BulkMutationResult whose modified_count is the number of documents changed

        Raises:
            BatchMutationFailure: If the call fails as a whole
        """
        pass

    @abstractmethod
    def sum_by(self, collection: str, group_field: str, value_field: str) -> Dict[str, int]:
        """
        Sum a numeric field grouped by another field.

        Args:
            collection: Collection name
            group_field: Field to group by (values are stringified keys)
            value_field: Numeric field to sum

        Returns:
            Mapping of group key to sum; documents without a group key are ignored
        """
        pass
