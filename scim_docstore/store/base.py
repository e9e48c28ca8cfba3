"""Document store interface consumed by the connector core.

Where-predicates are plain dictionaries keyed by dotted internal field names:

    {"userName": "alice"}                  equality
    {"members": {"has": "<user id>"}}      array contains
    {"id": {"in": ["<id>", "<id>"]}}       value in list

The ``id`` key always designates the document identity.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence


class StoreError(Exception):
    """Base exception for store and driver failures."""
    pass


class UniqueConstraintError(StoreError):
    """Write violates a unique field.

    Attributes:
        fields: Names of the conflicting fields
    """

    def __init__(self, fields: Sequence[str], message: str = "unique constraint violated"):
        self.fields = list(fields)
        super().__init__(f"{message}: {self.fields}")


class RecordNotFoundError(StoreError):
    """No record matches the where-predicate of a write."""
    pass


class WriteRejectedError(StoreError):
    """Store refused the document (missing or invalid fields)."""

    def __init__(self, fields: Sequence[str], message: str):
        self.fields = list(fields)
        self.message = message
        super().__init__(message)


class Store(ABC):
    """CRUD over users and groups, addressed by resource kind."""

    @abstractmethod
    def find_many(self, kind: str, where: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return every record matching ``where`` (all records for ``{}``)."""

    @abstractmethod
    def find_unique(self, kind: str, where: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the record matching a unique predicate, or None."""

    def find_first(self, kind: str, where: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the first matching record, or None."""
        rows = self.find_many(kind, where)
        return rows[0] if rows else None

    @abstractmethod
    def create(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a document and return it with its assigned ``id``.

        Raises:
            UniqueConstraintError: On a unique field conflict
            WriteRejectedError: If the document is refused
        """

    @abstractmethod
    def update(self, kind: str, where: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update to the matching record and return it.

        Nested objects in ``data`` replace leaves, not whole sub-documents.

        Raises:
            RecordNotFoundError: If nothing matches
        """

    @abstractmethod
    def delete(self, kind: str, where: Dict[str, Any]) -> Dict[str, Any]:
        """Remove the matching record and return it.

        Raises:
            RecordNotFoundError: If nothing matches
        """

    def close(self) -> None:
        """Release driver resources."""
        return None
