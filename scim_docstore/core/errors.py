"""Typed failures raised by the connector core.

Every failure that crosses the provisioning service boundary is one of the
``ConnectorError`` subclasses below. The service tags the error with the
operation that failed (``createUser``, ``modifyGroup``...) so that
``str(error)`` reads ``"<action> error: <detail>"``.
"""
from __future__ import annotations
from typing import Any, Optional, Sequence


class MappingConfigError(ValueError):
    """Attribute mapping table is invalid (raised at load time)."""
    pass


class ConnectorError(Exception):
    """Base exception for all connector operations.

    Attributes:
        detail: Human-readable error description
        action: Operation name set by the provisioning service boundary
    """

    def __init__(self, detail: str, *, action: Optional[str] = None):
        self.detail = detail
        self.action = action
        super().__init__(detail)

    def with_action(self, action: str) -> "ConnectorError":
        """Tag the error with the failing operation (first tag wins)."""
        if not self.action:
            self.action = action
        return self

    def __str__(self) -> str:
        if self.action:
            return f"{self.action} error: {self.detail}"
        return self.detail


class MappingTypeError(ConnectorError):
    """Caller value cannot be coerced to the mapped attribute type."""

    def __init__(self, attribute: str, value: Any, expected: str):
        self.attribute = attribute
        self.value = value
        self.expected = expected
        super().__init__(
            f"attribute '{attribute}' expects {expected}, got {type(value).__name__} {value!r}"
        )


class UnsupportedFilterError(ConnectorError):
    """Query shape is not implemented."""

    def __init__(self, filter_string: Optional[str]):
        self.filter = filter_string
        super().__init__(f"not supporting filter: {filter_string}")


class NotFoundError(ConnectorError):
    """Identifier does not resolve to a stored record."""

    def __init__(self, resource_type: str, identifier: str):
        self.resource_type = resource_type
        self.identifier = identifier
        super().__init__(f"{resource_type} {identifier} not found")


class MemberNotFoundError(ConnectorError):
    """Membership edit references a user that does not exist."""

    def __init__(self, member: str):
        self.member = member
        super().__init__(f"member user {member} not found")


class DuplicateKeyError(ConnectorError):
    """Store reported a uniqueness violation."""

    def __init__(self, fields: Sequence[str]):
        self.fields = list(fields)
        super().__init__(f"Duplicate key at {self.fields}")


class FieldError(ConnectorError):
    """Store rejected the write for a reason other than uniqueness."""

    def __init__(self, fields: Sequence[str], message: str):
        self.fields = list(fields)
        super().__init__(f"Error at field: {self.fields}: {message}")


class StoreFaultError(ConnectorError):
    """Unclassified store or driver failure."""
    pass
