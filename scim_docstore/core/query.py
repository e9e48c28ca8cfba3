"""SCIM filter → store where-predicate translation.

Only single-attribute equality on an identifier-class attribute is
supported::

    userName eq "alice"
    id eq "alice"
    externalId eq "alice"

Compound expressions, other operators and the "groups a user is member of"
lookup are not translated (see ``QueryTranslator.translate``).
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import UnsupportedFilterError
from .mapper import AttributeMapper, ResourceKind, as_kind, flatten

logger = logging.getLogger(__name__)

# attribute SP operator SP "value" | 'value'
_FILTER_RE = re.compile(
    r"^(\S+)\s+([a-zA-Z]{2})\s+"
    r'(?:"([^"]*)"'
    r"|'([^']*)')$"
)

IDENTIFIER_ATTRIBUTES = ("id", "externalId")
MEMBERSHIP_ATTRIBUTES = {
    ResourceKind.USER: "group.value",
    ResourceKind.GROUP: "members.value",
}


@dataclass(frozen=True)
class Predicate:
    """Parsed query condition.

    ``attribute``/``operator``/``value`` are set for a single comparison;
    ``raw_filter`` always carries the original filter text when one was given.
    """
    attribute: Optional[str] = None
    operator: Optional[str] = None
    value: Any = None
    raw_filter: Optional[str] = None

    @classmethod
    def parse(cls, filter_string: Optional[str]) -> Optional["Predicate"]:
        """Parse a filter string; None for an empty filter.

        Anything that is not exactly one comparison is returned as a
        raw-filter-only predicate.
        """
        if not filter_string or not filter_string.strip():
            return None

        text = filter_string.strip()
        match = _FILTER_RE.match(text)
        if not match:
            return cls(raw_filter=text)

        value = match.group(3) if match.group(3) is not None else match.group(4)
        return cls(
            attribute=match.group(1),
            operator=match.group(2).lower(),
            value=value,
            raw_filter=text,
        )

    def describe(self) -> str:
        if self.raw_filter:
            return self.raw_filter
        return f'{self.attribute} {self.operator} "{self.value}"'


@dataclass(frozen=True)
class StoreQuery:
    """Translated query: ``empty`` means the result is known to be empty."""
    where: Dict[str, Any] = field(default_factory=dict)
    empty: bool = False


class QueryTranslator:
    """Translate predicates into store where-predicates via the mapper."""

    def __init__(self, mapper: AttributeMapper):
        self.mapper = mapper

    def translate(self, kind: Any, predicate: Optional[Predicate]) -> StoreQuery:
        """Translate a predicate for one resource kind.

        Args:
            kind: Resource kind ("user" or "group")
            predicate: Parsed predicate, or None to list everything

        Returns:
            StoreQuery with an equality where-predicate on internal fields

        Raises:
            UnsupportedFilterError: For any shape other than identifier equality
        """
        resource_kind = as_kind(kind)

        if predicate is None or (predicate.operator is None and not predicate.raw_filter):
            return StoreQuery(where={})

        if predicate.operator is None:
            # compound / advanced filtering (and, or, not, ...)
            raise UnsupportedFilterError(predicate.raw_filter)

        attribute = (predicate.attribute or "").lower()
        operator = predicate.operator.lower()
        identifiers = {name.lower() for name in IDENTIFIER_ATTRIBUTES + (resource_kind.primary_name,)}

        if operator == "eq" and attribute in identifiers:
            return StoreQuery(where=self._primary_name_where(resource_kind, predicate.value))

        if operator == "eq" and attribute == MEMBERSHIP_ATTRIBUTES[resource_kind].lower():
            if resource_kind is ResourceKind.USER:
                raise UnsupportedFilterError(predicate.describe())
            # Groups containing a given member: recognized, not implemented.
            logger.warning(
                f"Membership filter '{predicate.describe()}' is not supported; returning no groups"
            )
            return StoreQuery(empty=True)

        raise UnsupportedFilterError(predicate.describe())

    def identity_where(self, kind: Any, identifier: Any) -> Dict[str, Any]:
        """Where-predicate locating a resource by its external identifier."""
        return self._primary_name_where(as_kind(kind), identifier)

    def _primary_name_where(self, kind: ResourceKind, value: Any) -> Dict[str, Any]:
        where = flatten(self.mapper.to_internal(kind, {kind.primary_name: value}))
        if not where:
            raise UnsupportedFilterError(f'{kind.primary_name} eq "{value}"')
        return where
