"""SCIM attribute ↔ document field mapping.

This module translates between the protocol-facing resource representation
(dotted external attribute names such as ``name.givenName`` or
``emails.work.value``) and the nested documents kept in the store.

Usage:
    mapper = AttributeMapper.from_config(DEFAULT_MAPPING)

    # SCIM → document (outbound)
    doc = mapper.to_internal("user", {"userName": "alice", "active": "true"})

    # document → SCIM (inbound)
    scim_user = mapper.to_external("user", doc)

The rule table uses the gateway "map" layout, keyed by internal field name::

    user:
      attributes.email: {mapTo: emails.work.value, type: string}
"""
from __future__ import annotations
import math
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

from .errors import MappingConfigError, MappingTypeError


class ResourceKind(str, Enum):
    """Resource kinds handled by the connector."""
    USER = "user"
    GROUP = "group"

    @property
    def primary_name(self) -> str:
        """Human-readable unique name attribute of the resource."""
        return "userName" if self is ResourceKind.USER else "displayName"

    @property
    def resource_type(self) -> str:
        return "User" if self is ResourceKind.USER else "Group"


SUPPORTED_TYPES = ("string", "boolean", "number")

DEFAULT_MAPPING: Dict[str, Dict[str, Dict[str, str]]] = {
    "user": {
        "id": {"mapTo": "id", "type": "string"},
        "userName": {"mapTo": "userName", "type": "string"},
        "active": {"mapTo": "active", "type": "boolean"},
        "name.givenName": {"mapTo": "name.givenName", "type": "string"},
        "name.familyName": {"mapTo": "name.familyName", "type": "string"},
        "name.formatted": {"mapTo": "name.formatted", "type": "string"},
        "attributes.email": {"mapTo": "emails.work.value", "type": "string"},
        "attributes.telephoneNumber": {"mapTo": "phoneNumbers.work.value", "type": "string"},
        "phoneNumbers.home": {"mapTo": "phoneNumbers.home.value", "type": "string"},
        "addresses.work": {"mapTo": "addresses.work.formatted", "type": "string"},
        "password": {"mapTo": "password", "type": "string"},
    },
    "group": {
        "id": {"mapTo": "id", "type": "string"},
        "displayName": {"mapTo": "displayName", "type": "string"},
    },
}


class MappingRule(NamedTuple):
    """One external attribute bound to one internal document leaf."""
    external_name: str
    internal_name: str
    type: str = "string"


def as_kind(kind: Any) -> ResourceKind:
    """Accept a ResourceKind or its string value."""
    try:
        return ResourceKind(kind)
    except ValueError:
        raise ValueError(f"Unknown resource kind '{kind}'") from None


# ─────────────────────────────────────────────────────────────────────────────
# Dotted-path helpers
# ─────────────────────────────────────────────────────────────────────────────

def flatten(obj: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten a nested mapping into ``{dotted.path: leaf}``.

    Lists of objects carrying a ``type`` key (SCIM multi-valued attributes)
    are keyed by that type, so ``emails: [{type: work, value: x}]`` becomes
    ``emails.work.value``. Any other list is a leaf.
    """
    flat: Dict[str, Any] = {}
    for key, value in obj.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten(value, path))
        elif _is_typed_multi_value(value):
            for item in value:
                entry = {k: v for k, v in item.items() if k != "type"}
                flat.update(flatten(entry, f"{path}.{item['type']}"))
        else:
            flat[path] = value
    return flat


def _is_typed_multi_value(value: Any) -> bool:
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(item, Mapping) and isinstance(item.get("type"), str) for item in value)
    )


def get_path(obj: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path from a nested mapping (None when absent)."""
    current: Any = obj
    for segment in path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return None
        current = current[segment]
    return current


def set_path(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Write a dotted path, creating intermediate objects."""
    segments = path.split(".")
    current = obj
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value


# ─────────────────────────────────────────────────────────────────────────────
# Type coercion
# ─────────────────────────────────────────────────────────────────────────────

def coerce(rule: MappingRule, value: Any) -> Any:
    """Coerce an external value to the rule type (None passes through)."""
    if value is None:
        return None

    if rule.type == "string":
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        raise MappingTypeError(rule.external_name, value, "string")

    if rule.type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise MappingTypeError(rule.external_name, value, "boolean")

    # number; non-finite values do not survive JSON rendering
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isfinite(value):
            return value
    elif isinstance(value, str) and "_" not in value:
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            pass
        else:
            if math.isfinite(number):
                return number
    raise MappingTypeError(rule.external_name, value, "number")


# ─────────────────────────────────────────────────────────────────────────────
# Mapper
# ─────────────────────────────────────────────────────────────────────────────

class AttributeMapper:
    """Compiled, validated rule table per resource kind."""

    def __init__(self, rules: Mapping[Any, Iterable[MappingRule]]):
        self._rules: Dict[ResourceKind, List[MappingRule]] = {}
        for kind, kind_rules in rules.items():
            resource_kind = as_kind(kind)
            compiled = [MappingRule(*rule) for rule in kind_rules]
            _validate_rules(resource_kind, compiled)
            self._rules[resource_kind] = compiled

        for resource_kind in ResourceKind:
            if resource_kind not in self._rules:
                raise MappingConfigError(f"mapping for '{resource_kind.value}' is missing")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AttributeMapper":
        """Build a mapper from the ``{kind: {internal: {mapTo, type}}}`` layout."""
        if not isinstance(config, Mapping):
            raise MappingConfigError("mapping configuration must be an object")

        rules: Dict[str, List[MappingRule]] = {}
        for kind, entries in config.items():
            if not isinstance(entries, Mapping):
                raise MappingConfigError(f"mapping for '{kind}' must be an object")
            kind_rules = []
            for internal_name, entry in entries.items():
                if not isinstance(entry, Mapping) or not entry.get("mapTo"):
                    raise MappingConfigError(f"{kind}.{internal_name}: 'mapTo' is required")
                kind_rules.append(
                    MappingRule(str(entry["mapTo"]), str(internal_name), str(entry.get("type", "string")))
                )
            rules[kind] = kind_rules
        return cls(rules)

    @classmethod
    def default(cls) -> "AttributeMapper":
        return cls.from_config(DEFAULT_MAPPING)

    def rules(self, kind: Any) -> List[MappingRule]:
        return list(self._rules[as_kind(kind)])

    def to_internal(self, kind: Any, external: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Translate an external (partial) resource into a nested document.

        Raises:
            MappingTypeError: If a value cannot be coerced to its rule type
        """
        flat = flatten(external or {})
        internal: Dict[str, Any] = {}
        for rule in self._rules[as_kind(kind)]:
            if rule.external_name in flat:
                set_path(internal, rule.internal_name, coerce(rule, flat[rule.external_name]))
        return internal

    def to_external(self, kind: Any, internal: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Translate a stored document into the external resource shape."""
        external: Dict[str, Any] = {}
        for rule in self._rules[as_kind(kind)]:
            value = get_path(internal or {}, rule.internal_name)
            if value is None:
                continue
            set_path(external, rule.external_name, value)
        return external


def _validate_rules(kind: ResourceKind, rules: List[MappingRule]) -> None:
    for rule in rules:
        if rule.type not in SUPPORTED_TYPES:
            raise MappingConfigError(
                f"{kind.value}.{rule.internal_name}: unsupported type '{rule.type}' "
                f"(expected one of {', '.join(SUPPORTED_TYPES)})"
            )
        for name in (rule.external_name, rule.internal_name):
            if not name or any(not segment for segment in name.split(".")):
                raise MappingConfigError(f"{kind.value}: invalid attribute path '{name}'")

    _ensure_leaf_paths(kind, [rule.external_name for rule in rules], "external")
    _ensure_leaf_paths(kind, [rule.internal_name for rule in rules], "internal")

    if kind.primary_name not in {rule.external_name for rule in rules}:
        raise MappingConfigError(f"{kind.value}: '{kind.primary_name}' must be mapped")


def _ensure_leaf_paths(kind: ResourceKind, paths: List[str], side: str) -> None:
    seen = set()
    for path in paths:
        if path in seen:
            raise MappingConfigError(f"{kind.value}: duplicate {side} name '{path}'")
        seen.add(path)
    for path in paths:
        for other in paths:
            if other != path and other.startswith(path + "."):
                raise MappingConfigError(
                    f"{kind.value}: {side} name '{path}' overlaps '{other}'"
                )
