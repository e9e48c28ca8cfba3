"""In-process document store (demo mode and tests)."""
from __future__ import annotations
import copy
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .base import RecordNotFoundError, Store, UniqueConstraintError, WriteRejectedError

DEFAULT_UNIQUE_FIELDS: Dict[str, Sequence[str]] = {
    "user": ("userName",),
    "group": ("displayName",),
}

DEFAULT_REQUIRED_FIELDS: Dict[str, Sequence[str]] = {
    "user": ("userName",),
    "group": ("displayName",),
}


def _get(doc: Mapping[str, Any], path: str) -> Any:
    current: Any = doc
    for segment in path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return None
        current = current[segment]
    return current


def _matches(doc: Mapping[str, Any], where: Mapping[str, Any]) -> bool:
    for path, condition in where.items():
        value = _get(doc, path)
        if isinstance(condition, Mapping):
            if "has" in condition:
                if not isinstance(value, list) or condition["has"] not in value:
                    return False
            if "in" in condition and value not in condition["in"]:
                return False
        elif value != condition:
            return False
    return True


def _merge(target: Dict[str, Any], data: Mapping[str, Any]) -> None:
    for key, value in data.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class MemoryStore(Store):
    """Thread-safe dictionary-backed store.

    Records are copied on the way in and out, so callers never share state
    with the store.

    Args:
        unique_fields: Unique dotted fields per kind
        required_fields: Fields a created document must carry per kind
    """

    def __init__(
        self,
        unique_fields: Optional[Mapping[str, Sequence[str]]] = None,
        required_fields: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self.unique_fields = dict(unique_fields if unique_fields is not None else DEFAULT_UNIQUE_FIELDS)
        self.required_fields = dict(required_fields if required_fields is not None else DEFAULT_REQUIRED_FIELDS)
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {"user": {}, "group": {}}
        self._lock = threading.Lock()

    def _kind(self, kind: str) -> str:
        return str(getattr(kind, "value", kind))

    def _table(self, kind: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(self._kind(kind), {})

    def _find(self, kind: str, where: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return [doc for doc in self._table(kind).values() if _matches(doc, where)]

    def _check_unique(self, kind: str, doc: Mapping[str, Any], exclude_id: Optional[str] = None) -> None:
        conflicts = []
        for path in self.unique_fields.get(self._kind(kind), ()):
            value = _get(doc, path)
            if value is None:
                continue
            for other in self._table(kind).values():
                if other["id"] != exclude_id and _get(other, path) == value:
                    conflicts.append(path)
                    break
        if conflicts:
            raise UniqueConstraintError(conflicts)

    def find_many(self, kind: str, where: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._find(kind, where))

    def find_unique(self, kind: str, where: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            rows = self._find(kind, where)
            return copy.deepcopy(rows[0]) if rows else None

    def create(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        missing = [path for path in self.required_fields.get(self._kind(kind), ()) if _get(data, path) is None]
        if missing:
            raise WriteRejectedError(missing, f"Missing required value for {', '.join(missing)}")

        doc = copy.deepcopy(data)
        doc["id"] = str(doc.get("id") or uuid.uuid4())
        with self._lock:
            if doc["id"] in self._table(kind):
                raise UniqueConstraintError(["id"])
            self._check_unique(kind, doc)
            self._table(kind)[doc["id"]] = doc
            return copy.deepcopy(doc)

    def update(self, kind: str, where: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rows = self._find(kind, where)
            if not rows:
                raise RecordNotFoundError(f"No {self._kind(kind)} record matches {where}")
            current = rows[0]
            updated = copy.deepcopy(current)
            _merge(updated, {k: v for k, v in data.items() if k != "id"})
            for path in self.required_fields.get(self._kind(kind), ()):
                if _get(updated, path) is None:
                    raise WriteRejectedError([path], f"Missing required value for {path}")
            self._check_unique(kind, updated, exclude_id=current["id"])
            self._table(kind)[current["id"]] = updated
            return copy.deepcopy(updated)

    def delete(self, kind: str, where: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rows = self._find(kind, where)
            if not rows:
                raise RecordNotFoundError(f"No {self._kind(kind)} record matches {where}")
            return self._table(kind).pop(rows[0]["id"])
