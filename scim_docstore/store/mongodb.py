"""MongoDB store backed by pymongo.

Documents keep their identity in ``_id`` (a uuid4 string); the store exposes
it as ``id`` so the core never sees driver-specific keys.

Usage:
    store = MongoStore.from_uri("mongodb://mongo:27017", "scim")
    store.ensure_indexes()
    store.find_many("user", {"userName": "alice"})
"""
from __future__ import annotations
import copy
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from pymongo import MongoClient, ReturnDocument
from pymongo import errors as pymongo_errors

from .base import RecordNotFoundError, Store, StoreError, UniqueConstraintError, WriteRejectedError
from .memory import DEFAULT_UNIQUE_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS: Dict[str, str] = {"user": "users", "group": "groups"}


def to_mongo_filter(where: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate a store where-predicate into a MongoDB query document."""
    query: Dict[str, Any] = {}
    for path, condition in where.items():
        field = "_id" if path == "id" else path
        if isinstance(condition, Mapping):
            if "has" in condition:
                query[field] = condition["has"]
            elif "in" in condition:
                query[field] = {"$in": list(condition["in"])}
            else:
                raise ValueError(f"Unsupported where condition for '{path}': {dict(condition)}")
        else:
            query[field] = condition
    return query


def to_set_document(data: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested objects into ``$set`` dotted paths (lists are leaves)."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, Mapping) and value:
            flat.update(to_set_document(value, path))
        else:
            flat[path] = value
    return flat


def from_document(doc: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    record = dict(doc)
    record["id"] = str(record.pop("_id"))
    return record


def _rejected_fields(details: Mapping[str, Any]) -> List[str]:
    """Best-effort field names from a document validation failure."""
    fields: List[str] = []
    rules = (details.get("errInfo") or {}).get("details", {}).get("schemaRulesNotSatisfied", [])
    for rule in rules:
        for prop in rule.get("propertiesNotSatisfied", []):
            if prop.get("propertyName"):
                fields.append(prop["propertyName"])
        fields.extend(rule.get("missingProperties", []))
    return fields


class MongoStore(Store):
    """Store implementation over a pymongo ``Database``."""

    def __init__(
        self,
        database,
        collections: Optional[Mapping[str, str]] = None,
        unique_fields: Optional[Mapping[str, Sequence[str]]] = None,
        client: Optional[MongoClient] = None,
    ):
        self.database = database
        self.collections = dict(collections or DEFAULT_COLLECTIONS)
        self.unique_fields = dict(unique_fields if unique_fields is not None else DEFAULT_UNIQUE_FIELDS)
        self._client = client

    @classmethod
    def from_uri(
        cls,
        uri: str,
        database: str,
        collections: Optional[Mapping[str, str]] = None,
        timeout_ms: int = 5000,
        unique_fields: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> "MongoStore":
        """Connect with a pooled client (connection is established lazily)."""
        client = MongoClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            uuidRepresentation="standard",
            appname="scim-docstore",
        )
        return cls(client[database], collections, unique_fields, client=client)

    def _collection(self, kind: str):
        name = str(getattr(kind, "value", kind))
        try:
            return self.database[self.collections[name]]
        except KeyError:
            raise StoreError(f"No collection configured for '{name}'") from None

    @contextmanager
    def _driver_errors(self) -> Iterator[None]:
        try:
            yield
        except pymongo_errors.DuplicateKeyError as exc:
            key_value = (exc.details or {}).get("keyValue") or {}
            raise UniqueConstraintError(list(key_value.keys()) or ["unknown"]) from exc
        except pymongo_errors.WriteError as exc:
            raise WriteRejectedError(_rejected_fields(exc.details or {}), str(exc)) from exc
        except pymongo_errors.PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def ensure_indexes(self) -> None:
        """Create unique indexes (idempotent)."""
        for kind, fields in self.unique_fields.items():
            for field in fields:
                with self._driver_errors():
                    self._collection(kind).create_index(field, unique=True)
                logger.info(f"Ensured unique index {self.collections.get(kind)}.{field}")

    def find_many(self, kind: str, where: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._driver_errors():
            return [from_document(doc) for doc in self._collection(kind).find(to_mongo_filter(where))]

    def find_unique(self, kind: str, where: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._driver_errors():
            return from_document(self._collection(kind).find_one(to_mongo_filter(where)))

    def find_first(self, kind: str, where: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.find_unique(kind, where)

    def create(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc = copy.deepcopy(data)
        doc["_id"] = str(doc.pop("id", None) or uuid.uuid4())
        with self._driver_errors():
            self._collection(kind).insert_one(doc)
        return from_document(doc)

    def update(self, kind: str, where: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        query = to_mongo_filter(where)
        changes = to_set_document({k: v for k, v in data.items() if k != "id"})
        with self._driver_errors():
            if changes:
                doc = self._collection(kind).find_one_and_update(
                    query, {"$set": changes}, return_document=ReturnDocument.AFTER
                )
            else:
                doc = self._collection(kind).find_one(query)
        if doc is None:
            raise RecordNotFoundError(f"No {kind} record matches {where}")
        return from_document(doc)

    def delete(self, kind: str, where: Dict[str, Any]) -> Dict[str, Any]:
        with self._driver_errors():
            doc = self._collection(kind).find_one_and_delete(to_mongo_filter(where))
        if doc is None:
            raise RecordNotFoundError(f"No {kind} record matches {where}")
        return from_document(doc)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
