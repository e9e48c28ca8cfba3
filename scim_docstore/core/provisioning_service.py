"""
Provisioning Service Layer: SCIM operations over a document store

This module exposes the eight resource operations (get/create/modify/delete
× user/group) consumed by the SCIM API. It sequences attribute mapping,
query translation and membership maintenance, and is the single error
boundary of the core.

Architecture:
    SCIM API (/scim/v2/*) ──> ProvisioningService ──┬──> AttributeMapper
                                                    ├──> QueryTranslator
                                                    ├──> MembershipService
                                                    └──> Store (memory | MongoDB)

Features:
    - Resources addressed by their primary name (userName / displayName)
    - Existence checks before every modify/delete
    - Membership pruned from every group before a user is deleted
    - Idempotent, duplicate-free membership edits
    - Typed errors tagged with the failing operation
"""

from __future__ import annotations
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from scim_docstore import audit
from scim_docstore.store.base import (
    RecordNotFoundError,
    Store,
    UniqueConstraintError,
    WriteRejectedError,
)

from .errors import (
    ConnectorError,
    DuplicateKeyError,
    FieldError,
    NotFoundError,
    StoreFaultError,
)
from .mapper import AttributeMapper, ResourceKind, flatten, get_path
from .membership import MembershipService
from .query import Predicate, QueryTranslator

logger = logging.getLogger(__name__)

USER = ResourceKind.USER
GROUP = ResourceKind.GROUP

DEFAULT_MAX_RESULTS = 200

# Never returned to callers, even when mapped
SENSITIVE_ATTRIBUTES = ("password",)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass
class Page:
    """One page of a listing; ``total_count`` counts every match."""
    resources: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0


def _operation(action: str) -> Callable[[F], F]:
    """Error boundary: tag connector errors, wrap anything else as a store fault."""
    def decorator(method: F) -> F:
        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            identifier = next((arg for arg in args if isinstance(arg, str)), "")
            logger.debug(f'[{self.base_entity}] handling "{action}" {identifier}'.rstrip())
            try:
                return method(self, *args, **kwargs)
            except ConnectorError as exc:
                logger.info(f"[{self.base_entity}] {action} failed: {exc.detail}")
                raise exc.with_action(action)
            except Exception as exc:
                logger.error(f"[{self.base_entity}] {action} failed: {exc}", exc_info=True)
                raise StoreFaultError(str(exc), action=action) from exc
        return wrapper  # type: ignore[return-value]
    return decorator


def _audit(
    event_type: audit.EventType,
    kind: ResourceKind,
    identifier: str,
    ctx: Optional[Mapping[str, Any]],
    **details: Any,
) -> None:
    ctx = ctx or {}
    details["correlation_id"] = ctx.get("correlation_id")
    audit.safe_log_provisioning_event(
        event_type,
        kind.resource_type,
        identifier,
        operator=ctx.get("operator", "scim-api"),
        details=details,
    )


class ProvisioningService:
    """The eight resource operations over an injected store.

    Args:
        store: Document store
        mapper: Compiled attribute mapping
        translator: Query translator (built from ``mapper`` if omitted)
        membership: Membership service (built from ``store``/``mapper`` if omitted)
        max_results: Upper bound for the page-size hint
        base_entity: Label used in log lines
    """

    def __init__(
        self,
        store: Store,
        mapper: AttributeMapper,
        *,
        translator: Optional[QueryTranslator] = None,
        membership: Optional[MembershipService] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        base_entity: str = "undefined",
    ):
        self.store = store
        self.mapper = mapper
        self.translator = translator or QueryTranslator(mapper)
        self.membership = membership or MembershipService(store, mapper, self.translator)
        self.max_results = max_results
        self.base_entity = base_entity

    # ─────────────────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────────────────

    @_operation("getUsers")
    def get_users(
        self,
        predicate: Optional[Predicate] = None,
        *,
        start_index: int = 1,
        count: Optional[int] = None,
        ctx: Optional[Mapping[str, Any]] = None,
    ) -> Page:
        """List users matching ``predicate`` with their derived ``groups``.

        Raises:
            UnsupportedFilterError: If the predicate is not identifier equality
        """
        query = self.translator.translate(USER, predicate)
        rows = [] if query.empty else self.store.find_many(USER.value, query.where)

        resources = []
        for row in self._page(rows, start_index, count):
            scim_user = self._to_resource(USER, row)
            scim_user["groups"] = [
                self._reference(GROUP, group) for group in self.membership.list_groups_for(row["id"])
            ]
            resources.append(scim_user)
        return Page(resources, len(rows))

    @_operation("createUser")
    def create_user(self, user_obj: Mapping[str, Any], *, ctx: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Create a user from a SCIM resource.

        Raises:
            MappingTypeError: On an uncoercible attribute
            DuplicateKeyError: If a unique field is already taken
            FieldError: If the store rejects the document
        """
        data = self.mapper.to_internal(USER, user_obj)
        data.pop("id", None)
        created = self._create(USER, data)

        scim_user = self._to_resource(USER, created)
        scim_user["groups"] = []

        _audit("scim_create_user", USER, scim_user.get("id", ""), ctx)
        logger.info(f"[{self.base_entity}] Created user {scim_user.get('id')}")
        return scim_user

    @_operation("modifyUser")
    def modify_user(
        self,
        identifier: str,
        attr_obj: Mapping[str, Any],
        *,
        ctx: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Partially update a user; the document id is never rewritten.

        Raises:
            NotFoundError: If ``identifier`` does not resolve
        """
        existing = self._require(USER, identifier)
        data = self.mapper.to_internal(USER, attr_obj)
        data.pop("id", None)

        if data:
            self._update(USER, existing["id"], identifier, data)

        changed = sorted(key for key in flatten(data) if key not in SENSITIVE_ATTRIBUTES)
        _audit("scim_modify_user", USER, identifier, ctx, attributes=changed)

    @_operation("deleteUser")
    def delete_user(self, identifier: str, *, ctx: Optional[Mapping[str, Any]] = None) -> None:
        """Delete a user after removing it from every group.

        Raises:
            NotFoundError: If ``identifier`` does not resolve
        """
        existing = self._require(USER, identifier)
        pruned = self.membership.prune_user(existing["id"])
        self._delete(USER, existing["id"], identifier)

        _audit("scim_delete_user", USER, identifier, ctx, pruned_groups=len(pruned))
        logger.info(f"[{self.base_entity}] Deleted user {identifier}")

    # ─────────────────────────────────────────────────────────────────────────
    # Groups
    # ─────────────────────────────────────────────────────────────────────────

    @_operation("getGroups")
    def get_groups(
        self,
        predicate: Optional[Predicate] = None,
        *,
        start_index: int = 1,
        count: Optional[int] = None,
        ctx: Optional[Mapping[str, Any]] = None,
    ) -> Page:
        """List groups matching ``predicate`` with resolved ``members``.

        Member ids that no longer reference a user are skipped.
        """
        query = self.translator.translate(GROUP, predicate)
        rows = [] if query.empty else self.store.find_many(GROUP.value, query.where)

        resources = []
        for row in self._page(rows, start_index, count):
            scim_group = self._to_resource(GROUP, row)
            scim_group["members"] = self._resolve_members(row.get("members") or [])
            resources.append(scim_group)
        return Page(resources, len(rows))

    @_operation("createGroup")
    def create_group(self, group_obj: Mapping[str, Any], *, ctx: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Create a group; members always start empty."""
        data = self.mapper.to_internal(GROUP, group_obj)
        data.pop("id", None)
        data["members"] = []
        created = self._create(GROUP, data)

        scim_group = self._to_resource(GROUP, created)
        scim_group["members"] = []

        _audit("scim_create_group", GROUP, scim_group.get("id", ""), ctx)
        logger.info(f"[{self.base_entity}] Created group {scim_group.get('id')}")
        return scim_group

    @_operation("modifyGroup")
    def modify_group(
        self,
        identifier: str,
        attr_obj: Mapping[str, Any],
        *,
        ctx: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Partially update a group and apply ``attr_obj["members"]`` edits.

        Raises:
            NotFoundError: If ``identifier`` does not resolve
            MemberNotFoundError: If a member edit references an unknown user
        """
        existing = self._require(GROUP, identifier)
        data = self.mapper.to_internal(GROUP, attr_obj)
        data.pop("id", None)

        edits = attr_obj.get("members") or []
        if edits:
            data["members"] = self.membership.apply_membership_edits(existing, edits)

        if data:
            self._update(GROUP, existing["id"], identifier, data)

        _audit(
            "scim_modify_group",
            GROUP,
            identifier,
            ctx,
            attributes=sorted(key for key in flatten(data) if key != "members"),
            member_edits=[
                {"value": edit.get("value"), "operation": edit.get("operation") or "add"} for edit in edits
            ],
        )

    @_operation("deleteGroup")
    def delete_group(self, identifier: str, *, ctx: Optional[Mapping[str, Any]] = None) -> None:
        """Delete a group (users hold no group references)."""
        existing = self._require(GROUP, identifier)
        self._delete(GROUP, existing["id"], identifier)

        _audit("scim_delete_group", GROUP, identifier, ctx)
        logger.info(f"[{self.base_entity}] Deleted group {identifier}")

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _page(self, rows: List[Dict[str, Any]], start_index: int, count: Optional[int]) -> List[Dict[str, Any]]:
        start = max(1, int(start_index or 1)) - 1
        limit = self.max_results if count is None else min(self.max_results, max(0, int(count)))
        return rows[start:start + limit]

    def _to_resource(self, kind: ResourceKind, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Inbound-map a document; ``id`` carries the primary name."""
        resource = self.mapper.to_external(kind, row)
        for attribute in SENSITIVE_ATTRIBUTES:
            resource.pop(attribute, None)

        resource.pop("id", None)
        primary_name = get_path(resource, kind.primary_name)
        if primary_name is not None:
            resource["id"] = primary_name
        return resource

    def _reference(self, kind: ResourceKind, row: Mapping[str, Any]) -> Dict[str, Any]:
        name = get_path(self.mapper.to_external(kind, row), kind.primary_name)
        return {"value": name, "display": name}

    def _resolve_members(self, member_ids: List[str]) -> List[Dict[str, Any]]:
        if not member_ids:
            return []
        users = {user["id"]: user for user in self.store.find_many(USER.value, {"id": {"in": member_ids}})}
        members = []
        for member_id in member_ids:
            user = users.get(member_id)
            if user is None:
                logger.debug(f"Skipping dangling member id {member_id}")
                continue
            members.append(self._reference(USER, user))
        return members

    def _require(self, kind: ResourceKind, identifier: str) -> Dict[str, Any]:
        row = self.store.find_unique(kind.value, self.translator.identity_where(kind, identifier))
        if not row:
            raise NotFoundError(kind.resource_type, identifier)
        return row

    def _create(self, kind: ResourceKind, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self.store.create(kind.value, data)
        except UniqueConstraintError as exc:
            raise DuplicateKeyError(exc.fields) from exc
        except WriteRejectedError as exc:
            raise FieldError(exc.fields, exc.message) from exc

    def _update(self, kind: ResourceKind, internal_id: str, identifier: str, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self.store.update(kind.value, {"id": internal_id}, data)
        except RecordNotFoundError as exc:
            raise NotFoundError(kind.resource_type, identifier) from exc
        except UniqueConstraintError as exc:
            raise DuplicateKeyError(exc.fields) from exc
        except WriteRejectedError as exc:
            raise FieldError(exc.fields, exc.message) from exc

    def _delete(self, kind: ResourceKind, internal_id: str, identifier: str) -> None:
        try:
            self.store.delete(kind.value, {"id": internal_id})
        except RecordNotFoundError as exc:
            raise NotFoundError(kind.resource_type, identifier) from exc
