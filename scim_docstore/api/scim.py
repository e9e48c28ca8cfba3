"""SCIM 2.0 API endpoints (RFC 7644) for users and groups.

This module is a thin HTTP host: it converts SCIM wire payloads into the
provisioning service's resource objects and back, and maps the service's
typed errors onto SCIM error responses.

Architecture:
    SCIM client -> /scim/v2/* -> ProvisioningService -> Store (memory | MongoDB)

Resources are addressed by their primary name (``userName`` for users,
``displayName`` for groups), which is also what ``id`` carries on the wire.
"""

from __future__ import annotations
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from flask import Blueprint, Response, current_app, jsonify, request

from scim_docstore.core.errors import (
    ConnectorError,
    DuplicateKeyError,
    FieldError,
    MappingTypeError,
    MemberNotFoundError,
    NotFoundError,
    UnsupportedFilterError,
)
from scim_docstore.core.mapper import AttributeMapper, ResourceKind
from scim_docstore.core.membership import CLEAR
from scim_docstore.core.provisioning_service import Page, ProvisioningService
from scim_docstore.core.query import Predicate

bp = Blueprint("scim", __name__, url_prefix="/scim/v2")

logger = logging.getLogger(__name__)

USER = ResourceKind.USER
GROUP = ResourceKind.GROUP

SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"
SCIM_LIST_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"

RESOURCE_SCHEMAS = {USER: SCIM_USER_SCHEMA, GROUP: SCIM_GROUP_SCHEMA}
RESOURCE_ENDPOINTS = {USER: "Users", GROUP: "Groups"}

# Rendered as [{"type": ..., ...}] on the wire
MULTI_VALUED_ATTRIBUTES = ("emails", "phoneNumbers", "addresses")

# First match wins; anything else is a 500
ERROR_STATUS: List[Tuple[type, int, Optional[str]]] = [
    (MappingTypeError, 400, "invalidValue"),
    (UnsupportedFilterError, 400, "invalidFilter"),
    (NotFoundError, 404, None),
    (MemberNotFoundError, 400, "invalidValue"),
    (DuplicateKeyError, 409, "uniqueness"),
    (FieldError, 400, "invalidValue"),
]

_MEMBER_FILTER_PATH = re.compile(r"""^members\[\s*value\s+eq\s+(?:"([^"]*)"|'([^']*)')\s*\]$""", re.IGNORECASE)
_TYPED_VALUE_PATH = re.compile(r"""^(\w+)\[\s*type\s+eq\s+(?:"([^"]*)"|'([^']*)')\s*\](?:\.(\w+))?$""", re.IGNORECASE)


class ScimError(Exception):
    """Request-level SCIM protocol error with HTTP status and optional scimType."""

    def __init__(self, status: int, detail: str, scim_type: Optional[str] = None):
        self.status = status
        self.detail = detail
        self.scim_type = scim_type
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to SCIM error response format."""
        error_dict = {
            "schemas": [SCIM_ERROR_SCHEMA],
            "status": str(self.status),
            "detail": self.detail,
        }
        if self.scim_type:
            error_dict["scimType"] = self.scim_type
        return error_dict


# ─────────────────────────────────────────────────────────────────────────────
# Error Handlers
# ─────────────────────────────────────────────────────────────────────────────

def scim_error(status: int, detail: str, scim_type: str = None) -> tuple[Response, int]:
    """Create SCIM error response tuple for route handlers."""
    error = ScimError(status, detail, scim_type)
    return jsonify(error.to_dict()), status


def error_status(error: ConnectorError) -> Tuple[int, Optional[str]]:
    """HTTP status and scimType for a connector error."""
    for error_type, status, scim_type in ERROR_STATUS:
        if isinstance(error, error_type):
            return status, scim_type
    return 500, None


@bp.errorhandler(ScimError)
def handle_scim_error(error: ScimError):
    return jsonify(error.to_dict()), error.status


@bp.errorhandler(ConnectorError)
def handle_connector_error(error: ConnectorError):
    """Map the provisioning service's typed failures onto SCIM errors."""
    status, scim_type = error_status(error)
    if status >= 500:
        logger.error(f"SCIM {request.method} {request.path} failed: {error}")
    return scim_error(status, str(error), scim_type)


@bp.after_request
def add_correlation_id(response):
    """Echo the correlation ID for tracing."""
    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        response.headers["X-Correlation-Id"] = correlation_id
    return response


# ─────────────────────────────────────────────────────────────────────────────
# Wire Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _service() -> ProvisioningService:
    return current_app.extensions["provisioning_service"]


def _ctx() -> Dict[str, Any]:
    return {"correlation_id": request.headers.get("X-Correlation-Id"), "operator": "scim-api"}


def _location(kind: ResourceKind, identifier: str) -> str:
    cfg = current_app.config.get("APP_CONFIG")
    base_url = cfg.base_url if cfg else "/scim/v2"
    if base_url.startswith("/"):
        base_url = f"{request.host_url.rstrip('/')}{base_url}"
    return f"{base_url}/{RESOURCE_ENDPOINTS[kind]}/{quote(str(identifier), safe='@')}"


def to_wire(kind: ResourceKind, resource: Dict[str, Any]) -> Dict[str, Any]:
    """Render a service resource as a SCIM resource."""
    body: Dict[str, Any] = {"schemas": [RESOURCE_SCHEMAS[kind]]}
    body.update(resource)
    for attribute in MULTI_VALUED_ATTRIBUTES:
        typed = body.get(attribute)
        if isinstance(typed, dict):
            body[attribute] = [
                {"type": value_type, **value}
                for value_type, value in typed.items()
                if isinstance(value, dict)
            ]
    if "id" in body:
        body["meta"] = {"resourceType": kind.resource_type, "location": _location(kind, body["id"])}
    return body


def _list_response(kind: ResourceKind, page: Page, start_index: int) -> Dict[str, Any]:
    return {
        "schemas": [SCIM_LIST_SCHEMA],
        "totalResults": page.total_count,
        "startIndex": max(1, start_index),
        "itemsPerPage": len(page.resources),
        "Resources": [to_wire(kind, resource) for resource in page.resources],
    }


def _int_arg(name: str, default: Optional[int]) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ScimError(400, f"{name} must be an integer", "invalidValue") from None


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        raise ScimError(400, "Request body must be a JSON object", "invalidSyntax")
    return payload


def _fetch(kind: ResourceKind, identifier: str) -> Dict[str, Any]:
    predicate = Predicate(attribute="id", operator="eq", value=identifier)
    if kind is USER:
        page = _service().get_users(predicate, ctx=_ctx())
    else:
        page = _service().get_groups(predicate, ctx=_ctx())
    if not page.resources:
        raise ScimError(404, f"{kind.resource_type} {identifier} not found")
    return page.resources[0]


def _member_values(members: Any) -> List[str]:
    if not isinstance(members, list):
        raise ScimError(400, "members must be a list", "invalidValue")
    values = []
    for member in members:
        value = member.get("value") if isinstance(member, dict) else None
        if not value:
            raise ScimError(400, "Each member requires a value", "invalidValue")
        values.append(value)
    return values


def replace_member_edits(desired: List[str]) -> List[Dict[str, Any]]:
    """Membership edits that make ``desired`` the whole member list."""
    return [{"operation": CLEAR}] + [{"value": value} for value in desired]


def _typed_path(path: str) -> str:
    """``emails[type eq "work"].value`` -> ``emails.work.value``."""
    match = _TYPED_VALUE_PATH.match(path)
    if not match:
        return path
    attribute, value_type, sub_attribute = match.group(1), match.group(2) or match.group(3), match.group(4)
    return f"{attribute}.{value_type}.{sub_attribute}" if sub_attribute else f"{attribute}.{value_type}"


def patch_to_attributes(kind: ResourceKind, payload: Dict[str, Any], mapper: AttributeMapper) -> Dict[str, Any]:
    """Convert a SCIM PatchOp body into a partial resource.

    Group ``members`` operations become membership edits under ``members``.
    A ``remove`` clears every mapped attribute at or below its path.

    Raises:
        ScimError: If the body is not a well-formed PatchOp
    """
    if SCIM_PATCH_SCHEMA not in (payload.get("schemas") or []):
        raise ScimError(400, f"schemas must contain '{SCIM_PATCH_SCHEMA}'", "invalidSyntax")

    operations = payload.get("Operations")
    if not isinstance(operations, list) or not operations:
        raise ScimError(400, "At least one operation is required", "invalidSyntax")

    attributes: Dict[str, Any] = {}
    edits: List[Dict[str, Any]] = []

    for operation in operations:
        if not isinstance(operation, dict):
            raise ScimError(400, "Operation must be an object", "invalidSyntax")

        op = str(operation.get("op", "")).lower()
        path = operation.get("path")
        value = operation.get("value")
        if op not in ("add", "replace", "remove"):
            raise ScimError(400, f"Unsupported operation '{operation.get('op')}'", "invalidSyntax")

        if kind is GROUP and path and path.split("[")[0] == "members":
            edits.extend(_member_edits(op, path, value))
            continue

        if not path:
            if not isinstance(value, dict):
                raise ScimError(400, "Operation without path requires an object value", "invalidValue")
            value = dict(value)
            if kind is GROUP and "members" in value:
                edits.extend(_member_edits(op, "members", value.pop("members")))
            attributes.update(value)
            continue

        if op == "remove":
            attributes.update(_removed_attributes(kind, path, mapper))
        else:
            attributes[_typed_path(path)] = value

    if edits:
        attributes["members"] = edits
    return attributes


def _removed_attributes(kind: ResourceKind, path: str, mapper: AttributeMapper) -> Dict[str, None]:
    target = _typed_path(path)
    names = [
        rule.external_name
        for rule in mapper.rules(kind)
        if rule.external_name == target or rule.external_name.startswith(target + ".")
    ]
    if not names:
        raise ScimError(400, f"No mapped attribute at path '{path}'", "noTarget")
    return dict.fromkeys(names)


def _member_edits(op: str, path: str, value: Any) -> List[Dict[str, Any]]:
    if op == "remove":
        match = _MEMBER_FILTER_PATH.match(path)
        if match:
            removed = [match.group(1) if match.group(1) is not None else match.group(2)]
        elif value is not None:
            removed = _member_values(value)
        else:
            return [{"operation": CLEAR}]
        return [{"value": member, "operation": "delete"} for member in removed]

    if path != "members":
        raise ScimError(400, f"Unsupported members path '{path}'", "invalidPath")
    desired = _member_values(value)
    if op == "replace":
        return replace_member_edits(desired)
    return [{"value": member} for member in desired]


# ─────────────────────────────────────────────────────────────────────────────
# Discovery
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/ServiceProviderConfig", methods=["GET"])
def service_provider_config():
    """Return SCIM ServiceProviderConfig (RFC 7643 Section 5)."""
    config = {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"],
        "patch": {"supported": True},
        "bulk": {"supported": False, "maxOperations": 0, "maxPayloadSize": 0},
        "filter": {"supported": True, "maxResults": _service().max_results},
        "changePassword": {"supported": False},
        "sort": {"supported": False},
        "etag": {"supported": False},
        "authenticationSchemes": [],
    }
    return jsonify(config), 200


# ─────────────────────────────────────────────────────────────────────────────
# Users
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/Users", methods=["GET"])
def list_users():
    """List users; ``filter`` supports identifier equality only."""
    start_index = _int_arg("startIndex", 1)
    page = _service().get_users(
        Predicate.parse(request.args.get("filter")),
        start_index=start_index,
        count=_int_arg("count", None),
        ctx=_ctx(),
    )
    return jsonify(_list_response(USER, page, start_index)), 200


@bp.route("/Users/<user_id>", methods=["GET"])
def get_user(user_id: str):
    return jsonify(to_wire(USER, _fetch(USER, user_id))), 200


@bp.route("/Users", methods=["POST"])
def create_user():
    """Create a user; 201 with Location header."""
    scim_user = to_wire(USER, _service().create_user(_json_body(), ctx=_ctx()))
    response = jsonify(scim_user)
    response.status_code = 201
    response.headers["Location"] = scim_user["meta"]["location"]
    return response


@bp.route("/Users/<user_id>", methods=["PUT"])
def replace_user(user_id: str):
    """Update a user from a full resource (unmapped attributes are ignored)."""
    payload = _json_body()
    _service().modify_user(user_id, payload, ctx=_ctx())
    return jsonify(to_wire(USER, _fetch(USER, payload.get("userName") or user_id))), 200


@bp.route("/Users/<user_id>", methods=["PATCH"])
def patch_user(user_id: str):
    attributes = patch_to_attributes(USER, _json_body(), _service().mapper)
    _service().modify_user(user_id, attributes, ctx=_ctx())
    return jsonify(to_wire(USER, _fetch(USER, attributes.get("userName") or user_id))), 200


@bp.route("/Users/<user_id>", methods=["DELETE"])
def delete_user(user_id: str):
    _service().delete_user(user_id, ctx=_ctx())
    return "", 204


# ─────────────────────────────────────────────────────────────────────────────
# Groups
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/Groups", methods=["GET"])
def list_groups():
    start_index = _int_arg("startIndex", 1)
    page = _service().get_groups(
        Predicate.parse(request.args.get("filter")),
        start_index=start_index,
        count=_int_arg("count", None),
        ctx=_ctx(),
    )
    return jsonify(_list_response(GROUP, page, start_index)), 200


@bp.route("/Groups/<group_id>", methods=["GET"])
def get_group(group_id: str):
    return jsonify(to_wire(GROUP, _fetch(GROUP, group_id))), 200


@bp.route("/Groups", methods=["POST"])
def create_group():
    """Create a group; members in the payload are added afterwards."""
    payload = _json_body()
    scim_group = _service().create_group(payload, ctx=_ctx())

    members = _member_values(payload["members"]) if payload.get("members") else []
    if members:
        _service().modify_group(scim_group["id"], {"members": [{"value": m} for m in members]}, ctx=_ctx())
        scim_group = _fetch(GROUP, scim_group["id"])

    body = to_wire(GROUP, scim_group)
    response = jsonify(body)
    response.status_code = 201
    response.headers["Location"] = body["meta"]["location"]
    return response


@bp.route("/Groups/<group_id>", methods=["PUT"])
def replace_group(group_id: str):
    """Update a group; ``members`` replaces the member list when present."""
    payload = _json_body()
    attributes = {key: value for key, value in payload.items() if key != "members"}
    if "members" in payload:
        attributes["members"] = replace_member_edits(_member_values(payload["members"] or []))

    _service().modify_group(group_id, attributes, ctx=_ctx())
    return jsonify(to_wire(GROUP, _fetch(GROUP, payload.get("displayName") or group_id))), 200


@bp.route("/Groups/<group_id>", methods=["PATCH"])
def patch_group(group_id: str):
    attributes = patch_to_attributes(GROUP, _json_body(), _service().mapper)
    _service().modify_group(group_id, attributes, ctx=_ctx())
    return jsonify(to_wire(GROUP, _fetch(GROUP, attributes.get("displayName") or group_id))), 200


@bp.route("/Groups/<group_id>", methods=["DELETE"])
def delete_group(group_id: str):
    _service().delete_group(group_id, ctx=_ctx())
    return "", 204
