"""Operator CLI for a running SCIM document-store connector.

Talks to the SCIM API over HTTP, so it works against any deployment:

    python scripts/scimctl.py --url http://localhost:8000/scim/v2 create-user --username alice
    python scripts/scimctl.py add-member --group admins --user alice
"""
from __future__ import annotations
import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

REQUEST_TIMEOUT = 5
SCIM_CONTENT_TYPE = "application/scim+json"
PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"


def _segment(name: str) -> str:
    return quote(name, safe="@")


class ScimClientError(Exception):
    """SCIM API returned an error response."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class ScimClient:
    """Minimal HTTP client for the connector's SCIM API.

    Usage:
        client = ScimClient("http://localhost:8000/scim/v2")
        client.create_user({"userName": "alice"})
    """

    def __init__(self, base_url: str, correlation_id: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": SCIM_CONTENT_TYPE, "Accept": SCIM_CONTENT_TYPE}
        if correlation_id:
            self.headers["X-Correlation-Id"] = correlation_id

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        resp = requests.request(
            method, f"{self.base_url}{path}", headers=self.headers, timeout=REQUEST_TIMEOUT, **kwargs
        )
        self._handle_error(resp)
        return resp

    @staticmethod
    def _handle_error(resp: requests.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            detail = resp.json().get("detail") or resp.text
        except ValueError:
            detail = resp.text
        raise ScimClientError(resp.status_code, detail)

    # Users
    def list_users(self, filter_expr: Optional[str] = None, count: Optional[int] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if filter_expr:
            params["filter"] = filter_expr
        if count is not None:
            params["count"] = count
        return self._request("GET", "/Users", params=params).json()

    def get_user(self, user_name: str) -> Dict[str, Any]:
        return self._request("GET", f"/Users/{_segment(user_name)}").json()

    def create_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/Users", json=user).json()

    def delete_user(self, user_name: str) -> None:
        self._request("DELETE", f"/Users/{_segment(user_name)}")

    # Groups
    def list_groups(self, filter_expr: Optional[str] = None) -> Dict[str, Any]:
        params = {"filter": filter_expr} if filter_expr else {}
        return self._request("GET", "/Groups", params=params).json()

    def create_group(self, display_name: str) -> Dict[str, Any]:
        return self._request("POST", "/Groups", json={"displayName": display_name}).json()

    def delete_group(self, display_name: str) -> None:
        self._request("DELETE", f"/Groups/{_segment(display_name)}")

    def add_member(self, display_name: str, user_name: str) -> Dict[str, Any]:
        return self._patch_members(display_name, {"op": "add", "path": "members", "value": [{"value": user_name}]})

    def remove_member(self, display_name: str, user_name: str) -> Dict[str, Any]:
        return self._patch_members(display_name, {"op": "remove", "path": f'members[value eq "{user_name}"]'})

    def _patch_members(self, display_name: str, operation: Dict[str, Any]) -> Dict[str, Any]:
        body = {"schemas": [PATCH_SCHEMA], "Operations": [operation]}
        return self._request("PATCH", f"/Groups/{_segment(display_name)}", json=body).json()


def build_user(args: argparse.Namespace) -> Dict[str, Any]:
    """SCIM user resource from ``create-user`` arguments."""
    user: Dict[str, Any] = {"userName": args.username, "active": not args.inactive}
    name = {key: value for key, value in (("givenName", args.first), ("familyName", args.last)) if value}
    if name:
        user["name"] = name
    if args.email:
        user["emails"] = [{"type": "work", "value": args.email}]
    return user


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _emit(args: argparse.Namespace, payload: Any, summary: str) -> None:
    if args.json:
        _print_json(payload)
    else:
        print(summary)


def _names(list_response: Dict[str, Any], attribute: str) -> List[str]:
    return [resource.get(attribute, "") for resource in list_response.get("Resources", [])]


def main(argv: Optional[List[str]] = None) -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="SCIM document-store connector helper")
    parser.add_argument("--url", default=os.environ.get("SCIM_API_URL", "http://localhost:8000/scim/v2"))
    parser.add_argument("--correlation-id", default=None, help="X-Correlation-Id sent with every request")
    parser.add_argument("--json", action="store_true", help="Print full SCIM resources")

    sub = parser.add_subparsers(dest="cmd")

    lu = sub.add_parser("list-users")
    lu.add_argument("--filter", default=None)
    lu.add_argument("--count", type=int, default=None)

    gu = sub.add_parser("get-user")
    gu.add_argument("--username", required=True)

    cu = sub.add_parser("create-user")
    cu.add_argument("--username", required=True)
    cu.add_argument("--email")
    cu.add_argument("--first")
    cu.add_argument("--last")
    cu.add_argument("--inactive", action="store_true")

    du = sub.add_parser("delete-user")
    du.add_argument("--username", required=True)

    lg = sub.add_parser("list-groups")
    lg.add_argument("--filter", default=None)

    cg = sub.add_parser("create-group")
    cg.add_argument("--name", required=True)

    dg = sub.add_parser("delete-group")
    dg.add_argument("--name", required=True)

    for command in ("add-member", "remove-member"):
        sm = sub.add_parser(command)
        sm.add_argument("--group", required=True)
        sm.add_argument("--user", required=True)

    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    client = ScimClient(args.url, correlation_id=args.correlation_id)

    try:
        if args.cmd == "list-users":
            result = client.list_users(args.filter, args.count)
            _emit(args, result, "\n".join(_names(result, "userName")))
        elif args.cmd == "get-user":
            _print_json(client.get_user(args.username))
        elif args.cmd == "create-user":
            created = client.create_user(build_user(args))
            _emit(args, created, f"Created user {created.get('id')}")
        elif args.cmd == "delete-user":
            client.delete_user(args.username)
            print(f"Deleted user {args.username}")
        elif args.cmd == "list-groups":
            result = client.list_groups(args.filter)
            _emit(args, result, "\n".join(_names(result, "displayName")))
        elif args.cmd == "create-group":
            created = client.create_group(args.name)
            _emit(args, created, f"Created group {created.get('id')}")
        elif args.cmd == "delete-group":
            client.delete_group(args.name)
            print(f"Deleted group {args.name}")
        elif args.cmd == "add-member":
            client.add_member(args.group, args.user)
            print(f"Added {args.user} to {args.group}")
        elif args.cmd == "remove-member":
            client.remove_member(args.group, args.user)
            print(f"Removed {args.user} from {args.group}")
    except ScimClientError as e:
        print(f"[{args.cmd}] Error: {e.detail}", file=sys.stderr)
        sys.exit(1)
    except requests.RequestException as e:
        print(f"[{args.cmd}] Error: cannot reach {args.url}: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
