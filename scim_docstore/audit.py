"""Audit trail for provisioning operations (users, groups, memberships)."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "provisioning-events.jsonl"

EventType = Literal[
    "scim_create_user", "scim_modify_user", "scim_delete_user",
    "scim_create_group", "scim_modify_group", "scim_delete_group",
]


def _get_signing_key() -> bytes:
    """Get the audit signing key from the environment (read at call time)."""
    return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_provisioning_event(
    event_type: EventType,
    resource_type: str,
    identifier: str,
    *,
    operator: str = "scim-api",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append a provisioning event to the audit trail.

    Args:
        event_type: Operation performed (scim_create_user, scim_modify_group, ...)
        resource_type: "User" or "Group"
        identifier: External identifier of the affected resource
        operator: Who performed the operation
        details: Additional context (member edits, pruned groups, ...)
        success: Whether the operation succeeded
    """
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "resource_type": resource_type,
        "identifier": identifier,
        "operator": operator,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_provisioning_event(
    event_type: EventType,
    resource_type: str,
    identifier: str,
    *,
    operator: str = "scim-api",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> bool:
    """Log a provisioning event; write failures go to the module logger.

    Returns:
        True if the event was written, False otherwise
    """
    try:
        log_provisioning_event(
            event_type,
            resource_type,
            identifier,
            operator=operator,
            details=details,
            success=success,
        )
        return True
    except OSError as e:
        logger.warning(f"[audit] Failed to log {event_type} event for {identifier}: {e}")
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            stored_sig = event.pop("signature", "")
            if stored_sig and hmac.compare_digest(stored_sig, _sign_event(event)):
                valid += 1

    return total, valid
