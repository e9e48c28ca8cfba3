"""Unit tests for provisioning audit logging."""

import json

import pytest

from scim_docstore import audit


@pytest.fixture
def temp_audit_dir(isolated_audit_log):
    """Isolated audit directory (see conftest)."""
    return isolated_audit_log


def test_log_provisioning_event_creates_file(temp_audit_dir):
    """Test that logging creates the audit file."""
    audit_dir, audit_file = temp_audit_dir

    assert not audit_file.exists()

    audit.log_provisioning_event("scim_create_user", "User", "alice", operator="admin")

    assert audit_file.exists()
    assert audit_file.stat().st_mode & 0o777 == 0o600
    assert audit_dir.stat().st_mode & 0o777 == 0o700


def test_logged_events_are_valid_json(temp_audit_dir):
    _, audit_file = temp_audit_dir

    audit.log_provisioning_event(
        "scim_modify_group",
        "Group",
        "eng",
        details={"member_edits": [{"value": "alice", "operation": "add"}]},
    )

    event = json.loads(audit_file.read_text().strip())
    assert event["event_type"] == "scim_modify_group"
    assert event["resource_type"] == "Group"
    assert event["identifier"] == "eng"
    assert event["operator"] == "scim-api"
    assert event["success"] is True
    assert event["details"]["member_edits"] == [{"value": "alice", "operation": "add"}]
    assert "timestamp" in event
    assert "signature" in event


def test_multiple_events_append(temp_audit_dir):
    _, audit_file = temp_audit_dir

    audit.log_provisioning_event("scim_create_group", "Group", "eng")
    audit.log_provisioning_event("scim_delete_group", "Group", "eng")

    assert len(audit_file.read_text().strip().split("\n")) == 2


def test_verify_audit_log_valid_signatures(temp_audit_dir):
    audit.log_provisioning_event("scim_create_user", "User", "alice")
    audit.log_provisioning_event("scim_delete_user", "User", "alice", details={"pruned_groups": 2})

    assert audit.verify_audit_log() == (2, 2)


def test_verify_audit_log_detects_tampering(temp_audit_dir):
    _, audit_file = temp_audit_dir

    audit.log_provisioning_event("scim_create_user", "User", "alice")
    audit.log_provisioning_event("scim_create_user", "User", "bob")

    lines = audit_file.read_text().strip().split("\n")
    tampered = json.loads(lines[0])
    tampered["identifier"] = "mallory"
    lines[0] = json.dumps(tampered)
    audit_file.write_text("\n".join(lines) + "\n")

    assert audit.verify_audit_log() == (2, 1)


def test_verify_audit_log_empty(temp_audit_dir):
    assert audit.verify_audit_log() == (0, 0)


def test_unsigned_events_without_key(temp_audit_dir, monkeypatch):
    _, audit_file = temp_audit_dir
    monkeypatch.delenv("AUDIT_LOG_SIGNING_KEY", raising=False)

    audit.log_provisioning_event("scim_create_user", "User", "alice")

    assert "signature" not in json.loads(audit_file.read_text())


def test_safe_log_reports_write_failure(temp_audit_dir, monkeypatch):
    def fail():
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(audit, "_ensure_audit_dir", fail)

    assert audit.safe_log_provisioning_event("scim_create_user", "User", "alice") is False


def test_safe_log_success(temp_audit_dir):
    assert audit.safe_log_provisioning_event("scim_create_user", "User", "alice") is True
