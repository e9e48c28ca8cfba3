"""Pytest shared fixtures."""
import os
import pathlib
import sys

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")
os.environ.setdefault("STORE_BACKEND", "memory")

import pytest

from scim_docstore import audit
from scim_docstore.config import AppConfig
from scim_docstore.core.mapper import AttributeMapper
from scim_docstore.core.provisioning_service import ProvisioningService
from scim_docstore.store import MemoryStore


@pytest.fixture(autouse=True)
def isolated_audit_log(tmp_path, monkeypatch):
    """Every test writes its audit trail to a private directory."""
    audit_dir = tmp_path / "audit"
    audit_file = audit_dir / "provisioning-events.jsonl"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_file)
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    yield audit_dir, audit_file


@pytest.fixture
def mapper():
    return AttributeMapper.default()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def service(store, mapper):
    return ProvisioningService(store, mapper, base_entity="test")


@pytest.fixture
def app_config():
    return AppConfig(demo_mode=True, store_backend="memory", base_url="/scim/v2")


@pytest.fixture
def app(app_config, service):
    """Flask app wired to the in-memory service."""
    from scim_docstore.flask_app import create_app

    app = create_app(app_config, service)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client
