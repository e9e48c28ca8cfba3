"""Tests for the application factory wiring."""

from unittest.mock import MagicMock, patch

from scim_docstore.config import AppConfig
from scim_docstore.core.mapper import AttributeMapper
from scim_docstore.flask_app import build_mapper, build_store, create_app, primary_fields
from scim_docstore.store import MemoryStore, StoreError


def test_create_app_builds_memory_service():
    app = create_app(AppConfig(demo_mode=True, store_backend="memory", max_results=25))

    service = app.extensions["provisioning_service"]
    assert isinstance(service.store, MemoryStore)
    assert service.max_results == 25
    assert app.config["APP_CONFIG"].demo_mode is True


def test_build_mapper_from_file(tmp_path):
    mapping_file = tmp_path / "mapping.yaml"
    mapping_file.write_text(
        "user:\n"
        "  login: {mapTo: userName}\n"
        "group:\n"
        "  title: {mapTo: displayName}\n"
    )

    mapper = build_mapper(AppConfig(demo_mode=True, mapping_file=str(mapping_file)))

    assert mapper.to_internal("user", {"userName": "alice"}) == {"login": "alice"}


def test_primary_fields_follow_mapping():
    mapper = AttributeMapper.from_config(
        {"user": {"login": {"mapTo": "userName"}}, "group": {"title": {"mapTo": "displayName"}}}
    )
    assert primary_fields(mapper) == {"user": ["login"], "group": ["title"]}


def test_memory_store_enforces_mapped_primary_field(mapper):
    store = build_store(AppConfig(demo_mode=True, store_backend="memory"), mapper)
    assert store.unique_fields == {"user": ["userName"], "group": ["displayName"]}


def test_build_mongodb_store(mapper):
    cfg = AppConfig(
        demo_mode=False,
        store_backend="mongodb",
        mongo_uri="mongodb://db:27017",
        mongo_database="idm",
        mongo_timeout_ms=1000,
    )
    with patch("scim_docstore.store.mongodb.MongoStore.from_uri") as from_uri:
        store = build_store(cfg, mapper)

    from_uri.assert_called_once_with(
        "mongodb://db:27017",
        "idm",
        {"user": "users", "group": "groups"},
        timeout_ms=1000,
        unique_fields={"user": ["userName"], "group": ["displayName"]},
    )
    store.ensure_indexes.assert_called_once()


def test_index_failure_does_not_block_startup(mapper):
    cfg = AppConfig(demo_mode=False, store_backend="mongodb", mongo_uri="mongodb://db:27017")
    mongo_store = MagicMock()
    mongo_store.ensure_indexes.side_effect = StoreError("no servers")

    with patch("scim_docstore.store.mongodb.MongoStore.from_uri", return_value=mongo_store):
        assert build_store(cfg, mapper) is mongo_store
