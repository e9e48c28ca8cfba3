import os

import pytest

from scim_docstore.config import settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "DEMO_MODE",
        "STORE_BACKEND",
        "MONGO_URI",
        "MONGO_DATABASE",
        "MONGO_TIMEOUT_MS",
        "MAPPING_FILE",
        "APP_BASE_URL",
        "SCIM_MAX_RESULTS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(settings, "_load_secret_from_file", lambda name, env_var=None: os.environ.get(env_var or ""))
    return monkeypatch


def test_demo_mode_defaults_to_memory_store(clean_env):
    clean_env.setenv("DEMO_MODE", "true")

    cfg = settings.load_settings()

    assert cfg.demo_mode is True
    assert cfg.store_backend == "memory"
    assert cfg.max_results == 200
    assert cfg.base_url == "/scim/v2"
    assert os.environ.get("AUDIT_LOG_SIGNING_KEY")


def test_production_requires_mongo_uri(clean_env):
    with pytest.raises(RuntimeError, match="MONGO_URI"):
        settings.load_settings()


def test_production_settings(clean_env):
    clean_env.setenv("MONGO_URI", "mongodb://db:27017")
    clean_env.setenv("MONGO_DATABASE", "idm")
    clean_env.setenv("MONGO_USER_COLLECTION", "people")
    clean_env.setenv("SCIM_MAX_RESULTS", "50")
    clean_env.setenv("APP_BASE_URL", "https://scim.example.com/scim/v2/")
    clean_env.setenv("LOG_LEVEL", "debug")

    cfg = settings.load_settings()

    assert cfg.store_backend == "mongodb"
    assert cfg.mongo_uri == "mongodb://db:27017"
    assert cfg.collections == {"user": "people", "group": "groups"}
    assert cfg.max_results == 50
    assert cfg.base_url == "https://scim.example.com/scim/v2"
    assert cfg.log_level == "DEBUG"


def test_demo_mode_mongodb_uses_local_uri(clean_env):
    clean_env.setenv("DEMO_MODE", "true")
    clean_env.setenv("STORE_BACKEND", "mongodb")

    assert settings.load_settings().mongo_uri == "mongodb://localhost:27017"


def test_invalid_backend(clean_env):
    clean_env.setenv("STORE_BACKEND", "postgres")
    with pytest.raises(RuntimeError, match="STORE_BACKEND"):
        settings.load_settings()


def test_invalid_integer(clean_env):
    clean_env.setenv("DEMO_MODE", "true")
    clean_env.setenv("SCIM_MAX_RESULTS", "many")
    with pytest.raises(RuntimeError, match="SCIM_MAX_RESULTS must be an integer"):
        settings.load_settings()


def test_secret_read_from_run_secrets(monkeypatch, tmp_path):
    (tmp_path / "mongo_uri").write_text("mongodb://from-file\n")

    real_path = settings.Path

    def fake_path(target):
        if str(target) == "/run/secrets":
            return tmp_path
        return real_path(target)

    monkeypatch.setattr(settings, "Path", fake_path)
    monkeypatch.setenv("MONGO_URI", "mongodb://from-env")

    assert settings._load_secret_from_file("mongo_uri", "MONGO_URI") == "mongodb://from-file"


def test_secret_falls_back_to_env(monkeypatch, tmp_path):
    real_path = settings.Path

    def fake_path(target):
        if str(target) == "/run/secrets":
            return tmp_path
        return real_path(target)

    monkeypatch.setattr(settings, "Path", fake_path)
    monkeypatch.setenv("MONGO_URI", "mongodb://from-env")

    assert settings._load_secret_from_file("mongo_uri", "MONGO_URI") == "mongodb://from-env"


def test_load_mapping_config_unwraps_map_key(tmp_path):
    mapping_file = tmp_path / "mapping.yaml"
    mapping_file.write_text(
        "map:\n"
        "  user:\n"
        "    login: {mapTo: userName, type: string}\n"
        "  group:\n"
        "    title: {mapTo: displayName}\n"
    )

    config = settings.load_mapping_config(mapping_file)

    assert config["user"]["login"] == {"mapTo": "userName", "type": "string"}
    assert config["group"]["title"] == {"mapTo": "displayName"}


def test_load_mapping_config_errors(tmp_path):
    with pytest.raises(RuntimeError, match="Cannot load mapping file"):
        settings.load_mapping_config(tmp_path / "missing.yaml")

    not_a_mapping = tmp_path / "list.yaml"
    not_a_mapping.write_text("- a\n- b\n")
    with pytest.raises(RuntimeError, match="must contain an object"):
        settings.load_mapping_config(not_a_mapping)
