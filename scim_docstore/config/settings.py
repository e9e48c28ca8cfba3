"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("memory", "mongodb")


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
        except OSError as e:
            logger.warning(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")
        else:
            if secret_value:
                logger.info(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _env_bool(var_name: str, default: str = "false") -> bool:
    return os.environ.get(var_name, default).strip().lower() == "true"


def _env_int(var_name: str, default: int) -> int:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be an integer, got '{raw}'") from None


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Store
    store_backend: str = "memory"
    mongo_uri: str = ""
    mongo_database: str = "scim"
    mongo_user_collection: str = "users"
    mongo_group_collection: str = "groups"
    mongo_timeout_ms: int = 5000

    # Mapping
    mapping_file: Optional[str] = None

    # SCIM
    base_url: str = "/scim/v2"
    max_results: int = 200

    # Logging / audit
    log_level: str = "INFO"
    audit_log_signing_key: str = ""

    @property
    def collections(self) -> Dict[str, str]:
        """Collection name per resource kind."""
        return {
            "user": self.mongo_user_collection,
            "group": self.mongo_group_collection,
        }


def load_mapping_config(path: str | Path) -> Dict[str, Any]:
    """Read a YAML (or JSON) attribute mapping file.

    Raises:
        RuntimeError: If the file cannot be read or is not a mapping
    """
    mapping_path = Path(path)
    try:
        with mapping_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as e:
        raise RuntimeError(f"Cannot load mapping file {mapping_path}: {e}") from e

    if not isinstance(data, dict):
        raise RuntimeError(f"Mapping file {mapping_path} must contain an object")

    # Gateway configuration files nest the table under "map"
    return data.get("map", data)


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = _env_bool("DEMO_MODE")

    store_backend = os.environ.get("STORE_BACKEND", "memory" if demo_mode else "mongodb").strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise RuntimeError(
            f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got '{store_backend}'"
        )

    mongo_uri = _load_secret_from_file("mongo_uri", "MONGO_URI") or ""
    if store_backend == "mongodb" and not mongo_uri:
        if demo_mode:
            mongo_uri = "mongodb://localhost:27017"
            logger.info("[demo-mode] Using default MONGO_URI mongodb://localhost:27017")
        else:
            raise RuntimeError("MONGO_URI not found in /run/secrets or environment")

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
    elif demo_mode:
        audit_log_signing_key = os.environ.get(
            "AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production"
        )
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
        logger.info("[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY")

    mapping_file = os.environ.get("MAPPING_FILE", "").strip() or None

    cfg = AppConfig(
        demo_mode=demo_mode,
        store_backend=store_backend,
        mongo_uri=mongo_uri,
        mongo_database=os.environ.get("MONGO_DATABASE", "scim"),
        mongo_user_collection=os.environ.get("MONGO_USER_COLLECTION", "users"),
        mongo_group_collection=os.environ.get("MONGO_GROUP_COLLECTION", "groups"),
        mongo_timeout_ms=_env_int("MONGO_TIMEOUT_MS", 5000),
        mapping_file=mapping_file,
        base_url=os.environ.get("APP_BASE_URL", "/scim/v2").rstrip("/"),
        max_results=_env_int("SCIM_MAX_RESULTS", 200),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        audit_log_signing_key=audit_log_signing_key,
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    logger.info(f"[settings] Mode={mode_label}; store={store_backend}; database={cfg.mongo_database}")
    if demo_mode:
        logger.warning("[settings] Demo defaults in use. Do not deploy with these settings.")

    return cfg
