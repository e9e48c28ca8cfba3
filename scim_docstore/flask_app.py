"""Flask application factory and bootstrap.

This module provides the create_app() factory function that wires the
attribute mapper, the document store and the provisioning service behind
the SCIM blueprint.
"""
from __future__ import annotations
import logging
from typing import Dict, List, Optional

from flask import Flask

from scim_docstore.config import AppConfig, load_mapping_config, load_settings
from scim_docstore.core.mapper import AttributeMapper, ResourceKind
from scim_docstore.core.provisioning_service import ProvisioningService
from scim_docstore.store import MemoryStore, Store, StoreError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(cfg: Optional[AppConfig] = None, service: Optional[ProvisioningService] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        cfg: Settings (loaded from the environment if omitted)
        service: Pre-built provisioning service (built from ``cfg`` if omitted)
    """
    cfg = cfg or load_settings()
    _configure_logging(cfg.log_level)

    app = Flask(__name__)

    # Store config for easy access in routes
    app.config["APP_CONFIG"] = cfg

    app.extensions["provisioning_service"] = service or build_service(cfg)

    # Register blueprints
    from scim_docstore.api import errors, health, scim

    app.register_blueprint(health.bp)
    app.register_blueprint(scim.bp)

    # Register error handlers
    errors.register_error_handlers(app)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    logger.info(f"[flask_app] Mode={mode_label}; store={cfg.store_backend}")
    logger.info("[flask_app] SCIM 2.0 API registered at /scim/v2")
    return app


def build_mapper(cfg: AppConfig) -> AttributeMapper:
    """Mapping file when configured, built-in mapping otherwise."""
    if cfg.mapping_file:
        logger.info(f"[flask_app] Loading attribute mapping from {cfg.mapping_file}")
        return AttributeMapper.from_config(load_mapping_config(cfg.mapping_file))
    return AttributeMapper.default()


def primary_fields(mapper: AttributeMapper) -> Dict[str, List[str]]:
    """Document field holding the primary name, per store kind."""
    fields: Dict[str, List[str]] = {}
    for kind in ResourceKind:
        fields[kind.value] = [
            rule.internal_name for rule in mapper.rules(kind) if rule.external_name == kind.primary_name
        ]
    return fields


def build_store(cfg: AppConfig, mapper: AttributeMapper) -> Store:
    """Instantiate the configured store backend."""
    unique_fields = primary_fields(mapper)
    if cfg.store_backend == "memory":
        return MemoryStore(unique_fields=unique_fields, required_fields=unique_fields)

    from scim_docstore.store.mongodb import MongoStore

    store = MongoStore.from_uri(
        cfg.mongo_uri,
        cfg.mongo_database,
        cfg.collections,
        timeout_ms=cfg.mongo_timeout_ms,
        unique_fields=unique_fields,
    )
    try:
        store.ensure_indexes()
    except StoreError as exc:
        # Server may come up after the app; writes still surface the error
        logger.warning(f"[flask_app] Could not ensure MongoDB indexes: {exc}")
    return store


def build_service(cfg: AppConfig) -> ProvisioningService:
    mapper = build_mapper(cfg)
    return ProvisioningService(
        build_store(cfg, mapper),
        mapper,
        max_results=cfg.max_results,
        base_entity=cfg.mongo_database if cfg.store_backend == "mongodb" else "memory",
    )


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    logging.getLogger("scim_docstore").setLevel(getattr(logging, level, logging.INFO))
