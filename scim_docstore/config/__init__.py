"""Configuration module for the SCIM document-store connector."""
from .settings import AppConfig, load_mapping_config, load_settings

__all__ = ["AppConfig", "load_mapping_config", "load_settings"]
