"""Application configuration helpers."""

from __future__ import annotations

from .env import optional_env_float, optional_env_int, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryablePayloadError, RetryPolicy
from .ledger import LedgerConfig, get_ledger_config
from .logging import configure_logging
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import ReconcileSettings, get_reconcile_settings

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "LedgerConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ReconcileSettings",
    "ResilienceConfig",
    "RetryPolicy",
    "RetryablePayloadError",
    "StorageConfig",
    "configure_logging",
    "get_database_config",
    "get_ledger_config",
    "get_reconcile_settings",
    "get_storage_config",
    "optional_env_float",
    "optional_env_int",
    "require_env_var",
    "require_env_vars",
]
