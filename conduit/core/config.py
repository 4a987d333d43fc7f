"""
Conduit Configuration Loader

Loads and validates conduit.yaml using Pydantic v2.
Provides sensible defaults when the config file is missing.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Optional

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ── Config Models ────────────────────────────────────────────────

class VaultSettings(BaseModel):
    """Where the credential vault reads its keys from."""
    key_env_var: str = "CONDUIT_VAULT_KEY"
    previous_keys_env_var: str = "CONDUIT_VAULT_PREVIOUS_KEYS"
    allow_ephemeral_key: bool = True

    @field_validator("key_env_var", "previous_keys_env_var")
    @classmethod
    def validate_env_var(cls, v: str) -> str:
        if not _ENV_VAR_RE.match(v):
            raise ValueError(f"not a valid environment variable name: '{v}'")
        return v


class StoreSettings(BaseModel):
    """Connector instance persistence. No path means in-memory only."""
    path: Optional[str] = None
    backup: bool = True


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in _LOG_LEVELS:
            raise ValueError(f"level must be one of {_LOG_LEVELS}, got '{v}'")
        return v


class ConduitConfig(BaseModel):
    """Top-level configuration."""
    version: str = "1.0"
    vault: VaultSettings = VaultSettings()
    store: StoreSettings = StoreSettings()
    logging: LoggingSettings = LoggingSettings()
    builtin_integrations: bool = True


# ── Loader ───────────────────────────────────────────────────────

def load_config(config_path: Optional[str] = None) -> ConduitConfig:
    """Load config from YAML.

    Args:
        config_path: Path to conduit.yaml. If None, checks CONDUIT_CONFIG
            and then the standard locations.

    Returns:
        Parsed ConduitConfig. Returns defaults if the file is missing or invalid.
    """
    if config_path is None:
        candidates = [
            os.environ.get("CONDUIT_CONFIG", ""),
            "config/conduit.yaml",
            os.path.join(os.path.dirname(__file__), "../../config/conduit.yaml"),
        ]
        for candidate in candidates:
            if candidate and os.path.exists(candidate):
                config_path = candidate
                break

    if config_path is None or not os.path.exists(config_path):
        logger.warning("Conduit config not found, using defaults")
        return ConduitConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            logger.warning("Conduit config is empty, using defaults")
            return ConduitConfig()

        return ConduitConfig.model_validate(raw)
    except Exception as e:
        logger.error("Failed to load conduit config: %s", e)
        return ConduitConfig()


def configure_logging(settings: LoggingSettings) -> None:
    """Apply logging settings to the root logger."""
    logging.basicConfig(level=getattr(logging, settings.level, logging.INFO), format=settings.format)
