"""YAML configuration loader layered under environment variables.

# ─── CONFIGURATION HIERARCHY ───────────────────────────────────────────
#
#   1. config/config.yaml  — Static defaults checked into the repo
#   2. .env file           — Local developer overrides (not committed)
#   3. Environment vars    — Set by the deployment
#
# Later layers win.  YAML sections are only for readability: keys inside a
# section are full Settings field names, so
#
#   chunking:
#     chunk_max_tokens: 800
#
# sets ``Settings.chunk_max_tokens`` unless CHUNK_MAX_TOKENS is exported.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from knowledge_ingest.config.settings import Settings
from knowledge_ingest.utils.errors import ConfigurationError


def load_settings(path: str | Path = "config/config.yaml") -> Settings:
    """Build :class:`Settings` from a YAML file with env vars taking precedence.

    Args:
        path: Path to the YAML configuration file.  A missing file means
              env-and-defaults only.

    Returns:
        The fully resolved settings.

    Raises:
        ConfigurationError: If the YAML names an unknown setting or the
            merged values fail validation.
    """
    yaml_values = _flatten(_read_yaml(Path(path)))

    unknown = sorted(set(yaml_values) - set(Settings.model_fields))
    if unknown:
        raise ConfigurationError(
            message=f"Unknown setting(s) in {path}: {', '.join(unknown)}",
        )

    try:
        env_settings = Settings()
        # Values that came from env/.env are in model_fields_set; only the
        # remaining fields take their value from YAML.
        overrides = {
            key: value
            for key, value in yaml_values.items()
            if key not in env_settings.model_fields_set
        }
        if not overrides:
            return env_settings
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(message=f"Invalid configuration: {exc}") from exc


def _read_yaml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(message=f"{config_path} must contain a mapping at the top level")
    return loaded


def _flatten(tree: dict[str, Any]) -> dict[str, Any]:
    """Collapse section mappings into a single flat dict of field values."""
    flat: dict[str, Any] = {}
    for key, value in tree.items():
        if isinstance(value, dict):
            flat.update(_flatten(value))
        else:
            flat[key] = value
    return flat
