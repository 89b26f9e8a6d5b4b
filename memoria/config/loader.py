"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

    1. ``config/config.yaml``  -- static defaults checked into the repo
    2. ``.env`` file           -- local developer overrides (not committed)
    3. Environment vars        -- set at deploy time

The YAML file is nested by section::

    pipeline:
      max_attempts: 3
      workers:
        embedding: 5

and is flattened onto :class:`Settings` field names (``pipeline_max_attempts``,
``pipeline_embedding_workers``).  Only environment values that were actually
set win over YAML; untouched Settings defaults never mask the file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from memoria.config.settings import Settings
from memoria.utils.errors import ConfigurationError

# Nested keys whose children name a field suffix rather than a sub-section,
# e.g. ``pipeline.workers.audio`` -> ``pipeline_audio_workers``.
_SUFFIX_GROUPS = {"workers"}


def load_settings(path: str | Path = "config/config.yaml") -> Settings:
    """Load YAML defaults and overlay explicitly-set environment values.

    Args:
        path: Path to the YAML configuration file.  A missing file is not
              an error; Settings defaults apply.

    Returns:
        Fully resolved :class:`Settings`.
    """
    yaml_values = _flatten(_read_yaml(Path(path)))

    env_settings = Settings()
    env_values = env_settings.model_dump(include=env_settings.model_fields_set)

    unknown = set(yaml_values) - set(Settings.model_fields)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    return Settings(**_deep_merge(yaml_values, env_values))


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def _flatten(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested sections into ``section_key`` field names."""
    flat: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict) and key in _SUFFIX_GROUPS:
            for sub_key, sub_value in value.items():
                flat[f"{prefix}{sub_key}_{key}"] = sub_value
        elif isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{prefix}{key}_"))
        else:
            flat[f"{prefix}{key}"] = value
    return flat


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge overrides into base dict, mutating and returning base."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base
