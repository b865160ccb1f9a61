# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .models import InventoryFile

log = logging.getLogger("clusterstrap")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. CLUSTERSTRAP_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the inventory
    """
    env = os.environ.get("CLUSTERSTRAP_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("CLUSTERSTRAP_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file() and p.resolve() != config_path.resolve():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text()
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_config(path: str | Path) -> InventoryFile:
    """
    Load and validate a YAML inventory.

    Secrets (SSH passwords, key paths) can live outside the inventory:

    **secrets.yaml file**
        A ``secrets.yaml`` whose structure mirrors the inventory is
        deep-merged into it before validation. Discovery order:
          1. ``CLUSTERSTRAP_SECRETS_FILE`` env var
          2. ``secrets.yaml`` next to the inventory file

    **environment variables**
        ``${ENV_VAR}`` placeholders are resolved with ``os.path.expandvars``.

    Note that ``hosts`` is a list, so a secrets file that sets ``hosts``
    replaces the whole list; put shared credentials under ``defaults``.
    """
    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_yaml(secrets_path))
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    try:
        return InventoryFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid inventory {path}:\n{e}") from e
