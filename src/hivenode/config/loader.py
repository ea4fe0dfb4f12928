# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/config/loader.py

import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

from hivenode.errors import HiveError
from .models import HiveConfig

log = logging.getLogger("hivenode")

SECRETS_ENV = "HIVE_SECRETS_FILE"


def secrets_candidates(hive_file: Path) -> List[Path]:
    """
    Secrets for ``lab.yaml`` are looked up in ``$HIVE_SECRETS_FILE``, then
    ``lab.secrets.yaml``, then a shared ``secrets.yaml`` in the same folder.
    """
    env = os.environ.get(SECRETS_ENV)
    if env:
        return [Path(env)]
    return [
        hive_file.with_name(f"{hive_file.stem}.secrets.yaml"),
        hive_file.with_name("secrets.yaml"),
    ]


def read_hive_yaml(path: Path) -> Dict[str, Any]:
    # ${VAR} references are expanded before parsing
    data = yaml.safe_load(os.path.expandvars(path.read_text())) or {}
    if not isinstance(data, dict):
        raise HiveError(f"{path}: expected a mapping at the top level, got {type(data).__name__}.")
    return data


def _merge_nodes(nodes: List[Dict[str, Any]], secret_nodes: List[Dict[str, Any]], source: Path) -> None:
    # secret node entries are matched to hive nodes by name, not position
    by_name = {str(n.get("name", "")).lower(): n for n in nodes}
    for entry in secret_nodes:
        name = str(entry.get("name", ""))
        target = by_name.get(name.lower())
        if target is None:
            raise HiveError(f"{source}: secrets for unknown node [{name}].")
        apply_secrets(target, entry, source)


def apply_secrets(config: Dict[str, Any], secrets: Dict[str, Any], source: Path) -> Dict[str, Any]:
    """
    Overlay ``secrets`` on the hive definition in place.  Blank secret values
    leave the hive file's value alone.
    """
    for key, value in secrets.items():
        current = config.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            apply_secrets(current, value, source)
        elif key == "nodes" and isinstance(current, list) and isinstance(value, list):
            _merge_nodes(current, value, source)
        elif value is not None and value != "":
            config[key] = value
    return config


def load_config(path: str | Path) -> HiveConfig:
    """
    Load and validate a hive definition.

    SSH passwords and key text normally live in a secrets file mirroring the
    hive file (for example ``credentials.password``); per-node entries under
    ``nodes`` are matched by name.
    """
    path = Path(path)
    data = read_hive_yaml(path)

    for candidate in secrets_candidates(path):
        if candidate.is_file():
            log.debug("Merging secrets from %s", candidate)
            apply_secrets(data, read_hive_yaml(candidate), candidate)
            break
    else:
        if os.environ.get(SECRETS_ENV):
            log.warning("%s=%s does not exist, skipping", SECRETS_ENV, os.environ[SECRETS_ENV])

    return HiveConfig.model_validate(data)
