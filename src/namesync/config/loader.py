# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/config/loader.py

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import ValidationError

from .models import ControllerSettings, ProxmoxConfig

log = logging.getLogger("namesync")

CONFIG_PATH_ENV = "PROXMOX_CONFIG_PATH"

_TRUE = {"1", "t", "true", "yes", "on"}
_FALSE = {"0", "f", "false", "no", "off"}


class ConfigError(ValueError):
    """Invalid or missing configuration. Only ever raised at startup."""


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text()
    except OSError as e:
        raise ConfigError(f"failed to read YAML config at {path}: {e}") from e

    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse YAML config at {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"YAML config at {path} must be a mapping")
    return data


def _parse_bool(name: str, value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ConfigError(f"invalid {name} value: {value!r}")


def _split_urls(value: str) -> list:
    return [p.strip() for p in value.split(",") if p.strip()]


def _from_env(env: Mapping[str, str]) -> dict:
    data: dict = {}

    # PROXMOX_URL is the single-endpoint spelling kept for older deployments
    urls = env.get("PROXMOX_URLS") or env.get("PROXMOX_URL")
    if urls:
        data["host_urls"] = _split_urls(urls)

    insecure = env.get("PROXMOX_INSECURE")
    if insecure:
        data["insecure"] = _parse_bool("PROXMOX_INSECURE", insecure)

    data["token_id"] = env.get("PROXMOX_TOKEN_ID") or None
    data["secret"] = env.get("PROXMOX_SECRET") or None
    if not (data["token_id"] and data["secret"]):
        data["username"] = env.get("PROXMOX_USERNAME") or None
        data["password"] = env.get("PROXMOX_PASSWORD") or None

    return data


def _validate(data: dict, source: str) -> ProxmoxConfig:
    try:
        return ProxmoxConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid Proxmox config ({source}): {e}") from e


def load_proxmox_config(
    path: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ProxmoxConfig:
    """
    Load and validate the Proxmox connection config.

    Resolution order:
      1. *path*, or the file named by ``PROXMOX_CONFIG_PATH``
         (YAML; a top-level ``proxmox:`` section is used when present)
      2. environment variables ``PROXMOX_URLS``/``PROXMOX_URL``,
         ``PROXMOX_INSECURE``, ``PROXMOX_TOKEN_ID``/``PROXMOX_SECRET``,
         ``PROXMOX_USERNAME``/``PROXMOX_PASSWORD``
    """
    env = os.environ if env is None else env
    path = path or env.get(CONFIG_PATH_ENV)

    if path:
        path = Path(path)
        log.debug("Loading Proxmox config from %s", path)
        data = _load_yaml(path)
        return _validate(data.get("proxmox", data), str(path))

    log.debug("No %s set, reading Proxmox config from environment", CONFIG_PATH_ENV)
    return _validate(_from_env(env), "environment")


def load_controller_settings(
    path: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ControllerSettings:
    """Optional ``controller:`` section of the same YAML file; defaults otherwise."""
    env = os.environ if env is None else env
    path = path or env.get(CONFIG_PATH_ENV)
    if not path:
        return ControllerSettings()

    section = _load_yaml(Path(path)).get("controller") or {}
    try:
        return ControllerSettings.model_validate(section)
    except ValidationError as e:
        raise ConfigError(f"invalid controller settings ({path}): {e}") from e
