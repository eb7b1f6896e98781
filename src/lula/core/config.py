"""Layered configuration for Lula.

Loads and merges configuration from:
1. Default settings (built-in)
2. Project config (lula-config.yaml next to the artifact, or $LULA_CONFIG)
3. CLI parameters (override)

Template variables may also be overridden from the environment with
LULA_VAR_<KEY>.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Optional

import yaml

CONFIG_FILENAME = "lula-config.yaml"
VARIABLE_ENV_PREFIX = "LULA_VAR_"
MAPPING_SECTIONS = ("constants", "run", "kubernetes", "api", "remote", "opa")

DEFAULT_CONFIG: dict = {
    "log_level": "info",
    "constants": {},
    "variables": [],
    "run": {
        "aggregation": "all",
        "remark_target": "requirement",
        "concurrency": 4,
        "confirm_execution": False,
    },
    "kubernetes": {
        "poll_interval_seconds": 2,
        "default_wait_timeout": "30s",
        "request_timeout_seconds": 30,
    },
    "api": {
        "default_timeout": "30s",
    },
    "remote": {
        "timeout_seconds": 30,
    },
    "opa": {
        "binary": "opa",
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def find_config_file(search_dir: Optional[Path] = None) -> Optional[Path]:
    """Locate lula-config.yaml: $LULA_CONFIG first, then the search directory."""
    env_path = os.environ.get("LULA_CONFIG")
    if env_path:
        return Path(env_path)
    if search_dir is None:
        search_dir = Path.cwd()
    candidate = search_dir / CONFIG_FILENAME
    return candidate if candidate.exists() else None


def load_project_config(search_dir: Optional[Path] = None) -> dict:
    """Load lula-config.yaml. Returns {} when absent or empty."""
    config_path = find_config_file(search_dir)
    if config_path is None or not config_path.exists():
        return {}
    content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"{config_path}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{config_path}: expected a mapping at the top level")

    for section in MAPPING_SECTIONS:
        if data.get(section) is not None and not isinstance(data[section], dict):
            raise ValueError(f"{config_path}: '{section}' must be a mapping")
    variables = data.get("variables")
    if variables is not None and not (
        isinstance(variables, list) and all(isinstance(v, dict) for v in variables)
    ):
        raise ValueError(f"{config_path}: 'variables' must be a list of mappings")
    return data


def get_template_variables(config: dict) -> tuple[dict, set[str]]:
    """Resolve template variables and the set of sensitive variable keys.

    Each variable is ``{key, default, sensitive}``; LULA_VAR_<KEY> in the
    environment replaces the default.
    """
    values: dict = {}
    sensitive: set[str] = set()
    for var in config.get("variables") or []:
        key = var.get("key")
        if not key:
            continue
        env_key = VARIABLE_ENV_PREFIX + key.upper()
        values[key] = os.environ.get(env_key, var.get("default", ""))
        if var.get("sensitive"):
            sensitive.add(key)
    return values, sensitive


def get_effective_config(
    search_dir: Optional[Path] = None,
    cli_overrides: Optional[dict] = None,
) -> dict:
    """Get the fully resolved configuration for a run."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    project_config = load_project_config(search_dir)
    if project_config:
        config = deep_merge(config, project_config)

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    return config
