"""
Configuration management for forklift-orchestrator.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validate

from forklift_orchestrator.exceptions import InvalidConfigError
from forklift_orchestrator.models.workflow import Kind

SCHEMA_DIR = Path(__file__).parent / "schema"

CONFIG_FILENAME = "forklift-orchestrator.yaml"
CONFIG_ENV = "FORKLIFT_ORCHESTRATOR_CONFIG"

DEFAULT_CONFIG: dict[str, Any] = {
    "backend": {
        "type": "kubernetes",
    },
    "forklift": {
        "api_version": "v1beta1",
        "namespace": "openshift-mtv",
    },
    "reconcile": {
        "base_delay": 1.0,  # seconds before the first re-poll
        "max_delay": 30.0,
        "factor": 2.0,
        "jitter": 0.2,  # +/- 20%
        "timeouts": {
            "provider": 300,
            "network_map": 120,
            "storage_map": 120,
            "plan": 600,
            "migration": 14400,
        },
    },
    "logging": {
        "level": "INFO",
    },
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Loads, validates and caches the orchestrator configuration file."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else resolve_config_path()
        self._config_cache: dict[str, Any] | None = None

    def write_default(self) -> None:
        """Write the default configuration to `path`."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)

    def load(self) -> dict[str, Any]:
        """
        Load and validate the configuration (with caching).

        A missing file yields the defaults; keys absent from the file fall back
        to their default values.

        Raises:
            InvalidConfigError: If the file is not a mapping or fails schema validation
        """
        if self._config_cache is not None:
            return self._config_cache

        if not self.path.exists():
            self._config_cache = copy.deepcopy(DEFAULT_CONFIG)
            return self._config_cache

        try:
            with open(self.path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"{self.path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise InvalidConfigError(f"{self.path}: expected a mapping, got {type(data).__name__}")

        self._validate_schema(data)
        self._config_cache = _deep_merge(DEFAULT_CONFIG, data)
        return self._config_cache

    def _validate_schema(self, data: dict) -> None:
        """Validate config against JSON schema."""
        schema = json.loads((SCHEMA_DIR / "config.schema.json").read_text())
        try:
            validate(instance=data, schema=schema)
        except ValidationError as e:
            raise InvalidConfigError(
                f"{e.message} (at {'.'.join(str(p) for p in e.path) or '<root>'})"
            ) from e


def resolve_config_path(explicit: str | Path | None = None) -> Path:
    """
    Pick the configuration file: explicit path, then $FORKLIFT_ORCHESTRATOR_CONFIG,
    then forklift-orchestrator.yaml in the current directory.
    """
    if explicit:
        return Path(explicit)
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)
    return Path.cwd() / CONFIG_FILENAME


def timeouts_from_config(config: dict[str, Any]) -> dict[Kind, float]:
    """Per-kind reconcile timeouts, keyed by Kind."""
    configured = config.get("reconcile", {}).get("timeouts", {})
    return {
        kind: float(configured[kind.name.lower()])
        for kind in Kind
        if kind.name.lower() in configured
    }
