"""
Configuration Loader (``compliance_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into a
``ComplianceConfig``.  Build/test tooling; runtime callers go through
``compliance_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema ``__post_init__``.
* Unknown keys  -> ``TypeError`` from the dataclass constructor.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from compliance_config.schema import ComplianceConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization (deterministic)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> ComplianceConfig:
    """Parse a mapping into a ComplianceConfig stamped with its checksum."""
    return ComplianceConfig.from_dict(data, checksum=compute_checksum(data))


def load_config_file(path: Path) -> ComplianceConfig:
    return parse_config(load_yaml_file(path))
