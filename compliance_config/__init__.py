"""
compliance_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  Review thresholds, due-date rules, penalty strategy, timeouts,
    elevated roles and batch sizing all come from the returned
    ``ComplianceConfig``.

Architecture position:
    Configuration -- sits above ``compliance_kernel`` and
    ``compliance_engines`` and below ``compliance_services``.  The kernel
    and the engines MUST NEVER import from ``compliance_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` / ``TypeError`` -- schema validation failures.

Every successful call emits a ``COMPLIANCE_CONFIG_TRACE`` log entry with
the config id, version and checksum.
"""

from __future__ import annotations

from pathlib import Path

from compliance_config.loader import load_config_file
from compliance_config.schema import ComplianceConfig
from compliance_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> ComplianceConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration YAML file.
            Defaults to compliance_config/sets/default.yaml.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_FILE
    config = load_config_file(path)

    _logger.info(
        "COMPLIANCE_CONFIG_TRACE",
        extra={
            "trace_type": "COMPLIANCE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
            "penalty_strategy": config.penalties.strategy,
        },
    )
    return config


__all__ = ["ComplianceConfig", "get_active_config"]
