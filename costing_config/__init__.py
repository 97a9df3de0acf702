"""
costing_config -- single public entrypoint for costing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned CostingConfig
    by constructor injection and never read files or environment
    variables themselves.

Architecture position:
    Configuration -- YAML-driven settings.  Sits above ``costing_kernel``
    and below ``costing_services``.  The kernel MUST NEVER import from
    ``costing_config``.

Failure modes:
    - ``FileNotFoundError`` -- config_path does not exist.
    - ``KeyError`` / ``ValueError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``COSTING_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every posted allocation back to the settings that
    governed it.
"""

from __future__ import annotations

from pathlib import Path

from costing_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_costing_config,
)
from costing_config.schema import CostingConfig
from costing_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> CostingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML document to load.  Defaults to the packaged
            ``defaults.yaml``.

    Returns:
        Frozen CostingConfig.

    Raises:
        FileNotFoundError: If config_path does not exist.
        KeyError: If a required key is missing.
        ValueError: If a present field is invalid.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_costing_config(load_yaml_file(path))

    _logger.info(
        "COSTING_CONFIG_TRACE",
        extra={
            "trace_type": "COSTING_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "default_method": config.default_method.value,
            "currency": config.currency,
            "reporting_timezone": config.reporting_timezone,
        },
    )
    return config


__all__ = [
    "CostingConfig",
    "DEFAULT_CONFIG_PATH",
    "compute_checksum",
    "get_active_config",
    "load_yaml_file",
    "parse_costing_config",
]
