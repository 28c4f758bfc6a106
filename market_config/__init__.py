"""
market_config -- single public entrypoint for marketplace configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly; services receive their config slice
    by constructor injection.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ConfigurationError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``MARKETPLACE_CONFIG_TRACE`` log entry with the set name, version and
    checksum.
"""

from __future__ import annotations

from pathlib import Path

from market_config.loader import load_yaml_file, parse_config
from market_config.schema import (
    DatabaseConfig,
    DisputesConfig,
    JobsConfig,
    LoggingConfig,
    MarketplaceConfig,
    PaymentsConfig,
)
from market_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    environment: str = "default",
    config_dir: Path | None = None,
) -> MarketplaceConfig:
    """The ONLY public configuration entrypoint.

    Args:
        environment: Name of the configuration set (``sets/<name>.yaml``).
        config_dir: Override path to the configuration sets directory.

    Raises:
        FileNotFoundError: If the configuration set does not exist.
        ConfigurationError: If validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{environment}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = parse_config(load_yaml_file(path))

    _logger.info(
        "MARKETPLACE_CONFIG_TRACE",
        extra={
            "trace_type": "MARKETPLACE_CONFIG_TRACE",
            "config_set": config.name,
            "config_version": config.version,
            "checksum": config.checksum,
            "platform_fee_percent": config.jobs.platform_fee_percent,
            "resolution_window_hours": config.disputes.resolution_window_hours,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "MarketplaceConfig",
    "DatabaseConfig",
    "JobsConfig",
    "DisputesConfig",
    "PaymentsConfig",
    "LoggingConfig",
]
