"""
Configuration Loader (``market_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses
of ``market_config.schema``.  Build/test tooling: runtime callers go
through ``market_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown keys are rejected with ``ConfigurationError`` rather than
  silently ignored.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed data for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from market_config.schema import (
    DatabaseConfig,
    DisputesConfig,
    JobsConfig,
    LoggingConfig,
    MarketplaceConfig,
    PaymentsConfig,
)
from market_kernel.exceptions import ConfigurationError

_SECTIONS = {
    "database": DatabaseConfig,
    "jobs": JobsConfig,
    "disputes": DisputesConfig,
    "payments": PaymentsConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_section(name: str, cls: type, data: dict[str, Any] | None) -> Any:
    data = dict(data or {})
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigurationError(name, f"unknown keys {unknown}")

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        default = getattr(cls(), key)
        if isinstance(default, Decimal):
            try:
                value = Decimal(str(value))
            except InvalidOperation:
                raise ConfigurationError(f"{name}.{key}", f"not a decimal: {value!r}") from None
        elif isinstance(default, tuple):
            value = tuple(value)
        kwargs[key] = value
    return cls(**kwargs)


def parse_config(data: dict[str, Any]) -> MarketplaceConfig:
    """
    Parse a ``MarketplaceConfig`` from a dict and validate it.

    Raises:
        ConfigurationError: unknown sections or keys, or invalid values.
    """
    unknown = sorted(set(data) - set(_SECTIONS) - {"name", "version"})
    if unknown:
        raise ConfigurationError("root", f"unknown sections {unknown}")

    sections = {
        key: _parse_section(key, cls, data.get(key))
        for key, cls in _SECTIONS.items()
    }
    config = MarketplaceConfig(
        name=str(data.get("name", "default")),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        **sections,
    )
    config.validate()
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """Compute SHA-256 checksum of canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
