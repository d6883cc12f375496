"""
Settings loader (``backoffice_config.loader``).

Responsibility
--------------
Reads a YAML settings file into ``BackofficeSettings``.  Each top-level
section (``alloc``, ``billing``, ``payments``, ``dunning``, ``revenue``,
``database``) is optional; a missing section falls back to the module's
``with_defaults()``.

Money values (``billing.tax_rate``) must be quoted strings in YAML;
floats are rejected by the module configs.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key  -> ``ValueError`` / ``TypeError``.
* Invalid values  -> ``ValueError`` from the config ``__post_init__``.

Audit relevance
---------------
``settings_checksum`` identifies the exact settings a process runs with;
``load_settings`` logs it.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from backoffice_config.settings import BackofficeSettings, DatabaseSettings
from backoffice_kernel.logging_config import get_logger
from backoffice_modules.alloc.config import AllocationConfig
from backoffice_modules.billing.config import BillingConfig
from backoffice_modules.dunning.config import DunningConfig
from backoffice_modules.payments.config import PaymentsConfig
from backoffice_modules.revenue.config import RevenueConfig

logger = get_logger("config.loader")

_MODULE_SECTIONS = {
    "alloc": AllocationConfig,
    "billing": BillingConfig,
    "payments": PaymentsConfig,
    "dunning": DunningConfig,
    "revenue": RevenueConfig,
}
_KNOWN_SECTIONS = frozenset(_MODULE_SECTIONS) | {"database", "log_level"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: settings must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def settings_checksum(path: Path) -> str:
    return compute_checksum(load_yaml_file(Path(path)))


def parse_settings(data: dict[str, Any], checksum: str | None = None) -> BackofficeSettings:
    unknown = set(data) - _KNOWN_SECTIONS
    if unknown:
        raise ValueError(f"Unknown settings sections: {sorted(unknown)}")

    modules = {
        name: (
            config_cls.from_dict(data[name])
            if data.get(name)
            else config_cls.with_defaults()
        )
        for name, config_cls in _MODULE_SECTIONS.items()
    }
    return BackofficeSettings(
        **modules,
        database=DatabaseSettings(**(data.get("database") or {})),
        log_level=str(data.get("log_level", "INFO")).upper(),
        checksum=checksum,
    )


def load_settings(path: Path | str) -> BackofficeSettings:
    """Load and validate a settings file."""
    path = Path(path)
    data = load_yaml_file(path)
    checksum = compute_checksum(data)
    settings = parse_settings(data, checksum=checksum)
    logger.info(
        "settings_loaded",
        extra={
            "path": str(path),
            "checksum": checksum,
            "sections": sorted(data.keys()),
        },
    )
    return settings
