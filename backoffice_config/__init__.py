"""
backoffice_config -- deployment settings.

``load_settings(path)`` reads a YAML file into a frozen
``BackofficeSettings``; ``RunOrchestrator.from_session(..., settings=...)``
hands the module configs to the run tasks.
"""

from backoffice_config.loader import load_settings, parse_settings, settings_checksum
from backoffice_config.settings import BackofficeSettings, DatabaseSettings

__all__ = [
    "BackofficeSettings",
    "DatabaseSettings",
    "load_settings",
    "parse_settings",
    "settings_checksum",
]
