"""Configuration package."""

from finledger.config.settings import (
    AppSettings,
    ConfigurationInvalidError,
    GeminiSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    Settings,
    get_settings,
    load_section,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ConfigurationInvalidError",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "load_section",
    "validate_all_settings",
]
