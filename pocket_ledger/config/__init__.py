"""Configuration package."""

from pocket_ledger.config.settings import (
    AppSettings,
    LedgerSettings,
    MongoSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "LedgerSettings",
    "MongoSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
