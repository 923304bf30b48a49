"""Configuration package."""

from ledger_reconciler.config.settings import (
    AppSettings,
    GeminiSettings,
    PipelineSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "PipelineSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
