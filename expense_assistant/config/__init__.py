"""Configuration package."""

from expense_assistant.config.settings import (
    AppSettings,
    ChatSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    LiveAudioSettings,
    NotificationSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ChatSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "LiveAudioSettings",
    "NotificationSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
