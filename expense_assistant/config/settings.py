"""
Configuration Management for Expense Assistant

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable of the conversational core (retry budget, audio formats,
alert windows) lives in one of these groups, so product decisions such
as "how long after a missed appointment do we still alert" are changed
through the environment rather than in code.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini model service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    chat_model: str = Field(
        default="gemini-2.5-flash",
        description="Model used for typed and recorded turns"
    )
    tts_model: str = Field(
        default="gemini-2.5-flash-preview-tts",
        description="Model used to synthesize spoken replies"
    )
    live_model: str = Field(
        default="gemini-2.5-flash-native-audio-preview-09-2025",
        description="Model used for the realtime voice session"
    )
    voice_name: str = Field(
        default="Kore",
        description="Prebuilt voice for synthesized speech"
    )
    temperature: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Model temperature for chat turns"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    users_sheet_name: str = Field(
        default="Users",
        description="Name of the sheet for user profiles"
    )
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Name of the sheet for expenses"
    )
    appointments_sheet_name: str = Field(
        default="Appointments",
        description="Name of the sheet for appointments"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class ChatSettings(BaseSettings):
    """Turn-based chat dispatcher configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        extra="ignore"
    )

    max_send_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per message before the turn fails"
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Backoff unit; attempt N waits N times this value"
    )
    min_audio_bytes: int = Field(
        default=100,
        ge=0,
        description="Recordings smaller than this are rejected as too short"
    )
    max_tool_rounds: int = Field(
        default=4,
        ge=1,
        description="Tool resolution rounds allowed within a single turn"
    )
    recent_expenses_limit: int = Field(
        default=10,
        ge=1,
        description="How many expenses getExpenses returns to the model"
    )
    confirmation_text: str = Field(
        default="Safi tqiyed.",
        description="Reply used when a mutating tool succeeded but the model said nothing"
    )


class LiveAudioSettings(BaseSettings):
    """Realtime voice session audio configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LIVE_",
        extra="ignore"
    )

    input_sample_rate: int = Field(
        default=16000,
        description="Microphone sample rate expected by the live channel"
    )
    output_sample_rate: int = Field(
        default=24000,
        description="Sample rate of audio streamed back by the model"
    )
    block_size: int = Field(
        default=4096,
        ge=256,
        description="Samples per captured microphone frame"
    )
    activity_interval_seconds: float = Field(
        default=0.1,
        gt=0.0,
        description="Refresh interval of the activity indicator"
    )
    activity_bars: int = Field(
        default=5,
        ge=1,
        description="Number of bars in the activity indicator"
    )


class NotificationSettings(BaseSettings):
    """Appointment alert configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATION_",
        extra="ignore"
    )

    check_interval_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds between appointment checks"
    )
    lead_window_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Alert this many seconds before an appointment"
    )
    # Product heuristic: missed appointments still surface when the app
    # is reopened, but only within this window.
    overdue_window_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="Alert appointments overdue by at most this many seconds"
    )
    chime_enabled: bool = Field(
        default=True,
        description="Play an audible cue with each alert"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_budget: float = Field(
        default=5000.0,
        ge=0.0,
        description="Monthly budget assigned to new users"
    )
    currency: str = Field(
        default="DH",
        description="Currency label used in prompts and replies"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def chat(self) -> ChatSettings:
        return ChatSettings()

    @property
    def live_audio(self) -> LiveAudioSettings:
        return LiveAudioSettings()

    @property
    def notifications(self) -> NotificationSettings:
        return NotificationSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the groups that failed.
    Useful for startup checks.
    """
    results: dict[str, object] = {}

    settings = get_settings()

    for name in ("gemini", "google_sheets", "chat", "live_audio", "notifications", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
