"""
Configuration Management for finledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationInvalidError(Exception):
    """
    Store, auth or AI settings are missing or malformed.

    Blocks every ledger operation until the configuration is fixed.
    """

    def __init__(self, component: str, message: str):
        self.component = component
        self.reason = message
        super().__init__(f"{component} is not configured: {message}")


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        min_length=1,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet, one per collection
    accounts_sheet_name: str = "accounts"
    transactions_sheet_name: str = "transactions"
    holdings_sheet_name: str = "stocks"
    audit_sheet_name: str = "AuditLog"

    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How often subscriptions re-read their worksheet"
    )

    @field_validator("credentials_path")
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

    def sheet_name_for(self, collection: str) -> str:
        """Map a store collection name to its worksheet title."""
        names = {
            "accounts": self.accounts_sheet_name,
            "transactions": self.transactions_sheet_name,
            "stocks": self.holdings_sheet_name,
        }
        return names.get(collection, collection)


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        min_length=1,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
    )


class LedgerSettings(BaseSettings):
    """Ledger behaviour that callers may want to tune."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    local_currency: str = Field(
        default="TWD",
        description="Currency total assets are reported in"
    )
    # Fixed approximation, not a live exchange rate
    fx_rates: dict[str, Decimal] = Field(
        default_factory=lambda: {"USD": Decimal("32")},
        description="Units of local currency per unit of foreign currency"
    )
    recent_transactions_limit: int = Field(default=5, ge=1, le=100)
    advice_language: str = Field(
        default="Traditional Chinese",
        description="Language the advice agent answers in"
    )

    @field_validator("local_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("fx_rates")
    @classmethod
    def upper_rate_keys(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        for code, rate in v.items():
            if rate <= 0:
                raise ValueError(f"FX rate for {code} must be positive")
        return {code.strip().upper(): rate for code, rate in v.items()}


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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = False
    store_backend: Literal["memory", "google_sheets"] = Field(
        default="google_sheets",
        description="Which document store backs the ledger"
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
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

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


def load_section(settings: Settings, name: str):
    """
    Load one settings group, converting validation failures into
    ConfigurationInvalidError so callers can surface them distinctly.
    """
    try:
        return getattr(settings, name)
    except ValidationError as e:
        missing = ", ".join(
            ".".join(str(part) for part in err["loc"]) for err in e.errors()
        )
        raise ConfigurationInvalidError(name, f"invalid or missing: {missing}") from e


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus
    {setting_name}_error entries for failures. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "gemini", "ledger", "app"):
        try:
            load_section(settings, name)
            results[name] = True
        except ConfigurationInvalidError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
