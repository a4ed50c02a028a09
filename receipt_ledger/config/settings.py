"""
Configuration Management for Receipt Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Tolerances and thresholds used by the ledger pipeline live in
LedgerSettings so that tests and deployments can tune them without
touching the parsers.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger pipeline configuration (defaults, tolerances, AI switches)."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Defaults applied when input omits them
    default_currency: str = Field(
        default="THB",
        min_length=3,
        max_length=3,
        description="Currency used when a command or receipt has none"
    )
    default_payment_account: str = Field(
        default="Assets:Cash",
        description="Account credited when no payment account is given"
    )
    default_business: str = Field(
        default="Personal",
        description="Business context used when none is given"
    )
    fallback_account: str = Field(
        default="Expenses:Uncategorized",
        description="Account used when no mapping stage matches"
    )

    # Tolerances
    balance_tolerance: float = Field(
        default=0.005,
        ge=0.0,
        description="Absolute tolerance for a balanced set of postings"
    )
    auto_balance_threshold: float = Field(
        default=0.02,
        ge=0.0,
        description="Largest rounding difference the auto-balancer absorbs"
    )
    receipt_tolerance: float = Field(
        default=0.01,
        ge=0.0,
        description="Tolerance for subtotal/total checks on receipts"
    )
    ocr_math_tolerance: float = Field(
        default=0.05,
        ge=0.0,
        description="Tolerance for OCR receipt math checks"
    )

    # Account mapping
    min_mapping_confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for a mapping stage to win"
    )
    ai_min_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum confidence to accept an AI category enhancement"
    )
    ai_cache_ttl_seconds: int = Field(
        default=24 * 60 * 60,
        ge=0,
        description="How long AI enhancements are cached per mapper"
    )

    # Feature switches
    use_ai_enhancement: bool = Field(
        default=True,
        description="Try AI category enhancement when an LLM is configured"
    )
    use_llm_segmentation: bool = Field(
        default=True,
        description="Try LLM receipt segmentation when an LLM is configured"
    )
    include_tax_line: bool = Field(
        default=True,
        description="Emit a separate tax posting when a receipt carries tax"
    )

    # OCR
    vendor_hints_path: Optional[str] = Field(
        default=None,
        description="JSON file with known vendor names and slogans (built-in list when unset)"
    )

    @field_validator('default_currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()


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
    entries_sheet_name: str = Field(
        default="LedgerEntries",
        description="Name of the sheet for ledger entry headers"
    )
    postings_sheet_name: str = Field(
        default="LedgerPostings",
        description="Name of the sheet for posting rows"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )
    user_mappings_sheet_name: str = Field(default="UserMappings")
    vendor_mappings_sheet_name: str = Field(default="VendorMappings")
    account_patterns_sheet_name: str = Field(default="AccountPatterns")
    business_contexts_sheet_name: str = Field(default="BusinessContexts")
    account_type_patterns_sheet_name: str = Field(default="AccountTypePatterns")

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


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=600,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
