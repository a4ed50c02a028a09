"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from receipt_ledger.config import GeminiSettings, LedgerSettings, Settings, get_settings


class TestLedgerSettings:
    """Tests for LedgerSettings."""

    def test_defaults(self, monkeypatch):
        """Test the pipeline defaults."""
        monkeypatch.delenv("LEDGER_DEFAULT_CURRENCY", raising=False)
        settings = LedgerSettings(_env_file=None)
        assert settings.default_currency == "THB"
        assert settings.default_payment_account == "Assets:Cash"
        assert settings.auto_balance_threshold == 0.02
        assert settings.include_tax_line is True
        assert settings.vendor_hints_path is None

    def test_environment_prefix(self, monkeypatch):
        """Test LEDGER_ variables are read and the currency upper-cased."""
        monkeypatch.setenv("LEDGER_DEFAULT_CURRENCY", "usd")
        monkeypatch.setenv("LEDGER_USE_AI_ENHANCEMENT", "false")
        settings = LedgerSettings(_env_file=None)
        assert settings.default_currency == "USD"
        assert settings.use_ai_enhancement is False

    def test_bounds(self):
        """Test out-of-range confidence is rejected."""
        with pytest.raises(ValidationError):
            LedgerSettings(_env_file=None, min_mapping_confidence=1.5)


class TestRootSettings:
    """Tests for the lazily loaded settings container."""

    def test_sections_load_lazily(self, monkeypatch):
        """Test a missing Gemini key only fails when that section is used."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        settings = Settings(_env_file=None)
        assert settings.ledger.default_business == "Personal"
        with pytest.raises(ValidationError):
            GeminiSettings(_env_file=None)

    def test_get_settings_is_cached(self):
        """Test the same instance is returned until the cache is cleared."""
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()
