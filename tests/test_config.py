"""Tests for environment-driven configuration."""

import pytest
from pydantic import ValidationError

from ledger_reconciler.config import (
    GeminiSettings,
    PipelineSettings,
    get_settings,
    validate_all_settings,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestPipelineSettings:
    """Tests for PipelineSettings."""

    def test_defaults(self):
        """Test the tuned defaults."""
        settings = PipelineSettings()
        assert settings.max_fuzzy_distance == 2
        assert settings.max_translit_distance == 3
        assert settings.short_mention_guard is False
        assert settings.mass_edit_max_matches == 500
        assert settings.outside_account_name == "Вне Wallet"

    def test_environment_override(self, monkeypatch):
        """Test PIPELINE_ variables override defaults."""
        monkeypatch.setenv("PIPELINE_MASS_EDIT_MAX_MATCHES", "50")
        monkeypatch.setenv("PIPELINE_DEFAULT_TIMEZONE", "UTC+03:00")
        settings = get_settings().pipeline
        assert settings.mass_edit_max_matches == 50
        assert settings.default_timezone == "UTC+03:00"

    def test_reserved_names_are_stripped(self):
        """Test reserved names lose surrounding spaces."""
        assert PipelineSettings(uncategorized_name="  Прочее ").uncategorized_name == "Прочее"

    def test_blank_reserved_name(self):
        """Test a blank reserved name is rejected."""
        with pytest.raises(ValidationError):
            PipelineSettings(outside_account_name="   ")

    def test_bounds(self):
        """Test out-of-range thresholds are rejected."""
        with pytest.raises(ValidationError):
            PipelineSettings(max_fuzzy_distance=9)


class TestValidateAllSettings:
    """Tests for validate_all_settings."""

    def test_missing_gemini_key(self, monkeypatch):
        """Test a missing API key fails only the gemini group."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        results = validate_all_settings()
        assert results["pipeline"] is True
        assert results["app"] is True
        assert results["gemini"] is False
        assert "gemini_error" in results

    def test_gemini_from_environment(self, monkeypatch):
        """Test the gemini group validates once the key is set."""
        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        assert validate_all_settings()["gemini"] is True
        assert GeminiSettings().temperature == 0.0
