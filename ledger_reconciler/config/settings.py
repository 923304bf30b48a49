"""
Configuration Management for the Ledger Reconciler

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All thresholds used by the reconciliation pipeline live here.
The heuristics (fuzzy distances, date windows, amount tolerances) are tuned
in one place instead of being scattered as literals across the stages.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (extraction collaborator)."""

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
        default=2048,
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


class PipelineSettings(BaseSettings):
    """
    Reconciliation pipeline thresholds.

    Every stage reads its knobs from here unless a caller injects
    an explicit instance (tests do).
    """

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        extra="ignore"
    )

    # Reserved names
    outside_account_name: str = Field(
        default="Вне Wallet",
        description="Name of the sentinel account for money leaving/entering the ledger"
    )
    uncategorized_name: str = Field(
        default="Не выбрано",
        description="Category used when nothing matches"
    )

    # Fuzzy matching
    max_fuzzy_distance: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Max edit distance between a mention and an account/alias"
    )
    max_translit_distance: int = Field(
        default=3,
        ge=0,
        le=6,
        description="Max edit distance when transliteration is involved"
    )
    short_mention_guard: bool = Field(
        default=False,
        description="Cap the edit distance at 1 for mentions under 5 letters and at 0 under 3"
    )

    # Dates
    future_date_tolerance_days: int = Field(
        default=2,
        ge=0,
        description="How many days in the future a date may be without future-intent wording"
    )
    date_clamp_window_days: int = Field(
        default=31,
        ge=0,
        description="Max distance from the dominant date before a future date is clamped"
    )
    default_timezone: str = Field(
        default="UTC+02:00",
        description="Timezone used for 'today'/'yesterday' when the user has none"
    )

    # Mass edit
    fiat_amount_tolerance: float = Field(
        default=0.01,
        gt=0,
        description="Amount tolerance band for fiat currencies"
    )
    crypto_amount_tolerance: float = Field(
        default=1e-8,
        gt=0,
        description="Amount tolerance band for crypto currencies"
    )
    mass_edit_max_matches: int = Field(
        default=500,
        ge=1,
        description="Hard cap on entries selected by one mass-edit instruction"
    )
    recent_history_limit: int = Field(
        default=200,
        ge=1,
        description="How many recent entries feed the account usage stats"
    )

    # Rate limiting
    rate_limit_max_requests: int = Field(
        default=20,
        ge=1,
        description="Extraction calls allowed per user in one window"
    )
    rate_limit_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Sliding window length for the extraction rate limit"
    )

    # Tags
    tag_match_similarity: float = Field(default=0.75, ge=0.0, le=1.0)
    tag_suggest_similarity: float = Field(default=0.6, ge=0.0, le=1.0)
    tag_new_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    max_tag_name_length: int = Field(default=20, ge=1)

    @field_validator('outside_account_name', 'uncategorized_name')
    @classmethod
    def validate_reserved_name(cls, v: str) -> str:
        """Reserved names cannot be blank."""
        if not v.strip():
            raise ValueError("Reserved account/category names cannot be empty")
        return v.strip()


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
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
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

    # Sub-settings are built lazily so that the pipeline works
    # without LLM credentials (tests, offline reconciliation).

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def pipeline(self) -> PipelineSettings:
        return PipelineSettings()

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


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("gemini", "pipeline", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
