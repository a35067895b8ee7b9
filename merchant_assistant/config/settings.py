from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration for the routing engine.
    Values are loaded from environment variables and an optional .env file.
    """

    PROJECT_NAME: str = "Merchant Assistant Router"
    VERSION: str = "0.1.0"

    # Logging
    LOG_LEVEL: str = Field("INFO", description="Root log level")
    LOG_FORMAT: Literal["colored", "json", "plain"] = Field("colored", description="Console log format")
    LOG_FILE: str | None = Field(None, description="Optional JSON log file path")
    LOG_CONFIGURE: bool = Field(False, description="Install console/file handlers when a container is built")

    # Conversation context
    CONTEXT_MAX_RECENT_MESSAGES: int = Field(10, ge=1, description="Recent messages kept per conversation")
    CONTEXT_TTL_HOURS: int = Field(24, ge=1, description="Idle hours before a conversation context expires")
    CONTEXT_MAX_CONTEXTS: int = Field(10000, ge=1, description="Maximum conversations kept in memory")

    # Skill result cache
    SKILLS_CACHE_TTL_SECONDS: int = Field(600, ge=0, description="TTL of cached skill results")
    CACHE_MAX_SIZE: int = Field(1000, ge=1, description="Maximum cached skill results")

    # Entity resolution
    ENTITY_AMBIGUITY_GAP: float = Field(
        0.1, description="Minimum score gap between the two best partial matches to accept the top one"
    )
    ENTITY_THRESHOLD_SHORT: float = Field(0.6, description="Partial-match threshold for short inputs")
    ENTITY_THRESHOLD_LONG: float = Field(0.3, description="Partial-match threshold for long inputs")
    ENTITY_SHORT_INPUT_LEN: int = Field(3, ge=1, description="Inputs up to this length use the short threshold")
    ENTITY_LONG_INPUT_LEN: int = Field(6, ge=2, description="Inputs from this length use the long threshold")

    # Intent classification
    INTENT_SCORE_FLOOR: float = Field(5.0, ge=0.0, description="Top score below this falls back to general chat")

    # Query structuring
    QUERY_LLM_ESCALATION_THRESHOLD: float = Field(
        0.9, description="Fast-path confidence at or below which the LLM tier is consulted"
    )
    QUERY_ESCALATE_COMPARISONS: bool = Field(True, description="Always send comparison queries to the LLM tier")
    QUERY_COMPARISON_RULE_CONFIDENCE: float = Field(
        0.5, description="Rule confidence assigned to comparisons when escalation is enabled"
    )

    # Strategy selection
    HYBRID_RISK_FACTOR_THRESHOLD: int = Field(
        3, ge=0, description="Diagnosis goes hybrid when the risk scan finds more factors than this"
    )

    # LLM
    LLM_PROVIDER: Literal["none", "ollama", "openai"] = Field("none", description="Chat model backend")
    LLM_MODEL: str = Field("qwen2.5:7b", description="Chat model name")
    LLM_BASE_URL: str = Field("http://localhost:11434", description="Model server base URL")
    LLM_API_KEY: str | None = Field(None, description="API key for OpenAI-compatible servers")
    LLM_TEMPERATURE: float = Field(0.3, ge=0.0, le=2.0, description="Sampling temperature")
    LLM_TIMEOUT: int = Field(60, ge=1, description="Request timeout in seconds")
    LLM_CACHE_SIZE: int = Field(200, ge=0, description="Cached LLM responses (0 disables)")

    @field_validator(
        "ENTITY_AMBIGUITY_GAP",
        "ENTITY_THRESHOLD_SHORT",
        "ENTITY_THRESHOLD_LONG",
        "QUERY_LLM_ESCALATION_THRESHOLD",
        "QUERY_COMPARISON_RULE_CONFIDENCE",
    )
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be between 0 and 1")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_thresholds(self) -> "Settings":
        if self.ENTITY_LONG_INPUT_LEN <= self.ENTITY_SHORT_INPUT_LEN:
            raise ValueError("ENTITY_LONG_INPUT_LEN must be greater than ENTITY_SHORT_INPUT_LEN")
        if self.QUERY_ESCALATE_COMPARISONS and self.QUERY_COMPARISON_RULE_CONFIDENCE >= 0.6:
            # The LLM tier must always see comparisons when escalation is on
            raise ValueError("QUERY_COMPARISON_RULE_CONFIDENCE must be below 0.6 when comparisons escalate")
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """
    Return a cached settings instance.
    Environment variables are read only once per process.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached instance (tests)."""
    global _settings_instance
    _settings_instance = None
