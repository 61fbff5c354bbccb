"""
Configuration for vendor connectors

Values load from environment variables prefixed ``CHARGEBACK_CONNECTORS_``;
nested sections use ``__`` (e.g. ``CHARGEBACK_CONNECTORS_RETRY__MAX_ATTEMPTS=5``).
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitDefaults(BaseModel):
    """Token bucket defaults applied when a vendor declares no limit of its own"""

    max_tokens: int = Field(default=60, ge=1)
    refill_rate: float = Field(default=60.0, gt=0, description="Tokens added per interval")
    interval_seconds: float = Field(default=60.0, gt=0)
    max_wait_seconds: Optional[float] = Field(
        default=30.0, ge=0, description="Queue timeout; None waits indefinitely, 0 fails fast"
    )


class CircuitBreakerDefaults(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=30.0, gt=0, description="Cooldown in seconds")


class RetryDefaults(BaseModel):
    max_attempts: int = Field(default=4, ge=1, description="Initial call plus retries")
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    jitter: float = Field(default=1.0, ge=0)
    retryable_status_codes: List[int] = Field(default_factory=lambda: [408, 429, 500, 502, 503, 504])


class ConnectorSettings(BaseSettings):
    """Process-wide defaults for every adapter instance"""

    model_config = SettingsConfigDict(
        env_prefix="CHARGEBACK_CONNECTORS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    request_timeout: float = Field(default=30.0, gt=0)
    auth_timeout: float = Field(default=15.0, gt=0)
    health_check_timeout: float = Field(default=10.0, gt=0)
    token_refresh_buffer_seconds: int = Field(default=300, ge=0)
    user_agent: str = "chargeback-connectors/1.0"
    log_level: str = "INFO"
    pii_nlp_model: str = Field(default="en_core_web_sm", description="spaCy pipeline backing Presidio detection")
    pii_language: str = "en"
    pii_score_threshold: float = Field(default=0.3, ge=0, le=1)

    rate_limit: RateLimitDefaults = Field(default_factory=RateLimitDefaults)
    circuit_breaker: CircuitBreakerDefaults = Field(default_factory=CircuitBreakerDefaults)
    retry: RetryDefaults = Field(default_factory=RetryDefaults)

    visa_vrol_base_url: str = "https://sandbox.api.visa.com"
    fiserv_base_url: str = "https://connect.fiservapis.com"
    fiserv_token_url: str = "https://connect.fiservapis.com/oauth2/token"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"Log level must be one of: {allowed_levels}")
        return v.upper()


@lru_cache(maxsize=1)
def get_settings() -> ConnectorSettings:
    """Get the cached process settings"""
    return ConnectorSettings()
