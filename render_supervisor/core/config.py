"""
Core configuration module for Render Supervisor.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the
RENDER_SUPERVISOR_ prefix.

The defaults form one internally consistent threshold set for the circuit
breaker, the mount-cycle guard and the recovery scheduler. Every component
accepts an explicit Settings instance so tests can tighten them.

Reference:
- Release It! (Nygard): Circuit breaker and steady-state patterns
- GUIDELINES: Sinha pp. 193-195 - Pydantic BaseSettings pattern
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All fields use the RENDER_SUPERVISOR_ prefix for environment variables.
    Example: RENDER_SUPERVISOR_BASE_COOLDOWN_SECONDS=1.5
    """

    # =========================================================================
    # Service Configuration
    # =========================================================================
    service_name: str = Field(
        default="render-supervisor",
        description="Name of the service for logging and identification",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level for the structured logger",
    )
    metrics_enabled: bool = Field(
        default=True,
        description="Emit Prometheus metrics for breaker and fallback activity",
    )

    # =========================================================================
    # Error Signature Tracking
    # =========================================================================
    signature_window_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=3600.0,
        description="Only signatures younger than this count as repeats",
    )
    signature_history_size: int = Field(
        default=12,
        ge=10,
        le=15,
        description="Bounded number of signatures kept per breaker",
    )
    stack_prefix_chars: int = Field(
        default=200,
        ge=50,
        le=1000,
        description="Stack characters compared when testing identical errors",
    )
    stored_stack_chars: int = Field(
        default=300,
        ge=50,
        le=2000,
        description="Stack characters kept inside a signature",
    )
    similar_prefix_chars: int = Field(
        default=50,
        ge=5,
        le=500,
        description="Message prefix length used when testing similar errors",
    )

    # =========================================================================
    # Circuit Breaker Thresholds
    # =========================================================================
    open_identical_threshold: int = Field(
        default=2,
        ge=1,
        description="Identical errors in window that open the circuit",
    )
    open_consecutive_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive errors that open the circuit",
    )
    permanent_identical_threshold: int = Field(
        default=4,
        ge=2,
        description="Identical errors in window that make the circuit permanent",
    )
    permanent_similar_threshold: int = Field(
        default=7,
        ge=2,
        description="Similar errors in window that make the circuit permanent",
    )
    max_failed_recoveries: int = Field(
        default=3,
        ge=1,
        description="Failed recovery attempts that make the circuit permanent",
    )

    # =========================================================================
    # Cooldown / Backoff
    # =========================================================================
    base_cooldown_seconds: float = Field(
        default=2.0,
        gt=0.0,
        le=600.0,
        description="Base delay for CLOSED -> OPEN cooldowns",
    )
    half_open_base_cooldown_seconds: float = Field(
        default=3.0,
        gt=0.0,
        le=600.0,
        description="Base delay for HALF_OPEN -> OPEN escalations",
    )
    max_cooldown_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=3600.0,
        description="Upper bound for any cooldown",
    )
    cooldown_escalation_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Minimum growth of a cooldown over the previous one",
    )

    # =========================================================================
    # Recovery Pacing
    # =========================================================================
    recovery_interval_base_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=600.0,
        description="Base of the minimum interval between recovery attempts",
    )
    recovery_interval_cap_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=3600.0,
        description="Cap of the minimum interval between recovery attempts",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=100,
        description="Host-wide cap on recovery attempts per backend",
    )
    enable_auto_recovery: bool = Field(
        default=True,
        description="Schedule recovery strategies for recoverable failures",
    )

    # =========================================================================
    # Mount Cycle Detection
    # =========================================================================
    mount_cycle_window_seconds: float = Field(
        default=2.0,
        gt=0.0,
        le=60.0,
        description="Remounts closer than this count towards a cycle",
    )
    mount_cycle_threshold: int = Field(
        default=3,
        ge=2,
        description="Rapid mounts in a row that flag a subject",
    )
    global_mount_window_seconds: float = Field(
        default=3.0,
        gt=0.0,
        le=600.0,
        description="Rolling window for process-wide rapid mount counting",
    )
    global_mount_threshold: int = Field(
        default=5,
        ge=1,
        description="Mounts across all subjects in the window above which storms are flagged",
    )

    # =========================================================================
    # Environment Prefix Configuration
    # =========================================================================
    model_config = {
        "env_prefix": "RENDER_SUPERVISOR_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # =========================================================================
    # Field Validators
    # =========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalise the log level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return upper

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "Settings":
        """Permanent thresholds must sit above the thresholds that open."""
        if self.permanent_identical_threshold <= self.open_identical_threshold:
            raise ValueError(
                "permanent_identical_threshold must exceed open_identical_threshold"
            )
        if self.stack_prefix_chars > self.stored_stack_chars:
            raise ValueError("stack_prefix_chars cannot exceed stored_stack_chars")
        return self


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses functools.lru_cache to ensure only one Settings instance is created.
    Call ``get_settings.cache_clear()`` after changing the environment.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()
