"""
Configuration Module
====================

Application settings and configuration management using Pydantic.

Also defines the enumerations shared by every layer of the SLA engine
(status labels, clock states, clock actions, resolution types).
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="sla-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/tickets",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration Source ==========
    sla_config_source: str = Field(
        default="yaml",
        description="Where SLA/escalation configuration is read from (yaml or database)"
    )
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )
    sla_config_cache_ttl_seconds: float = Field(
        default=30.0,
        description="Validity window for cached per-scope configuration",
        ge=0
    )

    # ========== SLA Sweep ==========
    sla_sweep_interval_seconds: int = Field(
        default=60,
        description="Seconds between background sweeps (0 disables the scheduler)",
        ge=0
    )
    sla_sweep_budget_seconds: float = Field(
        default=30.0,
        description="Time box for a single sweep tick",
        gt=0
    )
    sla_sweep_concurrency: int = Field(
        default=8,
        description="Maximum tickets recomputed concurrently during a sweep",
        ge=1,
        le=128
    )
    sla_sweep_batch_size: int = Field(
        default=500,
        description="Open tickets read per page while a sweep tick pages through all of them",
        ge=1
    )
    sla_max_write_retries: int = Field(
        default=3,
        description="Optimistic-concurrency retries before surfacing a conflict",
        ge=1,
        le=10
    )

    # ========== Alerts ==========
    notification_channel: str = Field(
        default="internal",
        description="Channel label stamped on escalation alerts"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("sla_config_source")
    @classmethod
    def validate_config_source(cls, v: str) -> str:
        """Ensure the configuration source is supported."""
        allowed = {"yaml", "database"}
        if v not in allowed:
            raise ValueError(f"sla_config_source must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class SLAStatus(str, Enum):
    """Status label stored on a ticket's SLA record."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    BREACHED = "breached"
    PAUSED = "paused"
    RESOLVED = "resolved"


class ResolutionType(str, Enum):
    """How a window is measured: raw wall-clock or business hours only."""
    CALENDAR = "calendar"
    BUSINESS_HOURS = "business_hours"


class ClockState(str, Enum):
    """States of the pause/resume machine."""
    RUNNING = "running"
    PAUSED = "paused"
    RESOLVED = "resolved"


class ClockAction(str, Enum):
    """Actions accepted by the pause/resume machine."""
    PAUSE = "pause"
    RESUME = "resume"
    RESOLVE = "resolve"


class AlertTrigger(str, Enum):
    """What caused an escalation alert."""
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class HistoryAction(str, Enum):
    """Audit entry types written to the ticket history."""
    CREATED = "created"
    PAUSE = "pause"
    RESUME = "resume"
    RESOLVE = "resolve"
    ESCALATION = "escalation"
    AUTO_ESCALATION = "auto_escalation"


# ========== Lists for validation ==========

AT_RISK_SLA_STATUSES = [SLAStatus.WARNING, SLAStatus.CRITICAL, SLAStatus.BREACHED]
VALID_HOLD_ACTIONS = [ClockAction.PAUSE.value, ClockAction.RESUME.value]
