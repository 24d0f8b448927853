"""
Configuration settings using Pydantic Settings.

Every tunable of the coaching loop is loaded from environment variables (or `.env`).
The defaults are the values the loop has always shipped with; services accept the same
values as constructor parameters so tests and multi-match hosts can override them locally.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
    PydanticBaseSettingsSource,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Order: init kwargs > .env (dotenv) > env vars > file secrets
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            file_secret_settings,
        )

    # Effectiveness monitoring
    monitor_min_time_seconds: float = Field(10.0, alias="MONITOR_MIN_TIME_SECONDS")
    monitor_max_time_seconds: float = Field(60.0, alias="MONITOR_MAX_TIME_SECONDS")
    monitor_significance_threshold: float = Field(0.3, alias="MONITOR_SIGNIFICANCE_THRESHOLD")
    monitor_learning_threshold: float = Field(0.6, alias="MONITOR_LEARNING_THRESHOLD")
    monitor_engagement_threshold: float = Field(0.5, alias="MONITOR_ENGAGEMENT_THRESHOLD")
    monitor_decay_seconds: float = Field(30.0, alias="MONITOR_DECAY_SECONDS")
    monitor_max_sessions: int = Field(32, alias="MONITOR_MAX_SESSIONS")

    # Feedback loop / personality adaptation
    feedback_learning_rate: float = Field(0.1, alias="FEEDBACK_LEARNING_RATE")
    feedback_min_samples: int = Field(10, alias="FEEDBACK_MIN_SAMPLES")
    feedback_max_history: int = Field(100, alias="FEEDBACK_MAX_HISTORY")
    feedback_confidence_threshold: float = Field(0.7, alias="FEEDBACK_CONFIDENCE_THRESHOLD")
    feedback_strategy_update_interval_seconds: float = Field(
        300.0, alias="FEEDBACK_STRATEGY_UPDATE_INTERVAL_SECONDS"
    )

    # Decision engine
    engine_max_decisions_per_analysis: int = Field(3, alias="ENGINE_MAX_DECISIONS_PER_ANALYSIS")
    engine_min_confidence: float = Field(0.6, alias="ENGINE_MIN_CONFIDENCE")

    # Orchestrator
    orchestrator_max_concurrent_decisions: int = Field(
        3,
        validation_alias=AliasChoices(
            "ORCHESTRATOR_MAX_CONCURRENT_DECISIONS", "MAX_CONCURRENT_DECISIONS"
        ),
    )
    orchestrator_max_tool_calls: int = Field(10, alias="ORCHESTRATOR_MAX_TOOL_CALLS")
    orchestrator_max_processing_time_seconds: float = Field(
        5.0, alias="ORCHESTRATOR_MAX_PROCESSING_TIME_SECONDS"
    )
    orchestrator_allow_external_calls: bool = Field(True, alias="ORCHESTRATOR_ALLOW_EXTERNAL_CALLS")
    orchestrator_max_interventions_per_round: int = Field(
        2, alias="ORCHESTRATOR_MAX_INTERVENTIONS_PER_ROUND"
    )
    orchestrator_min_seconds_between_interventions: float = Field(
        10.0, alias="ORCHESTRATOR_MIN_SECONDS_BETWEEN_INTERVENTIONS"
    )
    orchestrator_deferred_queue_size: int = Field(8, alias="ORCHESTRATOR_DEFERRED_QUEUE_SIZE")
    orchestrator_health_check_interval_seconds: float = Field(
        30.0, alias="ORCHESTRATOR_HEALTH_CHECK_INTERVAL_SECONDS"
    )
    orchestrator_telemetry_stale_seconds: float = Field(
        5.0, alias="ORCHESTRATOR_TELEMETRY_STALE_SECONDS"
    )

    # State history
    state_history_max_snapshots: int = Field(500, alias="STATE_HISTORY_MAX_SNAPSHOTS")
    state_history_pattern_window: int = Field(50, alias="STATE_HISTORY_PATTERN_WINDOW")

    # Tool execution
    default_tool_timeout_seconds: float = Field(30.0, alias="DEFAULT_TOOL_TIMEOUT_SECONDS")
    remote_tools_base_url: str | None = Field(None, alias="REMOTE_TOOLS_BASE_URL")
    remote_tools_timeout_seconds: float = Field(15.0, alias="REMOTE_TOOLS_TIMEOUT_SECONDS")
    remote_tools_api_key: str | None = Field(None, alias="REMOTE_TOOLS_API_KEY")

    # Observability
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(True, alias="METRICS_ENABLED")


settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings
