"""Orchestrator configuration, statistics, health and event contracts."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import Field

from .common import BaseContract


class OrchestratorConfig(BaseContract):
    max_concurrent_decisions: int = Field(default=3, ge=1)
    decision_timeout: float = Field(default=5.0, gt=0, description="Seconds a decision may stay in flight before it counts as stale")
    max_tool_calls: int = Field(default=10, ge=0)
    allow_external_calls: bool = True
    max_interventions_per_round: int = Field(default=2, ge=0)
    min_seconds_between_interventions: float = Field(default=10.0, ge=0)
    deferred_queue_size: int = Field(default=8, ge=0)
    health_check_interval: float = Field(default=30.0, gt=0)
    telemetry_stale_seconds: float = Field(default=5.0, gt=0)


class OrchestratorStats(BaseContract):
    frames_processed: int = 0
    frames_skipped: int = 0
    total_decisions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    deferred_decisions: int = 0
    dropped_decisions: int = 0
    outputs_delivered: int = 0
    monitoring_completed: int = 0
    average_decision_time: float = 0.0
    average_execution_time: float = 0.0
    tool_usage: dict[str, int] = Field(default_factory=dict)
    player_satisfaction: float = 3.0


class HealthError(BaseContract):
    code: str
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class OrchestratorHealth(BaseContract):
    status: Literal["healthy", "degraded", "error"] = "healthy"
    last_check: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_error: HealthError | None = None
    telemetry_lag: float | None = None
    active_decisions: int = 0
    stale_decisions: int = 0
    active_monitoring_sessions: int = 0
    success_rate: float | None = None
    error_count: int = 0


class OrchestratorEventType(str, Enum):
    STATE_CHANGED = "state-changed"
    DECISION_MADE = "decision-made"
    EXECUTION_COMPLETED = "execution-completed"
    OUTPUT_GENERATED = "output-generated"
    MONITORING_COMPLETED = "monitoring-completed"
    USER_FEEDBACK = "user-feedback"
    HEALTH_CHECK = "health-check"
    ERROR = "error"


class OrchestratorEvent(BaseContract):
    type: OrchestratorEventType
    match_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
