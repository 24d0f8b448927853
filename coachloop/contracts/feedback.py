"""Outcome and adaptation contracts consumed by the feedback loop."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from .common import BaseContract, CoachingPersonality, FrozenContract, PlayerResponse


class MeasuredImpact(FrozenContract):
    performance: float = Field(default=0.0, ge=0.0, le=1.0)
    engagement: float = Field(default=0.0, ge=0.0, le=1.0)
    learning: float = Field(default=0.0, ge=0.0, le=1.0)


class ExecutionOutcome(FrozenContract):
    """Terminal judgment of one delivered suggestion."""

    decision_id: str
    suggestion_id: str
    rule_id: str | None = None
    personality: CoachingPersonality | None = None
    success: bool
    impact: float = Field(ge=0.0, le=1.0)
    relevance: float = Field(default=1.0, ge=0.0, le=1.0)
    player_response: PlayerResponse
    measured_impact: MeasuredImpact
    follow_up_required: bool = False
    learning_points: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    behavioral_impact: float = Field(default=0.0, ge=-1.0, le=1.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = Field(default_factory=dict)


class PersonalityMetrics(BaseContract):
    personality: CoachingPersonality
    usage_count: int = 0
    success_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    average_rating: float = Field(default=3.0, ge=0.0, le=5.0)
    last_used: datetime | None = None


class StrategyStats(BaseContract):
    category: str
    total_feedback: int = 0
    positive_feedback: int = 0
    negative_feedback: int = 0
    average_confidence: float = 0.5
    last_updated: datetime | None = None

    @property
    def success_rate(self) -> float:
        if self.total_feedback == 0:
            return 0.0
        return self.positive_feedback / self.total_feedback


class StrategyAdaptation(FrozenContract):
    category: str
    reason: str
    success_rate: float
    recommendations: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class BehaviorPattern(BaseContract):
    category: str
    pattern: str = Field(description="Regular expression matched against change descriptions")
    confidence: float = Field(ge=0.0, le=1.0)
    impact: float = Field(ge=-1.0, le=1.0)
    occurrences: int = 0
