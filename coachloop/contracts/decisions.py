"""Decision-cycle contracts: context, decisions, tool chain plans and user feedback."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import Field, model_validator

from .common import (
    BackoffStrategy,
    BaseContract,
    CoachingObjective,
    CoachingPersonality,
    DecisionType,
    FeedbackTiming,
    InterventionPriority,
)
from .game_state import GameStateSnapshot


class RetryPolicy(BaseContract):
    max_retries: int = Field(default=0, ge=0)
    backoff: BackoffStrategy = BackoffStrategy.LINEAR


class ToolChainStep(BaseContract):
    """One node of a decision's tool DAG."""

    step_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    timeout: float = Field(default=30.0, gt=0, description="Per-attempt timeout in seconds")
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    fallback_tool: str | None = None

    @model_validator(mode="after")
    def _no_self_dependency(self) -> ToolChainStep:
        if self.step_id in self.dependencies:
            raise ValueError(f"step {self.step_id} depends on itself")
        return self


class ResourceLimits(BaseContract):
    max_tool_calls: int = Field(default=10, ge=0)
    max_processing_time: float = Field(default=5.0, gt=0, description="Seconds")
    allow_external_calls: bool = True
    max_concurrent_decisions: int = Field(default=3, ge=1)


class DecisionConstraints(BaseContract):
    resource_limits: ResourceLimits = Field(default_factory=ResourceLimits)
    urgency: str = "low"


class DecisionContext(BaseContract):
    """Built fresh for every decision cycle; never persisted."""

    game_state: GameStateSnapshot
    short_term_memory: list[dict[str, Any]] = Field(default_factory=list)
    long_term_memory: list[dict[str, Any]] = Field(default_factory=list)
    player_profile: dict[str, Any] | None = None
    objectives: list[CoachingObjective] = Field(default_factory=list)
    personality: CoachingPersonality = CoachingPersonality.ADAPTIVE
    constraints: DecisionConstraints = Field(default_factory=DecisionConstraints)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AIDecision(BaseContract):
    id: str
    rule_id: str
    type: DecisionType
    priority: InterventionPriority
    rationale: str
    confidence: float = Field(ge=0.0, le=1.0)
    tool_chain: list[ToolChainStep] = Field(default_factory=list)
    expected_outcome: str = ""
    fallback_plan: str | None = None
    snapshot_sequence_id: int
    match_id: str
    player_id: str
    personality: CoachingPersonality = CoachingPersonality.ADAPTIVE
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = Field(default_factory=dict)


class UserFeedback(BaseContract):
    decision_id: str
    rating: int = Field(ge=1, le=5)
    helpful: bool
    timing: FeedbackTiming = FeedbackTiming.PERFECT
    relevance: float = Field(default=1.0, ge=0.0, le=1.0)
    comments: str | None = None


class DecisionLearning(BaseContract):
    """Per-rule learning record maintained by the decision engine."""

    rule_id: str
    success_rate: float = Field(ge=0.0, le=1.0)
    average_user_rating: float = 3.5
    total_applications: int = 0
    last_used: datetime | None = None
    adaptations: list[str] = Field(default_factory=list)
