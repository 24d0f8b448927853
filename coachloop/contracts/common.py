"""
Common enums and the base model shared by every coaching-loop contract.
All models use Pydantic V2 with strict type checking.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class GameContext(str, Enum):
    """Coarse game situation a telemetry frame is classified into."""

    ROUND_START = "round_start"
    MID_ROUND = "mid_round"
    ROUND_END = "round_end"
    ECONOMY_PHASE = "economy_phase"
    TACTICAL_TIMEOUT = "tactical_timeout"
    INTERMISSION = "intermission"
    MATCH_END = "match_end"
    CRITICAL_SITUATION = "critical_situation"
    LEARNING_OPPORTUNITY = "learning_opportunity"


class ProcessingState(str, Enum):
    """Orchestrator processing state machine."""

    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"
    ERROR = "error"
    STOPPED = "stopped"


class InterventionPriority(str, Enum):
    IMMEDIATE = "immediate"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    DEFERRED = "deferred"


# Lower rank sorts first
PRIORITY_RANK: dict[str, int] = {
    InterventionPriority.IMMEDIATE.value: 0,
    InterventionPriority.HIGH.value: 1,
    InterventionPriority.MEDIUM.value: 2,
    InterventionPriority.LOW.value: 3,
    InterventionPriority.DEFERRED.value: 4,
}


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FactorKind(str, Enum):
    TACTICAL = "tactical"
    PSYCHOLOGICAL = "psychological"
    ECONOMIC = "economic"
    POSITIONAL = "positional"
    TEMPORAL = "temporal"


class CoachingObjective(str, Enum):
    PERFORMANCE_IMPROVEMENT = "performance_improvement"
    TACTICAL_GUIDANCE = "tactical_guidance"
    MENTAL_COACHING = "mental_coaching"
    TEAM_COORDINATION = "team_coordination"
    STRATEGIC_ANALYSIS = "strategic_analysis"
    ERROR_CORRECTION = "error_correction"
    SKILL_DEVELOPMENT = "skill_development"


class CoachingPersonality(str, Enum):
    SUPPORTIVE = "supportive"
    ANALYTICAL = "analytical"
    TACTICAL = "tactical"
    ADAPTIVE = "adaptive"
    DIRECT = "direct"
    MENTOR = "mentor"


class BackoffStrategy(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class DecisionType(str, Enum):
    """Kind of intervention a decision produces."""

    POSITIONING = "positioning_advice"
    ECONOMY = "economy_advice"
    PERFORMANCE = "performance_feedback"
    TACTICAL = "tactical_advice"
    MENTAL = "mental_coaching"
    LEARNING = "learning_insight"


class DeliveryWindow(str, Enum):
    NOW = "now"
    NEXT_ROUND = "next_round"
    NEXT_BREAK = "next_break"
    POST_GAME = "post_game"


class FeedbackTiming(str, Enum):
    TOO_EARLY = "too_early"
    PERFECT = "perfect"
    TOO_LATE = "too_late"


class PlayerReaction(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    RESISTANT = "resistant"


class PlayerResponse(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    IGNORED = "ignored"


class MemoryImportance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class BaseContract(BaseModel):
    """Base model for all data contracts with common configuration."""

    model_config = ConfigDict(
        # Validate data on assignment
        validate_assignment=True,
        # Use enum values in JSON
        use_enum_values=True,
        # Forbid extra fields to ensure data integrity
        extra="forbid",
    )


class FrozenContract(BaseContract):
    """Contract that cannot be mutated once built."""

    model_config = ConfigDict(frozen=True)
