"""Contract models for data validation."""

from .coaching import CoachingOutput, OutputTiming, Personalization
from .common import (
    PRIORITY_RANK,
    BackoffStrategy,
    BaseContract,
    CoachingObjective,
    CoachingPersonality,
    DecisionType,
    DeliveryWindow,
    FactorKind,
    FeedbackTiming,
    GameContext,
    InterventionPriority,
    MemoryImportance,
    PlayerReaction,
    PlayerResponse,
    ProcessingState,
    Severity,
)
from .decisions import (
    AIDecision,
    DecisionConstraints,
    DecisionContext,
    DecisionLearning,
    ResourceLimits,
    RetryPolicy,
    ToolChainStep,
    UserFeedback,
)
from .execution import ExecutionResult, ExecutionStatus, StepResult, ToolChainResult, ToolResult
from .feedback import (
    BehaviorPattern,
    ExecutionOutcome,
    MeasuredImpact,
    PersonalityMetrics,
    StrategyAdaptation,
    StrategyStats,
)
from .game_state import (
    ContextChange,
    DerivedState,
    EconomyState,
    GameStateSnapshot,
    MapState,
    PlayerState,
    PlayerStatistics,
    RoleAssessment,
    SituationalFactor,
    TeamEconomy,
    TeamState,
    Vector3,
    WeaponInfo,
)
from .monitoring import (
    CompletionReason,
    EffectivenessScores,
    MonitoringFeedback,
    MonitoringStatus,
    StateChange,
)
from .orchestrator import (
    HealthError,
    OrchestratorConfig,
    OrchestratorEvent,
    OrchestratorEventType,
    OrchestratorHealth,
    OrchestratorStats,
)

__all__ = [
    "PRIORITY_RANK",
    "AIDecision",
    "BackoffStrategy",
    "BaseContract",
    "BehaviorPattern",
    "CoachingObjective",
    "CoachingOutput",
    "CoachingPersonality",
    "CompletionReason",
    "ContextChange",
    "DecisionConstraints",
    "DecisionContext",
    "DecisionLearning",
    "DecisionType",
    "DeliveryWindow",
    "DerivedState",
    "EconomyState",
    "EffectivenessScores",
    "ExecutionOutcome",
    "ExecutionResult",
    "ExecutionStatus",
    "FactorKind",
    "FeedbackTiming",
    "GameContext",
    "GameStateSnapshot",
    "HealthError",
    "InterventionPriority",
    "MapState",
    "MeasuredImpact",
    "MemoryImportance",
    "MonitoringFeedback",
    "MonitoringStatus",
    "OrchestratorConfig",
    "OrchestratorEvent",
    "OrchestratorEventType",
    "OrchestratorHealth",
    "OrchestratorStats",
    "OutputTiming",
    "Personalization",
    "PersonalityMetrics",
    "PlayerReaction",
    "PlayerResponse",
    "PlayerState",
    "PlayerStatistics",
    "ProcessingState",
    "ResourceLimits",
    "RetryPolicy",
    "RoleAssessment",
    "Severity",
    "SituationalFactor",
    "StateChange",
    "StepResult",
    "StrategyAdaptation",
    "StrategyStats",
    "TeamEconomy",
    "TeamState",
    "ToolChainResult",
    "ToolChainStep",
    "ToolResult",
    "UserFeedback",
    "Vector3",
    "WeaponInfo",
]
