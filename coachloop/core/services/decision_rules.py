"""Built-in decision rules and per-tool execution settings.

Rules are plain data: which contexts they apply to, a condition over the
decision context, and the tool stages to run. Each stage runs in parallel
and depends on every step of the stage before it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from coachloop.contracts import (
    BackoffStrategy,
    DecisionContext,
    DecisionType,
    FactorKind,
    GameContext,
    InterventionPriority,
    RetryPolicy,
    Severity,
)

GET_GAME_STATE = "get_game_state"
ANALYZE_POSITIONING = "analyze_positioning"
CALL_LLM = "call_llm"
TEXT_TO_SPEECH = "text_to_speech"
SUGGEST_ECONOMY_BUY = "suggest_economy_buy"
GET_PLAYER_STATS = "get_player_stats"
UPDATE_PLAYER_PROFILE = "update_player_profile"
SUMMARIZE_CONVERSATION = "summarize_conversation"


@dataclass(frozen=True, slots=True)
class ToolSettings:
    timeout: float
    complexity: int
    fallback: str | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    external: bool = False


TOOL_SETTINGS: dict[str, ToolSettings] = {
    GET_GAME_STATE: ToolSettings(
        timeout=1.0, complexity=1, retry=RetryPolicy(max_retries=3, backoff=BackoffStrategy.LINEAR)
    ),
    ANALYZE_POSITIONING: ToolSettings(timeout=5.0, complexity=5, fallback=SUMMARIZE_CONVERSATION),
    CALL_LLM: ToolSettings(timeout=15.0, complexity=8, external=True),
    TEXT_TO_SPEECH: ToolSettings(timeout=8.0, complexity=4, external=True),
    SUGGEST_ECONOMY_BUY: ToolSettings(timeout=3.0, complexity=3, fallback=CALL_LLM),
    GET_PLAYER_STATS: ToolSettings(
        timeout=10.0,
        complexity=6,
        fallback=CALL_LLM,
        retry=RetryPolicy(max_retries=2, backoff=BackoffStrategy.EXPONENTIAL),
        external=True,
    ),
    UPDATE_PLAYER_PROFILE: ToolSettings(timeout=2.0, complexity=2),
    SUMMARIZE_CONVERSATION: ToolSettings(timeout=12.0, complexity=7),
}


def tool_settings(tool_name: str, default_timeout: float = 30.0) -> ToolSettings:
    return TOOL_SETTINGS.get(tool_name) or ToolSettings(timeout=default_timeout, complexity=1)


Condition = Callable[[DecisionContext], bool]


@dataclass(slots=True)
class DecisionRule:
    id: str
    name: str
    decision_type: DecisionType
    contexts: frozenset[str]
    condition: Condition
    stages: tuple[tuple[str, ...], ...]
    priority: InterventionPriority
    confidence: float
    cooldown: float
    description: str
    expected_outcome: str = ""

    @property
    def tools(self) -> list[str]:
        return [tool for stage in self.stages for tool in stage]


# ===== Conditions =====


def is_critical_positioning(ctx: DecisionContext) -> bool:
    derived = ctx.game_state.derived
    return derived.player_state.health < 50 or any(
        f.kind == FactorKind.POSITIONAL and f.severity == Severity.CRITICAL
        for f in derived.situational_factors
    )


def needs_economy_advice(ctx: DecisionContext) -> bool:
    derived = ctx.game_state.derived
    if derived.economy_state.round_type in ("eco", "semi_eco"):
        return True
    return derived.team_state.economy.buy_capability in ("eco", "semi_eco")


def has_performance_insights(ctx: DecisionContext) -> bool:
    player = ctx.game_state.derived.player_state
    stats = player.statistics
    return stats.rating < 0.5 or stats.deaths > stats.kills + 2 or bool(player.risk_factors)


def needs_tactical_guidance(ctx: DecisionContext) -> bool:
    factors = ctx.game_state.derived.situational_factors
    urgent = any(f.severity in (Severity.CRITICAL, Severity.HIGH) for f in factors)
    tactical = any(f.kind in (FactorKind.TACTICAL, FactorKind.POSITIONAL) for f in factors)
    return urgent or tactical


def needs_mental_support(ctx: DecisionContext) -> bool:
    derived = ctx.game_state.derived
    player = derived.player_state
    return (
        player.statistics.deaths > 5
        or derived.team_state.score < derived.map_state.round * 0.3
        or "tilt" in player.risk_factors
        or "frustration" in player.risk_factors
    )


def has_learning_opportunity(ctx: DecisionContext) -> bool:
    return any(
        word in f.description.lower()
        for f in ctx.game_state.derived.situational_factors
        for word in ("mistake", "improvement", "opportunity")
    )


def default_rules() -> list[DecisionRule]:
    return [
        DecisionRule(
            id="critical_position_analysis",
            name="Critical Positioning Analysis",
            decision_type=DecisionType.POSITIONING,
            contexts=frozenset({GameContext.CRITICAL_SITUATION.value, GameContext.MID_ROUND.value}),
            condition=is_critical_positioning,
            stages=((GET_GAME_STATE,), (ANALYZE_POSITIONING,), (CALL_LLM,), (TEXT_TO_SPEECH,)),
            priority=InterventionPriority.IMMEDIATE,
            confidence=0.9,
            cooldown=15.0,
            description="Analyze and provide immediate positioning advice in critical situations",
            expected_outcome="Player repositions to safety or trades effectively",
        ),
        DecisionRule(
            id="economy_buy_suggestion",
            name="Economy Buy Suggestion",
            decision_type=DecisionType.ECONOMY,
            contexts=frozenset({GameContext.ECONOMY_PHASE.value, GameContext.ROUND_START.value}),
            condition=needs_economy_advice,
            stages=((GET_GAME_STATE,), (SUGGEST_ECONOMY_BUY,), (CALL_LLM,), (TEXT_TO_SPEECH,)),
            priority=InterventionPriority.HIGH,
            confidence=0.8,
            cooldown=25.0,
            description="Provide strategic buy recommendations based on team economy",
            expected_outcome="Player makes an efficient buy aligned with the team",
        ),
        DecisionRule(
            id="performance_review",
            name="Performance Review",
            decision_type=DecisionType.PERFORMANCE,
            contexts=frozenset({GameContext.ROUND_END.value, GameContext.LEARNING_OPPORTUNITY.value}),
            condition=has_performance_insights,
            stages=((GET_GAME_STATE, GET_PLAYER_STATS), (CALL_LLM,), (UPDATE_PLAYER_PROFILE,)),
            priority=InterventionPriority.MEDIUM,
            confidence=0.7,
            cooldown=45.0,
            description="Analyze performance and provide constructive feedback",
            expected_outcome="Player adjusts the habit highlighted in the review",
        ),
        DecisionRule(
            id="tactical_strategy",
            name="Tactical Strategy Guidance",
            decision_type=DecisionType.TACTICAL,
            contexts=frozenset({GameContext.ROUND_START.value, GameContext.MID_ROUND.value}),
            condition=needs_tactical_guidance,
            stages=((GET_GAME_STATE,), (CALL_LLM,), (TEXT_TO_SPEECH,)),
            priority=InterventionPriority.HIGH,
            confidence=0.75,
            cooldown=20.0,
            description="Provide tactical strategy advice for current game situation",
            expected_outcome="Player executes the suggested tactical adjustment",
        ),
        DecisionRule(
            id="mental_support",
            name="Mental Support",
            decision_type=DecisionType.MENTAL,
            contexts=frozenset({GameContext.ROUND_END.value, GameContext.CRITICAL_SITUATION.value}),
            condition=needs_mental_support,
            stages=((GET_GAME_STATE,), (CALL_LLM,), (TEXT_TO_SPEECH,)),
            priority=InterventionPriority.MEDIUM,
            confidence=0.65,
            cooldown=60.0,
            description="Provide mental coaching and morale support",
            expected_outcome="Player stays composed in the following rounds",
        ),
        DecisionRule(
            id="learning_insight",
            name="Learning Insight",
            decision_type=DecisionType.LEARNING,
            contexts=frozenset({GameContext.LEARNING_OPPORTUNITY.value, GameContext.ROUND_END.value}),
            condition=has_learning_opportunity,
            stages=((GET_GAME_STATE, GET_PLAYER_STATS), (CALL_LLM,), (SUMMARIZE_CONVERSATION,)),
            priority=InterventionPriority.LOW,
            confidence=0.6,
            cooldown=30.0,
            description="Identify and explain learning opportunities from recent gameplay",
            expected_outcome="Player repeats the good play or avoids the mistake",
        ),
    ]
