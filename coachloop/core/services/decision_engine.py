"""Rule-based decision engine producing ranked, tool-planned interventions."""

from __future__ import annotations

import json
import logging
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Any

from coachloop.config.settings import get_settings
from coachloop.contracts import (
    PRIORITY_RANK,
    AIDecision,
    DecisionContext,
    DecisionLearning,
    ExecutionOutcome,
    FeedbackTiming,
    InterventionPriority,
    PlayerResponse,
    RetryPolicy,
    Severity,
    ToolChainStep,
    UserFeedback,
)
from coachloop.core.ports import ToolPort
from coachloop.core.services.decision_rules import (
    ANALYZE_POSITIONING,
    CALL_LLM,
    GET_GAME_STATE,
    GET_PLAYER_STATS,
    SUGGEST_ECONOMY_BUY,
    SUMMARIZE_CONVERSATION,
    TEXT_TO_SPEECH,
    UPDATE_PLAYER_PROFILE,
    DecisionRule,
    default_rules,
    tool_settings,
)

logger = logging.getLogger(__name__)

MIN_RULE_CONFIDENCE = 0.1
MIN_COOLDOWN = 5.0
MAX_COOLDOWN = 300.0
ISSUED_MEMORY = 500


def step_signature(step: ToolChainStep) -> str:
    """Identity of a tool invocation: same tool with the same input."""
    return f"{step.tool_name}:{json.dumps(step.input, sort_keys=True, default=str)}"


def urgency_of(ctx: DecisionContext) -> str:
    factors = ctx.game_state.derived.situational_factors
    critical = sum(1 for f in factors if f.severity == Severity.CRITICAL)
    high = sum(1 for f in factors if f.severity == Severity.HIGH)
    if critical:
        return "critical"
    if high > 1:
        return "high"
    if high:
        return "medium"
    return "low"


class DecisionEngine:
    """Turns a decision context into at most a handful of ranked decisions.

    Ranking is by priority (immediate first) then confidence, then chain
    complexity. The engine never plans more tool steps than the context's
    resource limits allow, and every chain it emits is a DAG whose steps
    only depend on steps of the same chain.
    """

    def __init__(
        self,
        *,
        rules: list[DecisionRule] | None = None,
        tool_registry: ToolPort | None = None,
        max_decisions_per_analysis: int | None = None,
        min_confidence: float | None = None,
        learning_rate: float | None = None,
        default_tool_timeout: float | None = None,
    ) -> None:
        cfg = get_settings()
        self._rules: dict[str, DecisionRule] = {}
        self._tools = tool_registry
        self._max_decisions = (
            max_decisions_per_analysis
            if max_decisions_per_analysis is not None
            else cfg.engine_max_decisions_per_analysis
        )
        self._min_confidence = (
            min_confidence if min_confidence is not None else cfg.engine_min_confidence
        )
        self._learning_rate = (
            learning_rate if learning_rate is not None else cfg.feedback_learning_rate
        )
        self._default_timeout = (
            default_tool_timeout
            if default_tool_timeout is not None
            else cfg.default_tool_timeout_seconds
        )
        self._learning: dict[str, DecisionLearning] = {}
        self._confidence: dict[str, float] = {}
        self._cooldowns: dict[str, float] = {}
        self._last_fired: dict[str, datetime] = {}
        self._issued: OrderedDict[str, str] = OrderedDict()
        for rule in rules if rules is not None else default_rules():
            self.register_rule(rule)

    # ===== Rules =====

    def register_rule(self, rule: DecisionRule) -> None:
        self._rules[rule.id] = rule
        self._confidence[rule.id] = rule.confidence
        self._cooldowns[rule.id] = rule.cooldown
        self._learning[rule.id] = DecisionLearning(rule_id=rule.id, success_rate=rule.confidence)

    def get_rules(self) -> dict[str, DecisionRule]:
        return dict(self._rules)

    def rule_confidence(self, rule_id: str) -> float:
        return self._confidence[rule_id]

    def rule_cooldown(self, rule_id: str) -> float:
        return self._cooldowns[rule_id]

    def rule_for_decision(self, decision_id: str) -> str | None:
        return self._issued.get(decision_id)

    # ===== Analysis =====

    async def analyze_context(self, ctx: DecisionContext) -> list[AIDecision]:
        """Produce ranked decisions for one cycle."""
        now = ctx.timestamp
        context = ctx.game_state.derived.context
        limits = ctx.constraints.resource_limits
        cycle_id = uuid.uuid4().hex[:12]

        candidates: list[tuple[AIDecision, int]] = []
        for rule in self._rules.values():
            if context not in rule.contexts:
                continue
            if self._on_cooldown(rule.id, now):
                logger.debug("rule_on_cooldown", extra={"rule_id": rule.id})
                continue
            try:
                applies = rule.condition(ctx)
            except Exception as exc:
                logger.warning("Rule condition failed rule=%s: %s", rule.id, exc)
                continue
            if not applies:
                continue
            built = self._build_decision(rule, ctx, cycle_id, limits.allow_external_calls)
            if built is not None:
                candidates.append(built)

        viable = [c for c in candidates if c[0].confidence >= self._min_confidence]
        viable.sort(key=lambda c: (PRIORITY_RANK[c[0].priority], -c[0].confidence, c[1]))

        selected: list[AIDecision] = []
        planned_steps = 0
        for decision, _complexity in viable:
            if len(selected) >= self._max_decisions:
                break
            chain_len = len(decision.tool_chain)
            if planned_steps + chain_len > limits.max_tool_calls:
                logger.info(
                    "decision_dropped_tool_budget",
                    extra={
                        "rule_id": decision.rule_id,
                        "planned_steps": planned_steps,
                        "chain_len": chain_len,
                        "max_tool_calls": limits.max_tool_calls,
                    },
                )
                continue
            planned_steps += chain_len
            selected.append(decision)

        for decision in selected:
            self._last_fired[decision.rule_id] = now
            self._remember(decision)
            learning = self._learning[decision.rule_id]
            learning.total_applications += 1
            learning.last_used = now

        return self.optimize_tool_chain(selected)

    def optimize_tool_chain(self, decisions: list[AIDecision]) -> list[AIDecision]:
        """Mark steps that repeat an identical invocation from an earlier decision.

        The repeated step stays in its chain (so every chain remains a closed
        DAG) but is tagged with the owning step, and the executor runs the
        invocation once per cycle and shares its result.
        """
        owners: dict[str, str] = {}
        for decision in decisions:
            shared: dict[str, str] = {}
            seen_here: set[str] = set()
            for step in decision.tool_chain:
                signature = step_signature(step)
                if signature in owners and signature not in seen_here:
                    shared[step.step_id] = owners[signature]
                else:
                    owners.setdefault(signature, step.step_id)
                seen_here.add(signature)
            decision.metadata = {
                **decision.metadata,
                "step_signatures": {s.step_id: step_signature(s) for s in decision.tool_chain},
                "shared_steps": shared,
            }
            if shared:
                logger.debug(
                    "tool_steps_collapsed",
                    extra={"decision_id": decision.id, "shared": list(shared)},
                )
        return decisions

    # ===== Learning =====

    def adapt_to_feedback(self, feedback: UserFeedback) -> bool:
        """Fold explicit user feedback into the issuing rule. Returns False for unknown decisions."""
        rule_id = self._issued.get(feedback.decision_id)
        if rule_id is None or rule_id not in self._rules:
            logger.info("feedback_for_unknown_decision", extra={"decision_id": feedback.decision_id})
            return False

        lr = self._learning_rate
        learning = self._learning[rule_id]
        helpful_mult = 1.0 if feedback.helpful else 0.5
        learning.average_user_rating = learning.average_user_rating * (1 - lr) + feedback.rating * lr
        observed = (feedback.rating / 5) * helpful_mult
        learning.success_rate = _clamp(learning.success_rate * (1 - lr) + observed * lr, 0.0, 1.0)

        adjustment = (feedback.rating - 3) * 0.02 * helpful_mult * feedback.relevance
        self._confidence[rule_id] = _clamp(
            self._confidence[rule_id] + adjustment, MIN_RULE_CONFIDENCE, 1.0
        )

        if feedback.timing == FeedbackTiming.TOO_EARLY:
            self._cooldowns[rule_id] = min(self._cooldowns[rule_id] * 1.25, MAX_COOLDOWN)
            learning.adaptations = [*learning.adaptations, "cooldown_increased"][-10:]
        elif feedback.timing == FeedbackTiming.TOO_LATE:
            self._cooldowns[rule_id] = max(self._cooldowns[rule_id] * 0.8, MIN_COOLDOWN)
            learning.adaptations = [*learning.adaptations, "cooldown_decreased"][-10:]
        return True

    def learn_from_outcome(self, outcome: ExecutionOutcome) -> bool:
        rule_id = outcome.rule_id or self._issued.get(outcome.decision_id)
        if rule_id is None or rule_id not in self._rules:
            return False

        lr = self._learning_rate
        learning = self._learning[rule_id]
        learning.success_rate = _clamp(
            learning.success_rate * (1 - lr) + (1.0 if outcome.success else 0.0) * lr, 0.0, 1.0
        )
        response_bonus = {
            PlayerResponse.POSITIVE.value: 0.2,
            PlayerResponse.NEUTRAL.value: 0.0,
        }.get(outcome.player_response, -0.2)
        adjustment = (0.1 if outcome.success else -0.1) + outcome.impact * 0.2 + response_bonus
        self._confidence[rule_id] = _clamp(
            self._confidence[rule_id] + adjustment * lr, MIN_RULE_CONFIDENCE, 1.0
        )
        return True

    def get_learning_stats(self) -> dict[str, DecisionLearning]:
        return {k: v.model_copy() for k, v in self._learning.items()}

    def reset_learning(self) -> None:
        rules = list(self._rules.values())
        self._rules.clear()
        self._last_fired.clear()
        self._issued.clear()
        for rule in rules:
            self.register_rule(rule)

    # ===== Internals =====

    def _on_cooldown(self, rule_id: str, now: datetime) -> bool:
        last = self._last_fired.get(rule_id)
        if last is None:
            return False
        return (now - last).total_seconds() < self._cooldowns[rule_id]

    def _remember(self, decision: AIDecision) -> None:
        self._issued[decision.id] = decision.rule_id
        while len(self._issued) > ISSUED_MEMORY:
            self._issued.popitem(last=False)

    def _usable(self, tool: str, allow_external: bool) -> bool:
        if self._tools is not None and not self._tools.has_tool(tool):
            return False
        return allow_external or not tool_settings(tool).external

    def _build_decision(
        self, rule: DecisionRule, ctx: DecisionContext, cycle_id: str, allow_external: bool
    ) -> tuple[AIDecision, int] | None:
        stages = [
            [tool for tool in stage if self._usable(tool, allow_external)] for stage in rule.stages
        ]
        stages = [stage for stage in stages if stage]
        if not stages:
            logger.debug("rule_has_no_usable_tools", extra={"rule_id": rule.id})
            return None

        decision_id = uuid.uuid4().hex
        rationale = self._rationale(rule, ctx)
        steps: list[ToolChainStep] = []
        previous_ids: list[str] = []
        index = 0
        for stage in stages:
            stage_ids: list[str] = []
            for tool in stage:
                settings = tool_settings(tool, self._default_timeout)
                fallback = settings.fallback
                if fallback is not None and not self._usable(fallback, allow_external):
                    fallback = None
                step_id = f"{decision_id[:8]}-{index}-{tool}"
                steps.append(
                    ToolChainStep(
                        step_id=step_id,
                        tool_name=tool,
                        input=self._tool_input(tool, ctx, rule, rationale),
                        dependencies=list(previous_ids),
                        timeout=settings.timeout,
                        retry_policy=RetryPolicy.model_validate(settings.retry.model_dump()),
                        fallback_tool=fallback,
                    )
                )
                stage_ids.append(step_id)
                index += 1
            previous_ids = stage_ids

        complexity = sum(tool_settings(s.tool_name).complexity for s in steps)
        state = ctx.game_state
        decision = AIDecision(
            id=decision_id,
            rule_id=rule.id,
            type=rule.decision_type,
            priority=rule.priority,
            rationale=rationale,
            confidence=self._confidence[rule.id],
            tool_chain=steps,
            expected_outcome=rule.expected_outcome,
            fallback_plan="Deliver templated advice when the chain yields no text",
            snapshot_sequence_id=state.sequence_id,
            match_id=state.match_id,
            player_id=state.derived.player_state.player_id,
            personality=ctx.personality,
            created_at=ctx.timestamp,
            metadata={
                "rule_name": rule.name,
                "cycle_id": cycle_id,
                "context": state.derived.context,
                "urgency": ctx.constraints.urgency,
                "objectives": list(ctx.objectives),
                "complexity": complexity,
                "estimated_time": sum(s.timeout for s in steps),
                "risk_level": self._risk_level(rule, ctx),
            },
        )
        return decision, complexity

    def _risk_level(self, rule: DecisionRule, ctx: DecisionContext) -> str:
        if rule.priority == InterventionPriority.IMMEDIATE:
            return "high"
        if ctx.game_state.derived.has_severity(Severity.CRITICAL):
            return "high"
        if self._confidence[rule.id] < 0.7:
            return "medium"
        return "low"

    def _rationale(self, rule: DecisionRule, ctx: DecisionContext) -> str:
        factors = sorted(
            ctx.game_state.derived.situational_factors, key=lambda f: f.relevance, reverse=True
        )
        if factors:
            return f"{rule.description}: {factors[0].description}"
        return rule.description

    def _tool_input(
        self, tool: str, ctx: DecisionContext, rule: DecisionRule, rationale: str
    ) -> dict[str, Any]:
        state = ctx.game_state
        derived = state.derived
        player = derived.player_state
        if tool == GET_GAME_STATE:
            return {
                "match_id": state.match_id,
                "sequence_id": state.sequence_id,
                "requested_data": ["player", "team", "round", "map"],
            }
        if tool == ANALYZE_POSITIONING:
            return {
                "sequence_id": state.sequence_id,
                "position": player.position.model_dump(),
                "map": derived.map_state.name,
                "role": player.role,
                "analysis_type": "tactical",
            }
        if tool == CALL_LLM:
            return {
                "prompt": self._prompt(rule, ctx, rationale),
                "personality": ctx.personality,
                "max_tokens": 500,
                "temperature": 0.7,
            }
        if tool == TEXT_TO_SPEECH:
            return {"text": rationale, "voice": "default", "speed": 1.0}
        if tool == SUGGEST_ECONOMY_BUY:
            return {
                "sequence_id": state.sequence_id,
                "player_money": player.money,
                "team_money": derived.team_state.economy.total_money,
                "round_type": derived.economy_state.round_type,
                "weapons": [w.name for w in player.weapons],
            }
        if tool == GET_PLAYER_STATS:
            return {"player_id": player.player_id, "stats_type": ["recent", "overall"]}
        if tool == UPDATE_PLAYER_PROFILE:
            return {
                "player_id": player.player_id,
                "update_type": "performance",
                "statistics": player.statistics.model_dump(),
            }
        if tool == SUMMARIZE_CONVERSATION:
            return {
                "player_id": player.player_id,
                "history": ctx.short_term_memory[-10:],
                "summary_type": "coaching",
            }
        return {"sequence_id": state.sequence_id, "rule_id": rule.id}

    def _prompt(self, rule: DecisionRule, ctx: DecisionContext, rationale: str) -> str:
        derived = ctx.game_state.derived
        player = derived.player_state
        factors = "; ".join(f.description for f in derived.situational_factors) or "none"
        objectives = ", ".join(ctx.objectives) or "general improvement"
        return (
            f"You are a {ctx.personality} coach. Situation: {derived.context} on "
            f"{derived.map_state.name}, round {derived.map_state.round}, phase {derived.phase}. "
            f"Player {player.name}: {player.health} HP, ${player.money}, "
            f"{player.statistics.kills}/{player.statistics.deaths} K/D. "
            f"Factors: {factors}. Objectives: {objectives}. "
            f"Task: {rationale}. Reply with one short actionable instruction."
        )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
