"""Closed-loop coaching orchestrator.

telemetry -> snapshot -> decision -> tool execution -> delivery ->
effectiveness monitoring -> learning feedback.

Frames are processed strictly in arrival order under a lock. Decision
analysis runs inline for the frame; tool chains run as background tasks so
that a slow chain never holds up telemetry, which means decisions can finish
in any order. A decision stays in flight from creation until its monitoring
session completes (or its chain fails); beyond `max_concurrent_decisions`,
new decisions wait in a bounded deferred queue.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import OrderedDict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from coachloop.config.settings import get_settings
from coachloop.contracts import (
    PRIORITY_RANK,
    AIDecision,
    CoachingObjective,
    CoachingOutput,
    CoachingPersonality,
    CompletionReason,
    DecisionConstraints,
    DecisionContext,
    ExecutionResult,
    FactorKind,
    GameContext,
    GameStateSnapshot,
    HealthError,
    InterventionPriority,
    OrchestratorConfig,
    OrchestratorEventType,
    OrchestratorHealth,
    OrchestratorStats,
    ProcessingState,
    ResourceLimits,
    Severity,
    UserFeedback,
)
from coachloop.core.errors import (
    OrchestratorStartupError,
    OrchestratorStateError,
    ToolChainValidationError,
)
from coachloop.core.metrics import mark_decision, mark_frame, set_inflight_decisions
from coachloop.core.observability import clear_correlation_id, set_correlation_id
from coachloop.core.ports import DeliveryPort, MemoryPort, RoleClassifierPort, ToolPort
from coachloop.core.services.change_detector import StateChangeDetector
from coachloop.core.services.decision_engine import DecisionEngine, urgency_of
from coachloop.core.services.effectiveness_monitor import EffectivenessMonitor
from coachloop.core.services.event_stream import EventStream, Subscription
from coachloop.core.services.feedback_loop import FeedbackLoop
from coachloop.core.services.output_formatter import OutputFormatter
from coachloop.core.services.snapshot_builder import StateSnapshotBuilder
from coachloop.core.services.state_history import StateHistory
from coachloop.core.services.tool_executor import SharedInvocations, ToolExecutor

logger = logging.getLogger(__name__)

SHORT_TERM_MEMORY = 20
RECENT_DECISIONS = 200
MIN_EXECUTIONS_FOR_HEALTH = 5
SATISFACTION_ALPHA = 0.1

COMMANDS = (
    "force_analysis",
    "clear_memory",
    "update_config",
    "get_health",
    "end_match",
    "player_disconnected",
)


@dataclass(slots=True)
class _InFlight:
    decision: AIDecision
    created_at: datetime
    monitoring_id: str | None = None


def default_config() -> OrchestratorConfig:
    cfg = get_settings()
    return OrchestratorConfig(
        max_concurrent_decisions=cfg.orchestrator_max_concurrent_decisions,
        decision_timeout=cfg.orchestrator_max_processing_time_seconds,
        max_tool_calls=cfg.orchestrator_max_tool_calls,
        allow_external_calls=cfg.orchestrator_allow_external_calls,
        max_interventions_per_round=cfg.orchestrator_max_interventions_per_round,
        min_seconds_between_interventions=cfg.orchestrator_min_seconds_between_interventions,
        deferred_queue_size=cfg.orchestrator_deferred_queue_size,
        health_check_interval=cfg.orchestrator_health_check_interval_seconds,
        telemetry_stale_seconds=cfg.orchestrator_telemetry_stale_seconds,
    )


def coaching_objectives(snapshot: GameStateSnapshot) -> list[CoachingObjective]:
    derived = snapshot.derived
    player = derived.player_state
    objectives: list[CoachingObjective] = []

    def add(objective: CoachingObjective) -> None:
        if objective not in objectives:
            objectives.append(objective)

    if player.health < 50:
        add(CoachingObjective.TACTICAL_GUIDANCE)
    if player.statistics.deaths > player.statistics.kills:
        add(CoachingObjective.PERFORMANCE_IMPROVEMENT)
    for factor in derived.situational_factors:
        urgent = factor.severity in (Severity.HIGH, Severity.CRITICAL)
        if factor.kind == FactorKind.TACTICAL and urgent:
            add(CoachingObjective.TACTICAL_GUIDANCE)
        elif factor.kind == FactorKind.PSYCHOLOGICAL and factor.severity == Severity.HIGH:
            add(CoachingObjective.MENTAL_COACHING)
        elif factor.kind == FactorKind.ECONOMIC and urgent:
            add(CoachingObjective.STRATEGIC_ANALYSIS)
    if derived.context == GameContext.LEARNING_OPPORTUNITY:
        add(CoachingObjective.SKILL_DEVELOPMENT)
    if not objectives:
        add(CoachingObjective.ERROR_CORRECTION)
    return objectives


def is_significant_change(current: GameStateSnapshot, previous: GameStateSnapshot | None) -> bool:
    """Whether a frame is worth a decision cycle."""
    if previous is None:
        return True
    now, before = current.derived, previous.derived
    if now.map_state.round != before.map_state.round:
        return True
    if now.phase != before.phase and (now.phase in ("freezetime", "over") or before.phase == "over"):
        return True
    if now.context != before.context:
        return True
    health, old_health = now.player_state.health, before.player_state.health
    if health != old_health and (health in (0, 100) or old_health in (0, 100)):
        return True
    if now.player_state.statistics.kills != before.player_state.statistics.kills:
        return True
    return now.has_severity(Severity.CRITICAL)


class Orchestrator:
    def __init__(
        self,
        *,
        tools: ToolPort,
        memory: MemoryPort,
        delivery: list[DeliveryPort] | None = None,
        match_id: str | None = None,
        config: OrchestratorConfig | None = None,
        role_classifier: RoleClassifierPort | None = None,
        engine: DecisionEngine | None = None,
        executor: ToolExecutor | None = None,
        formatter: OutputFormatter | None = None,
        feedback_loop: FeedbackLoop | None = None,
        monitor: EffectivenessMonitor | None = None,
        events: EventStream | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        cfg = get_settings()
        self._tools = tools
        self._memory = memory
        self._delivery = list(delivery or [])
        self._config = config or default_config()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleep or asyncio.sleep
        self._role_classifier = role_classifier
        self._match_id = match_id or uuid.uuid4().hex

        self.event_stream = events or EventStream()
        self.engine = engine or DecisionEngine(tool_registry=tools)
        self.executor = executor or ToolExecutor(tools)
        self.formatter = formatter or OutputFormatter(clock=self._clock)
        self.feedback_loop = feedback_loop or FeedbackLoop(memory=memory, clock=self._clock)
        self.feedback_loop.attach_engine(self.engine)
        self.monitor = monitor or EffectivenessMonitor(
            feedback_loop=self.feedback_loop,
            events=self.event_stream,
            behavior_patterns=self.feedback_loop.behavior_patterns,
            clock=self._clock,
        )
        self.detector = StateChangeDetector()
        self._history_size = cfg.state_history_max_snapshots
        self._pattern_window = cfg.state_history_pattern_window
        self._analysis_timeout = cfg.orchestrator_max_processing_time_seconds
        self._reset_match(self._match_id)

        self._state = ProcessingState.STOPPED
        self._initialized = False
        self._running = False
        self._frame_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._health_task: asyncio.Task[None] | None = None
        self._inflight: dict[str, _InFlight] = {}
        self._deferred: deque[tuple[AIDecision, GameStateSnapshot, SharedInvocations]] = deque()
        self._recent_decisions: OrderedDict[str, AIDecision] = OrderedDict()
        self._short_term: deque[dict[str, Any]] = deque(maxlen=SHORT_TERM_MEMORY)
        self._round_interventions: dict[int, int] = {}
        self._last_intervention: datetime | None = None
        self._last_gsi_update: datetime | None = None
        self._stats = OrchestratorStats()
        self._health = OrchestratorHealth()
        self._decision_cycles = 0

    # ===== Lifecycle =====

    async def initialize(self, config: OrchestratorConfig | dict[str, Any] | None = None) -> None:
        """Verify core dependencies. Raises OrchestratorStartupError when memory is unreachable."""
        if config is not None:
            self.update_config(config if isinstance(config, dict) else config.model_dump())
        try:
            healthy = await self._memory.health_check()
        except Exception as exc:
            raise OrchestratorStartupError(f"memory collaborator unavailable: {exc}") from exc
        if not healthy:
            raise OrchestratorStartupError("memory collaborator reported unhealthy")
        self._initialized = True
        self._state = ProcessingState.IDLE
        logger.info(
            "orchestrator_initialized",
            extra={"match_id": self._match_id, "tools": self._tools.list_tools()},
        )

    async def start(self) -> None:
        if self._running:
            raise OrchestratorStateError("orchestrator is already running")
        if not self._initialized:
            await self.initialize()
        self._running = True
        self._state = ProcessingState.IDLE
        self._health_task = asyncio.create_task(self._health_loop(), name="orchestrator-health")
        logger.info("orchestrator_started", extra={"match_id": self._match_id})

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._health_task is not None:
            self._health_task.cancel()
            await asyncio.gather(self._health_task, return_exceptions=True)
            self._health_task = None
        await self.wait_idle()
        self._drop_deferred("shutdown")
        await self.monitor.force_complete_all(CompletionReason.SHUTDOWN, now=self._clock())
        self._reconcile_inflight()
        await self._persist_history()
        self._state = ProcessingState.STOPPED
        logger.info("orchestrator_stopped", extra={"match_id": self._match_id})

    async def dispose(self) -> None:
        await self.stop()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._deferred.clear()
        self._inflight.clear()
        self._short_term.clear()
        self.history.clear()
        self._initialized = False
        set_inflight_decisions(0)

    async def wait_idle(self) -> None:
        """Wait until every scheduled decision task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ===== Telemetry =====

    async def process_gsi_update(self, raw: dict[str, Any]) -> GameStateSnapshot | None:
        """Ingest one telemetry frame. Malformed frames are skipped, never raised."""
        if not self._running:
            self._stats.frames_skipped += 1
            mark_frame("skipped")
            return None

        async with self._frame_lock:
            set_correlation_id(self._match_id)
            try:
                return await self._process_frame(raw)
            except Exception as exc:
                self._record_error("frame_processing_error", str(exc))
                logger.error("Frame processing failed match=%s: %s", self._match_id, exc, exc_info=True)
                mark_frame("error")
                return None
            finally:
                clear_correlation_id()

    async def _process_frame(self, raw: dict[str, Any]) -> GameStateSnapshot | None:
        previous = self.history.current()
        snapshot = self.builder.build(raw, previous)
        if snapshot is None:
            self._stats.frames_skipped += 1
            mark_frame("skipped")
            return None
        if not self.history.append(snapshot):
            self._stats.frames_skipped += 1
            mark_frame("skipped")
            return None

        paused = self._state == ProcessingState.PAUSED
        # PAUSED and ERROR are only cleared by a health check
        if self._state not in (ProcessingState.PAUSED, ProcessingState.ERROR):
            self._state = ProcessingState.PROCESSING
        self._last_gsi_update = self._clock()
        self._stats.frames_processed += 1
        mark_frame("processed")

        if previous is not None:
            changes = self.detector.diff(previous, snapshot)
            if changes:
                await self.monitor.record_for_all(changes, now=snapshot.timestamp)
        await self.monitor.sweep(snapshot.timestamp)
        self._reconcile_inflight()

        context_change = self.builder.detect_context_change(snapshot, previous)
        if previous is None or previous.derived.context != snapshot.derived.context:
            self.event_stream.emit(
                OrchestratorEventType.STATE_CHANGED,
                {
                    "sequence_id": snapshot.sequence_id,
                    "context": snapshot.derived.context,
                    "contexts": list(context_change.contexts),
                    "urgency": context_change.urgency,
                    "changes": context_change.changes,
                },
                match_id=self._match_id,
            )

        if not paused and is_significant_change(snapshot, previous):
            await self._decide(snapshot)
        if self._state == ProcessingState.PROCESSING:
            self._state = ProcessingState.IDLE
        return snapshot

    # ===== Decisions =====

    async def _decide(self, snapshot: GameStateSnapshot, *, force: bool = False) -> list[AIDecision]:
        ctx = await self._build_context(snapshot)
        started = time.perf_counter()
        try:
            decisions = await asyncio.wait_for(
                self.engine.analyze_context(ctx), timeout=self._analysis_timeout
            )
        except TimeoutError:
            logger.warning(
                "decision_analysis_timeout",
                extra={"sequence_id": snapshot.sequence_id, "timeout": self._analysis_timeout},
            )
            return []
        self._decision_cycles += 1
        elapsed = time.perf_counter() - started
        self._stats.average_decision_time += (
            elapsed - self._stats.average_decision_time
        ) / self._decision_cycles

        accepted: list[AIDecision] = []
        shared = SharedInvocations()
        now = self._clock()
        round_number = snapshot.derived.map_state.round
        for decision in decisions:
            if not force and not self._passes_throttle(decision, round_number, now):
                self._stats.dropped_decisions += 1
                mark_decision(decision.priority, "throttled")
                continue
            self._round_interventions[round_number] = self._round_interventions.get(round_number, 0) + 1
            self._last_intervention = now
            self._stats.total_decisions += 1
            self._remember_decision(decision)
            self.event_stream.emit(
                OrchestratorEventType.DECISION_MADE,
                {
                    "decision_id": decision.id,
                    "rule_id": decision.rule_id,
                    "type": decision.type,
                    "priority": decision.priority,
                    "confidence": decision.confidence,
                    "sequence_id": decision.snapshot_sequence_id,
                },
                match_id=self._match_id,
            )
            if len(self._inflight) < self._config.max_concurrent_decisions:
                self._launch(decision, snapshot, shared)
                mark_decision(decision.priority, "launched")
            else:
                self._defer(decision, snapshot, shared)
            accepted.append(decision)
        return accepted

    def _passes_throttle(self, decision: AIDecision, round_number: int, now: datetime) -> bool:
        used = self._round_interventions.get(round_number, 0)
        if used >= self._config.max_interventions_per_round:
            logger.info(
                "decision_throttled_round_cap",
                extra={"decision_id": decision.id, "round": round_number, "used": used},
            )
            return False
        if decision.priority == InterventionPriority.IMMEDIATE or self._last_intervention is None:
            return True
        since = (now - self._last_intervention).total_seconds()
        if since < self._config.min_seconds_between_interventions:
            logger.info(
                "decision_throttled_spacing",
                extra={"decision_id": decision.id, "seconds_since_last": since},
            )
            return False
        return True

    def _defer(
        self, decision: AIDecision, snapshot: GameStateSnapshot, shared: SharedInvocations
    ) -> None:
        if self._config.deferred_queue_size <= 0:
            self._stats.dropped_decisions += 1
            mark_decision(decision.priority, "dropped")
            logger.warning(
                "decision_dropped_concurrency_cap",
                extra={"decision_id": decision.id, "inflight": len(self._inflight)},
            )
            return
        if len(self._deferred) >= self._config.deferred_queue_size:
            dropped, _, _ = self._deferred.popleft()
            self._stats.dropped_decisions += 1
            mark_decision(dropped.priority, "dropped")
            logger.warning(
                "deferred_decision_dropped",
                extra={"decision_id": dropped.id, "queue_size": self._config.deferred_queue_size},
            )
        self._deferred.append((decision, snapshot, shared))
        self._stats.deferred_decisions += 1
        mark_decision(decision.priority, "deferred")
        logger.info(
            "decision_deferred",
            extra={"decision_id": decision.id, "inflight": len(self._inflight), "queued": len(self._deferred)},
        )

    def _drain_deferred(self) -> None:
        if not self._running:
            return
        while self._deferred and len(self._inflight) < self._config.max_concurrent_decisions:
            # Highest priority first, oldest first within a priority
            best = min(
                range(len(self._deferred)),
                key=lambda i: (PRIORITY_RANK[self._deferred[i][0].priority], i),
            )
            decision, snapshot, shared = self._deferred[best]
            del self._deferred[best]
            self._launch(decision, snapshot, shared)
            mark_decision(decision.priority, "launched")

    def _drop_deferred(self, reason: str) -> int:
        """Discard every queued decision without running it."""
        dropped = len(self._deferred)
        for decision, _, _ in self._deferred:
            self._stats.dropped_decisions += 1
            mark_decision(decision.priority, "dropped")
        self._deferred.clear()
        if dropped:
            logger.info("deferred_decisions_dropped", extra={"count": dropped, "reason": reason})
        return dropped

    def _launch(
        self, decision: AIDecision, snapshot: GameStateSnapshot, shared: SharedInvocations | None
    ) -> None:
        if not self._running:
            return
        self._inflight[decision.id] = _InFlight(decision=decision, created_at=self._clock())
        set_inflight_decisions(len(self._inflight))
        task = asyncio.create_task(
            self._run_decision(decision, snapshot, shared), name=f"decision-{decision.id[:8]}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_decision(
        self, decision: AIDecision, snapshot: GameStateSnapshot, shared: SharedInvocations | None
    ) -> None:
        try:
            try:
                result = await self.executor.execute_decision(decision, shared=shared)
            except ToolChainValidationError as exc:
                self._execution_failed(decision, f"invalid tool chain: {exc}")
                return

            self._record_execution(decision, result)
            self.event_stream.emit(
                OrchestratorEventType.EXECUTION_COMPLETED,
                {
                    "decision_id": decision.id,
                    "success": result.success,
                    "success_rate": result.chain.success_rate,
                    "tools_used": result.tools_used,
                    "total_time": result.total_time,
                },
                match_id=self._match_id,
            )
            if result.chain.success_rate == 0:
                self._execution_failed(decision, "every tool step failed", counted=True)
                return

            facts = {
                "health": snapshot.derived.player_state.health,
                "money": snapshot.derived.player_state.money,
            }
            output = self.formatter.format(decision, result, facts=facts)
            await self._deliver(output)
            self.event_stream.emit(
                OrchestratorEventType.OUTPUT_GENERATED,
                {"output": output.model_dump(mode="json")},
                match_id=self._match_id,
            )
            monitoring_id = await self.monitor.start_monitoring(
                output, snapshot, rule_id=decision.rule_id, now=self._clock()
            )
            entry = self._inflight.get(decision.id)
            if entry is not None:
                entry.monitoring_id = monitoring_id
            self._reconcile_inflight()
            await self._remember_output(output, snapshot)
        except Exception as exc:
            logger.error("Decision run failed decision=%s: %s", decision.id, exc, exc_info=True)
            self._execution_failed(decision, str(exc))

    def _record_execution(self, decision: AIDecision, result: ExecutionResult) -> None:
        if result.success:
            self._stats.successful_executions += 1
        else:
            self._stats.failed_executions += 1
        runs = self._stats.successful_executions + self._stats.failed_executions
        self._stats.average_execution_time += (
            result.total_time - self._stats.average_execution_time
        ) / runs
        usage = dict(self._stats.tool_usage)
        for tool in result.tools_used:
            usage[tool] = usage.get(tool, 0) + 1
        self._stats.tool_usage = usage
        mark_decision(decision.priority, "succeeded" if result.success else "partial")

    def _execution_failed(self, decision: AIDecision, message: str, *, counted: bool = False) -> None:
        if not counted:
            self._stats.failed_executions += 1
        self._inflight.pop(decision.id, None)
        set_inflight_decisions(len(self._inflight))
        mark_decision(decision.priority, "failed")
        self._record_error("execution_failed", f"{decision.rule_id}: {message}")
        if decision.priority in (InterventionPriority.IMMEDIATE, InterventionPriority.HIGH):
            self._state = ProcessingState.PAUSED
            logger.warning(
                "processing_paused",
                extra={"decision_id": decision.id, "priority": decision.priority},
            )
        self._drain_deferred()

    def _reconcile_inflight(self) -> None:
        """Release decisions whose monitoring session has completed."""
        active = set(self.monitor.active_sessions())
        done = [
            decision_id
            for decision_id, entry in self._inflight.items()
            if entry.monitoring_id is not None and entry.monitoring_id not in active
        ]
        for decision_id in done:
            del self._inflight[decision_id]
            self._stats.monitoring_completed += 1
        if done:
            set_inflight_decisions(len(self._inflight))
            self._drain_deferred()

    async def _deliver(self, output: CoachingOutput) -> None:
        delivered = False
        for sink in self._delivery:
            try:
                delivered = await sink.deliver(output) or delivered
            except Exception as exc:
                logger.warning("Delivery failed output=%s: %s", output.id, exc)
        if delivered:
            self._stats.outputs_delivered += 1

    async def _remember_output(self, output: CoachingOutput, snapshot: GameStateSnapshot) -> None:
        note = {
            "decision_id": output.decision_id,
            "type": output.type,
            "message": output.message,
            "sequence_id": snapshot.sequence_id,
            "timestamp": output.created_at.isoformat(),
        }
        self._short_term.append(note)
        try:
            await self._memory.store(
                {
                    "type": "coaching_output",
                    "player_id": output.personalization.player_id,
                    "tags": ["coaching_output", output.type],
                    "timestamp": note["timestamp"],
                    "content": note,
                }
            )
        except Exception as exc:
            logger.warning("Failed to store coaching output=%s: %s", output.id, exc)

    async def _build_context(self, snapshot: GameStateSnapshot) -> DecisionContext:
        player = snapshot.derived.player_state
        profile: dict[str, Any] | None = None
        long_term: list[dict[str, Any]] = []
        try:
            profile = await self._memory.get_player_profile(player.player_id)
            long_term = await self._memory.get_contextual_memories(player.player_id, limit=10)
        except Exception as exc:
            logger.warning("Memory read failed player=%s: %s", player.player_id, exc)

        objectives = coaching_objectives(snapshot)
        urgency = urgency_of_snapshot(snapshot)
        frustrated = bool({"tilt", "frustration"} & set(player.risk_factors)) or any(
            f.kind == FactorKind.PSYCHOLOGICAL and f.severity == Severity.HIGH
            for f in snapshot.derived.situational_factors
        )
        personality = self.feedback_loop.personalities.select(
            urgency=urgency,
            context=snapshot.derived.context,
            objectives=list(objectives),
            frustrated=frustrated,
        )
        self.feedback_loop.personalities.record_usage(personality)
        return DecisionContext(
            game_state=snapshot,
            short_term_memory=list(self._short_term),
            long_term_memory=long_term,
            player_profile=profile,
            objectives=objectives,
            personality=personality,
            constraints=DecisionConstraints(
                resource_limits=ResourceLimits(
                    max_tool_calls=self._config.max_tool_calls,
                    max_processing_time=self._analysis_timeout,
                    allow_external_calls=self._config.allow_external_calls,
                    max_concurrent_decisions=self._config.max_concurrent_decisions,
                ),
                urgency=urgency,
            ),
            timestamp=snapshot.timestamp,
        )

    def _remember_decision(self, decision: AIDecision) -> None:
        self._recent_decisions[decision.id] = decision
        while len(self._recent_decisions) > RECENT_DECISIONS:
            self._recent_decisions.popitem(last=False)

    # ===== User surface =====

    async def handle_user_feedback(self, feedback: UserFeedback) -> bool:
        decision = self._recent_decisions.get(feedback.decision_id)
        personality = decision.personality if decision is not None else None
        self.feedback_loop.record_user_feedback(feedback, personality)
        self._stats.player_satisfaction = (
            self._stats.player_satisfaction * (1 - SATISFACTION_ALPHA)
            + feedback.rating * SATISFACTION_ALPHA
        )
        self.event_stream.emit(
            OrchestratorEventType.USER_FEEDBACK,
            {
                "decision_id": feedback.decision_id,
                "rating": feedback.rating,
                "helpful": feedback.helpful,
                "known_decision": decision is not None,
            },
            match_id=self._match_id,
        )
        return decision is not None

    async def handle_user_command(
        self, command: str, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        data = data or {}
        if command == "force_analysis":
            current = self.history.current()
            if current is None:
                return {"decisions": 0}
            decisions = await self._decide(current, force=True)
            return {"decisions": len(decisions), "decision_ids": [d.id for d in decisions]}
        if command == "clear_memory":
            await self._memory.clear()
            self._short_term.clear()
            return {"cleared": True}
        if command == "update_config":
            return {"config": self.update_config(data).model_dump()}
        if command == "get_health":
            return {"health": (await self.check_health()).model_dump(mode="json")}
        if command == "end_match":
            # Queued decisions belong to the finished match
            self._drop_deferred("match_end")
            flushed = await self.monitor.force_complete_all(
                CompletionReason.MATCH_END, now=self._clock()
            )
            self._reconcile_inflight()
            await self._persist_history()
            self._reset_match(data.get("match_id") or uuid.uuid4().hex)
            return {"flushed": len(flushed), "match_id": self._match_id}
        if command == "player_disconnected":
            flushed = await self.monitor.force_complete_all(
                CompletionReason.PLAYER_DISCONNECT, now=self._clock()
            )
            self._reconcile_inflight()
            return {"flushed": len(flushed)}
        raise ValueError(f"Unknown command: {command}")

    def get_current_state(self) -> GameStateSnapshot | None:
        return self.history.current()

    def get_processing_state(self) -> ProcessingState:
        return self._state

    def get_active_decisions(self) -> list[AIDecision]:
        return [entry.decision for entry in self._inflight.values()]

    def get_deferred_decisions(self) -> list[AIDecision]:
        return [decision for decision, _, _ in self._deferred]

    def get_stats(self) -> OrchestratorStats:
        return self._stats.model_copy(deep=True)

    def get_health_status(self) -> OrchestratorHealth:
        return self._health.model_copy(deep=True)

    def get_config(self) -> OrchestratorConfig:
        return self._config.model_copy()

    def update_config(self, changes: dict[str, Any]) -> OrchestratorConfig:
        self._config = OrchestratorConfig.model_validate({**self._config.model_dump(), **changes})
        logger.info("orchestrator_config_updated", extra={"changes": sorted(changes)})
        return self.get_config()

    def set_coaching_personality(self, personality: CoachingPersonality | str) -> None:
        self.feedback_loop.personalities.set_active(personality)

    def events(self) -> Subscription:
        """Subscribe to the orchestrator event stream."""
        return self.event_stream.subscribe()

    # ===== Health =====

    async def check_health(self, now: datetime | None = None) -> OrchestratorHealth:
        now = now or self._clock()
        await self.monitor.sweep(now)
        self._reconcile_inflight()

        lag = (now - self._last_gsi_update).total_seconds() if self._last_gsi_update else None
        stale = sum(
            1
            for entry in self._inflight.values()
            if entry.monitoring_id is None
            and (now - entry.created_at).total_seconds() > self._config.decision_timeout
        )
        runs = self._stats.successful_executions + self._stats.failed_executions
        success_rate = self._stats.successful_executions / runs if runs else None
        telemetry_fresh = lag is not None and lag <= self._config.telemetry_stale_seconds

        if self._state == ProcessingState.ERROR and telemetry_fresh:
            self._state = ProcessingState.IDLE
            logger.info("orchestrator_recovered", extra={"match_id": self._match_id})
        elif self._state == ProcessingState.PAUSED:
            self._state = ProcessingState.IDLE
            logger.info("processing_resumed", extra={"match_id": self._match_id})

        status = "healthy"
        if self._state == ProcessingState.ERROR:
            status = "error"
        elif (
            (self._running and lag is not None and not telemetry_fresh)
            or stale
            or (success_rate is not None and runs >= MIN_EXECUTIONS_FOR_HEALTH and success_rate < 0.5)
        ):
            status = "degraded"

        self._health.status = status
        self._health.last_check = now
        self._health.telemetry_lag = lag
        self._health.active_decisions = len(self._inflight)
        self._health.stale_decisions = stale
        self._health.active_monitoring_sessions = len(self.monitor.active_sessions())
        self._health.success_rate = success_rate
        self.event_stream.emit(
            OrchestratorEventType.HEALTH_CHECK,
            {"health": self._health.model_dump(mode="json")},
            match_id=self._match_id,
        )
        return self.get_health_status()

    async def _health_loop(self) -> None:
        while self._running:
            await self._sleep(self._config.health_check_interval)
            try:
                await self.check_health()
            except Exception as exc:
                logger.error("Health check failed: %s", exc, exc_info=True)

    def _record_error(self, code: str, message: str) -> None:
        if code == "frame_processing_error":
            self._state = ProcessingState.ERROR
        self._health.last_error = HealthError(code=code, message=message, timestamp=self._clock())
        self._health.error_count += 1
        self.event_stream.emit(
            OrchestratorEventType.ERROR,
            {"code": code, "message": message},
            match_id=self._match_id,
        )

    # ===== Match bookkeeping =====

    def _reset_match(self, match_id: str) -> None:
        self._match_id = match_id
        self.builder = StateSnapshotBuilder(
            match_id=match_id, role_classifier=self._role_classifier, clock=self._clock
        )
        self.history = StateHistory(
            match_id=match_id,
            max_snapshots=self._history_size,
            pattern_window=self._pattern_window,
        )
        self._round_interventions = {}
        self._last_intervention = None

    async def _persist_history(self) -> None:
        current = self.history.current()
        if current is None:
            return
        await self.history.persist(self._memory, current.derived.player_state.player_id)

    @property
    def match_id(self) -> str:
        return self._match_id


def urgency_of_snapshot(snapshot: GameStateSnapshot) -> str:
    return urgency_of(DecisionContext(game_state=snapshot))
