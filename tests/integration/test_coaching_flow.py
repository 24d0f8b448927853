"""End-to-end coaching loop with the built-in adapters.

A match is fed frame by frame through the orchestrator: a critical moment
produces a delivered suggestion, the follow-up frames close its monitoring
window, and the resulting outcome flows into memory, personality metrics and
rule learning.
"""

from __future__ import annotations

import asyncio

import pytest

from coachloop.adapters import InMemoryMemory, LoggingDelivery, build_local_registry
from coachloop.contracts import (
    DeliveryWindow,
    OrchestratorConfig,
    OrchestratorEventType,
    ProcessingState,
    UserFeedback,
)
from coachloop.core.services.orchestrator import Orchestrator
from coachloop.core.services.tool_executor import ToolExecutor


RULE_ID = "critical_position_analysis"
PLAYER_ID = "76561198000000001"


async def _no_wait(delay: float) -> None:
    return None


async def _never(delay: float) -> None:
    await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_critical_moment_is_coached_monitored_and_learned_from(clock, frame) -> None:
    memory = InMemoryMemory()
    delivery = LoggingDelivery()
    holder: list[Orchestrator] = []
    registry = build_local_registry(memory=memory, state_provider=lambda: holder[0].get_current_state())
    orchestrator = Orchestrator(
        tools=registry,
        memory=memory,
        delivery=[delivery],
        match_id="scrim-7",
        config=OrchestratorConfig(),
        executor=ToolExecutor(registry, sleep=_no_wait),
        clock=clock,
        sleep=_never,
    )
    holder.append(orchestrator)
    events = orchestrator.events()
    before = orchestrator.engine.get_learning_stats()[RULE_ID].success_rate

    await orchestrator.start()
    for at, raw in [
        (0, frame(health=100)),
        (2, frame(health=20)),
        (8, frame(health=20, kills=1)),
        (12, frame(health=20, kills=1)),
    ]:
        clock.now = clock.at(at)
        await orchestrator.process_gsi_update(raw)
        await orchestrator.wait_idle()

    (output,) = delivery.delivered
    assert output.timing.when == DeliveryWindow.NOW
    assert output.personalization.player_id == PLAYER_ID
    assert orchestrator.get_active_decisions() == []
    assert orchestrator.monitor.active_sessions() == []

    seen = [e.type for e in events.drain()]
    for expected in (
        OrchestratorEventType.DECISION_MADE,
        OrchestratorEventType.EXECUTION_COMPLETED,
        OrchestratorEventType.OUTPUT_GENERATED,
        OrchestratorEventType.MONITORING_COMPLETED,
    ):
        assert expected in seen
    assert seen.index(OrchestratorEventType.OUTPUT_GENERATED) < seen.index(
        OrchestratorEventType.MONITORING_COMPLETED
    )

    feedback_memories = await memory.get_contextual_memories(PLAYER_ID, tags=["coaching_feedback"])
    assert len(feedback_memories) == 1
    assert feedback_memories[0]["content"]["decision_id"] == output.decision_id
    assert feedback_memories[0]["content"]["behavioral_impact"] > 0
    (kill_pattern,) = [
        p for p in orchestrator.feedback_loop.behavior_patterns.patterns("combat") if p.pattern == r"got \d+ kill"
    ]
    assert kill_pattern.occurrences == 1
    assert kill_pattern.impact != pytest.approx(0.6)
    assert orchestrator.engine.get_learning_stats()[RULE_ID].success_rate != before
    assert orchestrator.feedback_loop.get_learning_stats()["positioning_advice"].total_feedback == 1

    assert await orchestrator.handle_user_feedback(
        UserFeedback(decision_id=output.decision_id, rating=4, helpful=True)
    )
    stats = orchestrator.get_stats()
    assert (stats.frames_processed, stats.outputs_delivered, stats.monitoring_completed) == (4, 1, 1)

    await orchestrator.stop()
    assert orchestrator.get_processing_state() == ProcessingState.STOPPED
    assert await memory.get_contextual_memories(PLAYER_ID, tags=["match_state"])
