"""Unit tests for FeedbackLoop."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from coachloop.adapters.in_memory_memory import InMemoryMemory
from coachloop.contracts import (
    CoachingPersonality,
    ExecutionOutcome,
    MeasuredImpact,
    PlayerResponse,
    UserFeedback,
)
from coachloop.core.services.feedback_loop import FeedbackLoop, importance_of, outcome_effectiveness


def _outcome(
    *,
    success: bool = False,
    impact: float = 0.2,
    measured: float = 0.2,
    personality: CoachingPersonality | None = None,
    changes: list[str] | None = None,
    **metadata: Any,
) -> ExecutionOutcome:
    return ExecutionOutcome(
        decision_id="dec-1",
        suggestion_id="out-1",
        rule_id="critical_position_analysis",
        personality=personality,
        success=success,
        impact=impact,
        player_response=PlayerResponse.POSITIVE if success else PlayerResponse.NEUTRAL,
        measured_impact=MeasuredImpact(performance=measured, engagement=measured, learning=measured),
        learning_points=["Player engagement could be improved"],
        confidence=0.5,
        metadata={
            "decision_type": "positioning_advice",
            "player_id": "p1",
            "changes": changes or [],
            **metadata,
        },
    )


@pytest.mark.asyncio
async def test_outcome_is_stored_in_long_term_memory(clock) -> None:
    memory = InMemoryMemory()
    loop = FeedbackLoop(memory=memory, clock=clock)

    await loop.process_outcome(_outcome(success=True, impact=0.9))

    (entry,) = await memory.get_contextual_memories("p1", tags=["coaching_feedback"])
    assert entry["type"] == "interaction_history"
    assert entry["importance"] == "high"
    assert "outcome_success" in entry["tags"]
    assert entry["content"]["category"] == "positioning_advice"


@pytest.mark.asyncio
async def test_memory_failure_does_not_break_the_loop(clock, caplog) -> None:
    memory = MagicMock()
    memory.store = AsyncMock(side_effect=RuntimeError("disk full"))
    loop = FeedbackLoop(memory=memory, clock=clock)

    await loop.process_outcome(_outcome())

    assert loop.get_learning_stats()["positioning_advice"].total_feedback == 1
    assert "disk full" in caplog.text


@pytest.mark.asyncio
async def test_outcome_updates_personality_and_engine(clock) -> None:
    engine = MagicMock()
    loop = FeedbackLoop(decision_engine=engine, learning_rate=0.1, clock=clock)
    outcome = _outcome(success=True, measured=0.9, personality=CoachingPersonality.SUPPORTIVE)

    await loop.process_outcome(outcome)

    assert loop.personalities.metrics("supportive").success_rate == pytest.approx(0.54)
    engine.learn_from_outcome.assert_called_once_with(outcome)


@pytest.mark.asyncio
async def test_observed_changes_move_behavior_pattern_weights(clock) -> None:
    loop = FeedbackLoop(learning_rate=0.1, clock=clock)

    await loop.process_outcome(_outcome(changes=["Got 1 kill(s) after a successful trade"]))

    (pattern,) = [p for p in loop.behavior_patterns.patterns("combat") if p.pattern == "successful trade"]
    assert pattern.impact == pytest.approx(0.7 * 0.9 - 0.7 * 0.1)
    assert pattern.confidence == pytest.approx(0.9 * 0.9 + 0.5 * 0.1)
    assert pattern.occurrences == 1


@pytest.mark.asyncio
async def test_classified_changes_update_patterns_without_recounting(clock) -> None:
    memory = InMemoryMemory()
    loop = FeedbackLoop(memory=memory, learning_rate=0.1, clock=clock)
    classified = [
        {
            "description": "Got 1 kill(s)",
            "category": "combat",
            "pattern": r"got \d+ kill",
            "confidence": 0.64,
            "impact": 0.48,
        }
    ]
    outcome = _outcome(success=True, changes=["Got 1 kill(s)"], behavioral_changes=classified)
    outcome = outcome.model_copy(update={"behavioral_impact": 0.48})

    await loop.process_outcome(outcome)

    (pattern,) = [p for p in loop.behavior_patterns.patterns("combat") if p.pattern == r"got \d+ kill"]
    assert pattern.impact == pytest.approx(0.6 * 0.9 + 0.48 * 0.1)
    assert pattern.confidence == pytest.approx(0.8 * 0.9 + 0.5 * 0.1)
    assert pattern.occurrences == 0
    (entry,) = await memory.get_contextual_memories("p1", tags=["coaching_feedback"])
    assert entry["content"]["behavioral_impact"] == pytest.approx(0.48)


@pytest.mark.asyncio
async def test_repeated_failures_trigger_one_adaptation_per_interval(clock) -> None:
    loop = FeedbackLoop(min_samples=3, update_interval=300.0, clock=clock)

    assert await loop.process_outcome(_outcome()) is None
    assert await loop.process_outcome(_outcome()) is None
    adaptation = await loop.process_outcome(_outcome())

    assert adaptation is not None
    assert adaptation.category == "positioning_advice"
    assert adaptation.success_rate == 0.0
    assert adaptation.reason == "High frequency pattern (100%): Player engagement could be improved"
    assert "Very low success rate - consider major strategy revision" in adaptation.recommendations

    clock.advance(60)
    assert await loop.process_outcome(_outcome()) is None
    clock.advance(300)
    assert await loop.process_outcome(_outcome()) is not None
    assert len(loop.recent_adaptations("positioning_advice")) == 2


@pytest.mark.asyncio
async def test_successful_category_is_not_adapted(clock) -> None:
    loop = FeedbackLoop(min_samples=2, clock=clock)

    for _ in range(3):
        assert await loop.process_outcome(_outcome(success=True)) is None

    stats = loop.get_learning_stats()["positioning_advice"]
    assert stats.success_rate == 1.0
    assert len(loop.history("positioning_advice")) == 3


def test_user_feedback_updates_personality_rating_and_engine(clock) -> None:
    engine = MagicMock()
    loop = FeedbackLoop(decision_engine=engine, learning_rate=0.1, clock=clock)
    feedback = UserFeedback(decision_id="dec-1", rating=5, helpful=False)

    loop.record_user_feedback(feedback, CoachingPersonality.DIRECT)

    metrics = loop.personalities.metrics("direct")
    assert metrics.success_rate == pytest.approx(0.5 * 0.9 + 0.5 * 0.1)
    assert metrics.average_rating == pytest.approx(3.0 * 0.9 + 5 * 0.1)
    engine.adapt_to_feedback.assert_called_once_with(feedback)


def test_helpers() -> None:
    assert outcome_effectiveness(_outcome(measured=0.6)) == pytest.approx(0.6)
    assert importance_of(0.5) == "medium"
    assert importance_of(0.1) == "low"
