"""Unit tests for EffectivenessMonitor."""

from __future__ import annotations

import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from coachloop.contracts import (
    CoachingOutput,
    CompletionReason,
    DecisionType,
    DeliveryWindow,
    EffectivenessScores,
    InterventionPriority,
    OrchestratorEventType,
    OutputTiming,
    Personalization,
    PlayerReaction,
    PlayerResponse,
    StateChange,
)
from coachloop.core.services.behavior_patterns import BehaviorPatternRegistry
from coachloop.core.services.effectiveness_monitor import EffectivenessMonitor
from coachloop.core.services.event_stream import EventStream


def _output(suggestion_id: str = "out-1", decision_id: str = "dec-1") -> CoachingOutput:
    return CoachingOutput(
        id=suggestion_id,
        decision_id=decision_id,
        match_id="match-1",
        type=DecisionType.POSITIONING,
        priority=InterventionPriority.IMMEDIATE,
        title="Positioning",
        message="Fall back to cover.",
        timing=OutputTiming(immediate=True, when=DeliveryWindow.NOW),
        personalization=Personalization(player_id="p1", adapted_for_style="supportive", confidence_level=0.9),
    )


def _change(clock, at: float, kind: str = "combat", significance: float = 0.9, text: str | None = None):
    return StateChange(
        type=kind,
        description=text or f"{kind} at {at}",
        significance=significance,
        timestamp=clock.at(at),
    )


def _monitor(clock, **kwargs) -> tuple[EffectivenessMonitor, MagicMock, EventStream]:
    loop = MagicMock()
    loop.process_outcome = AsyncMock()
    events = EventStream()
    monitor = EffectivenessMonitor(
        feedback_loop=loop,
        events=events,
        min_time=10.0,
        max_time=60.0,
        significance_threshold=0.3,
        learning_threshold=0.6,
        engagement_threshold=0.5,
        decay_seconds=30.0,
        clock=clock,
        **kwargs,
    )
    return monitor, loop, events


@pytest.mark.asyncio
async def test_no_feedback_before_minimum_window(clock) -> None:
    monitor, loop, _ = _monitor(clock)
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))

    feedback = await monitor.record_checkpoint(monitoring_id, [_change(clock, 5)], now=clock.at(5))

    assert feedback is None
    assert monitor.active_sessions() == [monitoring_id]
    loop.process_outcome.assert_not_awaited()


@pytest.mark.asyncio
async def test_sweep_fires_feedback_once_the_minimum_window_passes(clock) -> None:
    monitor, loop, events = _monitor(clock)
    sub = events.subscribe()
    monitoring_id = await monitor.start_monitoring(
        _output(), None, rule_id="critical_position_analysis", now=clock.at(0)
    )
    await monitor.record_for_all([_change(clock, 8)], now=clock.at(8))

    (feedback,) = await monitor.sweep(now=clock.at(10))

    assert feedback.monitoring_id == monitoring_id
    assert feedback.reason == CompletionReason.FEEDBACK_READY
    assert feedback.effectiveness.learning == pytest.approx(math.exp(-2 / 30))
    assert feedback.is_effective
    assert monitor.active_sessions() == []
    outcome = loop.process_outcome.await_args.args[0]
    assert outcome.rule_id == "critical_position_analysis"
    assert outcome.personality == "supportive"
    assert outcome.success
    assert [e.type for e in sub.drain()] == [OrchestratorEventType.MONITORING_COMPLETED]
    assert await monitor.sweep(now=clock.at(11)) == []


@pytest.mark.asyncio
async def test_session_without_changes_completes_at_max_time_as_ignored(clock) -> None:
    monitor, loop, _ = _monitor(clock)
    await monitor.start_monitoring(_output(), None, now=clock.at(0))

    assert await monitor.sweep(now=clock.at(59)) == []
    (feedback,) = await monitor.sweep(now=clock.at(60))

    assert feedback.reason == CompletionReason.MAX_TIME
    assert feedback.player_reaction == PlayerReaction.RESISTANT
    assert not feedback.is_effective
    outcome = loop.process_outcome.await_args.args[0]
    assert outcome.player_response == PlayerResponse.IGNORED
    assert outcome.follow_up_required


@pytest.mark.asyncio
async def test_checkpoints_dedupe_and_filter_insignificant_changes(clock) -> None:
    monitor, _, _ = _monitor(clock)
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))
    kill = _change(clock, 2, text="Got 1 kill(s)")

    await monitor.record_checkpoint(monitoring_id, [kill, _change(clock, 2, "health", 0.1)], now=clock.at(2))
    await monitor.record_checkpoint(monitoring_id, [kill], now=clock.at(3))

    status = monitor.get_status(monitoring_id)
    assert status is not None
    assert [c.description for c in status.changes] == ["Got 1 kill(s)"]
    assert status.last_update == clock.at(3)


@pytest.mark.asyncio
async def test_checkpoint_for_unknown_session_is_ignored(clock) -> None:
    monitor, _, _ = _monitor(clock)

    assert await monitor.record_checkpoint("missing", [_change(clock, 1)]) is None


@pytest.mark.asyncio
async def test_oldest_session_is_evicted_at_capacity(clock) -> None:
    monitor, loop, _ = _monitor(clock, max_sessions=1)
    first = await monitor.start_monitoring(_output("out-1"), None, now=clock.at(0))

    second = await monitor.start_monitoring(_output("out-2", "dec-2"), None, now=clock.at(1))

    assert monitor.active_sessions() == [second]
    (feedback,) = monitor.recent_feedback()
    assert feedback.monitoring_id == first
    assert feedback.reason == CompletionReason.EVICTED
    loop.process_outcome.assert_awaited_once()


@pytest.mark.asyncio
async def test_scoring_failure_emits_error_and_keeps_session(clock, monkeypatch) -> None:
    monitor, _, events = _monitor(clock)
    sub = events.subscribe()
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))

    def broken(changes, now):
        raise ValueError("bad score")

    monkeypatch.setattr(monitor, "compute_scores", broken)

    assert await monitor.record_checkpoint(monitoring_id, [_change(clock, 1)], now=clock.at(1)) is None

    (event,) = sub.drain()
    assert event.type == OrchestratorEventType.ERROR
    assert event.payload["code"] == "monitoring_error"
    assert monitor.active_sessions() == [monitoring_id]


@pytest.mark.asyncio
async def test_scoring_failure_during_sweep_is_reported_not_raised(clock, monkeypatch) -> None:
    monitor, loop, events = _monitor(clock)
    sub = events.subscribe()
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))
    await monitor.record_checkpoint(monitoring_id, [_change(clock, 8)], now=clock.at(8))

    def broken(changes, now):
        raise ValueError("bad score")

    monkeypatch.setattr(monitor, "compute_scores", broken)

    assert await monitor.sweep(now=clock.at(10)) == []

    (event,) = sub.drain()
    assert event.type == OrchestratorEventType.ERROR
    assert event.payload["monitoring_id"] == monitoring_id
    assert monitor.active_sessions() == [monitoring_id]
    loop.process_outcome.assert_not_awaited()


@pytest.mark.asyncio
async def test_scoring_failure_at_completion_keeps_last_scores(clock, monkeypatch) -> None:
    monitor, loop, events = _monitor(clock)
    sub = events.subscribe()
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))
    await monitor.record_checkpoint(monitoring_id, [_change(clock, 5)], now=clock.at(5))
    before = monitor.get_status(monitoring_id).effectiveness

    def broken(changes, now):
        raise ValueError("bad score")

    monkeypatch.setattr(monitor, "compute_scores", broken)

    feedback = await monitor.force_complete(monitoring_id, now=clock.at(20))

    assert feedback is not None
    assert feedback.effectiveness == before
    assert [e.type for e in sub.drain()] == [
        OrchestratorEventType.ERROR,
        OrchestratorEventType.MONITORING_COMPLETED,
    ]
    loop.process_outcome.assert_awaited_once()


@pytest.mark.asyncio
async def test_confidence_covers_time_up_to_the_last_checkpoint(clock) -> None:
    monitor, loop, _ = _monitor(clock)
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))
    await monitor.record_checkpoint(monitoring_id, [_change(clock, 5)], now=clock.at(5))

    feedback = await monitor.force_complete(monitoring_id, now=clock.at(40))

    assert feedback.duration_seconds == pytest.approx(40.0)
    assert feedback.confidence == pytest.approx((5 / 60 + 1 / 10 + 0.5) / 3)
    assert loop.process_outcome.await_args.args[0].confidence == feedback.confidence


@pytest.mark.asyncio
async def test_observed_changes_are_classified_into_behavioral_impact(clock) -> None:
    registry = BehaviorPatternRegistry()
    monitor, loop, _ = _monitor(clock, behavior_patterns=registry)
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))
    changes = [
        _change(clock, 8, "combat", 0.8, text="Got 1 kill(s)"),
        _change(clock, 8, "health", 0.5, text="Health changed by -40"),
    ]
    await monitor.record_checkpoint(monitoring_id, changes, now=clock.at(8))

    (feedback,) = await monitor.sweep(now=clock.at(10))

    outcome = loop.process_outcome.await_args.args[0]
    assert outcome.behavioral_impact == pytest.approx((0.6 * 0.8 - 0.4 * 0.5) / 2)
    assert [(b["category"], b["pattern"]) for b in outcome.metadata["behavioral_changes"]] == [
        ("combat", r"got \d+ kill"),
        ("combat", r"health changed by -\d+"),
    ]
    (kill,) = [p for p in registry.patterns("combat") if p.pattern == r"got \d+ kill"]
    assert kill.occurrences == 1


@pytest.mark.asyncio
async def test_without_a_pattern_registry_behavioral_impact_is_neutral(clock) -> None:
    monitor, loop, _ = _monitor(clock)
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))

    await monitor.force_complete(monitoring_id, now=clock.at(20))

    outcome = loop.process_outcome.await_args.args[0]
    assert outcome.behavioral_impact == 0.0
    assert "behavioral_changes" not in outcome.metadata


@pytest.mark.asyncio
async def test_feedback_loop_failure_still_reports_completion(clock) -> None:
    monitor, loop, events = _monitor(clock)
    loop.process_outcome.side_effect = RuntimeError("store down")
    sub = events.subscribe()
    monitoring_id = await monitor.start_monitoring(_output(), None, now=clock.at(0))

    feedback = await monitor.force_complete(monitoring_id, now=clock.at(20))

    assert feedback is not None
    assert [e.type for e in sub.drain()] == [
        OrchestratorEventType.ERROR,
        OrchestratorEventType.MONITORING_COMPLETED,
    ]


@pytest.mark.asyncio
async def test_force_complete_all_flushes_every_session_once(clock) -> None:
    monitor, loop, _ = _monitor(clock)
    await monitor.start_monitoring(_output("out-1"), None, now=clock.at(0))
    await monitor.start_monitoring(_output("out-2", "dec-2"), None, now=clock.at(1))

    flushed = await monitor.force_complete_all(CompletionReason.MATCH_END, now=clock.at(5))

    assert {f.reason for f in flushed} == {CompletionReason.MATCH_END}
    assert len(flushed) == 2
    assert monitor.active_sessions() == []
    assert await monitor.force_complete_all(CompletionReason.MATCH_END) == []
    assert loop.process_outcome.await_count == 2


def test_compute_scores(clock) -> None:
    monitor, _, _ = _monitor(clock)
    changes = [_change(clock, 0, "combat", 0.8), _change(clock, 0, "position", 0.4)]

    scores = monitor.compute_scores(changes, clock.at(0))

    assert scores.learning == pytest.approx(1.0)
    assert scores.engagement == pytest.approx((2 / 5 + 2 / 10) / 2)
    assert scores.impact == pytest.approx(0.6)
    assert monitor.compute_scores([], clock.at(0)) == EffectivenessScores()


@pytest.mark.parametrize(
    ("learning", "engagement", "reaction"),
    [
        (0.9, 0.9, PlayerReaction.POSITIVE),
        (0.9, 0.3, PlayerReaction.NEUTRAL),
        (0.2, 0.6, PlayerReaction.NEUTRAL),
        (0.2, 0.2, PlayerReaction.RESISTANT),
    ],
)
def test_infer_reaction(clock, learning: float, engagement: float, reaction: PlayerReaction) -> None:
    monitor, _, _ = _monitor(clock)

    assert monitor.infer_reaction(EffectivenessScores(learning=learning, engagement=engagement)) == reaction
