"""Unit tests for StateSnapshotBuilder."""

from __future__ import annotations

from typing import Any

import pytest

from coachloop.contracts import (
    FactorKind,
    GameContext,
    PlayerState,
    RoleAssessment,
    Severity,
    SituationalFactor,
)
from coachloop.core.ports import RoleClassifierPort
from coachloop.core.services.snapshot_builder import StateSnapshotBuilder, classify_money


class _EntryClassifier(RoleClassifierPort):
    def classify(self, player: PlayerState, raw: dict[str, Any]) -> RoleAssessment:
        return RoleAssessment(
            role="entry",
            confidence=0.8,
            risks=[
                SituationalFactor(
                    kind=FactorKind.POSITIONAL,
                    description="Entry without flash support",
                    severity=Severity.MEDIUM,
                    relevance=0.7,
                ),
                SituationalFactor(
                    kind=FactorKind.POSITIONAL,
                    description="Barely relevant note",
                    severity=Severity.LOW,
                    relevance=0.2,
                ),
            ],
        )


def _builder(clock) -> StateSnapshotBuilder:
    return StateSnapshotBuilder(match_id="match-1", clock=clock)


def test_build_normalizes_a_live_frame(clock, frame) -> None:
    snapshot = _builder(clock).build(frame())

    assert snapshot is not None
    assert snapshot.sequence_id == 1
    assert snapshot.match_id == "match-1"
    assert snapshot.timestamp == clock.now
    derived = snapshot.derived
    assert derived.context == GameContext.MID_ROUND
    assert derived.map_state.name == "mirage"
    assert derived.map_state.round == 3
    assert derived.player_state.health == 100
    assert derived.player_state.position.x == pytest.approx(-1200.5)
    assert {w.category for w in derived.player_state.weapons} == {"knife", "rifle"}
    assert derived.economy_state.round_type == "full"
    assert derived.team_state.score == 2
    assert derived.situational_factors == []


def test_sequence_ids_increase_only_for_built_snapshots(clock, frame) -> None:
    builder = _builder(clock)

    first = builder.build(frame())
    skipped = builder.build(frame(steamid=None))
    second = builder.build(frame())

    assert first is not None and second is not None
    assert skipped is None
    assert (first.sequence_id, second.sequence_id) == (1, 2)
    assert builder.last_sequence_id == 2


@pytest.mark.parametrize(
    "raw",
    [
        "not-a-frame",
        {"map": {"name": "de_inferno"}},
        {"player": {"steamid": "1"}},
    ],
)
def test_incomplete_frames_are_skipped(clock, raw) -> None:
    builder = _builder(clock)

    assert builder.build(raw) is None
    assert builder.last_sequence_id == 0


def test_low_health_is_a_critical_situation(clock, frame) -> None:
    snapshot = _builder(clock).build(frame(health=20))

    assert snapshot is not None
    assert snapshot.derived.context == GameContext.CRITICAL_SITUATION
    critical = [f for f in snapshot.derived.situational_factors if f.severity == Severity.CRITICAL]
    assert critical and critical[0].kind == FactorKind.POSITIONAL


def test_heavy_damage_between_frames_is_critical(clock, frame) -> None:
    builder = _builder(clock)
    previous = builder.build(frame(health=100))

    current = builder.build(frame(health=45), previous)

    assert current is not None
    assert current.derived.context == GameContext.CRITICAL_SITUATION
    assert any("Heavy damage" in f.description for f in current.derived.situational_factors)


def test_freezetime_context_depends_on_round_type(clock, frame) -> None:
    builder = _builder(clock)

    broke = builder.build(frame(round_phase="freezetime", money=800))
    rich = builder.build(frame(round_phase="freezetime", money=5200))

    assert broke is not None and rich is not None
    assert broke.derived.context == GameContext.ECONOMY_PHASE
    assert broke.derived.economy_state.round_type == "eco"
    assert any(f.kind == FactorKind.ECONOMIC for f in broke.derived.situational_factors)
    assert rich.derived.context == GameContext.ROUND_START


def test_round_and_match_end_contexts(clock, frame) -> None:
    builder = _builder(clock)

    over = builder.build(frame(round_phase="over"))
    gameover = builder.build(frame(round_phase="over", map_phase="gameover"))

    assert over is not None and gameover is not None
    assert over.derived.context == GameContext.ROUND_END
    assert gameover.derived.context == GameContext.MATCH_END


def test_pistol_round_type_on_round_zero(clock, frame) -> None:
    snapshot = _builder(clock).build(frame(round_number=0, money=800))

    assert snapshot is not None
    assert snapshot.derived.economy_state.round_type == "pistol"


def test_bomb_planted_with_little_time_adds_pressure_factors(clock, frame) -> None:
    snapshot = _builder(clock).build(frame(bomb="planted", phase_ends_in=20.0))

    assert snapshot is not None
    kinds = {(f.kind, f.severity) for f in snapshot.derived.situational_factors}
    assert (FactorKind.TACTICAL, Severity.HIGH) in kinds
    assert (FactorKind.TEMPORAL, Severity.HIGH) in kinds
    assert snapshot.derived.context == GameContext.MID_ROUND


def test_role_classifier_sets_role_and_filters_irrelevant_risks(clock, frame) -> None:
    builder = StateSnapshotBuilder(match_id="m", role_classifier=_EntryClassifier(), clock=clock)

    snapshot = builder.build(frame())

    assert snapshot is not None
    assert snapshot.derived.player_state.role == "entry"
    descriptions = [f.description for f in snapshot.derived.situational_factors]
    assert "Entry without flash support" in descriptions
    assert "Barely relevant note" not in descriptions


def test_detect_context_change(clock, frame) -> None:
    builder = _builder(clock)
    freeze = builder.build(frame(round_phase="freezetime"))
    live = builder.build(frame(round_phase="live"), freeze)
    next_round = builder.build(frame(round_number=4, round_phase="freezetime"), live)
    assert freeze is not None and live is not None and next_round is not None

    first = builder.detect_context_change(freeze, None)
    phase = builder.detect_context_change(live, freeze)
    round_change = builder.detect_context_change(next_round, live)

    assert first.urgency == "low"
    assert phase.urgency == "high"
    assert phase.changes[0]["type"] == "phase_change"
    assert round_change.urgency == "critical"
    assert {c["type"] for c in round_change.changes} == {"phase_change", "round_change"}


@pytest.mark.parametrize(
    ("amount", "expected"),
    [(0, "eco"), (1999, "eco"), (2000, "semi_eco"), (3499, "semi_eco"), (3500, "force"), (4500, "full")],
)
def test_classify_money(amount: int, expected: str) -> None:
    assert classify_money(amount) == expected
