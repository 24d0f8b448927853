"""Unit tests for StateChangeDetector."""

from __future__ import annotations

from coachloop.core.services.change_detector import StateChangeDetector
from coachloop.core.services.snapshot_builder import StateSnapshotBuilder


def _pair(clock, frame, before: dict, after: dict):
    builder = StateSnapshotBuilder(match_id="m", clock=clock)
    start = builder.build(frame(**before))
    clock.advance(3)
    current = builder.build(frame(**after), start)
    assert start is not None and current is not None
    return start, current


def test_identical_frames_produce_no_changes(clock, frame) -> None:
    start, current = _pair(clock, frame, {}, {})

    assert StateChangeDetector().diff(start, current) == []


def test_combat_and_health_changes_are_scored(clock, frame) -> None:
    start, current = _pair(clock, frame, {"health": 100}, {"health": 60, "kills": 2})

    changes = {c.type: c for c in StateChangeDetector().diff(start, current)}

    assert changes["health"].significance == 0.4
    assert changes["health"].description == "Health changed by -40"
    assert changes["combat"].significance == 0.8
    assert changes["combat"].description == "Got 2 kill(s)"
    assert all(c.timestamp == current.timestamp for c in changes.values())


def test_small_health_change_is_ignored(clock, frame) -> None:
    start, current = _pair(clock, frame, {"health": 100}, {"health": 95})

    assert StateChangeDetector().diff(start, current) == []


def test_movement_phase_score_and_bomb(clock, frame) -> None:
    start, current = _pair(
        clock,
        frame,
        {"position": "0, 0, 0", "ct_score": 2},
        {"position": "600, 0, 0", "ct_score": 3, "round_phase": "over", "bomb": "defused"},
    )

    changes = {c.type: c for c in StateChangeDetector().diff(start, current)}

    assert changes["position"].significance == 0.6
    assert changes["score"].significance == 1.0
    assert changes["phase"].description == "Phase changed to over"
    assert changes["bomb"].significance == 0.9


def test_new_weapon_and_economy_shift(clock, frame) -> None:
    start, current = _pair(
        clock,
        frame,
        {"money": 4750, "weapons": {"weapon_0": {"name": "weapon_glock", "type": "Pistol"}}},
        {
            "money": 900,
            "weapons": {
                "weapon_0": {"name": "weapon_glock", "type": "Pistol"},
                "weapon_1": {"name": "weapon_ak47", "type": "Rifle"},
            },
        },
    )

    changes = {c.type: c for c in StateChangeDetector().diff(start, current)}

    assert changes["weapons"].description == "Weapons changed: weapon_ak47"
    assert changes["economy"].description == "Economy changed to eco"
    assert changes["round_type"].significance == 0.7


def test_diff_is_deterministic_for_dedupe(clock, frame) -> None:
    start, current = _pair(clock, frame, {}, {"kills": 1})
    detector = StateChangeDetector()

    first = detector.diff(start, current)
    second = detector.diff(start, current)

    assert [c.dedupe_key for c in first] == [c.dedupe_key for c in second]
