"""Unit tests for PersonalitySelector."""

from __future__ import annotations

import pytest

from coachloop.contracts import CoachingObjective, CoachingPersonality, GameContext
from coachloop.core.services.personality_selector import PersonalitySelector


def test_update_is_an_exponential_moving_average() -> None:
    selector = PersonalitySelector(learning_rate=0.1)

    first = selector.update(CoachingPersonality.ANALYTICAL, effectiveness=1.0)
    second = selector.update("analytical", effectiveness=1.0, rating=5)

    assert first.success_rate == pytest.approx(0.55)
    assert second.success_rate == pytest.approx(0.55 * 0.9 + 0.1)
    assert second.average_rating == pytest.approx(3.2)


def test_effectiveness_is_clamped() -> None:
    selector = PersonalitySelector(learning_rate=0.5)

    assert selector.update("direct", effectiveness=7.0).success_rate == pytest.approx(0.75)
    assert selector.update("mentor", effectiveness=-1.0).success_rate == pytest.approx(0.25)


def test_fixed_personality_is_returned_as_is() -> None:
    selector = PersonalitySelector(active=CoachingPersonality.MENTOR)

    assert selector.select(urgency="critical", frustrated=True) == CoachingPersonality.MENTOR


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({"urgency": "critical"}, CoachingPersonality.DIRECT),
        ({"frustrated": True}, CoachingPersonality.SUPPORTIVE),
        ({"context": GameContext.LEARNING_OPPORTUNITY}, CoachingPersonality.ANALYTICAL),
        ({"objectives": [CoachingObjective.TACTICAL_GUIDANCE.value]}, CoachingPersonality.TACTICAL),
    ],
)
def test_adaptive_selection_applies_situational_bonuses(kwargs, expected) -> None:
    assert PersonalitySelector().select(**kwargs) == expected


def test_adaptive_selection_prefers_the_best_track_record() -> None:
    selector = PersonalitySelector(learning_rate=0.5)
    selector.update("mentor", effectiveness=1.0)

    assert selector.select() == CoachingPersonality.MENTOR
    assert selector.select(frustrated=True) == CoachingPersonality.SUPPORTIVE


def test_record_usage_and_set_active(clock) -> None:
    selector = PersonalitySelector(clock=clock)

    selector.record_usage("tactical")
    selector.set_active("direct")

    metrics = selector.metrics(CoachingPersonality.TACTICAL)
    assert metrics.usage_count == 1
    assert metrics.last_used == clock.now
    assert selector.active == CoachingPersonality.DIRECT
    assert set(selector.all_metrics()) == {p.value for p in CoachingPersonality}
    with pytest.raises(ValueError):
        selector.set_active("grumpy")
