"""Coaching personality selection and per-personality effectiveness tracking."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from coachloop.config.settings import get_settings
from coachloop.contracts import (
    CoachingObjective,
    CoachingPersonality,
    GameContext,
    PersonalityMetrics,
)

logger = logging.getLogger(__name__)


class PersonalitySelector:
    """Keeps an exponential moving average of how well each personality lands.

    When the active personality is `adaptive`, `select` picks the concrete
    personality with the best success rate plus situational bonuses.
    History is never replayed: each update only folds one observation in.
    """

    def __init__(
        self,
        *,
        active: CoachingPersonality = CoachingPersonality.ADAPTIVE,
        learning_rate: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._active = CoachingPersonality(active)
        self._alpha = (
            learning_rate if learning_rate is not None else get_settings().feedback_learning_rate
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metrics: dict[str, PersonalityMetrics] = {
            p.value: PersonalityMetrics(personality=p) for p in CoachingPersonality
        }

    @property
    def active(self) -> CoachingPersonality:
        return self._active

    def set_active(self, personality: CoachingPersonality | str) -> None:
        self._active = CoachingPersonality(personality)
        logger.info("personality_changed", extra={"personality": self._active.value})

    def metrics(self, personality: CoachingPersonality | str) -> PersonalityMetrics:
        return self._metrics[CoachingPersonality(personality).value].model_copy()

    def all_metrics(self) -> dict[str, PersonalityMetrics]:
        return {k: v.model_copy() for k, v in self._metrics.items()}

    def select(
        self,
        *,
        urgency: str = "low",
        context: GameContext | str | None = None,
        objectives: list[str] | None = None,
        frustrated: bool = False,
    ) -> CoachingPersonality:
        if self._active != CoachingPersonality.ADAPTIVE:
            return self._active

        objectives = objectives or []
        best = CoachingPersonality.SUPPORTIVE
        best_score = 0.0
        for personality in CoachingPersonality:
            if personality == CoachingPersonality.ADAPTIVE:
                continue
            score = self._metrics[personality.value].success_rate
            if urgency == "critical" and personality == CoachingPersonality.DIRECT:
                score += 0.2
            if frustrated and personality == CoachingPersonality.SUPPORTIVE:
                score += 0.3
            if (
                context == GameContext.LEARNING_OPPORTUNITY
                and personality == CoachingPersonality.ANALYTICAL
            ):
                score += 0.2
            if (
                CoachingObjective.TACTICAL_GUIDANCE in objectives
                and personality == CoachingPersonality.TACTICAL
            ):
                score += 0.2
            if score > best_score:
                best, best_score = personality, score
        return best

    def record_usage(self, personality: CoachingPersonality | str) -> None:
        metrics = self._metrics[CoachingPersonality(personality).value]
        metrics.usage_count += 1
        metrics.last_used = self._clock()

    def update(
        self,
        personality: CoachingPersonality | str,
        *,
        effectiveness: float,
        rating: float | None = None,
    ) -> PersonalityMetrics:
        """Fold one observation into the personality's moving averages."""
        metrics = self._metrics[CoachingPersonality(personality).value]
        alpha = self._alpha
        effectiveness = max(0.0, min(1.0, effectiveness))
        metrics.success_rate = metrics.success_rate * (1 - alpha) + effectiveness * alpha
        if rating is not None:
            metrics.average_rating = metrics.average_rating * (1 - alpha) + rating * alpha
        return metrics.model_copy()
