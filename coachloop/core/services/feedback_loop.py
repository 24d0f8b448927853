"""Learning feedback: folds terminal outcomes back into future behaviour."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from statistics import fmean
from typing import TYPE_CHECKING, Any

from coachloop.config.settings import get_settings
from coachloop.contracts import (
    CoachingPersonality,
    ExecutionOutcome,
    MemoryImportance,
    StrategyAdaptation,
    StrategyStats,
    UserFeedback,
)
from coachloop.core.ports import MemoryPort
from coachloop.core.services.behavior_patterns import BehaviorPatternRegistry
from coachloop.core.services.personality_selector import PersonalitySelector

if TYPE_CHECKING:
    from coachloop.core.services.decision_engine import DecisionEngine

logger = logging.getLogger(__name__)

PATTERN_FREQUENCY = 0.3
ADAPTATION_HISTORY = 10


def outcome_effectiveness(outcome: ExecutionOutcome) -> float:
    """Single 0-1 effectiveness figure: the mean of the measured impact components."""
    measured = outcome.measured_impact
    return fmean((measured.performance, measured.engagement, measured.learning))


def feedback_effectiveness(feedback: UserFeedback) -> float:
    return (feedback.rating / 5) * (1.0 if feedback.helpful else 0.5)


def importance_of(impact: float) -> MemoryImportance:
    if abs(impact) > 0.8:
        return MemoryImportance.HIGH
    if abs(impact) > 0.4:
        return MemoryImportance.MEDIUM
    return MemoryImportance.LOW


def memory_tags(outcome: ExecutionOutcome) -> list[str]:
    impact = abs(outcome.impact)
    level = "high" if impact > 0.8 else "medium" if impact > 0.4 else "low"
    return [
        f"outcome_{'success' if outcome.success else 'failure'}",
        f"response_{outcome.player_response}",
        "coaching_feedback",
        f"impact_{level}",
    ]


class FeedbackLoop:
    """Consumes execution outcomes and user feedback.

    Per category (the decision type of the suggestion) it keeps a bounded
    history and running stats, stores every outcome in long-term memory,
    updates personality and behaviour-pattern weights, and records a
    strategy adaptation when a category keeps underperforming.
    """

    def __init__(
        self,
        *,
        memory: MemoryPort | None = None,
        personalities: PersonalitySelector | None = None,
        behavior_patterns: BehaviorPatternRegistry | None = None,
        decision_engine: DecisionEngine | None = None,
        learning_rate: float | None = None,
        min_samples: int | None = None,
        max_history: int | None = None,
        confidence_threshold: float | None = None,
        update_interval: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        cfg = get_settings()
        self.learning_rate = learning_rate if learning_rate is not None else cfg.feedback_learning_rate
        self.min_samples = min_samples if min_samples is not None else cfg.feedback_min_samples
        self.max_history = max_history if max_history is not None else cfg.feedback_max_history
        self.confidence_threshold = (
            confidence_threshold
            if confidence_threshold is not None
            else cfg.feedback_confidence_threshold
        )
        self.update_interval = (
            update_interval
            if update_interval is not None
            else cfg.feedback_strategy_update_interval_seconds
        )
        self._memory = memory
        self.personalities = personalities or PersonalitySelector(learning_rate=self.learning_rate)
        self.behavior_patterns = behavior_patterns or BehaviorPatternRegistry(
            learning_rate=self.learning_rate
        )
        self._engine = decision_engine
        self._clock = clock or (lambda: datetime.now(UTC))
        self._history: dict[str, deque[ExecutionOutcome]] = {}
        self._stats: dict[str, StrategyStats] = {}
        self._adaptations: dict[str, deque[StrategyAdaptation]] = {}
        self._last_adaptation: dict[str, datetime] = {}

    def attach_engine(self, engine: DecisionEngine) -> None:
        self._engine = engine

    @staticmethod
    def category_of(outcome: ExecutionOutcome) -> str:
        return str(outcome.metadata.get("decision_type") or outcome.rule_id or "general")

    async def process_outcome(self, outcome: ExecutionOutcome) -> StrategyAdaptation | None:
        category = self.category_of(outcome)
        history = self._history.setdefault(category, deque(maxlen=self.max_history))
        history.append(outcome)

        await self._store(outcome, category)
        self._update_stats(category, outcome)

        if outcome.personality is not None:
            self.personalities.update(outcome.personality, effectiveness=outcome_effectiveness(outcome))
        self._update_patterns(outcome)
        if self._engine is not None:
            self._engine.learn_from_outcome(outcome)

        return self._check_adaptation(category)

    def record_user_feedback(
        self, feedback: UserFeedback, personality: CoachingPersonality | str | None = None
    ) -> None:
        """Fold an explicit rating into personality metrics and the issuing rule."""
        if personality is not None:
            self.personalities.update(
                personality, effectiveness=feedback_effectiveness(feedback), rating=feedback.rating
            )
        if self._engine is not None:
            self._engine.adapt_to_feedback(feedback)

    def get_learning_stats(self) -> dict[str, StrategyStats]:
        return {k: v.model_copy() for k, v in self._stats.items()}

    def recent_adaptations(self, category: str | None = None) -> list[StrategyAdaptation]:
        if category is not None:
            return list(self._adaptations.get(category, []))
        return [a for group in self._adaptations.values() for a in group]

    def history(self, category: str) -> list[ExecutionOutcome]:
        return list(self._history.get(category, []))

    # ===== Internals =====

    async def _store(self, outcome: ExecutionOutcome, category: str) -> None:
        if self._memory is None:
            return
        player_id = outcome.metadata.get("player_id")
        entry: dict[str, Any] = {
            "type": "interaction_history",
            "player_id": player_id,
            "importance": importance_of(outcome.impact).value,
            "tags": memory_tags(outcome),
            "timestamp": outcome.timestamp.isoformat(),
            "content": {
                "session_id": outcome.suggestion_id,
                "decision_id": outcome.decision_id,
                "category": category,
                "feedback_given": ", ".join(outcome.learning_points),
                "player_reaction": outcome.player_response,
                "reaction_details": "Positive outcome" if outcome.success else "Needs improvement",
                "effectiveness": outcome.impact,
                "behavioral_impact": outcome.behavioral_impact,
            },
        }
        try:
            await self._memory.store(entry)
        except Exception as exc:
            logger.warning("Failed to store outcome decision=%s: %s", outcome.decision_id, exc)

    def _update_stats(self, category: str, outcome: ExecutionOutcome) -> None:
        stats = self._stats.get(category)
        if stats is None:
            # First sample starts the confidence average from zero
            stats = StrategyStats(category=category, average_confidence=0.0)
            self._stats[category] = stats
        stats.total_feedback += 1
        if outcome.success:
            stats.positive_feedback += 1
        else:
            stats.negative_feedback += 1
        alpha = self.learning_rate
        stats.average_confidence = stats.average_confidence * (1 - alpha) + outcome.confidence * alpha
        stats.last_updated = self._clock()

    def _update_patterns(self, outcome: ExecutionOutcome) -> None:
        # Changes the monitor already classified are not counted a second time
        classified = outcome.metadata.get("behavioral_changes")
        if classified is not None:
            matches = [(str(m["pattern"]), float(m["impact"])) for m in classified]
        else:
            matches = [
                (match.pattern, match.impact)
                for description in outcome.metadata.get("changes", [])
                for match in self.behavior_patterns.classify(str(description))
            ]
        for pattern, impact in matches:
            target = abs(impact) if outcome.success else -abs(impact)
            self.behavior_patterns.update(pattern, confidence=outcome.confidence, impact=target)

    def _check_adaptation(self, category: str) -> StrategyAdaptation | None:
        stats = self._stats[category]
        if stats.total_feedback < self.min_samples:
            return None
        now = self._clock()
        last = self._last_adaptation.get(category)
        if last is not None and (now - last).total_seconds() < self.update_interval:
            return None

        rate = stats.success_rate
        if not (
            (rate < 0.5 and stats.average_confidence > self.confidence_threshold) or rate < 0.3
        ):
            return None

        failures = [o for o in self._history.get(category, []) if not o.success]
        recommendations = self._recommendations(self._analyze_patterns(failures), stats)
        adaptation = StrategyAdaptation(
            category=category,
            reason=recommendations[0] if recommendations else "Below average success rate",
            success_rate=rate,
            recommendations=recommendations,
            timestamp=now,
        )
        self._adaptations.setdefault(category, deque(maxlen=ADAPTATION_HISTORY)).append(adaptation)
        self._last_adaptation[category] = now
        logger.info(
            "strategy_adapted",
            extra={"category": category, "success_rate": rate, "samples": stats.total_feedback},
        )
        return adaptation

    def _analyze_patterns(self, outcomes: list[ExecutionOutcome]) -> list[tuple[str, float, float]]:
        """(pattern, frequency, mean impact) over failure notes, most frequent first."""
        if not outcomes:
            return []
        counts: dict[str, list[float]] = {}
        for outcome in outcomes:
            notes = [*outcome.learning_points, *outcome.metadata.get("recommendations", [])]
            for note in notes:
                counts.setdefault(str(note), []).append(outcome.impact)
        patterns = [
            (note, len(impacts) / len(outcomes), fmean(impacts)) for note, impacts in counts.items()
        ]
        return sorted(patterns, key=lambda p: p[1], reverse=True)

    def _recommendations(
        self, patterns: list[tuple[str, float, float]], stats: StrategyStats
    ) -> list[str]:
        recs: list[str] = []
        for pattern, frequency, impact in patterns:
            if frequency > PATTERN_FREQUENCY:
                recs.append(f"High frequency pattern ({round(frequency * 100)}%): {pattern}")
            if impact < -0.5:
                recs.append(f"High negative impact pattern: {pattern}")
        rate = stats.success_rate
        if rate < 0.3:
            recs.append("Very low success rate - consider major strategy revision")
        elif rate < 0.5:
            recs.append("Below average success rate - adjust approach for better outcomes")
        if stats.average_confidence < self.confidence_threshold:
            recs.append("Low confidence in current approach - gather more data or revise strategy")
        return recs
