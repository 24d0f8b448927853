"""Watches the game after a suggestion is delivered and judges whether it helped.

Each delivered suggestion opens a monitoring session. Checkpoints of state
changes are folded into three scores (learning, engagement, impact); once the
session has run for at least the minimum window and either looks clearly
effective or reaches the maximum window, feedback is generated exactly once,
handed to the feedback loop and the session is removed.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from coachloop.config.settings import get_settings
from coachloop.contracts import (
    CoachingOutput,
    CoachingPersonality,
    CompletionReason,
    EffectivenessScores,
    ExecutionOutcome,
    GameStateSnapshot,
    MeasuredImpact,
    MonitoringFeedback,
    MonitoringStatus,
    OrchestratorEventType,
    PlayerReaction,
    PlayerResponse,
    StateChange,
)
from coachloop.core.errors import MonitoringError
from coachloop.core.metrics import mark_feedback, set_active_sessions
from coachloop.core.services.behavior_patterns import BehaviorPatternRegistry
from coachloop.core.services.event_stream import EventStream

if TYPE_CHECKING:
    from coachloop.core.services.feedback_loop import FeedbackLoop

logger = logging.getLogger(__name__)

EXPECTED_CHANGE_TYPES = 5
EXPECTED_CHANGE_COUNT = 10
IMPACT_EFFECTIVE = 0.7
SLOW_RESPONSE_SECONDS = 5.0
FEEDBACK_HISTORY = 100

_PERSONALITIES = {p.value for p in CoachingPersonality}
_RESPONSES = {
    PlayerReaction.POSITIVE.value: PlayerResponse.POSITIVE,
    PlayerReaction.NEUTRAL.value: PlayerResponse.NEUTRAL,
    PlayerReaction.RESISTANT.value: PlayerResponse.NEGATIVE,
}


@dataclass(slots=True)
class _Session:
    status: MonitoringStatus
    initial_state: GameStateSnapshot | None
    rule_id: str | None
    seen: set[tuple[datetime, str]] = field(default_factory=set)


class EffectivenessMonitor:
    def __init__(
        self,
        *,
        feedback_loop: FeedbackLoop | None = None,
        events: EventStream | None = None,
        behavior_patterns: BehaviorPatternRegistry | None = None,
        min_time: float | None = None,
        max_time: float | None = None,
        significance_threshold: float | None = None,
        learning_threshold: float | None = None,
        engagement_threshold: float | None = None,
        decay_seconds: float | None = None,
        max_sessions: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        cfg = get_settings()
        self.min_time = min_time if min_time is not None else cfg.monitor_min_time_seconds
        self.max_time = max_time if max_time is not None else cfg.monitor_max_time_seconds
        self.significance_threshold = (
            significance_threshold
            if significance_threshold is not None
            else cfg.monitor_significance_threshold
        )
        self.learning_threshold = (
            learning_threshold if learning_threshold is not None else cfg.monitor_learning_threshold
        )
        self.engagement_threshold = (
            engagement_threshold
            if engagement_threshold is not None
            else cfg.monitor_engagement_threshold
        )
        self.decay_seconds = (
            decay_seconds if decay_seconds is not None else cfg.monitor_decay_seconds
        )
        self.max_sessions = max_sessions if max_sessions is not None else cfg.monitor_max_sessions
        self._feedback_loop = feedback_loop
        self._events = events
        self._behavior_patterns = behavior_patterns
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sessions: dict[str, _Session] = {}
        self._recent: deque[MonitoringFeedback] = deque(maxlen=FEEDBACK_HISTORY)

    # ===== Session lifecycle =====

    async def start_monitoring(
        self,
        suggestion: CoachingOutput,
        initial_state: GameStateSnapshot | None,
        *,
        rule_id: str | None = None,
        now: datetime | None = None,
    ) -> str:
        now = now or self._clock()
        while len(self._sessions) >= self.max_sessions > 0:
            oldest = min(self._sessions, key=lambda k: self._sessions[k].status.start_time)
            logger.warning(
                "monitoring_session_evicted",
                extra={"monitoring_id": oldest, "max_sessions": self.max_sessions},
            )
            await self._complete(oldest, CompletionReason.EVICTED, now)

        monitoring_id = uuid.uuid4().hex
        self._sessions[monitoring_id] = _Session(
            status=MonitoringStatus(
                monitoring_id=monitoring_id,
                suggestion_id=suggestion.id,
                suggestion=suggestion,
                start_time=now,
                last_update=now,
            ),
            initial_state=initial_state,
            rule_id=rule_id,
        )
        set_active_sessions(len(self._sessions))
        logger.info(
            "monitoring_started",
            extra={"monitoring_id": monitoring_id, "suggestion_id": suggestion.id},
        )
        return monitoring_id

    async def record_checkpoint(
        self,
        monitoring_id: str,
        changes: Iterable[StateChange],
        *,
        now: datetime | None = None,
    ) -> MonitoringFeedback | None:
        """Fold a batch of changes into a session. Returns feedback if this checkpoint completed it."""
        session = self._sessions.get(monitoring_id)
        if session is None:
            logger.debug("checkpoint_for_unknown_session", extra={"monitoring_id": monitoring_id})
            return None
        now = now or self._clock()
        status = session.status

        added = 0
        for change in changes:
            if change.significance < self.significance_threshold:
                continue
            if change.dedupe_key in session.seen:
                continue
            session.seen.add(change.dedupe_key)
            status.changes = [*status.changes, change]
            added += 1
        status.last_update = now

        if not self._score(monitoring_id, status, now):
            return None

        if added:
            logger.debug(
                "monitoring_checkpoint",
                extra={
                    "monitoring_id": monitoring_id,
                    "added": added,
                    "learning": status.effectiveness.learning,
                    "engagement": status.effectiveness.engagement,
                    "impact": status.effectiveness.impact,
                },
            )

        if self.should_generate_feedback(status, now):
            return await self._complete(monitoring_id, self._ready_reason(status, now), now)
        return None

    async def record_for_all(
        self, changes: list[StateChange], *, now: datetime | None = None
    ) -> list[MonitoringFeedback]:
        """Feed the same checkpoint to every active session."""
        now = now or self._clock()
        completed: list[MonitoringFeedback] = []
        for monitoring_id in list(self._sessions):
            feedback = await self.record_checkpoint(monitoring_id, changes, now=now)
            if feedback is not None:
                completed.append(feedback)
        return completed

    async def sweep(self, now: datetime | None = None) -> list[MonitoringFeedback]:
        """Complete sessions that reached the max window, and fire any that became due."""
        now = now or self._clock()
        completed: list[MonitoringFeedback] = []
        for monitoring_id in list(self._sessions):
            session = self._sessions.get(monitoring_id)
            if session is None:
                continue
            status = session.status
            if self._elapsed(status, now) >= self.max_time:
                feedback = await self._complete(monitoring_id, CompletionReason.MAX_TIME, now)
            elif status.changes:
                if not self._score(monitoring_id, status, now):
                    continue
                if not self.should_generate_feedback(status, now):
                    continue
                feedback = await self._complete(monitoring_id, CompletionReason.FEEDBACK_READY, now)
            else:
                continue
            if feedback is not None:
                completed.append(feedback)
        return completed

    async def force_complete(
        self,
        monitoring_id: str,
        reason: CompletionReason = CompletionReason.MAX_TIME,
        *,
        now: datetime | None = None,
    ) -> MonitoringFeedback | None:
        """Flush a session's partial feedback now, as if it reached the max window."""
        return await self._complete(monitoring_id, reason, now or self._clock())

    async def force_complete_all(
        self, reason: CompletionReason, *, now: datetime | None = None
    ) -> list[MonitoringFeedback]:
        now = now or self._clock()
        completed: list[MonitoringFeedback] = []
        for monitoring_id in list(self._sessions):
            feedback = await self._complete(monitoring_id, reason, now)
            if feedback is not None:
                completed.append(feedback)
        return completed

    def get_status(self, monitoring_id: str) -> MonitoringStatus | None:
        session = self._sessions.get(monitoring_id)
        return session.status.model_copy(deep=True) if session is not None else None

    def active_sessions(self) -> list[str]:
        return list(self._sessions)

    def recent_feedback(self) -> list[MonitoringFeedback]:
        return list(self._recent)

    # ===== Scoring =====

    def compute_scores(self, changes: list[StateChange], now: datetime) -> EffectivenessScores:
        if not changes:
            return EffectivenessScores()

        total_significance = sum(c.significance for c in changes)
        weighted = 0.0
        for change in changes:
            age = max(0.0, (now - change.timestamp).total_seconds())
            weighted += change.significance * math.exp(-age / self.decay_seconds)
        learning = weighted / total_significance if total_significance > 0 else 0.0

        variety = min(len({c.type for c in changes}) / EXPECTED_CHANGE_TYPES, 1.0)
        frequency = min(len(changes) / EXPECTED_CHANGE_COUNT, 1.0)
        engagement = (variety + frequency) / 2

        significant = [c.significance for c in changes if c.significance >= self.significance_threshold]
        impact = sum(significant) / len(significant) if significant else 0.0

        return EffectivenessScores(
            learning=min(learning, 1.0), engagement=engagement, impact=min(impact, 1.0)
        )

    def should_generate_feedback(self, status: MonitoringStatus, now: datetime) -> bool:
        elapsed = self._elapsed(status, now)
        if elapsed < self.min_time or not status.changes:
            return False
        scores = status.effectiveness
        return (
            scores.learning >= self.learning_threshold
            or scores.engagement >= self.engagement_threshold
            or elapsed >= self.max_time
        )

    def infer_reaction(self, scores: EffectivenessScores) -> PlayerReaction:
        if scores.engagement > 0.8 and scores.learning > 0.8:
            return PlayerReaction.POSITIVE
        if scores.engagement > 0.5 or scores.learning > 0.5:
            return PlayerReaction.NEUTRAL
        return PlayerReaction.RESISTANT

    def is_effective(self, scores: EffectivenessScores) -> bool:
        return (
            scores.learning >= self.learning_threshold
            or scores.engagement >= self.engagement_threshold
            or scores.impact >= IMPACT_EFFECTIVE
        )

    # ===== Internals =====

    def _score(self, monitoring_id: str, status: MonitoringStatus, now: datetime) -> bool:
        """Recompute a session's scores. On failure the last scores are kept and an error event is emitted."""
        try:
            status.effectiveness = self.compute_scores(status.changes, now)
        except Exception as exc:
            error = MonitoringError(monitoring_id, str(exc))
            logger.error("monitoring_scoring_failed: %s", error, exc_info=True)
            if self._events is not None:
                self._events.emit(
                    OrchestratorEventType.ERROR,
                    {"code": "monitoring_error", "monitoring_id": monitoring_id, "message": str(error)},
                    match_id=status.suggestion.match_id,
                )
            return False
        return True

    def _behavioral_changes(self, status: MonitoringStatus) -> list[dict[str, Any]]:
        """Classify the session's changes against the known behaviour patterns."""
        if self._behavior_patterns is None:
            return []
        matched: list[dict[str, Any]] = []
        for change in status.changes:
            for match in self._behavior_patterns.classify(change.description, change.significance):
                matched.append(
                    {
                        "description": change.description,
                        "category": match.category,
                        "pattern": match.pattern,
                        "confidence": match.confidence,
                        "impact": match.impact,
                    }
                )
        return matched

    @staticmethod
    def _elapsed(status: MonitoringStatus, now: datetime) -> float:
        return (now - status.start_time).total_seconds()

    def _ready_reason(self, status: MonitoringStatus, now: datetime) -> CompletionReason:
        if self._elapsed(status, now) >= self.max_time:
            return CompletionReason.MAX_TIME
        return CompletionReason.FEEDBACK_READY

    def _confidence(self, status: MonitoringStatus) -> float:
        # Coverage runs to the last checkpoint, not to the completion time
        observed = max(0.0, (status.last_update - status.start_time).total_seconds())
        duration_part = min(observed / self.max_time, 1.0) if self.max_time > 0 else 1.0
        count_part = min(len(status.changes) / EXPECTED_CHANGE_COUNT, 1.0)
        variety_part = 0.8 if len({c.type for c in status.changes}) > 1 else 0.5
        return (duration_part + count_part + variety_part) / 3

    def _learning_points(self, status: MonitoringStatus) -> list[str]:
        scores = status.effectiveness
        points: list[str] = []
        if scores.engagement >= self.engagement_threshold:
            points.append("Player showed active engagement with the suggestion")
        else:
            points.append("Player engagement could be improved")
        if scores.learning >= self.learning_threshold:
            points.append("Evidence of successful learning from the suggestion")
        significant = [c.description for c in status.changes if c.significance >= self.significance_threshold]
        if significant:
            points.append(f"Observed significant changes: {', '.join(significant[:3])}")
        return points

    def _recommendations(self, status: MonitoringStatus) -> list[str]:
        scores = status.effectiveness
        recs: list[str] = []
        if status.changes:
            response = (status.changes[0].timestamp - status.start_time).total_seconds()
            if response > SLOW_RESPONSE_SECONDS:
                recs.append("Consider simplifying suggestions for faster response")
        if scores.engagement < self.engagement_threshold:
            recs.append("Improve suggestion relevance to increase engagement")
        if scores.learning < self.learning_threshold:
            recs.append("Adjust suggestion complexity for better learning outcomes")
        if scores.impact < 0.5:
            recs.append("Review suggestion effectiveness in similar situations")
        return recs

    async def _complete(
        self, monitoring_id: str, reason: CompletionReason, now: datetime
    ) -> MonitoringFeedback | None:
        reason = CompletionReason(reason)
        # Removed before any await so a session completes at most once
        session = self._sessions.pop(monitoring_id, None)
        if session is None:
            return None
        set_active_sessions(len(self._sessions))

        status = session.status
        suggestion = status.suggestion
        duration = max(0.0, self._elapsed(status, now))
        self._score(monitoring_id, status, now)
        scores = status.effectiveness
        reaction = self.infer_reaction(scores)
        effective = self.is_effective(scores)
        confidence = self._confidence(status)
        behavioral = self._behavioral_changes(status)
        behavioral_impact = (
            max(-1.0, min(1.0, sum(b["impact"] for b in behavioral) / len(behavioral)))
            if behavioral
            else 0.0
        )
        learning_points = self._learning_points(status)

        feedback = MonitoringFeedback(
            monitoring_id=monitoring_id,
            suggestion_id=status.suggestion_id,
            decision_id=suggestion.decision_id,
            effectiveness=scores,
            is_effective=effective,
            player_reaction=reaction,
            learning_points=learning_points,
            recommendations=self._recommendations(status),
            confidence=confidence,
            reason=reason,
            duration_seconds=duration,
            change_count=len(status.changes),
        )
        status.feedback = feedback

        response = _RESPONSES[reaction.value] if status.changes else PlayerResponse.IGNORED
        style = suggestion.personalization.adapted_for_style
        metadata: dict[str, Any] = {
            "monitoring_id": monitoring_id,
            "reason": reason.value,
            "duration_seconds": duration,
            "change_count": len(status.changes),
            "decision_type": suggestion.type,
            "player_id": suggestion.personalization.player_id,
            "changes": [c.description for c in status.changes],
            "recommendations": feedback.recommendations,
        }
        if self._behavior_patterns is not None:
            # Tells the feedback loop these changes are already classified
            metadata["behavioral_changes"] = behavioral
        outcome = ExecutionOutcome(
            decision_id=suggestion.decision_id,
            suggestion_id=status.suggestion_id,
            rule_id=session.rule_id,
            personality=style if style in _PERSONALITIES else None,
            success=effective,
            impact=scores.impact,
            relevance=scores.engagement,
            player_response=response,
            measured_impact=MeasuredImpact(
                performance=scores.impact, engagement=scores.engagement, learning=scores.learning
            ),
            follow_up_required=not effective,
            learning_points=learning_points,
            confidence=confidence,
            behavioral_impact=behavioral_impact,
            timestamp=now,
            metadata=metadata,
        )

        logger.info(
            "monitoring_completed",
            extra={
                "monitoring_id": monitoring_id,
                "reason": reason.value,
                "effective": effective,
                "reaction": reaction.value,
                "duration_seconds": duration,
            },
        )
        mark_feedback(reaction.value)
        self._recent.append(feedback)

        if self._feedback_loop is not None:
            try:
                await self._feedback_loop.process_outcome(outcome)
            except Exception as exc:
                logger.error(
                    "Feedback loop failed for monitoring=%s: %s", monitoring_id, exc, exc_info=True
                )
                if self._events is not None:
                    self._events.emit(
                        OrchestratorEventType.ERROR,
                        {"code": "feedback_loop_error", "monitoring_id": monitoring_id, "message": str(exc)},
                        match_id=suggestion.match_id,
                    )

        if self._events is not None:
            self._events.emit(
                OrchestratorEventType.MONITORING_COMPLETED,
                {
                    "monitoring_id": monitoring_id,
                    "feedback": feedback.model_dump(mode="json"),
                    "outcome": outcome.model_dump(mode="json"),
                },
                match_id=suggestion.match_id,
            )
        return feedback
