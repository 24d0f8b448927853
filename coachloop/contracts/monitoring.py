"""Effectiveness monitoring contracts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from .coaching import CoachingOutput
from .common import BaseContract, FrozenContract, PlayerReaction


class StateChange(FrozenContract):
    """A timestamped change observed between two snapshots."""

    type: str
    description: str
    significance: float = Field(ge=0.0, le=1.0)
    timestamp: datetime

    @property
    def dedupe_key(self) -> tuple[datetime, str]:
        return (self.timestamp, self.description)


class CompletionReason(str, Enum):
    FEEDBACK_READY = "feedback_ready"
    MAX_TIME = "max_time"
    MATCH_END = "match_end"
    PLAYER_DISCONNECT = "player_disconnect"
    EVICTED = "evicted"
    SHUTDOWN = "shutdown"


class EffectivenessScores(BaseContract):
    learning: float = Field(default=0.0, ge=0.0, le=1.0)
    engagement: float = Field(default=0.0, ge=0.0, le=1.0)
    impact: float = Field(default=0.0, ge=0.0, le=1.0)


class MonitoringFeedback(FrozenContract):
    monitoring_id: str
    suggestion_id: str
    decision_id: str
    effectiveness: EffectivenessScores
    is_effective: bool
    player_reaction: PlayerReaction
    learning_points: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    reason: CompletionReason
    duration_seconds: float = 0.0
    change_count: int = 0


class MonitoringStatus(BaseContract):
    """Mutable record of one observation window; removed once feedback is emitted."""

    monitoring_id: str
    suggestion_id: str
    suggestion: CoachingOutput
    start_time: datetime
    last_update: datetime
    effectiveness: EffectivenessScores = Field(default_factory=EffectivenessScores)
    changes: list[StateChange] = Field(default_factory=list)
    feedback: MonitoringFeedback | None = None
