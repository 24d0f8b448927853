"""User-visible coaching artifacts."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from .common import BaseContract, DecisionType, DeliveryWindow, InterventionPriority


class OutputTiming(BaseContract):
    immediate: bool
    when: DeliveryWindow


class Personalization(BaseContract):
    player_id: str
    adapted_for_style: str
    confidence_level: float = Field(ge=0.0, le=1.0)


class CoachingOutput(BaseContract):
    """One-to-one with a successfully executed decision."""

    id: str
    decision_id: str
    match_id: str
    type: DecisionType
    priority: InterventionPriority
    title: str
    message: str
    details: str | None = None
    action_items: list[str] = Field(default_factory=list)
    timing: OutputTiming
    personalization: Personalization
    audio_script: str | None = None
    overlay: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
