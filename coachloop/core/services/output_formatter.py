"""Turns an executed decision into a user-visible coaching output."""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime
from typing import Any

from coachloop.contracts import (
    AIDecision,
    CoachingOutput,
    DeliveryWindow,
    ExecutionResult,
    InterventionPriority,
    OutputTiming,
    Personalization,
)
from coachloop.core.fallbacks.advice_fallback import fallback_title, generate_fallback_advice

TEXT_KEYS = ("text", "message", "response")
AUDIO_MAX_CHARS = 200
OVERLAY_DURATION_MS = 5000

_WINDOWS: dict[str, DeliveryWindow] = {
    InterventionPriority.IMMEDIATE.value: DeliveryWindow.NOW,
    InterventionPriority.HIGH.value: DeliveryWindow.NEXT_ROUND,
    InterventionPriority.MEDIUM.value: DeliveryWindow.NEXT_ROUND,
    InterventionPriority.LOW.value: DeliveryWindow.NEXT_BREAK,
    InterventionPriority.DEFERRED.value: DeliveryWindow.POST_GAME,
}

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def _text_of(output: dict[str, Any] | None) -> str | None:
    if not output:
        return None
    for key in TEXT_KEYS:
        value = output.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def audio_script(message: str, max_chars: int = AUDIO_MAX_CHARS) -> str:
    """Whole sentences from the start of the message, up to max_chars."""
    sentences = _SENTENCE_END.split(message.strip())
    script = ""
    for sentence in sentences:
        candidate = f"{script} {sentence}".strip()
        if len(candidate) > max_chars:
            break
        script = candidate
    return script or message[:max_chars].rstrip()


class OutputFormatter:
    def __init__(self, *, clock: Any = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))

    def format(
        self,
        decision: AIDecision,
        result: ExecutionResult,
        *,
        facts: dict[str, Any] | None = None,
    ) -> CoachingOutput:
        message = None
        for step in reversed(result.chain.steps):
            if step.success:
                message = _text_of(step.output)
                if message:
                    break
        if not message:
            message = generate_fallback_advice(decision.type, facts)

        immediate = decision.priority == InterventionPriority.IMMEDIATE
        when = _WINDOWS.get(decision.priority, DeliveryWindow.NEXT_ROUND)
        title = fallback_title(decision.type)
        return CoachingOutput(
            id=uuid.uuid4().hex,
            decision_id=decision.id,
            match_id=decision.match_id,
            type=decision.type,
            priority=decision.priority,
            title=title,
            message=message,
            details=decision.rationale,
            action_items=self.action_items(decision, result),
            timing=OutputTiming(immediate=immediate, when=when),
            personalization=Personalization(
                player_id=decision.player_id,
                adapted_for_style=decision.personality,
                confidence_level=decision.confidence,
            ),
            audio_script=audio_script(message),
            overlay={
                "enabled": immediate,
                "position": "center" if immediate else "top_right",
                "duration_ms": OVERLAY_DURATION_MS,
                "title": title,
                "priority": decision.priority,
            },
            created_at=self._clock(),
        )

    def action_items(self, decision: AIDecision, result: ExecutionResult) -> list[str]:
        items: list[str] = []
        for step in result.chain.steps:
            if not step.success or not step.output:
                continue
            single = step.output.get("action_item")
            if isinstance(single, str) and single:
                items.append(single)
            many = step.output.get("action_items")
            if isinstance(many, list):
                items.extend(str(i) for i in many if i)
        if not items and decision.tool_chain:
            items.append(f"Follow guidance from {decision.tool_chain[0].tool_name}")
        return list(dict.fromkeys(items))
