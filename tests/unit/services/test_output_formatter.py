"""Unit tests for OutputFormatter and the templated fallback advice."""

from __future__ import annotations

from typing import Any

from coachloop.contracts import (
    AIDecision,
    DecisionType,
    DeliveryWindow,
    ExecutionResult,
    InterventionPriority,
    StepResult,
    ToolChainResult,
    ToolChainStep,
)
from coachloop.core.fallbacks.advice_fallback import generate_fallback_advice
from coachloop.core.services.output_formatter import OutputFormatter, audio_script


def _decision(priority: InterventionPriority = InterventionPriority.IMMEDIATE, **kwargs: Any) -> AIDecision:
    fields: dict[str, Any] = {
        "id": "d1",
        "rule_id": "critical_position_analysis",
        "type": DecisionType.POSITIONING,
        "priority": priority,
        "rationale": "Critically low health (20 HP)",
        "confidence": 0.9,
        "tool_chain": [ToolChainStep(step_id="s1", tool_name="get_game_state")],
        "snapshot_sequence_id": 4,
        "match_id": "m",
        "player_id": "p",
    }
    fields.update(kwargs)
    return AIDecision(**fields)


def _result(*steps: StepResult) -> ExecutionResult:
    succeeded = sum(1 for s in steps if s.success)
    return ExecutionResult(
        decision_id="d1",
        success=succeeded == len(steps),
        chain=ToolChainResult(
            steps=list(steps),
            success_rate=succeeded / len(steps) if steps else 1.0,
            success=succeeded == len(steps),
        ),
    )


def test_message_comes_from_last_successful_text_step(clock) -> None:
    result = _result(
        StepResult(step_id="s1", tool_name="analyze_positioning", success=True, output={"text": "Hold the box."}),
        StepResult(step_id="s2", tool_name="call_llm", success=True, output={"response": " Fall back to CT. "}),
        StepResult(step_id="s3", tool_name="text_to_speech", success=False, error="down"),
    )

    output = OutputFormatter(clock=clock).format(_decision(), result)

    assert output.message == "Fall back to CT."
    assert output.decision_id == "d1"
    assert output.created_at == clock.now
    assert output.timing.immediate
    assert output.timing.when == DeliveryWindow.NOW
    assert output.overlay["enabled"] and output.overlay["position"] == "center"
    assert output.title == "Positioning"


def test_fallback_message_when_no_step_has_text() -> None:
    result = _result(StepResult(step_id="s1", tool_name="get_game_state", success=True, output={"player": {}}))

    output = OutputFormatter().format(_decision(), result, facts={"health": 20})

    assert output.message.startswith("You are on 20 HP.")
    assert output.action_items == ["Follow guidance from get_game_state"]


def test_action_items_are_collected_and_deduplicated() -> None:
    result = _result(
        StepResult(step_id="s1", tool_name="a", success=True, output={"action_item": "Reposition to cover"}),
        StepResult(
            step_id="s2",
            tool_name="b",
            success=True,
            output={"action_items": ["Reposition to cover", "Wait for trade"]},
        ),
        StepResult(step_id="s3", tool_name="c", success=False, output={"action_item": "Ignored"}),
    )

    output = OutputFormatter().format(_decision(), result)

    assert output.action_items == ["Reposition to cover", "Wait for trade"]


def test_delivery_window_follows_priority() -> None:
    formatter = OutputFormatter()
    windows = {
        priority: formatter.format(_decision(priority), _result()).timing.when
        for priority in InterventionPriority
    }

    assert windows[InterventionPriority.HIGH] == DeliveryWindow.NEXT_ROUND
    assert windows[InterventionPriority.LOW] == DeliveryWindow.NEXT_BREAK
    assert windows[InterventionPriority.DEFERRED] == DeliveryWindow.POST_GAME
    low = formatter.format(_decision(InterventionPriority.LOW), _result())
    assert not low.timing.immediate
    assert low.overlay["position"] == "top_right"


def test_personalization_carries_personality_and_confidence() -> None:
    output = OutputFormatter().format(_decision(personality="analytical"), _result())

    assert output.personalization.player_id == "p"
    assert output.personalization.adapted_for_style == "analytical"
    assert output.personalization.confidence_level == 0.9


def test_audio_script_keeps_whole_sentences() -> None:
    message = "Hold the angle. " + "Wait for the flash before peeking. " * 10

    script = audio_script(message, max_chars=60)

    assert script == "Hold the angle. Wait for the flash before peeking."
    assert audio_script("x" * 300, max_chars=50) == "x" * 50


def test_fallback_advice_uses_money_for_economy() -> None:
    assert generate_fallback_advice("economy_advice", {"money": 1200}).startswith("You have $1200.")
    assert generate_fallback_advice("unknown_type") == "Stay with your team and play the objective."
