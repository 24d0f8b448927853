"""Fallback advice used when no tool in a chain produced text.

KISS: deterministic, template-based, one line per decision type. No external
calls, no randomness.
"""

from __future__ import annotations

from typing import Any

_TEMPLATES: dict[str, str] = {
    "positioning_advice": "Fall back to a safer angle and wait for a teammate to trade.",
    "economy_advice": "Coordinate the buy with your team and keep enough for next round.",
    "performance_feedback": "Review your last deaths and avoid repeating the same peek.",
    "tactical_advice": "Play for information first and commit only with utility support.",
    "mental_coaching": "Reset after this round. Focus on the next fight, not the score.",
    "learning_insight": "Note what worked this round and look for it again next round.",
}

_TITLES: dict[str, str] = {
    "positioning_advice": "Positioning",
    "economy_advice": "Economy",
    "performance_feedback": "Performance Review",
    "tactical_advice": "Tactics",
    "mental_coaching": "Mindset",
    "learning_insight": "Learning Insight",
}


def fallback_title(decision_type: str) -> str:
    return _TITLES.get(decision_type, "Coaching Tip")


def generate_fallback_advice(decision_type: str, facts: dict[str, Any] | None = None) -> str:
    """Return a short advice line for the decision type.

    `facts` may carry `health` and `money`; when health is critically low the
    advice leads with it regardless of type.
    """
    facts = facts or {}
    base = _TEMPLATES.get(decision_type, "Stay with your team and play the objective.")
    health = facts.get("health")
    if isinstance(health, int) and 0 < health < 30:
        return f"You are on {health} HP. {base}"
    money = facts.get("money")
    if decision_type == "economy_advice" and isinstance(money, int):
        return f"You have ${money}. {base}"
    return base
