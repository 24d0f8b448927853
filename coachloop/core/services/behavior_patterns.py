"""Registry of behaviour patterns used to classify observed state changes."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from coachloop.config.settings import get_settings
from coachloop.contracts import BehaviorPattern

logger = logging.getLogger(__name__)

_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("movement", ("position", "angle")),
    ("combat", ("kill", "damage")),
    ("economy", ("buy", "money")),
    ("utility", ("flash", "smoke")),
    ("teamplay", ("team", "support")),
)


def default_patterns() -> list[BehaviorPattern]:
    return [
        BehaviorPattern(category="movement", pattern=r"moved to (better|safer) position", confidence=0.8, impact=0.6),
        BehaviorPattern(category="movement", pattern=r"exposed to enemy fire", confidence=0.7, impact=-0.5),
        BehaviorPattern(category="combat", pattern=r"successful trade", confidence=0.9, impact=0.7),
        BehaviorPattern(category="combat", pattern=r"died without dealing damage", confidence=0.8, impact=-0.6),
        BehaviorPattern(category="economy", pattern=r"efficient buy", confidence=0.7, impact=0.5),
        BehaviorPattern(category="economy", pattern=r"overspent", confidence=0.6, impact=-0.4),
        BehaviorPattern(category="utility", pattern=r"effective (flash|smoke|molotov)", confidence=0.8, impact=0.6),
        BehaviorPattern(category="utility", pattern=r"wasted utility", confidence=0.7, impact=-0.4),
        BehaviorPattern(category="teamplay", pattern=r"good trade support", confidence=0.8, impact=0.7),
        BehaviorPattern(category="teamplay", pattern=r"failed to support team", confidence=0.7, impact=-0.5),
        # Vocabulary of the state change detector
        BehaviorPattern(category="movement", pattern=r"moved to a new position", confidence=0.5, impact=0.2),
        BehaviorPattern(category="combat", pattern=r"got \d+ kill", confidence=0.8, impact=0.6),
        BehaviorPattern(category="combat", pattern=r"health changed by -\d+", confidence=0.6, impact=-0.4),
        BehaviorPattern(category="economy", pattern=r"economy changed to full", confidence=0.6, impact=0.4),
        BehaviorPattern(category="teamplay", pattern=r"score changed by [1-9]", confidence=0.6, impact=0.5),
    ]


@dataclass(frozen=True, slots=True)
class BehaviorMatch:
    category: str
    pattern: str
    confidence: float
    impact: float

    @property
    def positive(self) -> bool:
        return self.impact > 0


def categorize(pattern_text: str) -> str:
    """Bucket raw pattern text into a category by keyword."""
    text = pattern_text.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(word in text for word in keywords):
            return category
    return "general"


class BehaviorPatternRegistry:
    """Patterns keyed by category; weights move by exponential moving average."""

    def __init__(
        self,
        *,
        patterns: list[BehaviorPattern] | None = None,
        learning_rate: float | None = None,
    ) -> None:
        self._alpha = (
            learning_rate if learning_rate is not None else get_settings().feedback_learning_rate
        )
        self._patterns: dict[str, list[BehaviorPattern]] = {}
        self._compiled: dict[str, re.Pattern[str]] = {}
        for pattern in patterns if patterns is not None else default_patterns():
            self._add(pattern)

    def categories(self) -> list[str]:
        return list(self._patterns)

    def patterns(self, category: str | None = None) -> list[BehaviorPattern]:
        if category is not None:
            return [p.model_copy() for p in self._patterns.get(category, [])]
        return [p.model_copy() for group in self._patterns.values() for p in group]

    def update(self, pattern: str, *, confidence: float, impact: float) -> BehaviorPattern:
        """Blend an observation into an existing pattern, or register a new one."""
        category = categorize(pattern)
        existing = self._find(category, pattern)
        if existing is None:
            created = BehaviorPattern(
                category=category,
                pattern=pattern,
                confidence=max(0.0, min(1.0, confidence)),
                impact=max(-1.0, min(1.0, impact)),
            )
            self._add(created)
            logger.debug("behavior_pattern_added", extra={"category": category, "pattern": pattern})
            return created.model_copy()

        alpha = self._alpha
        existing.confidence = max(0.0, min(1.0, existing.confidence * (1 - alpha) + confidence * alpha))
        existing.impact = max(-1.0, min(1.0, existing.impact * (1 - alpha) + impact * alpha))
        return existing.model_copy()

    def classify(self, description: str, significance: float = 1.0) -> list[BehaviorMatch]:
        """Match a change description against every pattern, scaled by the change's significance."""
        matches: list[BehaviorMatch] = []
        for category, group in self._patterns.items():
            for pattern in group:
                if self._compiled[pattern.pattern].search(description):
                    pattern.occurrences += 1
                    matches.append(
                        BehaviorMatch(
                            category=category,
                            pattern=pattern.pattern,
                            confidence=pattern.confidence * significance,
                            impact=pattern.impact * significance,
                        )
                    )
        return matches

    def _find(self, category: str, pattern: str) -> BehaviorPattern | None:
        for candidate in self._patterns.get(category, []):
            if candidate.pattern == pattern:
                return candidate
        for group in self._patterns.values():
            for candidate in group:
                if candidate.pattern == pattern:
                    return candidate
        return None

    def _add(self, pattern: BehaviorPattern) -> None:
        self._compiled[pattern.pattern] = re.compile(pattern.pattern, re.IGNORECASE)
        self._patterns.setdefault(pattern.category, []).append(pattern)
