"""Rolling per-match snapshot history with pattern detection."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from statistics import fmean
from typing import Any

from coachloop.contracts import GameStateSnapshot
from coachloop.core.ports import MemoryPort

logger = logging.getLogger(__name__)

MIN_STATES_FOR_PATTERNS = 10
STATIC_POSITION_SPREAD = 50.0
MAP_CELL_SIZE = 100.0
MIN_DISTINCT_CELLS = 5
BUY_MONEY = 3000
ECO_MONEY = 1500


@dataclass(frozen=True, slots=True)
class ArchivedSnapshot:
    """Compressed form of a snapshot that fell out of the live buffer."""

    sequence_id: int
    timestamp: datetime
    context: str
    round: int
    health: int
    money: int
    kills: int
    deaths: int
    position: tuple[float, float, float]

    @classmethod
    def from_snapshot(cls, snapshot: GameStateSnapshot) -> ArchivedSnapshot:
        player = snapshot.derived.player_state
        return cls(
            sequence_id=snapshot.sequence_id,
            timestamp=snapshot.timestamp,
            context=str(snapshot.derived.context),
            round=snapshot.derived.map_state.round,
            health=player.health,
            money=player.money,
            kills=player.statistics.kills,
            deaths=player.statistics.deaths,
            position=(player.position.x, player.position.y, player.position.z),
        )


@dataclass(frozen=True, slots=True)
class DetectedPattern:
    type: str
    description: str
    frequency: int
    confidence: float
    implications: tuple[str, ...] = field(default_factory=tuple)


def _rising(values: list[float]) -> bool:
    if len(values) < 4:
        return False
    half = len(values) // 2
    first, second = fmean(values[:half]), fmean(values[half:])
    return second > first * 1.1 and second - first > 1e-9


def _falling(values: list[float]) -> bool:
    if len(values) < 4:
        return False
    half = len(values) // 2
    first, second = fmean(values[:half]), fmean(values[half:])
    return second < first * 0.9


class StateHistory:
    """Append-only buffer of snapshots for one match.

    Snapshots must arrive with strictly increasing sequence ids. When the
    buffer is full the oldest snapshot is compressed into the archive, which
    is itself bounded.
    """

    def __init__(
        self,
        *,
        match_id: str,
        max_snapshots: int = 500,
        pattern_window: int = 50,
        max_archive: int = 2000,
    ) -> None:
        self.match_id = match_id
        self._pattern_window = pattern_window
        self._snapshots: deque[GameStateSnapshot] = deque(maxlen=max_snapshots)
        self._archive: deque[ArchivedSnapshot] = deque(maxlen=max_archive)
        self._last_sequence_id = 0

    def __len__(self) -> int:
        return len(self._snapshots)

    @property
    def last_sequence_id(self) -> int:
        return self._last_sequence_id

    @property
    def archive(self) -> list[ArchivedSnapshot]:
        return list(self._archive)

    def append(self, snapshot: GameStateSnapshot) -> bool:
        """Add a snapshot. Returns False (and keeps nothing) when it is out of order."""
        if snapshot.match_id != self.match_id:
            logger.warning(
                "snapshot_wrong_match",
                extra={"expected": self.match_id, "received": snapshot.match_id},
            )
            return False
        if snapshot.sequence_id <= self._last_sequence_id:
            logger.warning(
                "snapshot_out_of_order",
                extra={
                    "match_id": self.match_id,
                    "sequence_id": snapshot.sequence_id,
                    "last_sequence_id": self._last_sequence_id,
                },
            )
            return False

        if self._snapshots.maxlen is not None and len(self._snapshots) == self._snapshots.maxlen:
            self._archive.append(ArchivedSnapshot.from_snapshot(self._snapshots[0]))
        self._snapshots.append(snapshot)
        self._last_sequence_id = snapshot.sequence_id
        return True

    def current(self) -> GameStateSnapshot | None:
        return self._snapshots[-1] if self._snapshots else None

    def previous(self) -> GameStateSnapshot | None:
        return self._snapshots[-2] if len(self._snapshots) > 1 else None

    def recent(self, count: int) -> list[GameStateSnapshot]:
        if count <= 0:
            return []
        return list(self._snapshots)[-count:]

    def clear(self) -> None:
        self._snapshots.clear()
        self._archive.clear()

    # ===== Pattern detection =====

    def detect_patterns(self) -> list[DetectedPattern]:
        states = self.recent(self._pattern_window)
        if len(states) < MIN_STATES_FOR_PATTERNS:
            return []
        patterns: list[DetectedPattern] = []
        patterns.extend(self._behavioral(states))
        patterns.extend(self._tactical(states))
        patterns.extend(self._economic(states))
        patterns.extend(self._positional(states))
        return patterns

    def _behavioral(self, states: list[GameStateSnapshot]) -> list[DetectedPattern]:
        found: list[DetectedPattern] = []
        deaths = [float(s.derived.player_state.statistics.deaths) for s in states]
        if _rising(deaths):
            found.append(
                DetectedPattern(
                    type="behavioral",
                    description="Deaths accumulating faster than earlier in the window",
                    frequency=len(deaths),
                    confidence=0.7,
                    implications=("May lead to overextension", "Could indicate tilt or frustration"),
                )
            )
        efficiency = [
            s.derived.player_state.money / max(1, s.derived.map_state.round) for s in states
        ]
        if _falling(efficiency):
            found.append(
                DetectedPattern(
                    type="behavioral",
                    description="Declining economic efficiency",
                    frequency=len(efficiency),
                    confidence=0.6,
                    implications=("Poor buy decisions", "Need economy coaching"),
                )
            )
        return found

    def _tactical(self, states: list[GameStateSnapshot]) -> list[DetectedPattern]:
        positions = [s.derived.player_state.position for s in states]
        cx = fmean(p.x for p in positions)
        cy = fmean(p.y for p in positions)
        spread = fmean((p.x - cx) ** 2 + (p.y - cy) ** 2 for p in positions) ** 0.5
        if spread >= STATIC_POSITION_SPREAD:
            return []
        return [
            DetectedPattern(
                type="tactical",
                description="Static positioning pattern detected",
                frequency=len(positions),
                confidence=0.8,
                implications=("Predictable play style", "Vulnerable to counter-strategies"),
            )
        ]

    def _economic(self, states: list[GameStateSnapshot]) -> list[DetectedPattern]:
        buy = sum(1 for s in states if s.derived.player_state.money > BUY_MONEY)
        eco = sum(1 for s in states if s.derived.player_state.money < ECO_MONEY)
        if eco <= buy * 1.5:
            return []
        return [
            DetectedPattern(
                type="economic",
                description="Frequent economy rounds pattern",
                frequency=eco,
                confidence=0.7,
                implications=("Poor economic management", "Team coordination issues"),
            )
        ]

    def _positional(self, states: list[GameStateSnapshot]) -> list[DetectedPattern]:
        cells = {
            (
                int(s.derived.player_state.position.x // MAP_CELL_SIZE),
                int(s.derived.player_state.position.y // MAP_CELL_SIZE),
            )
            for s in states
        }
        if len(cells) >= MIN_DISTINCT_CELLS:
            return []
        return [
            DetectedPattern(
                type="positional",
                description="Limited map coverage pattern",
                frequency=len(states),
                confidence=0.6,
                implications=("Not exploring map fully", "Missing opportunities"),
            )
        ]

    # ===== Persistence hooks =====

    def summary(self) -> dict[str, Any]:
        latest = self.current()
        return {
            "match_id": self.match_id,
            "snapshots": len(self._snapshots),
            "archived": len(self._archive),
            "last_sequence_id": self._last_sequence_id,
            "last_context": str(latest.derived.context) if latest else None,
            "patterns": [asdict(p) for p in self.detect_patterns()],
        }

    async def persist(self, memory: MemoryPort, player_id: str) -> str | None:
        """Store a session summary through the memory collaborator."""
        entry = {
            "type": "match_state",
            "player_id": player_id,
            "match_id": self.match_id,
            "tags": ["match_state", f"match_{self.match_id}"],
            "timestamp": datetime.now(UTC).isoformat(),
            "content": self.summary(),
        }
        try:
            return await memory.store(entry)
        except Exception as exc:
            logger.error(
                "Failed to persist state history match=%s: %s", self.match_id, exc, exc_info=True
            )
            return None

    async def load(self, memory: MemoryPort, player_id: str) -> dict[str, Any] | None:
        """Fetch the most recent stored summary for this player, if any."""
        try:
            entries = await memory.get_contextual_memories(player_id, tags=["match_state"], limit=1)
        except Exception as exc:
            logger.warning("State history load failed player=%s: %s", player_id, exc)
            return None
        if not entries:
            return None
        return entries[0].get("content")
