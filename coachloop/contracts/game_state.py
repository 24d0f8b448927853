"""Normalized game state built from one raw telemetry frame."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from .common import FactorKind, FrozenContract, GameContext, Severity


class Vector3(FrozenContract):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def distance_2d(self, other: Vector3) -> float:
        return ((self.x - other.x) ** 2 + (self.y - other.y) ** 2) ** 0.5


class WeaponInfo(FrozenContract):
    name: str
    category: str = Field(default="other", description="rifle, pistol, smg, sniper, grenade, ...")
    active: bool = False


class PlayerStatistics(FrozenContract):
    kills: int = 0
    deaths: int = 0
    assists: int = 0
    mvps: int = 0
    score: int = 0
    round_kills: int = 0
    adr: float = 0.0
    rating: float = Field(default=1.0, description="Kill/death based rating estimate")


class PlayerState(FrozenContract):
    player_id: str
    name: str = "Unknown Player"
    side: Literal["T", "CT"] = "CT"
    health: int = Field(default=0, ge=0, le=100)
    armor: int = Field(default=0, ge=0, le=100)
    money: int = Field(default=0, ge=0)
    position: Vector3 = Field(default_factory=Vector3)
    weapons: list[WeaponInfo] = Field(default_factory=list)
    statistics: PlayerStatistics = Field(default_factory=PlayerStatistics)
    role: str | None = Field(default=None, description="Inferred role (entry, lurker, anchor, ...)")
    risk_factors: list[str] = Field(default_factory=list)


class TeamEconomy(FrozenContract):
    total_money: int = 0
    average_money: float = 0.0
    buy_capability: Literal["full", "force", "semi_eco", "eco"] = "full"


class TeamState(FrozenContract):
    side: Literal["T", "CT"] = "CT"
    score: int = 0
    enemy_score: int = 0
    consecutive_round_wins: int = 0
    alive_players: int = 5
    enemy_alive_players: int = 5
    economy: TeamEconomy = Field(default_factory=TeamEconomy)
    strategy: str = "default"
    communication_activity: float = Field(default=1.0, ge=0.0, le=1.0)


class MapState(FrozenContract):
    name: str
    round: int = 0
    phase: str = "unknown"
    bomb_state: Literal["carried", "dropped", "planted", "defused", "exploded", "unknown"] = "unknown"
    bomb_countdown: float | None = None


class EconomyState(FrozenContract):
    round_type: Literal["full", "force", "semi_eco", "eco", "pistol"] = "full"
    team_advantage: Literal["advantage", "balanced", "disadvantage"] = "balanced"


class SituationalFactor(FrozenContract):
    """Risk or urgency signal derived from a frame."""

    kind: FactorKind
    description: str
    severity: Severity
    relevance: float = Field(ge=0.0, le=1.0)
    action_required: bool = False


class DerivedState(FrozenContract):
    context: GameContext
    phase: str
    time_remaining: float | None = None
    player_state: PlayerState
    team_state: TeamState
    map_state: MapState
    economy_state: EconomyState
    situational_factors: list[SituationalFactor] = Field(default_factory=list)

    def has_severity(self, severity: Severity | str) -> bool:
        return any(f.severity == severity for f in self.situational_factors)


class GameStateSnapshot(FrozenContract):
    """One normalized telemetry frame. Immutable once built."""

    match_id: str
    sequence_id: int = Field(ge=1)
    timestamp: datetime
    raw: dict[str, Any] = Field(default_factory=dict)
    derived: DerivedState


class ContextChange(FrozenContract):
    contexts: list[GameContext]
    changes: list[dict[str, Any]] = Field(default_factory=list)
    urgency: Literal["low", "medium", "high", "critical"] = "low"


class RoleAssessment(FrozenContract):
    """Output of a pluggable role classifier."""

    role: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    risks: list[SituationalFactor] = Field(default_factory=list)
