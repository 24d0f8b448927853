"""Turn raw game-state-integration frames into normalized snapshots."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from coachloop.contracts import (
    ContextChange,
    DerivedState,
    EconomyState,
    FactorKind,
    GameContext,
    GameStateSnapshot,
    MapState,
    PlayerState,
    PlayerStatistics,
    Severity,
    SituationalFactor,
    TeamEconomy,
    TeamState,
    Vector3,
    WeaponInfo,
)
from coachloop.core.errors import TelemetryFrameError
from coachloop.core.ports import RoleClassifierPort

logger = logging.getLogger(__name__)

LOW_HEALTH = 30
HEAVY_DAMAGE = 50
LOW_MONEY = 1000
MIN_RELEVANCE = 0.3
LEARNING_KEYWORDS = ("mistake", "improvement", "opportunity")

_WEAPON_CATEGORIES = {
    "rifle": "rifle",
    "sniperrifle": "sniper",
    "pistol": "pistol",
    "submachine gun": "smg",
    "shotgun": "shotgun",
    "machine gun": "heavy",
    "grenade": "grenade",
    "knife": "knife",
    "c4": "bomb",
}


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_position(value: Any) -> Vector3:
    if isinstance(value, str):
        parts = [_as_float(p) for p in value.split(",")]
    elif isinstance(value, (list, tuple)):
        parts = [_as_float(p) for p in value]
    else:
        return Vector3()
    coords = [p if p is not None else 0.0 for p in parts[:3]]
    coords += [0.0] * (3 - len(coords))
    return Vector3(x=coords[0], y=coords[1], z=coords[2])


def classify_money(amount: float) -> str:
    """Bucket a per-player money amount into a buy class."""
    if amount < 2000:
        return "eco"
    if amount < 3500:
        return "semi_eco"
    if amount < 4500:
        return "force"
    return "full"


def _win_streak(round_wins: dict[str, str] | None, side: str) -> int:
    if not round_wins:
        return 0
    ordered = sorted(round_wins.items(), key=lambda kv: int(kv[0]) if str(kv[0]).isdigit() else 0)
    streak = 0
    prefix = side.lower()
    for _, outcome in reversed(ordered):
        if str(outcome).lower().startswith(prefix):
            streak += 1
        else:
            break
    return streak


class StateSnapshotBuilder:
    """Builds one `GameStateSnapshot` per frame for a single match.

    Sequence ids increase by one for every frame that produces a snapshot.
    Frames missing the player id or map name yield None and must be skipped
    by the caller.
    """

    def __init__(
        self,
        *,
        match_id: str,
        role_classifier: RoleClassifierPort | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._match_id = match_id
        self._role_classifier = role_classifier
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sequence = 0

    @property
    def last_sequence_id(self) -> int:
        return self._sequence

    def build(
        self, raw: dict[str, Any], previous: GameStateSnapshot | None = None
    ) -> GameStateSnapshot | None:
        try:
            derived = self._derive(raw, previous)
        except TelemetryFrameError as exc:
            logger.debug("telemetry_frame_skipped", extra={"reason": str(exc)})
            return None
        except (ValidationError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(
                "telemetry_frame_malformed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return None

        self._sequence += 1
        return GameStateSnapshot(
            match_id=self._match_id,
            sequence_id=self._sequence,
            timestamp=self._clock(),
            raw=raw,
            derived=derived,
        )

    def detect_context_change(
        self, current: GameStateSnapshot, previous: GameStateSnapshot | None
    ) -> ContextChange:
        """Describe phase/round transitions between two consecutive snapshots."""
        if previous is None:
            return ContextChange(contexts=[current.derived.context], urgency="low")

        changes: list[dict[str, Any]] = []
        contexts = [current.derived.context]
        if previous.derived.context != current.derived.context:
            contexts.insert(0, previous.derived.context)
        if current.derived.phase != previous.derived.phase:
            changes.append(
                {
                    "type": "phase_change",
                    "from": previous.derived.phase,
                    "to": current.derived.phase,
                    "significance": "high",
                }
            )
        if current.derived.map_state.round != previous.derived.map_state.round:
            changes.append(
                {
                    "type": "round_change",
                    "from": previous.derived.map_state.round,
                    "to": current.derived.map_state.round,
                    "significance": "critical",
                }
            )

        urgency = "medium"
        if any(c["significance"] == "critical" for c in changes):
            urgency = "critical"
        elif any(c["significance"] == "high" for c in changes):
            urgency = "high"
        return ContextChange(contexts=contexts, changes=changes, urgency=urgency)

    # ===== Frame parsing =====

    def _derive(self, raw: dict[str, Any], previous: GameStateSnapshot | None) -> DerivedState:
        if not isinstance(raw, dict):
            raise TelemetryFrameError("frame is not an object")
        player_raw = raw.get("player") or {}
        map_raw = raw.get("map") or {}
        player_id = player_raw.get("steamid")
        map_name = map_raw.get("name")
        if not player_id:
            raise TelemetryFrameError("missing player id")
        if not map_name:
            raise TelemetryFrameError("missing map name")

        round_raw = raw.get("round") or {}
        countdowns = raw.get("phase_countdowns") or {}
        round_phase = round_raw.get("phase") or countdowns.get("phase") or map_raw.get("phase") or "unknown"

        player = self._player_state(player_raw)
        team = self._team_state(raw, player)
        map_state = self._map_state(raw, map_name.replace("de_", ""))
        economy = self._economy_state(raw, map_state, team)
        time_remaining = self._time_remaining(raw)

        factors = self._situational_factors(
            raw, player, team, map_state, round_phase, time_remaining, previous
        )
        if self._role_classifier is not None:
            assessment = self._role_classifier.classify(player, raw)
            player = player.model_copy(update={"role": assessment.role})
            factors.extend(assessment.risks)
        factors = [f for f in factors if f.relevance > MIN_RELEVANCE]

        context = self._context(map_raw, countdowns, round_phase, economy, factors)
        return DerivedState(
            context=context,
            phase=round_phase,
            time_remaining=time_remaining,
            player_state=player,
            team_state=team,
            map_state=map_state,
            economy_state=economy,
            situational_factors=factors,
        )

    def _context(
        self,
        map_raw: dict[str, Any],
        countdowns: dict[str, Any],
        round_phase: str,
        economy: EconomyState,
        factors: list[SituationalFactor],
    ) -> GameContext:
        # Critical factors override whatever phase the round is in
        if any(f.severity == Severity.CRITICAL for f in factors):
            return GameContext.CRITICAL_SITUATION

        map_phase = map_raw.get("phase")
        if map_phase == "gameover":
            return GameContext.MATCH_END
        if map_phase == "intermission":
            return GameContext.INTERMISSION
        if str(countdowns.get("phase", "")).startswith("timeout"):
            return GameContext.TACTICAL_TIMEOUT
        if round_phase == "over":
            return GameContext.ROUND_END
        if round_phase == "freezetime":
            if economy.round_type in ("eco", "semi_eco"):
                return GameContext.ECONOMY_PHASE
            return GameContext.ROUND_START
        if any(any(k in f.description.lower() for k in LEARNING_KEYWORDS) for f in factors):
            return GameContext.LEARNING_OPPORTUNITY
        return GameContext.MID_ROUND

    def _player_state(self, player_raw: dict[str, Any]) -> PlayerState:
        state = player_raw.get("state") or {}
        stats = player_raw.get("match_stats") or {}
        weapons: list[WeaponInfo] = []
        for weapon in (player_raw.get("weapons") or {}).values():
            if not isinstance(weapon, dict) or not weapon.get("name"):
                continue
            weapons.append(
                WeaponInfo(
                    name=weapon["name"],
                    category=_WEAPON_CATEGORIES.get(str(weapon.get("type", "")).lower(), "other"),
                    active=weapon.get("state") == "active",
                )
            )

        kills = int(stats.get("kills", 0) or 0)
        deaths = int(stats.get("deaths", 0) or 0)
        assists = int(stats.get("assists", 0) or 0)
        statistics = PlayerStatistics(
            kills=kills,
            deaths=deaths,
            assists=assists,
            mvps=int(stats.get("mvps", 0) or 0),
            score=int(stats.get("score", 0) or 0),
            round_kills=int(state.get("round_kills", 0) or 0),
            rating=round((kills + 0.5 * assists) / max(deaths, 1), 2),
        )
        side = player_raw.get("team") if player_raw.get("team") in ("T", "CT") else "CT"
        return PlayerState(
            player_id=str(player_raw["steamid"]),
            name=player_raw.get("name") or "Unknown Player",
            side=side,
            health=int(state.get("health", 0) or 0),
            armor=int(state.get("armor", 0) or 0),
            money=int(state.get("money", 0) or 0),
            position=_parse_position(player_raw.get("position")),
            weapons=weapons,
            statistics=statistics,
        )

    def _team_state(self, raw: dict[str, Any], player: PlayerState) -> TeamState:
        map_raw = raw.get("map") or {}
        own_key, enemy_key = ("team_ct", "team_t") if player.side == "CT" else ("team_t", "team_ct")
        own = map_raw.get(own_key) or {}
        enemy = map_raw.get(enemy_key) or {}

        alive, enemy_alive = 5, 5
        teammates_money: list[int] = []
        allplayers = raw.get("allplayers")
        if isinstance(allplayers, dict) and allplayers:
            alive = enemy_alive = 0
            for entry in allplayers.values():
                pstate = entry.get("state") or {}
                is_alive = int(pstate.get("health", 0) or 0) > 0
                if entry.get("team") == player.side:
                    alive += int(is_alive)
                    teammates_money.append(int(pstate.get("money", 0) or 0))
                else:
                    enemy_alive += int(is_alive)
        if not teammates_money:
            teammates_money = [player.money]

        total = sum(teammates_money)
        average = total / len(teammates_money)
        return TeamState(
            side=player.side,
            score=int(own.get("score", 0) or 0),
            enemy_score=int(enemy.get("score", 0) or 0),
            consecutive_round_wins=_win_streak(map_raw.get("round_wins"), player.side),
            alive_players=alive,
            enemy_alive_players=enemy_alive,
            economy=TeamEconomy(
                total_money=total,
                average_money=average,
                buy_capability=classify_money(average),
            ),
        )

    def _map_state(self, raw: dict[str, Any], name: str) -> MapState:
        map_raw = raw.get("map") or {}
        bomb_raw = raw.get("bomb") or {}
        round_raw = raw.get("round") or {}
        bomb_state = bomb_raw.get("state") or round_raw.get("bomb") or "unknown"
        if bomb_state not in ("carried", "dropped", "planted", "defused", "exploded"):
            bomb_state = "planted" if bomb_state == "planting" else "unknown"
        return MapState(
            name=name,
            round=int(map_raw.get("round", 0) or 0),
            phase=map_raw.get("phase") or "unknown",
            bomb_state=bomb_state,
            bomb_countdown=_as_float(bomb_raw.get("countdown")),
        )

    def _economy_state(self, raw: dict[str, Any], map_state: MapState, team: TeamState) -> EconomyState:
        if map_state.round == 0:
            round_type = "pistol"
        else:
            round_type = team.economy.buy_capability

        map_raw = raw.get("map") or {}
        enemy_key = "team_t" if team.side == "CT" else "team_ct"
        losses = int((map_raw.get(enemy_key) or {}).get("consecutive_round_losses", 0) or 0)
        own_key = "team_ct" if team.side == "CT" else "team_t"
        own_losses = int((map_raw.get(own_key) or {}).get("consecutive_round_losses", 0) or 0)
        if losses >= 3 > own_losses:
            advantage = "advantage"
        elif own_losses >= 3 > losses:
            advantage = "disadvantage"
        else:
            advantage = "balanced"
        return EconomyState(round_type=round_type, team_advantage=advantage)

    def _time_remaining(self, raw: dict[str, Any]) -> float | None:
        countdowns = raw.get("phase_countdowns") or {}
        remaining = _as_float(countdowns.get("phase_ends_in"))
        if remaining is not None:
            return remaining
        return _as_float((raw.get("bomb") or {}).get("countdown"))

    def _situational_factors(
        self,
        raw: dict[str, Any],
        player: PlayerState,
        team: TeamState,
        map_state: MapState,
        round_phase: str,
        time_remaining: float | None,
        previous: GameStateSnapshot | None,
    ) -> list[SituationalFactor]:
        factors: list[SituationalFactor] = []
        live = round_phase == "live"
        bomb_planted = map_state.bomb_state == "planted"

        # Tactical
        if bomb_planted:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.TACTICAL,
                    description="Bomb planted - time pressure increasing",
                    severity=Severity.HIGH,
                    relevance=0.9,
                    action_required=True,
                )
            )
        if live and team.alive_players < team.enemy_alive_players:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.TACTICAL,
                    description=f"Numerical disadvantage {team.alive_players}v{team.enemy_alive_players}",
                    severity=Severity.MEDIUM,
                    relevance=0.7,
                )
            )

        # Economic
        if round_phase == "freezetime" and player.money < LOW_MONEY:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.ECONOMIC,
                    description="Low personal economy - eco round likely",
                    severity=Severity.MEDIUM,
                    relevance=0.6,
                )
            )

        # Psychological
        if team.consecutive_round_wins >= 3:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.PSYCHOLOGICAL,
                    description="Team momentum positive",
                    severity=Severity.LOW,
                    relevance=0.4,
                )
            )
        stats = player.statistics
        if live and stats.round_kills >= 3:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.PSYCHOLOGICAL,
                    description="Multi-kill round - opportunity to reinforce what worked",
                    severity=Severity.LOW,
                    relevance=0.5,
                )
            )
        if live and stats.deaths - stats.kills >= 3:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.PSYCHOLOGICAL,
                    description="Repeated deaths without trades - improvement needed",
                    severity=Severity.MEDIUM,
                    relevance=0.6,
                )
            )

        # Positional
        if live and 0 < player.health < LOW_HEALTH:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.POSITIONAL,
                    description=f"Critically low health ({player.health} HP)",
                    severity=Severity.CRITICAL,
                    relevance=0.95,
                    action_required=True,
                )
            )
        if previous is not None and player.health > 0:
            prev = previous.derived
            same_round = prev.map_state.round == map_state.round
            drop = prev.player_state.health - player.health
            if same_round and drop >= HEAVY_DAMAGE:
                factors.append(
                    SituationalFactor(
                        kind=FactorKind.POSITIONAL,
                        description=f"Heavy damage taken ({prev.player_state.health}->{player.health} HP)",
                        severity=Severity.CRITICAL,
                        relevance=0.9,
                        action_required=True,
                    )
                )

        # Temporal
        if bomb_planted and map_state.bomb_countdown is not None and map_state.bomb_countdown < 10:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.TEMPORAL,
                    description="Bomb about to detonate",
                    severity=Severity.CRITICAL,
                    relevance=0.95,
                    action_required=True,
                )
            )
        elif (live or bomb_planted) and time_remaining is not None and time_remaining < 30:
            factors.append(
                SituationalFactor(
                    kind=FactorKind.TEMPORAL,
                    description="Low time remaining - decisions need to be quick",
                    severity=Severity.HIGH,
                    relevance=0.8,
                    action_required=True,
                )
            )
        return factors
