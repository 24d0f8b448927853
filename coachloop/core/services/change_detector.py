"""Diff two snapshots into timestamped, significance-scored changes."""

from __future__ import annotations

from coachloop.contracts import GameStateSnapshot, StateChange

HEALTH_DELTA = 10
MOVE_DISTANCE = 100.0


class StateChangeDetector:
    """Compares two snapshots, normally consecutive frames of one match.

    Every change is stamped with the later snapshot's timestamp, so feeding
    the same pair twice produces identical (deduplicable) changes.
    """

    def diff(self, start: GameStateSnapshot, current: GameStateSnapshot) -> list[StateChange]:
        ts = current.timestamp
        before, after = start.derived, current.derived
        changes: list[StateChange] = []

        health_diff = after.player_state.health - before.player_state.health
        if abs(health_diff) > HEALTH_DELTA:
            changes.append(
                StateChange(
                    type="health",
                    description=f"Health changed by {health_diff}",
                    significance=min(abs(health_diff) / 100, 1.0),
                    timestamp=ts,
                )
            )

        distance = after.player_state.position.distance_2d(before.player_state.position)
        if distance > MOVE_DISTANCE:
            changes.append(
                StateChange(
                    type="position",
                    description="Moved to a new position",
                    significance=min(distance / 1000, 1.0),
                    timestamp=ts,
                )
            )

        known = {w.name for w in before.player_state.weapons}
        new_weapons = [w.name for w in after.player_state.weapons if w.name not in known]
        if new_weapons:
            changes.append(
                StateChange(
                    type="weapons",
                    description=f"Weapons changed: {', '.join(new_weapons)}",
                    significance=0.5,
                    timestamp=ts,
                )
            )

        kill_diff = after.player_state.statistics.kills - before.player_state.statistics.kills
        if kill_diff > 0:
            changes.append(
                StateChange(
                    type="combat",
                    description=f"Got {kill_diff} kill(s)",
                    significance=0.8,
                    timestamp=ts,
                )
            )

        score_diff = after.team_state.score - before.team_state.score
        if score_diff:
            changes.append(
                StateChange(
                    type="score",
                    description=f"Score changed by {score_diff}",
                    significance=1.0,
                    timestamp=ts,
                )
            )

        if after.team_state.economy.buy_capability != before.team_state.economy.buy_capability:
            changes.append(
                StateChange(
                    type="economy",
                    description=f"Economy changed to {after.team_state.economy.buy_capability}",
                    significance=0.7,
                    timestamp=ts,
                )
            )

        if after.phase != before.phase:
            changes.append(
                StateChange(
                    type="phase",
                    description=f"Phase changed to {after.phase}",
                    significance=0.8,
                    timestamp=ts,
                )
            )

        if after.map_state.bomb_state != before.map_state.bomb_state:
            changes.append(
                StateChange(
                    type="bomb",
                    description=f"Bomb state changed to {after.map_state.bomb_state}",
                    significance=0.9,
                    timestamp=ts,
                )
            )

        if after.economy_state.round_type != before.economy_state.round_type:
            changes.append(
                StateChange(
                    type="round_type",
                    description=f"Round type changed to {after.economy_state.round_type}",
                    significance=0.7,
                    timestamp=ts,
                )
            )
        return changes
