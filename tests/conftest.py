"""Shared fixtures for coaching loop tests.

Frames follow the game-state-integration payload layout. Time is driven by
FakeClock so monitoring windows and cooldowns are deterministic.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
PLAYER_ID = "76561198000000001"


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    def at(self, seconds: float) -> datetime:
        return START + timedelta(seconds=seconds)


def make_frame(
    *,
    steamid: str | None = PLAYER_ID,
    name: str = "s1mple_fan",
    team: str = "CT",
    health: int = 100,
    armor: int = 100,
    money: int = 4750,
    position: str = "-1200.5, 640.0, -167.9",
    kills: int = 0,
    deaths: int = 0,
    assists: int = 0,
    round_kills: int = 0,
    map_name: str | None = "de_mirage",
    map_phase: str = "live",
    round_number: int = 3,
    round_phase: str = "live",
    ct_score: int = 2,
    t_score: int = 1,
    bomb: str | None = None,
    phase_ends_in: float | None = 80.0,
    weapons: dict[str, Any] | None = None,
) -> dict[str, Any]:
    frame: dict[str, Any] = {
        "provider": {"name": "Counter-Strike: Global Offensive", "appid": 730},
        "map": {
            "name": map_name,
            "phase": map_phase,
            "round": round_number,
            "team_ct": {"score": ct_score, "consecutive_round_losses": 0},
            "team_t": {"score": t_score, "consecutive_round_losses": 0},
        },
        "round": {"phase": round_phase},
        "player": {
            "steamid": steamid,
            "name": name,
            "team": team,
            "position": position,
            "state": {
                "health": health,
                "armor": armor,
                "money": money,
                "round_kills": round_kills,
            },
            "match_stats": {"kills": kills, "deaths": deaths, "assists": assists, "mvps": 0, "score": kills * 2},
            "weapons": weapons
            if weapons is not None
            else {
                "weapon_0": {"name": "weapon_knife", "type": "Knife", "state": "holstered"},
                "weapon_1": {"name": "weapon_m4a1", "type": "Rifle", "state": "active"},
            },
        },
    }
    if bomb is not None:
        frame["round"]["bomb"] = bomb
    if phase_ends_in is not None:
        frame["phase_countdowns"] = {"phase": round_phase, "phase_ends_in": str(phase_ends_in)}
    return frame


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def frame():
    """Factory for raw telemetry frames."""
    return make_frame
