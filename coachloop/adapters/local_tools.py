"""Deterministic built-in tools that run without any external service.

These cover the offline half of the tool catalogue: game-state lookup,
positional analysis, buy suggestions, profile updates and conversation
summaries. LLM, speech and remote stats are served by RemoteToolClient.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from coachloop.adapters.tool_registry import LocalToolRegistry
from coachloop.contracts import GameStateSnapshot
from coachloop.core.ports import MemoryPort
from coachloop.core.services.decision_rules import (
    ANALYZE_POSITIONING,
    GET_GAME_STATE,
    SUGGEST_ECONOMY_BUY,
    SUMMARIZE_CONVERSATION,
    UPDATE_PLAYER_PROFILE,
)

logger = logging.getLogger(__name__)

FULL_BUY = 4750
FORCE_BUY = 3000
SEMI_ECO = 2000

StateProvider = Callable[[], "GameStateSnapshot | None"]


def suggest_buy(player_money: int, round_type: str) -> dict[str, Any]:
    if round_type == "pistol":
        return {
            "buy": "pistol_round",
            "text": "Pistol round: armor and a utility grenade beat an upgraded pistol.",
            "action_item": "Buy kevlar and one flash",
        }
    if player_money >= FULL_BUY:
        return {
            "buy": "full",
            "text": "Full buy: rifle, armor and a full utility set.",
            "action_item": "Buy rifle, armor and utility",
        }
    if player_money >= FORCE_BUY:
        return {
            "buy": "force",
            "text": "You can force: rifle or SMG with armor, skip extra utility.",
            "action_item": "Buy armor and an SMG",
        }
    if player_money >= SEMI_ECO:
        return {
            "buy": "semi_eco",
            "text": "Semi-eco: armor and a pistol upgrade, keep money for next round.",
            "action_item": "Buy armor only",
        }
    return {
        "buy": "eco",
        "text": "Save this round so the team can full buy next round.",
        "action_item": "Save your money",
    }


def positioning_advice(payload: dict[str, Any]) -> dict[str, Any]:
    role = payload.get("role") or "rifler"
    map_name = payload.get("map") or "this map"
    if role in ("entry", "entry_fragger"):
        text = f"Wait for a flash before you take the next duel on {map_name}."
        item = "Entry with utility support"
    elif role in ("anchor", "lurker"):
        text = "Fall back to a covered angle and play for the retake."
        item = "Hold a safer angle"
    else:
        text = "Fall back behind cover near a teammate so your duel can be traded."
        item = "Reposition to cover"
    return {"text": text, "action_item": item, "role": role}


class LocalTools:
    """Bundle of built-in tool handlers bound to a memory store and a state source."""

    def __init__(
        self, *, memory: MemoryPort | None = None, state_provider: StateProvider | None = None
    ) -> None:
        self._memory = memory
        self._state_provider = state_provider

    def register_all(self, registry: LocalToolRegistry) -> LocalToolRegistry:
        registry.register(GET_GAME_STATE, self.get_game_state)
        registry.register(ANALYZE_POSITIONING, self.analyze_positioning)
        registry.register(SUGGEST_ECONOMY_BUY, self.suggest_economy_buy)
        registry.register(UPDATE_PLAYER_PROFILE, self.update_player_profile)
        registry.register(SUMMARIZE_CONVERSATION, self.summarize_conversation)
        return registry

    async def get_game_state(self, payload: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        snapshot = self._state_provider() if self._state_provider else None
        if snapshot is None:
            return {"available": False, "sequence_id": payload.get("sequence_id")}
        derived = snapshot.derived
        return {
            "available": True,
            "sequence_id": snapshot.sequence_id,
            "context": derived.context,
            "phase": derived.phase,
            "player": derived.player_state.model_dump(mode="json"),
            "round": derived.map_state.round,
            "map": derived.map_state.name,
        }

    async def analyze_positioning(
        self, payload: dict[str, Any], context: dict[str, Any]
    ) -> dict[str, Any]:
        return positioning_advice(payload)

    async def suggest_economy_buy(
        self, payload: dict[str, Any], context: dict[str, Any]
    ) -> dict[str, Any]:
        return suggest_buy(int(payload.get("player_money", 0)), str(payload.get("round_type", "full")))

    async def update_player_profile(
        self, payload: dict[str, Any], context: dict[str, Any]
    ) -> dict[str, Any]:
        if self._memory is None:
            return {"updated": False}
        entry_id = await self._memory.store(
            {
                "type": "player_profile",
                "player_id": payload.get("player_id"),
                "tags": ["player_profile", str(payload.get("update_type", "performance"))],
                "content": {"statistics": payload.get("statistics", {})},
            }
        )
        return {"updated": True, "entry_id": entry_id}

    async def summarize_conversation(
        self, payload: dict[str, Any], context: dict[str, Any]
    ) -> dict[str, Any]:
        history = payload.get("history") or []
        messages = [str(h.get("message")) for h in history if isinstance(h, dict) and h.get("message")]
        if not messages:
            return {"summary": "", "count": 0}
        return {
            "summary": " / ".join(messages[-3:]),
            "count": len(messages),
        }


def build_local_registry(
    *, memory: MemoryPort | None = None, state_provider: StateProvider | None = None
) -> LocalToolRegistry:
    return LocalTools(memory=memory, state_provider=state_provider).register_all(LocalToolRegistry())
