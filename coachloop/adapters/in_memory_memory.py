"""Process-local long-term memory implementing MemoryPort."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from coachloop.core.ports import MemoryPort

logger = logging.getLogger(__name__)


class InMemoryMemory(MemoryPort):
    """Dict-backed memory store.

    Entries are plain dicts with optional ``player_id``, ``tags`` and
    ``timestamp`` keys. Profiles are the latest ``player_profile`` entry
    for a player merged with anything set via ``set_player_profile``.
    """

    def __init__(self, *, max_entries: int = 10_000) -> None:
        self._entries: dict[str, dict[str, Any]] = {}
        self._profiles: dict[str, dict[str, Any]] = {}
        self._max_entries = max_entries
        self.healthy = True

    def __len__(self) -> int:
        return len(self._entries)

    async def health_check(self) -> bool:
        return self.healthy

    def set_player_profile(self, player_id: str, profile: dict[str, Any]) -> None:
        self._profiles[player_id] = dict(profile)

    async def get_player_profile(self, player_id: str) -> dict[str, Any] | None:
        profile = dict(self._profiles.get(player_id, {}))
        latest = next(
            (
                e
                for e in reversed(list(self._entries.values()))
                if e.get("type") == "player_profile" and e.get("player_id") == player_id
            ),
            None,
        )
        if latest is not None:
            profile.update(latest.get("content") or {})
        return profile or None

    async def get_contextual_memories(
        self, player_id: str, *, tags: list[str] | None = None, limit: int = 10
    ) -> list[dict[str, Any]]:
        wanted = set(tags or [])
        matches = [
            dict(e)
            for e in self._entries.values()
            if e.get("player_id") == player_id and (not wanted or wanted & set(e.get("tags", [])))
        ]
        matches.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
        return matches[:limit]

    async def store(self, entry: dict[str, Any]) -> str:
        entry_id = str(entry.get("id") or uuid.uuid4().hex)
        stored = {**entry, "id": entry_id}
        stored.setdefault("timestamp", datetime.now(UTC).isoformat())
        self._entries[entry_id] = stored
        while len(self._entries) > self._max_entries:
            self._entries.pop(next(iter(self._entries)))
        return entry_id

    async def update(self, entry_id: str, changes: dict[str, Any]) -> bool:
        entry = self._entries.get(entry_id)
        if entry is None:
            return False
        entry.update({k: v for k, v in changes.items() if k != "id"})
        return True

    async def clear(self) -> None:
        self._entries.clear()
        self._profiles.clear()
        logger.info("memory_cleared")
