"""Port interfaces for the coaching loop.

These ports define the contracts between the core loop and its external
collaborators (tool providers, long-term memory, overlay/audio delivery and
positional role inference). All collaborators must implement these interfaces.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from coachloop.contracts import CoachingOutput, PlayerState, RoleAssessment, ToolResult

__all__ = [
    "ToolPort",
    "MemoryPort",
    "DeliveryPort",
    "RoleClassifierPort",
]


class ToolPort(ABC):
    """Port for the tool registry. The core only interprets success, failure and timeout."""

    @abstractmethod
    async def execute(
        self, tool_name: str, payload: dict[str, Any], context: dict[str, Any]
    ) -> ToolResult:
        """Run one tool invocation."""
        pass

    @abstractmethod
    def has_tool(self, tool_name: str) -> bool:
        """Whether the tool is registered."""
        pass

    @abstractmethod
    def list_tools(self) -> list[str]:
        pass


class MemoryPort(ABC):
    """Port for long-term memory. Eventually consistent; reads may return nothing."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True when the store is reachable."""
        pass

    @abstractmethod
    async def get_player_profile(self, player_id: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    async def get_contextual_memories(
        self, player_id: str, *, tags: list[str] | None = None, limit: int = 10
    ) -> list[dict[str, Any]]:
        """Most recent memories for a player, optionally filtered by tags."""
        pass

    @abstractmethod
    async def store(self, entry: dict[str, Any]) -> str:
        """Persist an entry and return its id."""
        pass

    @abstractmethod
    async def update(self, entry_id: str, changes: dict[str, Any]) -> bool:
        """Merge changes into an entry. Returns False when the entry is unknown."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class DeliveryPort(ABC):
    """Port for overlay/audio consumers of finished coaching outputs."""

    @abstractmethod
    async def deliver(self, output: CoachingOutput) -> bool:
        pass


class RoleClassifierPort(ABC):
    """Pluggable positional role inference (entry, lurker, anchor, ...)."""

    @abstractmethod
    def classify(self, player: PlayerState, raw: dict[str, Any]) -> RoleAssessment:
        pass
