"""Tool execution results."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from .common import BaseContract, FrozenContract


class ToolResult(BaseContract):
    """What a tool collaborator returns for one invocation."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class StepResult(FrozenContract):
    step_id: str
    tool_name: str
    success: bool
    output: dict[str, Any] | None = None
    execution_time: float = Field(default=0.0, description="Seconds, including retries")
    error: str | None = None
    attempts: int = 0
    used_fallback: bool = False
    skipped: bool = Field(default=False, description="Not run because a dependency failed")


class ToolChainResult(FrozenContract):
    steps: list[StepResult] = Field(default_factory=list)
    total_time: float = 0.0
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    success: bool = False

    def step(self, step_id: str) -> StepResult | None:
        for result in self.steps:
            if result.step_id == step_id:
                return result
        return None


class ExecutionResult(FrozenContract):
    decision_id: str
    success: bool
    chain: ToolChainResult
    tools_used: list[str] = Field(default_factory=list)
    total_time: float = 0.0
    completed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ExecutionStatus(BaseContract):
    """Live view of an in-progress chain."""

    decision_id: str
    running: list[str] = Field(default_factory=list)
    completed: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
