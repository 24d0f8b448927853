"""Exception hierarchy for the coaching loop.

Only whole-chain and startup failures are meant to reach callers of the
orchestrator; everything else is absorbed where it happens and logged.
"""

from __future__ import annotations


class CoachLoopError(Exception):
    """Base class for coaching loop errors."""

    pass


class TelemetryFrameError(CoachLoopError):
    """A raw telemetry frame is malformed or incomplete."""

    pass


class ToolExecutionError(CoachLoopError):
    """A tool reported failure or raised while executing."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name


class ToolTimeoutError(ToolExecutionError):
    """A tool did not answer within its step timeout."""

    def __init__(self, tool_name: str, timeout: float) -> None:
        super().__init__(tool_name, f"timed out after {timeout:.2f}s")
        self.timeout = timeout


class ToolChainValidationError(CoachLoopError):
    """A tool chain is not a valid DAG over registered tools."""

    pass


class ResourceLimitError(CoachLoopError):
    """A concurrency or tool-call cap would be exceeded."""

    pass


class MonitoringError(CoachLoopError):
    """Scoring a monitoring checkpoint failed."""

    def __init__(self, monitoring_id: str, message: str) -> None:
        super().__init__(f"monitoring {monitoring_id}: {message}")
        self.monitoring_id = monitoring_id


class OrchestratorStartupError(CoachLoopError):
    """A core dependency could not be initialized; the orchestrator will not start."""

    pass


class OrchestratorStateError(CoachLoopError):
    """An operation is not valid in the orchestrator's current state."""

    pass
