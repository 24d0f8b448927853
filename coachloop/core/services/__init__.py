"""Service layer of the coaching loop.

Each stage of telemetry -> decision -> execution -> delivery -> monitoring ->
learning lives in its own service; the orchestrator wires them together.
"""

from coachloop.core.services.decision_engine import DecisionEngine
from coachloop.core.services.effectiveness_monitor import EffectivenessMonitor
from coachloop.core.services.event_stream import EventStream, Subscription
from coachloop.core.services.feedback_loop import FeedbackLoop
from coachloop.core.services.orchestrator import Orchestrator
from coachloop.core.services.output_formatter import OutputFormatter
from coachloop.core.services.personality_selector import PersonalitySelector
from coachloop.core.services.snapshot_builder import StateSnapshotBuilder
from coachloop.core.services.state_history import StateHistory
from coachloop.core.services.tool_executor import SharedInvocations, ToolExecutor

__all__ = [
    "DecisionEngine",
    "EffectivenessMonitor",
    "EventStream",
    "FeedbackLoop",
    "Orchestrator",
    "OutputFormatter",
    "PersonalitySelector",
    "SharedInvocations",
    "StateHistory",
    "StateSnapshotBuilder",
    "Subscription",
    "ToolExecutor",
]
