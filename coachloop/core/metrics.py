"""
Prometheus metrics for the coaching loop.

Metric definitions live here so services only call the small helpers below.
Helpers are no-ops when METRICS_ENABLED is false and never raise into the
caller's control flow.
"""

from __future__ import annotations

import contextlib

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from coachloop.config.settings import get_settings

registry = CollectorRegistry()

# ============================================================================
# Counters
# ============================================================================

coachloop_frames_total = Counter(
    "coachloop_frames_total",
    "Telemetry frames by processing outcome",
    labelnames=("outcome",),
    registry=registry,
)

coachloop_decisions_total = Counter(
    "coachloop_decisions_total",
    "Decisions by priority and outcome (executed, failed, deferred, dropped)",
    labelnames=("priority", "outcome"),
    registry=registry,
)

coachloop_tool_attempts_total = Counter(
    "coachloop_tool_attempts_total",
    "Tool invocation attempts by tool and status",
    labelnames=("tool", "status"),
    registry=registry,
)

coachloop_feedback_total = Counter(
    "coachloop_feedback_total",
    "Completed monitoring sessions by inferred player reaction",
    labelnames=("reaction",),
    registry=registry,
)

# ============================================================================
# Gauges
# ============================================================================

coachloop_active_monitoring_sessions = Gauge(
    "coachloop_active_monitoring_sessions",
    "Monitoring sessions currently open",
    registry=registry,
)

coachloop_inflight_decisions = Gauge(
    "coachloop_inflight_decisions",
    "Decisions between creation and monitoring completion",
    registry=registry,
)

# ============================================================================
# Histograms
# ============================================================================

coachloop_tool_duration_seconds = Histogram(
    "coachloop_tool_duration_seconds",
    "Tool step duration in seconds including retries",
    labelnames=("tool",),
    buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
    registry=registry,
)

coachloop_chain_success_rate = Histogram(
    "coachloop_chain_success_rate",
    "Per-chain step success rate",
    buckets=(0.0, 0.25, 0.5, 0.75, 0.9, 1.0),
    registry=registry,
)


# ============================================================================
# Helper Functions
# ============================================================================


def _enabled() -> bool:
    return get_settings().metrics_enabled


def mark_frame(outcome: str) -> None:
    """Count a telemetry frame ('processed', 'skipped', 'error')."""
    if not _enabled():
        return
    with contextlib.suppress(Exception):
        coachloop_frames_total.labels(outcome=outcome).inc()


def mark_decision(priority: str, outcome: str) -> None:
    if not _enabled():
        return
    with contextlib.suppress(Exception):
        coachloop_decisions_total.labels(priority=priority, outcome=outcome).inc()


def mark_tool_attempt(tool: str, status: str) -> None:
    """Count one tool attempt.

    Args:
        tool: Tool name
        status: 'success', 'failure', 'timeout' or 'error'
    """
    if not _enabled():
        return
    with contextlib.suppress(Exception):
        coachloop_tool_attempts_total.labels(tool=tool, status=status).inc()


def observe_tool_latency(tool: str, duration_seconds: float) -> None:
    if not _enabled():
        return
    with contextlib.suppress(Exception):
        coachloop_tool_duration_seconds.labels(tool=tool).observe(duration_seconds)


def observe_chain_success(success_rate: float) -> None:
    if not _enabled():
        return
    with contextlib.suppress(Exception):
        coachloop_chain_success_rate.observe(success_rate)


def mark_feedback(reaction: str) -> None:
    if not _enabled():
        return
    with contextlib.suppress(Exception):
        coachloop_feedback_total.labels(reaction=reaction).inc()


def set_active_sessions(count: int) -> None:
    if not _enabled():
        return
    with contextlib.suppress(Exception):
        coachloop_active_monitoring_sessions.set(count)


def set_inflight_decisions(count: int) -> None:
    if not _enabled():
        return
    with contextlib.suppress(Exception):
        coachloop_inflight_decisions.set(count)


def render_latest() -> tuple[bytes, str]:
    """Return (payload, content_type) for a scrape endpoint."""
    return generate_latest(registry), CONTENT_TYPE_LATEST
