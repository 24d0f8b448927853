"""Observability for the coaching loop.

Structured logging is configured once here. The `llm_debug_wrapper` decorator
traces calls (arguments, result, duration, failure) for tool adapters and the
chain executor, and `set_correlation_id` binds a match id into every log line
emitted while a frame is being processed.
"""

import asyncio
import functools
import json
import logging
import re
import sys
import time
import traceback
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar, cast

import structlog
from pydantic import BaseModel, ConfigDict, Field
from structlog.contextvars import bind_contextvars, unbind_contextvars

from coachloop.config.settings import get_settings

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            ],
        ),
        structlog.processors.dict_tracebacks,
        structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),  # type: ignore[list-item]
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

_SENSITIVE_KEY_RE = re.compile(r"(token|key|secret|password|authorization|auth)", re.IGNORECASE)


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the stdlib root logger."""
    resolved = (level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format="%(message)s")
    logging.getLogger().setLevel(resolved)


def set_correlation_id(correlation_id: str) -> None:
    """Bind a correlation id (usually the match id) to the logging context."""
    bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    unbind_contextvars("correlation_id")


def _mask(value: Any) -> Any:
    if value is None:
        return None
    s = str(value)
    if len(s) <= 8:
        return "***"
    return f"{s[:4]}…{s[-3:]}"


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: (_mask(v) if _SENSITIVE_KEY_RE.search(str(k)) else _redact(v)) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_redact(i) for i in obj]
    return obj


def _serialize(value: Any, max_length: int = 1000) -> Any:
    """Best-effort JSON-safe rendering of a traced value, truncated to max_length."""
    try:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json", exclude_unset=True)
        encoded = json.dumps(value, default=str)
        if len(encoded) > max_length:
            return encoded[:max_length] + "..."
        return json.loads(encoded)
    except (TypeError, ValueError):
        text = str(value)
        if len(text) > max_length:
            return text[:max_length] + "..."
        return text


class CallTrace(BaseModel):
    """Trace record for one decorated call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    function_name: str
    execution_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    duration_ms: float | None = None
    args: list[Any] = Field(default_factory=list)
    kwargs: dict[str, Any] = Field(default_factory=dict)
    result: Any | None = None
    is_success: bool = True
    error_type: str | None = None
    error_message: str | None = None
    is_async: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


def llm_debug_wrapper(
    *,
    capture_result: bool = True,
    capture_args: bool = True,
    max_arg_length: int = 1000,
    log_level: str = "INFO",
    add_metadata: dict[str, Any] | None = None,
) -> Callable[[F], F]:
    """Trace a sync or async callable.

    Logs entry (optionally with redacted arguments), success with duration and
    optionally the result, or failure with the exception and traceback, which
    is then re-raised unchanged.

    Example:
        >>> @llm_debug_wrapper(capture_result=False)
        ... async def execute(tool_name: str, payload: dict) -> dict:
        ...     return {"ok": True}
    """
    level = log_level.lower()

    def decorator(func: F) -> F:
        name = f"{func.__module__}.{func.__qualname__}"

        def _begin(args: tuple[Any, ...], kwargs: dict[str, Any], is_async: bool) -> CallTrace:
            trace = CallTrace(
                function_name=name,
                execution_id=f"{name}_{int(time.time() * 1_000_000)}",
                is_async=is_async,
                metadata=add_metadata or {},
            )
            if capture_args:
                trace.args = [_redact(_serialize(a, max_arg_length)) for a in args]
                trace.kwargs = {
                    k: (_mask(v) if _SENSITIVE_KEY_RE.search(k) else _redact(_serialize(v, max_arg_length)))
                    for k, v in kwargs.items()
                }
            bind_contextvars(execution_id=trace.execution_id)
            getattr(logger, level)(
                f"Executing: {name}",
                execution_id=trace.execution_id,
                args=trace.args if capture_args else None,
                kwargs=trace.kwargs if capture_args else None,
                **trace.metadata,
            )
            return trace

        def _succeed(trace: CallTrace, started: float, result: Any) -> None:
            trace.duration_ms = (time.perf_counter() - started) * 1000
            if capture_result:
                trace.result = _redact(_serialize(result, max_arg_length))
            getattr(logger, level)(
                f"Successfully executed: {name}",
                execution_id=trace.execution_id,
                duration_ms=trace.duration_ms,
                result=trace.result if capture_result else None,
            )

        def _fail(trace: CallTrace, started: float, exc: BaseException) -> None:
            trace.duration_ms = (time.perf_counter() - started) * 1000
            trace.is_success = False
            trace.error_type = type(exc).__name__
            trace.error_message = str(exc)
            logger.error(
                f"Error in function: {name}",
                execution_id=trace.execution_id,
                duration_ms=trace.duration_ms,
                error_type=trace.error_type,
                error_message=trace.error_message,
                traceback=traceback.format_exc(),
            )

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            trace = _begin(args, kwargs, is_async=True)
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _fail(trace, started, e)
                raise
            finally:
                unbind_contextvars("execution_id")
            _succeed(trace, started, result)
            return result

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            trace = _begin(args, kwargs, is_async=False)
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _fail(trace, started, e)
                raise
            finally:
                unbind_contextvars("execution_id")
            _succeed(trace, started, result)
            return result

        if asyncio.iscoroutinefunction(func):
            return cast(F, async_wrapper)
        return cast(F, sync_wrapper)

    return decorator


def trace_critical(func: F) -> F:
    """Full tracing for critical-path functions."""
    return llm_debug_wrapper(capture_result=True, capture_args=True, log_level="INFO")(func)


def trace_performance(func: F) -> F:
    """Timing-only tracing."""
    return llm_debug_wrapper(capture_result=False, capture_args=False, log_level="DEBUG")(func)


def trace_adapter(func: F) -> F:
    """Tracing for collaborator adapters."""
    return llm_debug_wrapper(
        capture_result=True,
        capture_args=True,
        log_level="INFO",
        add_metadata={"layer": "adapter"},
    )(func)
