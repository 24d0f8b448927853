"""Dependency-aware tool chain execution with per-step timeout, retry and fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict, deque
from collections.abc import Awaitable, Callable
from typing import Any

from coachloop.config.settings import get_settings
from coachloop.contracts import (
    AIDecision,
    BackoffStrategy,
    ExecutionResult,
    ExecutionStatus,
    StepResult,
    ToolChainResult,
    ToolChainStep,
)
from coachloop.core.errors import (
    ToolChainValidationError,
    ToolExecutionError,
    ToolTimeoutError,
)
from coachloop.core.metrics import mark_tool_attempt, observe_chain_success, observe_tool_latency
from coachloop.core.observability import trace_performance
from coachloop.core.ports import ToolPort

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

STATUS_HISTORY = 100


def backoff_delay(step: ToolChainStep, retry_number: int) -> float:
    """Delay before retry number `retry_number` (1-based)."""
    if step.retry_policy.backoff == BackoffStrategy.EXPONENTIAL:
        return step.timeout * (2**retry_number)
    return step.timeout * retry_number


class SharedInvocations:
    """Tool invocations already started during one decision cycle, keyed by signature.

    The first chain to reach a signature runs it; every later chain awaits
    the same result instead of invoking the tool again.
    """

    def __init__(self) -> None:
        self._results: dict[str, asyncio.Future[StepResult]] = {}

    def __len__(self) -> int:
        return len(self._results)

    def claim(self, signature: str) -> tuple[asyncio.Future[StepResult], bool]:
        future = self._results.get(signature)
        if future is not None:
            return future, False
        future = asyncio.get_running_loop().create_future()
        self._results[signature] = future
        return future, True


class ToolExecutor:
    def __init__(
        self,
        tools: ToolPort,
        *,
        default_timeout: float | None = None,
        sleep: SleepFn | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._tools = tools
        self._default_timeout = (
            default_timeout
            if default_timeout is not None
            else get_settings().default_tool_timeout_seconds
        )
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._clock = clock or time.perf_counter
        self._status: OrderedDict[str, ExecutionStatus] = OrderedDict()

    # ===== Validation =====

    def validate_chain(self, steps: list[ToolChainStep]) -> list[ToolChainStep]:
        """Check the chain is a DAG over known tools. Returns the steps in topological order."""
        by_id: dict[str, ToolChainStep] = {}
        for step in steps:
            if step.step_id in by_id:
                raise ToolChainValidationError(f"duplicate step id {step.step_id}")
            by_id[step.step_id] = step

        for step in steps:
            for dep in step.dependencies:
                if dep not in by_id:
                    raise ToolChainValidationError(
                        f"step {step.step_id} depends on unknown step {dep}"
                    )
            if not self._tools.has_tool(step.tool_name):
                raise ToolChainValidationError(
                    f"step {step.step_id} uses unregistered tool {step.tool_name}"
                )
            if step.fallback_tool and not self._tools.has_tool(step.fallback_tool):
                raise ToolChainValidationError(
                    f"step {step.step_id} has unregistered fallback {step.fallback_tool}"
                )

        indegree = {step.step_id: len(set(step.dependencies)) for step in steps}
        dependents: dict[str, list[str]] = {step.step_id: [] for step in steps}
        for step in steps:
            for dep in set(step.dependencies):
                dependents[dep].append(step.step_id)

        ready = deque(sid for sid, n in indegree.items() if n == 0)
        ordered: list[ToolChainStep] = []
        while ready:
            sid = ready.popleft()
            ordered.append(by_id[sid])
            for child in dependents[sid]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    ready.append(child)

        if len(ordered) != len(steps):
            cyclic = sorted(sid for sid, n in indegree.items() if n > 0)
            raise ToolChainValidationError(f"cycle between steps {', '.join(cyclic)}")
        return ordered

    # ===== Execution =====

    async def execute_decision(
        self, decision: AIDecision, *, shared: SharedInvocations | None = None
    ) -> ExecutionResult:
        started = self._clock()
        context = {
            "decision_id": decision.id,
            "rule_id": decision.rule_id,
            "match_id": decision.match_id,
            "player_id": decision.player_id,
            "personality": decision.personality,
        }
        signatures = decision.metadata.get("step_signatures") if shared is not None else None
        chain = await self.execute_tool_chain(
            decision.tool_chain,
            context=context,
            decision_id=decision.id,
            shared=shared,
            signatures=signatures,
        )
        used = [r.tool_name for r in chain.steps if not r.skipped]
        return ExecutionResult(
            decision_id=decision.id,
            success=chain.success,
            chain=chain,
            tools_used=list(dict.fromkeys(used)),
            total_time=self._clock() - started,
        )

    @trace_performance
    async def execute_tool_chain(
        self,
        steps: list[ToolChainStep],
        *,
        context: dict[str, Any] | None = None,
        decision_id: str | None = None,
        shared: SharedInvocations | None = None,
        signatures: dict[str, str] | None = None,
    ) -> ToolChainResult:
        """Run every step once its dependencies are done.

        A failed step only affects the steps that depend on it; independent
        branches keep running. Raises ToolChainValidationError when the chain
        itself is malformed.
        """
        ordered = self.validate_chain(steps)
        started = self._clock()
        context = context or {}
        status = self._open_status(decision_id)

        tasks: dict[str, asyncio.Task[StepResult]] = {}
        for step in ordered:
            tasks[step.step_id] = asyncio.create_task(
                self._run_when_ready(step, tasks, context, status, shared, signatures),
                name=f"tool-step-{step.step_id}",
            )
        try:
            results_by_id = dict(zip(tasks, await asyncio.gather(*tasks.values()), strict=True))
        except BaseException:
            for task in tasks.values():
                task.cancel()
            raise

        results = [results_by_id[step.step_id] for step in steps]
        succeeded = sum(1 for r in results if r.success)
        rate = succeeded / len(results) if results else 1.0
        observe_chain_success(rate)
        chain = ToolChainResult(
            steps=results,
            total_time=self._clock() - started,
            success_rate=rate,
            success=succeeded == len(results),
        )
        if not chain.success:
            logger.warning(
                "tool_chain_partial_failure",
                extra={
                    "decision_id": decision_id,
                    "success_rate": rate,
                    "failed": [r.step_id for r in results if not r.success],
                },
            )
        return chain

    def monitor_execution(self, decision_id: str) -> ExecutionStatus | None:
        status = self._status.get(decision_id)
        return status.model_copy(deep=True) if status is not None else None

    # ===== Internals =====

    def _open_status(self, decision_id: str | None) -> ExecutionStatus | None:
        if decision_id is None:
            return None
        status = ExecutionStatus(decision_id=decision_id)
        self._status[decision_id] = status
        while len(self._status) > STATUS_HISTORY:
            self._status.popitem(last=False)
        return status

    async def _run_when_ready(
        self,
        step: ToolChainStep,
        tasks: dict[str, asyncio.Task[StepResult]],
        context: dict[str, Any],
        status: ExecutionStatus | None,
        shared: SharedInvocations | None,
        signatures: dict[str, str] | None,
    ) -> StepResult:
        dep_results = [await tasks[dep] for dep in step.dependencies]
        failed = [r.step_id for r in dep_results if not r.success]
        if failed:
            result = StepResult(
                step_id=step.step_id,
                tool_name=step.tool_name,
                success=False,
                error=f"dependency failed: {', '.join(failed)}",
                skipped=True,
            )
            self._record(status, result)
            return result

        payload = dict(step.input)
        if dep_results:
            payload["dependency_outputs"] = {r.step_id: r.output or {} for r in dep_results}

        if status is not None:
            status.running = [*status.running, step.step_id]

        signature = (signatures or {}).get(step.step_id)
        if shared is not None and signature is not None:
            future, owner = shared.claim(signature)
            if not owner:
                first = await asyncio.shield(future)
                result = first.model_copy(update={"step_id": step.step_id})
                logger.debug(
                    "tool_step_shared",
                    extra={"step_id": step.step_id, "source_step": first.step_id},
                )
                self._record(status, result)
                return result
            try:
                result = await self._run_step(step, payload, context)
            except BaseException as exc:
                future.set_result(
                    StepResult(
                        step_id=step.step_id,
                        tool_name=step.tool_name,
                        success=False,
                        error=f"shared invocation aborted: {type(exc).__name__}",
                    )
                )
                raise
            future.set_result(result)
        else:
            result = await self._run_step(step, payload, context)

        self._record(status, result)
        return result

    def _record(self, status: ExecutionStatus | None, result: StepResult) -> None:
        if status is None:
            return
        status.running = [sid for sid in status.running if sid != result.step_id]
        status.completed = [*status.completed, result.step_id]
        if not result.success and result.error:
            status.errors = {**status.errors, result.step_id: result.error}

    async def _run_step(
        self, step: ToolChainStep, payload: dict[str, Any], context: dict[str, Any]
    ) -> StepResult:
        started = self._clock()
        attempts = 0
        last_error = ""
        for attempt in range(step.retry_policy.max_retries + 1):
            if attempt:
                await self._sleep(backoff_delay(step, attempt))
            attempts += 1
            try:
                output = await self._invoke(step.tool_name, payload, context, step.timeout)
            except ToolExecutionError as exc:
                last_error = str(exc)
                logger.info(
                    "tool_attempt_failed",
                    extra={
                        "step_id": step.step_id,
                        "tool": step.tool_name,
                        "attempt": attempts,
                        "timeout": isinstance(exc, ToolTimeoutError),
                        "error": last_error,
                    },
                )
                continue
            return StepResult(
                step_id=step.step_id,
                tool_name=step.tool_name,
                success=True,
                output=output,
                execution_time=self._clock() - started,
                attempts=attempts,
            )

        if step.fallback_tool:
            try:
                output = await self._invoke(
                    step.fallback_tool, payload, context, self._default_timeout
                )
            except ToolExecutionError as exc:
                last_error = f"{last_error}; fallback {exc}"
            else:
                logger.info(
                    "tool_fallback_used",
                    extra={"step_id": step.step_id, "tool": step.tool_name, "fallback": step.fallback_tool},
                )
                return StepResult(
                    step_id=step.step_id,
                    tool_name=step.tool_name,
                    success=True,
                    output=output,
                    execution_time=self._clock() - started,
                    attempts=attempts,
                    used_fallback=True,
                )

        logger.warning(
            "tool_step_failed",
            extra={"step_id": step.step_id, "tool": step.tool_name, "attempts": attempts, "error": last_error},
        )
        return StepResult(
            step_id=step.step_id,
            tool_name=step.tool_name,
            success=False,
            execution_time=self._clock() - started,
            error=last_error,
            attempts=attempts,
            used_fallback=bool(step.fallback_tool),
        )

    async def _invoke(
        self, tool_name: str, payload: dict[str, Any], context: dict[str, Any], timeout: float
    ) -> dict[str, Any]:
        started = self._clock()
        try:
            result = await asyncio.wait_for(
                self._tools.execute(tool_name, payload, context), timeout=timeout
            )
        except TimeoutError as exc:
            mark_tool_attempt(tool_name, "timeout")
            raise ToolTimeoutError(tool_name, timeout) from exc
        except ToolExecutionError:
            mark_tool_attempt(tool_name, "failure")
            raise
        except Exception as exc:
            mark_tool_attempt(tool_name, "error")
            raise ToolExecutionError(tool_name, str(exc) or type(exc).__name__) from exc
        finally:
            observe_tool_latency(tool_name, self._clock() - started)

        if not result.success:
            mark_tool_attempt(tool_name, "failure")
            raise ToolExecutionError(tool_name, result.error or "tool reported failure")
        mark_tool_attempt(tool_name, "success")
        return dict(result.data or {})
