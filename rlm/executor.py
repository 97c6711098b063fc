"""Staged sub-query execution: concurrent within a stage, sequential across stages."""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

from config.config_loader import OrchestrationConfig
from rlm.decomposer import validate_plan
from rlm.models import (
    ContextLevel,
    Decomposition,
    ExecutionEvent,
    ExecutionReport,
    ExecutionResult,
    SubQuery,
    SubQueryType,
)
from rlm.providers.base import CallError, LLMCall
from rlm.store import ContextStore

logger = logging.getLogger(__name__)

EventSink = Callable[[ExecutionEvent], None]

_CONTEXT_SEPARATOR = "\n\n---\n\n"


class PlanCancelled(Exception):
    """Raised internally when the plan-level cancel event fires mid-call."""


def _is_cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def timeout_for(sub_query: SubQuery, config: OrchestrationConfig) -> float:
    if sub_query.type == SubQueryType.REDUCE:
        return config.reduce_timeout_sec
    if sub_query.type == SubQueryType.DEBATE:
        return config.debate_timeout_sec
    return config.timeout_sec


async def _await_cancellable(coro, timeout: float, cancel_event: asyncio.Event | None) -> str:
    """Await ``coro`` under ``timeout``; abandon it as soon as ``cancel_event`` is set."""
    if cancel_event is None:
        return await asyncio.wait_for(coro, timeout=timeout)

    call = asyncio.ensure_future(asyncio.wait_for(coro, timeout=timeout))
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if call in done:
            return call.result()
        call.cancel()
        await asyncio.gather(call, return_exceptions=True)
        raise PlanCancelled()
    finally:
        waiter.cancel()
        if not call.done():
            call.cancel()


async def _backoff(delay: float, cancel_event: asyncio.Event | None) -> None:
    if delay <= 0:
        return
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except TimeoutError:
        pass


def _source_label(result: ExecutionResult) -> str:
    name = result.agent_name or "Source"
    if result.perspective is not None:
        return f"{result.perspective.role.label} - {name}"
    return name


def _dependency_context(
    sub_query: SubQuery,
    plan: Sequence[SubQuery],
    by_id: dict[str, SubQuery],
    results: dict[str, ExecutionResult],
) -> str:
    """Labelled responses of every transitive dependency, in plan order."""
    closure: set[str] = set()
    pending = list(sub_query.depends_on)
    while pending:
        dep = pending.pop()
        if dep in closure:
            continue
        closure.add(dep)
        pending.extend(by_id[dep].depends_on)

    parts: list[str] = []
    for sq in plan:
        result = results.get(sq.id)
        if sq.id not in closure or result is None or not result.success:
            continue
        if result.type == SubQueryType.DEBATE:
            parts.append(f"**DEBATE INSIGHTS:**\n{result.response}")
        else:
            parts.append(f"[{_source_label(result)}]:\n{result.response}")
    return _CONTEXT_SEPARATOR.join(parts)


def resolve_context(
    sub_query: SubQuery,
    plan: Sequence[SubQuery],
    by_id: dict[str, SubQuery],
    results: dict[str, ExecutionResult],
    store: ContextStore,
) -> str:
    """Context text for one sub-query.

    Dependent sub-queries (debate, reduce) read their dependencies' answers.
    Scoped sub-queries read the store; a group-query asks for one combined
    context over the whole group.
    """
    if sub_query.depends_on:
        return _dependency_context(sub_query, plan, by_id, results)
    if not sub_query.target_agents or sub_query.context_level == ContextLevel.NONE:
        return ""
    if sub_query.type == SubQueryType.GROUP_QUERY:
        logger.debug(
            "Resolving combined context for group %s (%d agents)",
            sub_query.target_group, len(sub_query.target_agents),
        )
    return store.get_combined_context(list(sub_query.target_agents), sub_query.context_level)


def _result_for(sub_query: SubQuery, **fields) -> ExecutionResult:
    return ExecutionResult(
        query_id=sub_query.id,
        type=sub_query.type,
        agent_name=sub_query.agent_name,
        target_group=sub_query.target_group,
        target_agents=sub_query.target_agents,
        perspective=sub_query.perspective,
        **fields,
    )


async def _call_with_retry(
    llm_call: LLMCall,
    sub_query: SubQuery,
    context: str,
    config: OrchestrationConfig,
    cancel_event: asyncio.Event | None,
    emit: Callable[[str, str, str], None],
) -> ExecutionResult:
    """Call the model for one sub-query, retrying up to ``config.retry_attempts`` times.

    Never raises for call failures; returns a failed ExecutionResult instead.
    """
    timeout = timeout_for(sub_query, config)
    max_attempts = config.retry_attempts + 1
    last_error = "not attempted"
    attempts = 0

    for attempt in range(1, max_attempts + 1):
        if _is_cancelled(cancel_event):
            return _result_for(sub_query, success=False, error="cancelled", attempts=attempts)

        attempts = attempt
        options = {
            "query_id": sub_query.id,
            "type": str(sub_query.type),
            "attempt": attempt,
            "timeout_sec": timeout,
        }
        try:
            response = await _await_cancellable(
                llm_call(sub_query.query_text, context, options), timeout, cancel_event
            )
            if not response or not response.strip():
                raise CallError("Empty response")
            return _result_for(sub_query, success=True, response=response, attempts=attempt)
        except PlanCancelled:
            emit("cancel", sub_query.id, "interrupted by plan cancellation")
            return _result_for(sub_query, success=False, error="cancelled", attempts=attempt)
        except TimeoutError:
            last_error = f"timed out after {timeout}s"
        except Exception as exc:
            last_error = str(exc) or exc.__class__.__name__

        logger.warning(
            "Sub-query %s attempt %d/%d failed: %s", sub_query.id, attempt, max_attempts, last_error,
        )
        emit("retry", sub_query.id, f"attempt {attempt} failed: {last_error}")
        if attempt < max_attempts:
            await _backoff(config.retry_backoff_sec * 2 ** (attempt - 1), cancel_event)

    return _result_for(sub_query, success=False, error=last_error, attempts=attempts)


async def execute_plan(
    decomposition: Decomposition,
    llm_call: LLMCall,
    store: ContextStore,
    config: OrchestrationConfig,
    cancel_event: asyncio.Event | None = None,
    on_event: EventSink | None = None,
) -> ExecutionReport:
    """Run a decomposition stage by stage.

    Args:
        decomposition: Plan produced by the decomposer.
        llm_call: Async model call, treated as slow and failure-prone.
        store: Read-only context store for scoped sub-queries.
        config: Retry, timeout and concurrency settings.
        cancel_event: When set, no new stage or retry starts and in-flight
            calls are abandoned.
        on_event: Optional sink invoked for every stage transition and
            sub-query completion.

    Returns:
        ExecutionReport with exactly one ExecutionResult per sub-query, in
        plan order.

    Raises:
        PlanError: If the plan is structurally invalid.
    """
    plan = decomposition.sub_queries
    validate_plan(plan)
    by_id = {sq.id: sq for sq in plan}

    start = time.monotonic()
    events: list[ExecutionEvent] = []

    def emit(phase: str, query_id: str, message: str) -> None:
        event = ExecutionEvent(phase=phase, query_id=query_id, message=message, timestamp=time.time())
        events.append(event)
        logger.debug("[%s] %s: %s", phase, query_id, message)
        if on_event:
            try:
                on_event(event)
            except Exception:
                logger.exception("Event sink failed on %s %s", phase, query_id)

    semaphore = asyncio.Semaphore(config.max_concurrent) if config.max_concurrent > 0 else None
    results: dict[str, ExecutionResult] = {}

    async def run_one(sub_query: SubQuery) -> ExecutionResult:
        failed_deps = sorted(d for d in sub_query.depends_on if not results[d].success)
        if failed_deps:
            logger.warning("Skipping %s: dependency failed (%s)", sub_query.id, ", ".join(failed_deps))
            emit(str(sub_query.type), sub_query.id, f"skipped: dependency failed ({', '.join(failed_deps)})")
            return _result_for(
                sub_query, success=False, skipped=True,
                error=f"dependency failed: {', '.join(failed_deps)}",
            )

        try:
            context = resolve_context(sub_query, plan, by_id, results, store)
        except Exception as exc:
            logger.warning("Context resolution failed for %s: %s", sub_query.id, exc)
            emit(str(sub_query.type), sub_query.id, f"failed: context resolution ({exc})")
            return _result_for(sub_query, success=False, error=f"context resolution failed: {exc}")

        if semaphore is None:
            result = await _call_with_retry(llm_call, sub_query, context, config, cancel_event, emit)
        else:
            async with semaphore:
                result = await _call_with_retry(llm_call, sub_query, context, config, cancel_event, emit)

        if result.success:
            emit(str(sub_query.type), sub_query.id, f"completed (attempt {result.attempts})")
        else:
            emit(str(sub_query.type), sub_query.id, f"failed: {result.error}")
        return result

    cancelled = False
    for priority in sorted({sq.priority for sq in plan}):
        if _is_cancelled(cancel_event):
            cancelled = True
            break

        stage = [sq for sq in plan if sq.priority == priority]
        stage_name = f"stage-{priority}"
        kinds = ", ".join(sorted({str(sq.type) for sq in stage}))
        logger.info("Starting %s with %d sub-queries (%s)", stage_name, len(stage), kinds)
        emit("stage", stage_name, f"started ({len(stage)} sub-queries: {kinds})")

        outcomes = await asyncio.gather(*(run_one(sq) for sq in stage))
        for outcome in outcomes:
            results[outcome.query_id] = outcome

        succeeded = sum(1 for o in outcomes if o.success)
        logger.info("%s complete: %d/%d sub-queries succeeded", stage_name, succeeded, len(stage))
        emit("stage", stage_name, f"completed ({succeeded}/{len(stage)} succeeded)")

        if _is_cancelled(cancel_event):
            cancelled = True

    if cancelled:
        logger.warning("Plan cancelled; %d sub-queries not started", len(plan) - len(results))
        for sq in plan:
            if sq.id not in results:
                results[sq.id] = _result_for(sq, success=False, skipped=True, error="cancelled")

    return ExecutionReport(
        results=[results[sq.id] for sq in plan],
        strategy=decomposition.strategy,
        execution_time_sec=time.monotonic() - start,
        events=events,
        cancelled=cancelled,
    )
