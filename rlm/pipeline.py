"""End-to-end question answering: decompose, execute in stages, aggregate."""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field

from config.config_loader import OrchestrationConfig
from rlm.aggregator import aggregate
from rlm.decomposer import choose_strategy, decompose, should_use_group_level
from rlm.executor import EventSink, execute_plan
from rlm.models import AggregationResult, Classification, Decomposition, Group, StrategyType
from rlm.providers.base import LLMCall
from rlm.store import ContextStore

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No relevant sources were found for this question."


@dataclass
class PipelineStats:
    """Running totals across answered questions."""

    queries_processed: int = 0
    total_sub_queries: int = 0
    avg_execution_time_sec: float = 0.0
    strategies: dict[str, int] = field(default_factory=dict)

    def record(self, strategy: StrategyType, sub_query_count: int, total_time_sec: float) -> None:
        self.queries_processed += 1
        self.total_sub_queries += sub_query_count
        n = self.queries_processed
        self.avg_execution_time_sec = ((n - 1) * self.avg_execution_time_sec + total_time_sec) / n
        self.strategies[str(strategy)] = self.strategies.get(str(strategy), 0) + 1


def _active_groups(groups: list[Group], active_ids: set[str]) -> list[Group]:
    """Groups narrowed to their enabled members."""
    return [
        dataclasses.replace(g, agent_ids=tuple(a for a in g.agent_ids if a in active_ids))
        for g in groups
    ]


async def _run(
    decomposition: Decomposition,
    classification: Classification,
    store: ContextStore,
    llm_call: LLMCall,
    config: OrchestrationConfig,
    metadata: dict,
    start: float,
    cancel_event: asyncio.Event | None,
    on_event: EventSink | None,
    stats: PipelineStats | None,
) -> AggregationResult:
    query = decomposition.original_query
    if not decomposition.sub_queries:
        logger.info("Nothing to query for %r; returning no-data result", query)
        metadata["total_time_sec"] = time.monotonic() - start
        return AggregationResult(
            success=False, response=NO_DATA_MESSAGE, aggregation_type="no-data", metadata=metadata,
        )

    report = await execute_plan(decomposition, llm_call, store, config, cancel_event=cancel_event, on_event=on_event)
    metadata["execution_time_sec"] = report.execution_time_sec
    metadata["cancelled"] = report.cancelled

    # no further model calls once the caller has cancelled
    synthesis_call = None if report.cancelled else llm_call
    result = await aggregate(report.results, query, classification, synthesis_call, config, metadata=metadata)
    result.report = report
    result.metadata["total_time_sec"] = time.monotonic() - start
    if stats is not None:
        stats.record(decomposition.strategy, len(decomposition.sub_queries), result.metadata["total_time_sec"])
    logger.info("Answered with %s in %.1fs", result.aggregation_type, result.metadata["total_time_sec"])
    return result


async def answer_question(
    query: str,
    classification: Classification,
    store: ContextStore,
    llm_call: LLMCall,
    config: OrchestrationConfig,
    *,
    strategy: StrategyType | None = None,
    cancel_event: asyncio.Event | None = None,
    on_event: EventSink | None = None,
    stats: PipelineStats | None = None,
) -> AggregationResult:
    """Answer one question against the store.

    Group-level decomposition is used whenever the store's groups qualify;
    otherwise ``strategy`` (or the default for the classification and the
    number of relevant agents) picks the agent-level plan. With
    ``config.enable_rlm`` off, every enabled agent is answered in one
    combined-context call instead. Only enabled agents are ever counted or
    sent to the model.

    Returns:
        AggregationResult. An empty plan yields ``aggregation_type="no-data"``
        without any model call.
    """
    start = time.monotonic()
    active = [a for a in store.list_agents() if a.enabled]
    base_meta = {
        "intent": str(classification.intent),
        "complexity": str(classification.complexity),
        "agents_total": len(active),
        "rlm_enabled": config.enable_rlm,
    }

    if not config.enable_rlm:
        logger.info("Decomposition disabled; answering over %d agents in one call", len(active))
        decomposition = decompose(query, classification, StrategyType.DIRECT, config, agents=active)
        metadata = {**base_meta, "strategy": "legacy", "agents_selected": len(active)}
        return await _run(decomposition, classification, store, llm_call, config, metadata, start,
                          cancel_event, on_event, stats)

    groups = _active_groups(store.list_groups(), {a.id for a in active})
    decision = should_use_group_level(groups, len(active), classification, config)

    if decision.use_group_level:
        chosen = StrategyType.GROUP_PARALLEL
        agents = []
        logger.info("Using group-level decomposition: %s", decision.reason)
    else:
        ranked = store.query_agents(query, max_results=config.max_sub_queries, min_score=config.min_relevance_score)
        agents = [r.agent for r in ranked]
        if strategy is None or strategy == StrategyType.GROUP_PARALLEL:
            chosen = choose_strategy(classification, len(agents))
        else:
            chosen = strategy
        logger.info("Using %s over %d relevant agent(s) (group level skipped: %s)",
                    chosen, len(agents), decision.reason)

    decomposition = decompose(query, classification, chosen, config, agents=agents, groups=decision.eligible_groups)
    metadata = {
        **base_meta,
        "strategy": str(chosen),
        "agents_selected": len(agents),
        "groups_selected": len(decision.eligible_groups) if decision.use_group_level else 0,
        "group_level_reason": decision.reason,
    }
    return await _run(decomposition, classification, store, llm_call, config, metadata, start,
                      cancel_event, on_event, stats)
