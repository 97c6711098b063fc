"""Query decomposition: turn one question into an acyclic, typed sub-query plan."""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from config.config_loader import OrchestrationConfig
from rlm.models import (
    Agent,
    Classification,
    Complexity,
    ContextLevel,
    Decomposition,
    Group,
    Intent,
    PerspectiveRole,
    RoleAssignment,
    RoleId,
    StrategyType,
    SubQuery,
    SubQueryType,
)
from rlm.perspectives import (
    PERSPECTIVE_ROLES,
    assign_perspectives_to_groups,
    assign_roles_to_agents,
    select_roles_for_query,
)

logger = logging.getLogger(__name__)

MAP_PRIORITY = 1
DEBATE_PRIORITY = 2
REDUCE_PRIORITY = 3

DIRECT_MAX_AGENTS = 2

_DEBATE_INTENTS = frozenset({Intent.ANALYTICAL, Intent.COMPARATIVE})

_MAP_TEMPLATES: dict[Intent, str] = {
    Intent.FACTUAL: "Extract any relevant facts or decisions related to: {query}",
    Intent.AGGREGATIVE: "List all items related to: {query}",
    Intent.ANALYTICAL: "Identify patterns or themes related to: {query}",
    Intent.TEMPORAL: "Note any timeline or progression related to: {query}",
    Intent.COMPARATIVE: "Summarize the key points about: {query}",
}

_REDUCE_TEMPLATES: dict[Intent, str] = {
    Intent.FACTUAL: "Based on the gathered information, answer: {query}",
    Intent.AGGREGATIVE: "Combine and organize all the gathered items for: {query}",
    Intent.ANALYTICAL: "Synthesize the patterns found across sources for: {query}",
    Intent.TEMPORAL: "Create a timeline or progression summary for: {query}",
    Intent.COMPARATIVE: "Compare and contrast the findings for: {query}",
}


class PlanError(ValueError):
    """Raised when a sub-query plan violates its structural invariants."""


@dataclass(frozen=True)
class GroupLevelDecision:
    use_group_level: bool
    eligible_groups: tuple[Group, ...]
    reason: str


def is_eligible_group(group: Group) -> bool:
    return group.enabled and bool(group.agent_ids)


def should_use_group_level(
    groups: Sequence[Group],
    agent_count: int,
    classification: Classification,
    config: OrchestrationConfig,
) -> GroupLevelDecision:
    """Group-level decomposition needs enough eligible groups, enough agents and a non-simple query."""
    eligible = tuple(g for g in groups if is_eligible_group(g))
    if len(eligible) < config.min_groups_for_group_level:
        reason = f"{len(eligible)} eligible group(s), need {config.min_groups_for_group_level}"
        return GroupLevelDecision(False, eligible, reason)
    if agent_count < config.min_agents_for_group_level:
        reason = f"{agent_count} agent(s), need {config.min_agents_for_group_level}"
        return GroupLevelDecision(False, eligible, reason)
    if classification.complexity == Complexity.SIMPLE:
        return GroupLevelDecision(False, eligible, "simple query")
    return GroupLevelDecision(True, eligible, f"{len(eligible)} groups covering {agent_count} agents")


def choose_strategy(classification: Classification, agent_count: int | None = None) -> StrategyType:
    """Agent-level strategy: map-reduce for aggregate questions, parallel otherwise.

    A simple question over at most ``DIRECT_MAX_AGENTS`` agents needs no
    decomposition and is answered by one direct call.
    """
    if classification.complexity == Complexity.AGGREGATE:
        return StrategyType.MAP_REDUCE
    if agent_count is not None and agent_count <= DIRECT_MAX_AGENTS:
        return StrategyType.DIRECT
    return StrategyType.PARALLEL


def qualifies_for_debate(classification: Classification) -> bool:
    return classification.complexity == Complexity.AGGREGATE and classification.intent in _DEBATE_INTENTS


# --- Prompt construction ---

def role_reinforcement(role: PerspectiveRole) -> str:
    return (
        f"Answer strictly from the {role.label} perspective, "
        f"keeping your response {', '.join(role.traits)}."
    )


def build_role_prompt(scope: str, core: str, role: PerspectiveRole | None) -> str:
    """[scope] + [role prefix] + [core question] + [role reinforcement]; role parts omitted when absent."""
    parts = [scope] if scope else []
    if role is not None:
        parts.append(role.prompt_prefix)
    parts.append(core)
    if role is not None:
        parts.append(role_reinforcement(role))
    return "\n\n".join(parts)


def build_reduce_prompt(query: str, classification: Classification) -> str:
    opening = _REDUCE_TEMPLATES.get(classification.intent, "Synthesize the findings to answer: {query}")
    return (
        f"{opening.format(query=query)}\n\n"
        "In your answer:\n"
        "1. State where the sources AGREE.\n"
        "2. State where the sources CONFLICT or diverge.\n"
        "3. Synthesize a balanced answer that weighs both.\n"
        "4. Attribute each insight to the source (and perspective) it came from."
    )


def build_debate_prompt(query: str) -> str:
    return (
        f"You are moderating a structured debate between analytical perspectives on: {query}\n\n"
        "Using the perspective findings provided, identify:\n"
        "1. Key TENSIONS or disagreements between the perspectives.\n"
        "2. Risks or assumptions that only one side raises.\n"
        "3. Recommendations for synthesizing the positions into one answer.\n\n"
        "Be concise (3-6 bullet points per section)."
    )


# --- Plan validation ---

def validate_plan(sub_queries: Sequence[SubQuery]) -> None:
    """Check unique ids, known dependencies, strict priority ordering and acyclicity.

    Raises:
        PlanError: On the first violated invariant.
    """
    by_id: dict[str, SubQuery] = {}
    for sq in sub_queries:
        if sq.id in by_id:
            raise PlanError(f"Duplicate sub-query id: {sq.id}")
        by_id[sq.id] = sq

    for sq in sub_queries:
        for dep in sq.depends_on:
            if dep not in by_id:
                raise PlanError(f"Sub-query {sq.id} depends on unknown id {dep}")
            if by_id[dep].priority >= sq.priority:
                raise PlanError(
                    f"Sub-query {sq.id} (priority {sq.priority}) depends on {dep} "
                    f"(priority {by_id[dep].priority}); dependencies must run in an earlier stage"
                )

    visiting: set[str] = set()
    done: set[str] = set()

    def visit(node: str) -> None:
        if node in done:
            return
        if node in visiting:
            raise PlanError(f"Dependency cycle through {node}")
        visiting.add(node)
        for dep in by_id[node].depends_on:
            visit(dep)
        visiting.discard(node)
        done.add(node)

    for sq_id in by_id:
        visit(sq_id)


# --- Role assignment for agent-level plans ---

def _agent_assignments(
    agents: Sequence[Agent],
    classification: Classification,
    config: OrchestrationConfig,
) -> list[RoleAssignment | None]:
    if not config.enable_societies_of_thought:
        return [None] * len(agents)
    if len(agents) < config.min_agents_for_sot:
        roles = [PERSPECTIVE_ROLES[RoleId.ANALYST]]
        return list(assign_roles_to_agents(agents, roles, "uniform"))
    roles = select_roles_for_query(classification, len(agents))
    return list(assign_roles_to_agents(agents, roles, config.role_assignment_strategy))


def _role_of(assignment: RoleAssignment | None) -> PerspectiveRole | None:
    return assignment.role if assignment is not None else None


# --- Strategy builders ---

def _direct_plan(query: str, agents: Sequence[Agent]) -> list[SubQuery]:
    return [
        SubQuery(
            id="sq-direct",
            type=SubQueryType.DIRECT,
            query_text=query,
            target_agents=tuple(a.id for a in agents),
            priority=MAP_PRIORITY,
            context_level=ContextLevel.STANDARD,
            agent_name=", ".join(a.display_name for a in agents),
        )
    ]


def _parallel_plan(
query: str, classification: Classification, agents: Sequence[Agent],
                   config: OrchestrationConfig) -> list[SubQuery]:
    assignments = _agent_assignments(agents, classification, config)
    return [
        SubQuery(
            id=f"sq-{i}",
            type=SubQueryType.AGENT_SPECIFIC,
            query_text=build_role_prompt(
                f'Regarding the "{agent.display_name}" source:', query, _role_of(assignment)
            ),
            target_agents=(agent.id,),
            perspective=assignment,
            priority=MAP_PRIORITY,
            context_level=ContextLevel.STANDARD,
            agent_name=agent.display_name,
        )
        for i, (agent, assignment) in enumerate(zip(agents, assignments))
    ]


def _map_reduce_plan(query: str, classification: Classification, agents: Sequence[Agent],
                     config: OrchestrationConfig) -> list[SubQuery]:
    assignments = _agent_assignments(agents, classification, config)
    map_core = _MAP_TEMPLATES.get(classification.intent, "Find information about: {query}").format(query=query)

    plan = [
        SubQuery(
            id=f"sq-map-{i}",
            type=SubQueryType.MAP,
            query_text=build_role_prompt(
                f'From the "{agent.display_name}" source:', map_core, _role_of(assignment)
            ),
            target_agents=(agent.id,),
            perspective=assignment,
            priority=MAP_PRIORITY,
            context_level=ContextLevel.SUMMARY,
            agent_name=agent.display_name,
        )
        for i, (agent, assignment) in enumerate(zip(agents, assignments))
    ]
    map_ids = frozenset(sq.id for sq in plan)

    reduce_deps = map_ids
    # debate only over enough perspective-tagged map answers
    perspectives = sum(1 for a in assignments if a is not None)
    if (
        config.enable_debate_phase
        and qualifies_for_debate(classification)
        and perspectives >= config.debate_min_perspectives
    ):
        plan.append(
            SubQuery(
                id="sq-debate",
                type=SubQueryType.DEBATE,
                query_text=build_debate_prompt(query),
                priority=DEBATE_PRIORITY,
                depends_on=map_ids,
                context_level=ContextLevel.NONE,
            )
        )
        reduce_deps = frozenset({"sq-debate"})

    plan.append(
        SubQuery(
            id="sq-reduce",
            type=SubQueryType.REDUCE,
            query_text=build_reduce_prompt(query, classification),
            priority=REDUCE_PRIORITY,
            depends_on=reduce_deps,
            context_level=ContextLevel.NONE,
        )
    )
    return plan


def _group_plan(query: str, classification: Classification, groups: Sequence[Group],
                config: OrchestrationConfig) -> list[SubQuery]:
    eligible = [g for g in groups if is_eligible_group(g)]
    if config.enable_societies_of_thought:
        assignments: list[RoleAssignment | None] = list(assign_perspectives_to_groups(eligible, classification))
    else:
        assignments = [None] * len(eligible)

    plan = [
        SubQuery(
            id=f"sq-group-{i}",
            type=SubQueryType.GROUP_QUERY,
            query_text=build_role_prompt(
                f'Across the "{group.name}" group of {len(group.agent_ids)} sources:',
                query,
                _role_of(assignment),
            ),
            target_agents=tuple(group.agent_ids),
            target_group=group.id,
            perspective=assignment,
            priority=MAP_PRIORITY,
            context_level=ContextLevel.STANDARD,
            agent_name=group.name,
        )
        for i, (group, assignment) in enumerate(zip(eligible, assignments))
    ]
    plan.append(
        SubQuery(
            id="sq-reduce",
            type=SubQueryType.REDUCE,
            query_text=build_reduce_prompt(query, classification),
            priority=DEBATE_PRIORITY,
            depends_on=frozenset(sq.id for sq in plan),
            context_level=ContextLevel.NONE,
        )
    )
    return plan


def decompose(
    query: str,
    classification: Classification,
    strategy: StrategyType,
    config: OrchestrationConfig,
    agents: Sequence[Agent] = (),
    groups: Sequence[Group] = (),
) -> Decomposition:
    """Build the sub-query plan for one question.

    Args:
        query: The user's question.
        classification: Intent and complexity of the question.
        strategy: direct, parallel, map-reduce or group-parallel.
        config: Orchestration settings (role toggles, debate phase).
        agents: Relevant agents, for agent-level strategies.
        groups: Candidate groups, for group-parallel.

    Returns:
        Decomposition whose ``sub_queries`` is empty when there is nothing to
        query; callers must treat that as "no data".
    """
    if strategy == StrategyType.GROUP_PARALLEL:
        has_scope = any(is_eligible_group(g) for g in groups)
    else:
        has_scope = bool(agents)

    if not has_scope:
        logger.info("No eligible %s for %s decomposition", "groups" if strategy == StrategyType.GROUP_PARALLEL
                    else "agents", strategy)
        sub_queries: list[SubQuery] = []
    elif strategy == StrategyType.DIRECT:
        sub_queries = _direct_plan(query, agents)
    elif strategy == StrategyType.PARALLEL:
        sub_queries = _parallel_plan(query, classification, agents, config)
    elif strategy == StrategyType.MAP_REDUCE:
        sub_queries = _map_reduce_plan(query, classification, agents, config)
    else:
        sub_queries = _group_plan(query, classification, groups, config)

    validate_plan(sub_queries)

    logger.info("Decomposed query into %d sub-queries using %s", len(sub_queries), strategy)

    return Decomposition(
        original_query=query,
        classification=classification,
        strategy=strategy,
        sub_queries=sub_queries,
        metadata={
            "selected_agents": len(agents),
            "selected_groups": sum(1 for g in groups if is_eligible_group(g)),
            "decomposed_at": datetime.now(timezone.utc).isoformat(),
        },
    )


# --- Heuristic classification ---

_INTENT_PATTERNS: tuple[tuple[Intent, re.Pattern[str]], ...] = (
    (Intent.COMPARATIVE, re.compile(r"compare|differ|versus|\bvs\.?|between", re.IGNORECASE)),
    (Intent.AGGREGATIVE, re.compile(r"\ball\b|every|total|combined|across|overall", re.IGNORECASE)),
    (Intent.ANALYTICAL, re.compile(r"pattern|trend|theme|common|recurring|emerge", re.IGNORECASE)),
    (Intent.TEMPORAL, re.compile(r"over time|evolution|change|progress|history", re.IGNORECASE)),
)
_MULTI_PART = re.compile(r"\?.*\?|and also|additionally|furthermore", re.IGNORECASE)
_AGGREGATE_INTENTS = frozenset({Intent.COMPARATIVE, Intent.AGGREGATIVE, Intent.ANALYTICAL})


def classify_query(query: str) -> Classification:
    """Keyword classification for callers that have no classifier of their own.

    First matching intent pattern wins (factual otherwise). Comparative,
    aggregative, analytical and multi-part questions are aggregate.
    """
    intent = next((i for i, pattern in _INTENT_PATTERNS if pattern.search(query)), Intent.FACTUAL)
    if intent in _AGGREGATE_INTENTS or _MULTI_PART.search(query):
        complexity = Complexity.AGGREGATE
    else:
        complexity = Complexity.SIMPLE
    return Classification(intent=intent, complexity=complexity)
