"""Cognitive perspective roles: the static registry and role assignment.

Roles are defined once at import time and never mutated. Every function in
this module is pure; a missing match is reported as ``None`` and never raises.
"""

import logging
import re
from collections.abc import Callable, Sequence
from types import MappingProxyType

from rlm.models import (
    Agent,
    AssignmentSource,
    Classification,
    Group,
    Intent,
    PerspectiveRole,
    RoleAssignment,
    RoleId,
)

logger = logging.getLogger(__name__)

PERSPECTIVE_ROLES: MappingProxyType[RoleId, PerspectiveRole] = MappingProxyType({
    RoleId.ANALYST: PerspectiveRole(
        id=RoleId.ANALYST,
        label="Analyst",
        description="Examines data critically and objectively",
        prompt_prefix="As an objective analyst, examine the facts and data:",
        traits=("factual", "data-driven", "precise"),
        weight=1.0,
    ),
    RoleId.ADVOCATE: PerspectiveRole(
        id=RoleId.ADVOCATE,
        label="Advocate",
        description="Identifies supporting evidence and positive aspects",
        prompt_prefix="As an advocate, identify what supports and strengthens this:",
        traits=("supportive", "constructive", "opportunity-focused"),
        weight=0.8,
    ),
    RoleId.CRITIC: PerspectiveRole(
        id=RoleId.CRITIC,
        label="Critic",
        description="Identifies weaknesses, risks, and counterarguments",
        prompt_prefix="As a critical reviewer, identify potential issues, risks, or contradictions:",
        traits=("skeptical", "risk-aware", "thorough"),
        weight=0.9,
    ),
    RoleId.SYNTHESIZER: PerspectiveRole(
        id=RoleId.SYNTHESIZER,
        label="Synthesizer",
        description="Connects ideas and finds patterns across sources",
        prompt_prefix="As a synthesizer, identify connections, patterns, and broader implications:",
        traits=("holistic", "integrative", "pattern-finding"),
        weight=0.85,
    ),
    RoleId.HISTORIAN: PerspectiveRole(
        id=RoleId.HISTORIAN,
        label="Historian",
        description="Focuses on temporal context and evolution",
        prompt_prefix="From a historical perspective, trace how this evolved over time:",
        traits=("temporal", "contextual", "evolutionary"),
        weight=0.7,
        triggers=("over time", "evolution", "history", "progress", "changed"),
    ),
    RoleId.STAKEHOLDER: PerspectiveRole(
        id=RoleId.STAKEHOLDER,
        label="Stakeholder",
        description="Considers impact on different parties",
        prompt_prefix="From a stakeholder perspective, consider impacts on different parties:",
        traits=("empathetic", "multi-viewpoint", "impact-focused"),
        weight=0.75,
        triggers=("impact", "stakeholder", "team", "customer", "user"),
    ),
    RoleId.PRAGMATIST: PerspectiveRole(
        id=RoleId.PRAGMATIST,
        label="Pragmatist",
        description="Focuses on actionable outcomes and feasibility",
        prompt_prefix="As a pragmatist, focus on what is actionable and feasible:",
        traits=("practical", "action-oriented", "realistic"),
        weight=0.8,
        triggers=("action", "do", "implement", "next steps", "practical"),
    ),
})

PRIMARY_ROLE_IDS: tuple[RoleId, ...] = (
    RoleId.ANALYST,
    RoleId.ADVOCATE,
    RoleId.CRITIC,
    RoleId.SYNTHESIZER,
)

# Roles appended after Analyst for each intent.
_INTENT_ROLES: dict[Intent, tuple[RoleId, ...]] = {
    Intent.COMPARATIVE: (RoleId.CRITIC, RoleId.SYNTHESIZER),
    Intent.AGGREGATIVE: (RoleId.ADVOCATE, RoleId.SYNTHESIZER),
    Intent.ANALYTICAL: (RoleId.CRITIC, RoleId.ADVOCATE, RoleId.SYNTHESIZER),
    Intent.TEMPORAL: (RoleId.HISTORIAN, RoleId.SYNTHESIZER),
    Intent.FACTUAL: (RoleId.ADVOCATE, RoleId.CRITIC),
}


def get_role(role_id: RoleId | str) -> PerspectiveRole | None:
    try:
        return PERSPECTIVE_ROLES[RoleId(str(role_id).lower())]
    except ValueError:
        return None


def get_primary_roles() -> list[PerspectiveRole]:
    return [PERSPECTIVE_ROLES[r] for r in PRIMARY_ROLE_IDS]


def get_all_roles() -> list[PerspectiveRole]:
    return list(PERSPECTIVE_ROLES.values())


def is_primary_role(role: PerspectiveRole | RoleId | str) -> bool:
    role_id = role.id if isinstance(role, PerspectiveRole) else str(role)
    return role_id in {str(r) for r in PRIMARY_ROLE_IDS}


def select_roles_for_query(classification: Classification, count: int) -> list[PerspectiveRole]:
    """Pick ``count`` roles for a query: Analyst first, then intent roles, cycled to fit."""
    if count <= 0:
        return []
    role_ids = [RoleId.ANALYST, *_INTENT_ROLES.get(classification.intent, _INTENT_ROLES[Intent.FACTUAL])]
    base = role_ids[:4]
    while len(role_ids) < count:
        role_ids.append(base[len(role_ids) % len(base)])
    return [PERSPECTIVE_ROLES[r] for r in role_ids[:count]]


def assign_roles_to_agents(
    agents: Sequence[Agent],
    roles: Sequence[PerspectiveRole],
    strategy: str = "rotating",
) -> list[RoleAssignment]:
    """Assign one role per agent.

    Strategies:
        uniform: every agent gets ``roles[0]``.
        rotating: agent ``i`` gets ``roles[i % len(roles)]``.
        adaptive: same as rotating for now.
        primary-only: cycles Analyst, Advocate, Critic, Synthesizer.

    Unknown strategies behave like rotating. An empty ``roles`` falls back to
    the primary roles.
    """
    pool = list(roles) or get_primary_roles()
    if strategy == "uniform":
        picks = [pool[0]] * len(agents)
    elif strategy == "primary-only":
        primary = get_primary_roles()
        picks = [primary[i % len(primary)] for i in range(len(agents))]
    else:
        if strategy not in ("rotating", "adaptive"):
            logger.warning("Unknown role assignment strategy %r, using rotating", strategy)
        picks = [pool[i % len(pool)] for i in range(len(agents))]

    return [
        RoleAssignment(
            target_id=agent.id,
            target_name=agent.display_name,
            role=role,
            source=AssignmentSource.STRATEGY,
        )
        for agent, role in zip(agents, picks)
    ]


# --- Group -> perspective decision table ---

GroupRule = Callable[[Group], RoleId | None]

_CRITERIA_ROLES: dict[str, RoleId] = {
    "temporal": RoleId.HISTORIAN,
    "thematic": RoleId.SYNTHESIZER,
    "source": RoleId.ANALYST,
}


def _criteria_rule(group: Group) -> RoleId | None:
    return _CRITERIA_ROLES.get(group.criteria_type)


def _keyword_rule(pattern: str, role_id: RoleId) -> GroupRule:
    compiled = re.compile(pattern, re.IGNORECASE)

    def rule(group: Group) -> RoleId | None:
        if group.criteria_type in _CRITERIA_ROLES:
            return None
        text = f"{group.name} {group.description}"
        return role_id if compiled.search(text) else None

    return rule


GROUP_RULES: tuple[GroupRule, ...] = (
    _criteria_rule,
    _keyword_rule(r"risk|issue|problem|blocker|concern", RoleId.CRITIC),
    _keyword_rule(r"action|task|todo|next step|implement", RoleId.PRAGMATIST),
    _keyword_rule(r"stakeholder|team|customer|impact", RoleId.STAKEHOLDER),
    _keyword_rule(r"timeline|history|evolution|progress", RoleId.HISTORIAN),
)


def perspective_from_group_type(group: Group) -> PerspectiveRole | None:
    """First matching rule wins; ``None`` when nothing matches."""
    for rule in GROUP_RULES:
        role_id = rule(group)
        if role_id is not None:
            return PERSPECTIVE_ROLES[role_id]
    return None


def assign_perspectives_to_groups(
    groups: Sequence[Group],
    classification: Classification | None = None,
) -> list[RoleAssignment]:
    """Two-pass group assignment.

    Pass 1 maps each group through GROUP_RULES, never giving one role id to
    two groups. Pass 2 fills the remaining groups by rotating through the
    primary roles pass 1 left unused (all primary roles once those run out).
    ``classification`` is accepted for signature parity with agent selection.
    """
    used: set[RoleId] = set()
    first_pass: list[PerspectiveRole | None] = []
    for group in groups:
        role = perspective_from_group_type(group)
        if role is not None and role.id not in used:
            used.add(role.id)
            first_pass.append(role)
        else:
            first_pass.append(None)

    available = [r for r in get_primary_roles() if r.id not in used] or get_primary_roles()

    assignments: list[RoleAssignment] = []
    rotation = 0
    for group, role in zip(groups, first_pass):
        if role is not None:
            source = AssignmentSource.GROUP_TYPE
        else:
            role = available[rotation % len(available)]
            rotation += 1
            source = AssignmentSource.ROTATING
        assignments.append(
            RoleAssignment(target_id=group.id, target_name=group.name, role=role, source=source)
        )
    return assignments
