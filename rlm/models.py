"""Pure dataclasses for the RLM orchestration pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Intent(StrEnum):
    FACTUAL = "factual"
    COMPARATIVE = "comparative"
    AGGREGATIVE = "aggregative"
    ANALYTICAL = "analytical"
    TEMPORAL = "temporal"


class Complexity(StrEnum):
    SIMPLE = "simple"
    AGGREGATE = "aggregate"


class StrategyType(StrEnum):
    DIRECT = "direct"
    PARALLEL = "parallel"
    MAP_REDUCE = "map-reduce"
    GROUP_PARALLEL = "group-parallel"


class SubQueryType(StrEnum):
    DIRECT = "direct"
    MAP = "map"
    REDUCE = "reduce"
    DEBATE = "debate"
    GROUP_QUERY = "group-query"
    AGENT_SPECIFIC = "agent-specific"


class ContextLevel(StrEnum):
    NONE = "none"
    SUMMARY = "summary"
    STANDARD = "standard"
    FULL = "full"


class RoleId(StrEnum):
    ANALYST = "analyst"
    ADVOCATE = "advocate"
    CRITIC = "critic"
    SYNTHESIZER = "synthesizer"
    HISTORIAN = "historian"
    STAKEHOLDER = "stakeholder"
    PRAGMATIST = "pragmatist"


class AssignmentSource(StrEnum):
    GROUP_TYPE = "group-type"
    ROTATING = "rotating"
    PENDING = "pending"
    STRATEGY = "strategy"  # agent-level assignment via a RoleAssignmentStrategy


@dataclass(frozen=True)
class Classification:
    intent: Intent
    complexity: Complexity


@dataclass(frozen=True)
class Agent:
    id: str
    display_name: str
    source_type: str = "transcript"
    created_date: str | None = None  # ISO date
    summary: str = ""
    key_points: str = ""
    action_items: str = ""
    sentiment: str = ""
    transcript: str = ""
    enabled: bool = True


@dataclass(frozen=True)
class RankedAgent:
    agent: Agent
    score: float


@dataclass(frozen=True)
class Group:
    id: str
    name: str
    criteria_type: str  # "temporal", "thematic", "source", "custom"
    agent_ids: tuple[str, ...] = ()
    enabled: bool = True
    description: str = ""


@dataclass(frozen=True)
class PerspectiveRole:
    id: RoleId
    label: str
    description: str
    prompt_prefix: str
    traits: tuple[str, ...]
    weight: float
    triggers: tuple[str, ...] = ()


@dataclass(frozen=True)
class RoleAssignment:
    target_id: str         # agent id or group id
    target_name: str
    role: PerspectiveRole
    source: AssignmentSource


@dataclass
class SubQuery:
    id: str
    type: SubQueryType
    query_text: str
    target_agents: tuple[str, ...] = ()
    target_group: str | None = None
    perspective: RoleAssignment | None = None
    priority: int = 1
    depends_on: frozenset[str] = frozenset()
    context_level: ContextLevel = ContextLevel.STANDARD
    agent_name: str | None = None


@dataclass
class Decomposition:
    original_query: str
    classification: Classification
    strategy: StrategyType
    sub_queries: list[SubQuery] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    query_id: str
    type: SubQueryType
    success: bool
    response: str | None = None
    error: str | None = None
    agent_name: str | None = None
    target_group: str | None = None
    target_agents: tuple[str, ...] = ()
    perspective: RoleAssignment | None = None
    attempts: int = 0
    skipped: bool = False  # dependency failed or plan cancelled; no call made


@dataclass(frozen=True)
class ExecutionEvent:
    phase: str
    query_id: str
    message: str
    timestamp: float


@dataclass
class ExecutionReport:
    results: list[ExecutionResult]
    strategy: StrategyType
    execution_time_sec: float
    events: list[ExecutionEvent] = field(default_factory=list)
    cancelled: bool = False


@dataclass(frozen=True)
class PairScore:
    conflict_score: int
    agreement_score: int
    similarity: float
    type: str        # "conflict", "agreement", "neutral"
    confidence: float


@dataclass(frozen=True)
class SourceExcerpt:
    agent_name: str
    perspective: str
    excerpt: str


@dataclass(frozen=True)
class ConflictPairReport:
    type: str
    confidence: float
    similarity: float
    conflict_score: int
    agreement_score: int
    source_a: SourceExcerpt
    source_b: SourceExcerpt


@dataclass
class ConflictAnalysis:
    has_conflicts: bool
    conflicts: list[ConflictPairReport] = field(default_factory=list)
    agreements: list[ConflictPairReport] = field(default_factory=list)
    conflict_themes: list[str] = field(default_factory=list)
    summary: str | None = None


@dataclass(frozen=True)
class SourceRef:
    query_id: str
    agent_name: str | None = None
    target_group: str | None = None
    perspective: str | None = None


@dataclass
class AggregationResult:
    success: bool
    response: str
    aggregation_type: str  # "llm-synthesis", "map-reduce", "single", "fallback", "simple-merge", "none", "no-data"
    sources: list[SourceRef] = field(default_factory=list)
    conflict_analysis: ConflictAnalysis | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    report: ExecutionReport | None = None  # per-sub-query detail, set by the pipeline


@dataclass
class ModelResponse:
    provider: str          # "claude", "openai", "gemini", "grok", "deepseek"
    model: str             # actual model string used
    content: str
    latency_sec: float
    token_count: int | None
