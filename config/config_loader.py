"""Load settings.yaml into typed dataclasses. Validates orchestration settings at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

ROLE_ASSIGNMENT_STRATEGIES = ("uniform", "rotating", "adaptive", "primary-only")


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: float  # defaults to longest_call_timeout() when omitted in settings.yaml
    max_tokens: int
    base_url: str | None = None
    temperature: float | None = None


@dataclass
class PromptsConfig:
    system: str
    sub_query: str  # placeholders: {context}, {query}


@dataclass
class DefaultsConfig:
    synthesizer: str
    output_dir: Path
    agents_dir: Path | None = None


@dataclass(frozen=True)
class ConflictConfig:
    conflict_markers: tuple[str, ...] = (
        "however", "but", "although", "despite", "contrary",
        "disagree", "conflict", "tension", "risk", "concern",
        "alternatively", "on the other hand", "versus", "vs",
        "challenge", "issue", "problem", "limitation", "obstacle",
        "whereas", "unlike", "contrast", "differ", "instead",
    )
    agreement_markers: tuple[str, ...] = (
        "also", "similarly", "agrees", "confirms", "supports",
        "consistent", "aligns", "reinforces", "validates",
        "likewise", "as well", "in line with", "corroborates",
        "echoes", "mirrors", "matches", "concurs",
    )
    stop_words: frozenset[str] = frozenset({
        "that", "this", "with", "from", "have", "been",
        "were", "their", "would", "could", "should", "about",
        "which", "there", "these", "those", "being", "other",
        "meeting", "discussed", "mentioned", "noted", "stated",
        "regarding", "related", "based", "according", "following",
    })
    min_responses: int = 2
    excerpt_length: int = 150
    max_themes: int = 5


@dataclass
class OrchestrationConfig:
    enable_rlm: bool = True  # false answers with one combined-context call, no decomposition
    enable_societies_of_thought: bool = True
    role_assignment_strategy: str = "rotating"
    min_agents_for_sot: int = 2
    include_perspective_in_response: bool = True
    surface_conflicts_in_response: bool = True
    conflict_detection_threshold: float = 0.75
    enable_conflict_detection: bool = True
    enable_debate_phase: bool = True
    debate_min_perspectives: int = 3
    enable_llm_synthesis: bool = True
    max_sub_queries: int = 5
    min_relevance_score: float = 2.0
    min_groups_for_group_level: int = 2
    min_agents_for_group_level: int = 6
    retry_attempts: int = 2
    retry_backoff_sec: float = 1.0
    timeout_sec: float = 30.0
    reduce_timeout_sec: float = 45.0
    debate_timeout_sec: float = 30.0
    max_concurrent: int = 0  # per-stage cap on in-flight calls; 0 means unbounded
    max_final_length: int = 4000
    deduplication_threshold: float = 0.7
    conflict: ConflictConfig = field(default_factory=ConflictConfig)


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    orchestration: OrchestrationConfig = field(default_factory=OrchestrationConfig)
    available_providers: set[str] = field(default_factory=set)


def validate_orchestration(cfg: OrchestrationConfig) -> OrchestrationConfig:
    """Raise ValueError for settings the orchestrator cannot run with."""
    if cfg.role_assignment_strategy not in ROLE_ASSIGNMENT_STRATEGIES:
        raise ValueError(
            f"Unknown role_assignment_strategy {cfg.role_assignment_strategy!r}; "
            f"expected one of {', '.join(ROLE_ASSIGNMENT_STRATEGIES)}"
        )
    for name in ("conflict_detection_threshold", "deduplication_threshold"):
        value = getattr(cfg, name)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be within [0, 1], got {value}")
    if cfg.retry_attempts < 0:
        raise ValueError(f"retry_attempts must be >= 0, got {cfg.retry_attempts}")
    for name in ("timeout_sec", "reduce_timeout_sec", "debate_timeout_sec"):
        if getattr(cfg, name) <= 0:
            raise ValueError(f"{name} must be positive, got {getattr(cfg, name)}")
    if cfg.max_concurrent < 0:
        raise ValueError(f"max_concurrent must be >= 0, got {cfg.max_concurrent}")
    if cfg.debate_min_perspectives < 1:
        raise ValueError(f"debate_min_perspectives must be >= 1, got {cfg.debate_min_perspectives}")
    if cfg.max_sub_queries < 1:
        raise ValueError(f"max_sub_queries must be >= 1, got {cfg.max_sub_queries}")
    return cfg


def longest_call_timeout(cfg: OrchestrationConfig) -> float:
    """Longest per-call timeout the executor allows; provider SDK timeouts default to it."""
    return max(cfg.timeout_sec, cfg.reduce_timeout_sec, cfg.debate_timeout_sec)


def _load_conflict(raw: dict) -> ConflictConfig:
    base = ConflictConfig()
    return ConflictConfig(
        conflict_markers=tuple(raw.get("conflict_markers", base.conflict_markers)),
        agreement_markers=tuple(raw.get("agreement_markers", base.agreement_markers)),
        stop_words=frozenset(raw.get("stop_words", base.stop_words)),
        min_responses=int(raw.get("min_responses", base.min_responses)),
        excerpt_length=int(raw.get("excerpt_length", base.excerpt_length)),
        max_themes=int(raw.get("max_themes", base.max_themes)),
    )


def _load_orchestration(raw: dict) -> OrchestrationConfig:
    base = OrchestrationConfig()
    cfg = OrchestrationConfig(
        enable_rlm=bool(raw.get("enable_rlm", base.enable_rlm)),
        enable_societies_of_thought=bool(raw.get("enable_societies_of_thought", base.enable_societies_of_thought)),
        role_assignment_strategy=str(raw.get("role_assignment_strategy", base.role_assignment_strategy)),
        min_agents_for_sot=int(raw.get("min_agents_for_sot", base.min_agents_for_sot)),
        include_perspective_in_response=bool(
            raw.get("include_perspective_in_response", base.include_perspective_in_response)
        ),
        surface_conflicts_in_response=bool(
            raw.get("surface_conflicts_in_response", base.surface_conflicts_in_response)
        ),
        conflict_detection_threshold=float(
            raw.get("conflict_detection_threshold", base.conflict_detection_threshold)
        ),
        enable_conflict_detection=bool(raw.get("enable_conflict_detection", base.enable_conflict_detection)),
        enable_debate_phase=bool(raw.get("enable_debate_phase", base.enable_debate_phase)),
        debate_min_perspectives=int(raw.get("debate_min_perspectives", base.debate_min_perspectives)),
        enable_llm_synthesis=bool(raw.get("enable_llm_synthesis", base.enable_llm_synthesis)),
        max_sub_queries=int(raw.get("max_sub_queries", base.max_sub_queries)),
        min_relevance_score=float(raw.get("min_relevance_score", base.min_relevance_score)),
        min_groups_for_group_level=int(raw.get("min_groups_for_group_level", base.min_groups_for_group_level)),
        min_agents_for_group_level=int(raw.get("min_agents_for_group_level", base.min_agents_for_group_level)),
        retry_attempts=int(raw.get("retry_attempts", base.retry_attempts)),
        retry_backoff_sec=float(raw.get("retry_backoff_sec", base.retry_backoff_sec)),
        timeout_sec=float(raw.get("timeout_sec", base.timeout_sec)),
        reduce_timeout_sec=float(raw.get("reduce_timeout_sec", base.reduce_timeout_sec)),
        debate_timeout_sec=float(raw.get("debate_timeout_sec", base.debate_timeout_sec)),
        max_concurrent=int(raw.get("max_concurrent", base.max_concurrent)),
        max_final_length=int(raw.get("max_final_length", base.max_final_length)),
        deduplication_threshold=float(raw.get("deduplication_threshold", base.deduplication_threshold)),
        conflict=_load_conflict(raw.get("conflict") or {}),
    )
    return validate_orchestration(cfg)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing and ValueError for
    invalid orchestration settings.
    Logs missing API keys but does not raise; callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    agents_dir = defaults_raw.get("agents_dir")
    defaults = DefaultsConfig(
        synthesizer=str(defaults_raw["synthesizer"]),
        output_dir=Path(defaults_raw["output_dir"]),
        agents_dir=Path(agents_dir) if agents_dir else None,
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        system=str(prompts_raw["system"]),
        sub_query=str(prompts_raw["sub_query"]),
    )

    orchestration = _load_orchestration(raw.get("orchestration") or {})

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    call_timeout = longest_call_timeout(orchestration)
    for provider_name, model_raw in raw["models"].items():
        temperature = model_raw.get("temperature")
        timeout_sec = model_raw.get("timeout_sec", call_timeout)
        if timeout_sec != call_timeout:
            logger.warning(
                "Model %s timeout_sec=%s differs from the longest orchestration call timeout (%s); "
                "the shorter of the two bounds every call",
                provider_name, timeout_sec, call_timeout,
            )
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=float(timeout_sec),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
            temperature=float(temperature) if temperature is not None else None,
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s (set %s in .env)",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        orchestration=orchestration,
        available_providers=available_providers,
    )
