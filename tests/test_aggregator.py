"""Tests for rlm/aggregator.py."""

import logging

from config.config_loader import OrchestrationConfig
from rlm.aggregator import (
    NO_RESULTS_MESSAGE,
    aggregate,
    build_results_context,
    build_synthesis_prompt,
    deduplicate,
    format_for_display,
    truncate,
)
from rlm.models import (
    AggregationResult,
    AssignmentSource,
    Classification,
    Complexity,
    ExecutionResult,
    Intent,
    RoleAssignment,
    RoleId,
    SourceRef,
    SubQueryType,
)
from rlm.perspectives import PERSPECTIVE_ROLES
from rlm.providers.base import ProviderError
from tests.conftest import FakeLLM

CLASSIFICATION = Classification(Intent.COMPARATIVE, Complexity.AGGREGATE)


def _ok(query_id: str, response: str, agent: str | None = None, role: RoleId | None = None,
        type_: SubQueryType = SubQueryType.MAP) -> ExecutionResult:
    perspective = None
    if role is not None:
        perspective = RoleAssignment(query_id, agent or query_id, PERSPECTIVE_ROLES[role], AssignmentSource.STRATEGY)
    return ExecutionResult(query_id=query_id, type=type_, success=True, response=response,
                           agent_name=agent, perspective=perspective, attempts=1)


def _failed(query_id: str, type_: SubQueryType = SubQueryType.MAP, skipped: bool = False) -> ExecutionResult:
    return ExecutionResult(query_id=query_id, type=type_, success=False, error="[mock] down", skipped=skipped)


async def test_all_failed_returns_failure():
    llm = FakeLLM()
    result = await aggregate([_failed("a"), _failed("b")], "q", CLASSIFICATION, llm, OrchestrationConfig())
    assert result.success is False
    assert result.aggregation_type == "none"
    assert result.response == NO_RESULTS_MESSAGE
    assert "[mock] down" not in result.response
    assert llm.calls == []


async def test_synthesis_failure_falls_back(caplog):
    llm = FakeLLM({"synthesis": ProviderError("mock", "synthesis down")})
    results = [_ok("a", "First answer about launch.", "Kickoff"), _ok("b", "Second view on budget.", "Review")]
    with caplog.at_level(logging.WARNING):
        result = await aggregate(results, "q", CLASSIFICATION, llm, OrchestrationConfig())
    assert result.success is True
    assert result.aggregation_type == "fallback"
    assert result.response.startswith("Based on 2 sources:")
    assert "**From Kickoff:**\nFirst answer about launch." in result.response
    assert "falling back" in caplog.text


async def test_llm_synthesis_success():
    llm = FakeLLM({"synthesis": "Synthesized answer."})
    results = [
        _ok("a", "Launch is on track.", "Kickoff", RoleId.ANALYST),
        _ok("b", "Budget approved early.", "Review", RoleId.ADVOCATE),
        _failed("c"),
    ]
    result = await aggregate(results, "How is the launch?", CLASSIFICATION, llm, OrchestrationConfig())
    assert result.aggregation_type == "llm-synthesis"
    assert result.response == "Synthesized answer."
    assert [s.query_id for s in result.sources] == ["a", "b"]
    assert result.sources[0].perspective == "Analyst"
    assert result.metadata["failed_queries"] == 1

    prompt, context, options = llm.calls[0]
    assert '"How is the launch?"' in prompt
    assert "[Kickoff [Analyst]]:\nLaunch is on track." in context
    assert options["query_id"] == "synthesis"


async def test_conflicts_are_injected_into_synthesis_prompt():
    llm = FakeLLM({"synthesis": "Balanced answer."})
    results = [
        _ok("a", "Revenue grew 10%.", "Finance", RoleId.ANALYST),
        _ok("b", "However, revenue declined due to currency effects.", "Sales", RoleId.CRITIC),
    ]
    result = await aggregate(results, "q", CLASSIFICATION, llm, OrchestrationConfig())
    prompt = llm.calls[0][0]
    assert "**Identified Tensions:**" in prompt
    assert "Address these tensions explicitly in your response." in prompt
    assert result.conflict_analysis.has_conflicts


async def test_conflicts_not_surfaced_when_disabled():
    llm = FakeLLM({"synthesis": "Answer."})
    results = [_ok("a", "Revenue grew 10%."), _ok("b", "However, revenue declined due to currency effects.")]
    config = OrchestrationConfig(surface_conflicts_in_response=False)
    result = await aggregate(results, "q", CLASSIFICATION, llm, config)
    assert "Identified Tensions" not in llm.calls[0][0]
    assert result.conflict_analysis.has_conflicts


async def test_conflict_detection_disabled_gives_no_analysis():
    llm = FakeLLM({"synthesis": "Answer."})
    results = [_ok("a", "Revenue grew 10%."), _ok("b", "However, revenue declined.")]
    result = await aggregate(results, "q", CLASSIFICATION, llm, OrchestrationConfig(enable_conflict_detection=False))
    assert result.conflict_analysis is None


async def test_successful_reduce_is_the_answer():
    llm = FakeLLM()
    results = [
        _ok("sq-map-0", "Revenue grew 10%.", "Finance", RoleId.ANALYST),
        _ok("sq-map-1", "However, revenue declined due to currency effects.", "Sales", RoleId.CRITIC),
        _ok("sq-debate", "Tension over revenue.", type_=SubQueryType.DEBATE),
        _ok("sq-reduce", "Reduced final answer.", type_=SubQueryType.REDUCE),
    ]
    result = await aggregate(results, "q", CLASSIFICATION, llm, OrchestrationConfig())
    assert result.aggregation_type == "map-reduce"
    assert result.response == "Reduced final answer."
    assert [s.query_id for s in result.sources] == ["sq-map-0", "sq-map-1"]
    assert result.conflict_analysis.has_conflicts
    assert llm.calls == []


async def test_failed_reduce_synthesizes_map_results():
    llm = FakeLLM({"synthesis": "Recovered."})
    results = [
        _ok("sq-map-0", "Launch is on track.", "Kickoff"),
        _ok("sq-map-1", "Budget approved early.", "Review"),
        _failed("sq-reduce", SubQueryType.REDUCE),
    ]
    result = await aggregate(results, "q", CLASSIFICATION, llm, OrchestrationConfig())
    assert result.aggregation_type == "llm-synthesis"
    assert result.response == "Recovered."


async def test_single_result_returned_directly():
    llm = FakeLLM()
    result = await aggregate([_ok("a", "Only answer.", "Kickoff"), _failed("b")], "q", CLASSIFICATION, llm,
                             OrchestrationConfig())
    assert result.aggregation_type == "single"
    assert result.response == "Only answer."
    assert llm.calls == []


async def test_simple_merge_without_llm():
    results = [_ok("a", "First answer.", "Kickoff"), _ok("b", "Second answer.", "Review")]
    result = await aggregate(results, "q", CLASSIFICATION, None, OrchestrationConfig())
    assert result.aggregation_type == "simple-merge"
    assert result.success


async def test_simple_merge_when_synthesis_disabled():
    llm = FakeLLM()
    results = [_ok("a", "First answer.", "Kickoff"), _ok("b", "Second answer.", "Review")]
    result = await aggregate(results, "q", CLASSIFICATION, llm, OrchestrationConfig(enable_llm_synthesis=False))
    assert result.aggregation_type == "simple-merge"
    assert llm.calls == []


async def test_empty_synthesis_falls_back():
    llm = FakeLLM({"synthesis": "  "})
    results = [_ok("a", "First answer.", "Kickoff"), _ok("b", "Second answer.", "Review")]
    result = await aggregate(results, "q", CLASSIFICATION, llm, OrchestrationConfig())
    assert result.aggregation_type == "fallback"


def test_deduplicate_drops_near_identical():
    results = [
        _ok("a", "the launch is planned for march this year"),
        _ok("b", "the launch is planned for march this year indeed"),
        _ok("c", "budget concerns dominate the review"),
    ]
    assert [r.query_id for r in deduplicate(results, 0.7)] == ["a", "c"]


def test_truncate():
    assert truncate("short", 100) == "short"
    long_text = "x" * 500
    out = truncate(long_text, 200)
    assert out.startswith("x" * 100)
    assert out.endswith("...[Response truncated for length]")


def test_synthesis_prompt_has_intent_guidance():
    prompt = build_synthesis_prompt("q", Classification(Intent.TEMPORAL, Complexity.SIMPLE))
    assert "timeline or causation" in prompt
    assert "Identified Tensions" not in prompt


def test_results_context_uses_position_for_unnamed_sources():
    context = build_results_context([_ok("a", "One."), _ok("b", "Two.", "Named", RoleId.CRITIC)])
    assert context == "[Source 1]:\nOne.\n\n---\n\n[Named [Critic]]:\nTwo."


def test_format_for_display_footers():
    result = AggregationResult(
        success=True,
        response="Answer.",
        aggregation_type="llm-synthesis",
        sources=[SourceRef("a", "Kickoff", None, "Analyst"), SourceRef("b", "Review", None, "Critic")],
    )
    text = format_for_display(result, OrchestrationConfig())
    assert "*Sources: Kickoff, Review*" in text
    assert "*Perspectives: Analyst, Critic*" in text

    hidden = format_for_display(result, OrchestrationConfig(include_perspective_in_response=False))
    assert "Perspectives" not in hidden
