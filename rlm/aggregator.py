"""Final aggregation: conflict-aware synthesis with a deterministic fallback."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from config.config_loader import OrchestrationConfig
from rlm.conflicts import analyze_conflicts, conflict_indicator, format_for_synthesis
from rlm.models import (
    AggregationResult,
    Classification,
    ConflictAnalysis,
    ExecutionResult,
    Intent,
    SourceRef,
    SubQueryType,
)
from rlm.providers.base import LLMCall

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No results could be gathered from the available sources."
_TRUNCATION_NOTICE = "\n\n...[Response truncated for length]"
_CONTEXT_SEPARATOR = "\n\n---\n\n"

_INTENT_GUIDANCE: dict[Intent, str] = {
    Intent.FACTUAL: "- Focus on factual consensus; note any factual disagreements",
    Intent.COMPARATIVE: "- Highlight how different perspectives view the comparison",
    Intent.AGGREGATIVE: "- Compile items, noting if any perspective flagged concerns",
    Intent.ANALYTICAL: "- Present the analytical tension before your synthesis",
    Intent.TEMPORAL: "- Note if perspectives disagree on timeline or causation",
}


def build_synthesis_prompt(query: str, classification: Classification, conflict_block: str = "") -> str:
    """Synthesis instructions, intent guidance and (optionally) the flagged tensions."""
    lines = [
        f'You are synthesizing diverse perspectives to answer: "{query}"',
        "",
        "The responses below come from different analytical perspectives analyzing the source material.",
        "",
        "Instructions:",
        "- Combine information coherently from all perspectives",
        "- IMPORTANT: If perspectives disagree, acknowledge the disagreement explicitly",
        "- Present the strongest argument from each side before synthesizing",
        "- Be concise but comprehensive",
        "- Cite which source/perspective insights came from",
        "- Use bullet points for lists",
    ]
    guidance = _INTENT_GUIDANCE.get(classification.intent)
    if guidance:
        lines.append(guidance)
    prompt = "\n".join(lines)
    if conflict_block:
        prompt += f"\n\n---\n{conflict_block}\n\nAddress these tensions explicitly in your response."
    return prompt


def _perspective_label(result: ExecutionResult) -> str | None:
    return result.perspective.role.label if result.perspective else None


def build_results_context(results: Sequence[ExecutionResult]) -> str:
    """``[source [Perspective]]:`` labelled responses, separated by horizontal rules."""
    parts = []
    for i, result in enumerate(results, start=1):
        source = result.agent_name or f"Source {i}"
        label = _perspective_label(result)
        suffix = f" [{label}]" if label else ""
        parts.append(f"[{source}{suffix}]:\n{result.response}")
    return _CONTEXT_SEPARATOR.join(parts)


def word_similarity(text_a: str, text_b: str) -> float:
    """Jaccard index over all lower-cased whitespace-split words."""
    words_a = set(text_a.lower().split())
    words_b = set(text_b.lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def deduplicate(results: Sequence[ExecutionResult], threshold: float) -> list[ExecutionResult]:
    """Keep results in order, dropping any too similar to one already kept."""
    kept: list[ExecutionResult] = []
    for result in results:
        if any(word_similarity(k.response or "", result.response or "") > threshold for k in kept):
            logger.debug("Dropping near-duplicate result %s", result.query_id)
            continue
        kept.append(result)
    return kept


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - 100)] + _TRUNCATION_NOTICE


def _sources(results: Sequence[ExecutionResult]) -> list[SourceRef]:
    return [
        SourceRef(
            query_id=r.query_id,
            agent_name=r.agent_name,
            target_group=r.target_group,
            perspective=_perspective_label(r),
        )
        for r in results
    ]


def simple_merge(
    results: Sequence[ExecutionResult],
    config: OrchestrationConfig,
    aggregation_type: str,
    conflict_analysis: ConflictAnalysis | None,
    metadata: dict[str, Any],
) -> AggregationResult:
    """Deterministic concatenation of labelled, deduplicated responses."""
    deduped = deduplicate(results, config.deduplication_threshold)
    parts = []
    for i, result in enumerate(deduped, start=1):
        source = result.agent_name or f"Source {i}"
        label = _perspective_label(result)
        if label and config.include_perspective_in_response:
            source = f"{source} [{label}]"
        parts.append(f"**From {source}:**\n{result.response}")

    response = f"Based on {len(results)} sources:\n\n" + _CONTEXT_SEPARATOR.join(parts)
    return AggregationResult(
        success=True,
        response=truncate(response, config.max_final_length),
        aggregation_type=aggregation_type,
        sources=_sources(results),
        conflict_analysis=conflict_analysis,
        metadata=metadata,
    )


async def aggregate(
    results: Sequence[ExecutionResult],
    original_query: str,
    classification: Classification,
    llm_call: LLMCall | None,
    config: OrchestrationConfig,
    metadata: dict[str, Any] | None = None,
) -> AggregationResult:
    """Merge sub-query results into one answer.

    Args:
        results: Every ExecutionResult of the plan, failed ones included.
        original_query: The user's question.
        classification: Intent and complexity, used for synthesis guidance.
        llm_call: Model call for synthesis; None forces a simple merge.
        config: Conflict, synthesis and truncation settings.
        metadata: Extra execution statistics to carry into the result.

    Returns:
        AggregationResult. ``success`` is False only when no sub-query
        succeeded; a failed synthesis call degrades to ``"fallback"``.
    """
    successful = [r for r in results if r.success and r.response]
    meta: dict[str, Any] = {
        **(metadata or {}),
        "total_sub_queries": len(results),
        "successful_queries": len(successful),
        "failed_queries": sum(1 for r in results if not r.success),
        "skipped_queries": sum(1 for r in results if r.skipped),
    }

    if not successful:
        logger.warning("All %d sub-queries failed; nothing to aggregate", len(results))
        return AggregationResult(
            success=False, response=NO_RESULTS_MESSAGE, aggregation_type="none", metadata=meta,
        )

    inputs = [r for r in successful if r.type != SubQueryType.REDUCE]
    perspective_results = [r for r in inputs if r.type != SubQueryType.DEBATE]

    analysis: ConflictAnalysis | None = None
    if config.enable_conflict_detection:
        analysis = analyze_conflicts(perspective_results, config.conflict, config.conflict_detection_threshold)
        meta["conflict_count"] = len(analysis.conflicts)
        meta["agreement_count"] = len(analysis.agreements)
        if analysis.has_conflicts:
            logger.info("Detected %d tension(s) across %d perspectives",
                        len(analysis.conflicts), len(perspective_results))

    reduce_result = next((r for r in successful if r.type == SubQueryType.REDUCE), None)
    if reduce_result is not None:
        return AggregationResult(
            success=True,
            response=reduce_result.response or "",
            aggregation_type="map-reduce",
            sources=_sources(perspective_results),
            conflict_analysis=analysis,
            metadata=meta,
        )

    if len(inputs) == 1:
        return AggregationResult(
            success=True,
            response=inputs[0].response or "",
            aggregation_type="single",
            sources=_sources(inputs),
            conflict_analysis=analysis,
            metadata=meta,
        )

    if not config.enable_llm_synthesis or llm_call is None:
        return simple_merge(inputs, config, "simple-merge", analysis, meta)

    conflict_block = ""
    if analysis is not None and analysis.has_conflicts and config.surface_conflicts_in_response:
        conflict_block = format_for_synthesis(analysis)

    prompt = build_synthesis_prompt(original_query, classification, conflict_block)
    context = build_results_context(inputs)
    options = {
        "query_id": "synthesis",
        "type": "synthesis",
        "attempt": 1,
        "timeout_sec": config.reduce_timeout_sec,
    }

    logger.info("Synthesizing %d results", len(inputs))
    try:
        response = await asyncio.wait_for(llm_call(prompt, context, options), timeout=config.reduce_timeout_sec)
        if not response or not response.strip():
            raise RuntimeError("synthesis returned empty content")
    except TimeoutError:
        logger.warning("Synthesis timed out after %ss, falling back to simple merge", config.reduce_timeout_sec)
        return simple_merge(inputs, config, "fallback", analysis, meta)
    except Exception as exc:
        logger.warning("Synthesis failed, falling back to simple merge: %s", exc)
        return simple_merge(inputs, config, "fallback", analysis, meta)

    return AggregationResult(
        success=True,
        response=response,
        aggregation_type="llm-synthesis",
        sources=_sources(inputs),
        conflict_analysis=analysis,
        metadata=meta,
    )


def format_for_display(result: AggregationResult, config: OrchestrationConfig) -> str:
    """Response text plus source, perspective and tension footers."""
    formatted = result.response
    names = list(dict.fromkeys(s.agent_name for s in result.sources if s.agent_name))
    if len(names) > 1:
        source_list = ", ".join(names)
        if source_list not in formatted:
            formatted += f"\n\n*Sources: {source_list}*"

    if config.include_perspective_in_response:
        labels = list(dict.fromkeys(s.perspective for s in result.sources if s.perspective))
        if labels:
            formatted += f"\n\n*Perspectives: {', '.join(labels)}*"

    if config.surface_conflicts_in_response:
        indicator = conflict_indicator(result.conflict_analysis)
        if indicator:
            themes = f" (themes: {', '.join(indicator['themes'])})" if indicator["themes"] else ""
            formatted += f"\n\n*Tensions detected: {indicator['count']}{themes}*"
    return formatted
